from roster.models.account import Account, Profile, ROLES

__all__ = [
    "Account", "Profile", "ROLES",
]
