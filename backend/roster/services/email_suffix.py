"""Find the lowest free ``local_<n>@domain`` variant of an email."""
import logging

from roster.services.errors import AllocationExhausted
from roster.services.persistence import PersistenceGateway

logger = logging.getLogger(__name__)

DEFAULT_SUFFIX_LIMIT = 1000


def email_with_suffix(email: str, suffix: int) -> str:
    local_part, _, domain = email.rpartition("@")
    return f"{local_part}_{suffix}@{domain}"


class SuffixAllocator:
    """Checks the store directly on every attempt, so suffixes created earlier
    in the same run are always seen."""

    def __init__(self, gateway: PersistenceGateway, limit: int = DEFAULT_SUFFIX_LIMIT):
        self.gateway = gateway
        self.limit = limit

    def allocate(self, base_email: str) -> str:
        for suffix in range(1, self.limit + 1):
            candidate = email_with_suffix(base_email, suffix)
            if not self.gateway.email_exists(candidate):
                if suffix > 1:
                    logger.debug("allocate: %s → %s after %d attempts", base_email, candidate, suffix)
                return candidate
        raise AllocationExhausted(base_email, self.limit)
