import uuid

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roster.db.base import Base, TimestampMixin, UUIDMixin

ROLES = ("instructor", "student")


class Account(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "accounts"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    profile: Mapped["Profile"] = relationship(
        "Profile", back_populates="account", uselist=False
    )


class Profile(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "profiles"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("accounts.id"), unique=True, nullable=False
    )
    student_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    account: Mapped["Account"] = relationship("Account", back_populates="profile")


# emails are compared case-insensitively everywhere, so uniqueness is on lower(email)
Index("ix_accounts_email_lower", func.lower(Account.email), unique=True)
