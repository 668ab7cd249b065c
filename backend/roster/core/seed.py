"""Seed the instructor account that is allowed to run imports."""
import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from roster.core.config import settings
from roster.core.security import hash_password
from roster.db.session import AsyncSessionLocal
from roster.models.account import Account

logger = logging.getLogger(__name__)


async def seed_instructor(db: AsyncSession, email: str, password: str, name: str = "Instructor") -> Account:
    """Insert the instructor account if no account with that email exists."""
    existing = await db.execute(
        select(Account).where(func.lower(Account.email) == email.lower())
    )
    account = existing.scalars().first()
    if account is not None:
        logger.info("Instructor already exists: %s, skipping", email)
        return account

    account = Account(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role="instructor",
        is_active=True,
    )
    db.add(account)
    await db.commit()
    logger.info("Seeded instructor: %s", email)
    return account


async def run_seed() -> None:
    async with AsyncSessionLocal() as db:
        await seed_instructor(db, settings.SEED_INSTRUCTOR_EMAIL, settings.SEED_INSTRUCTOR_PASSWORD)
    logger.info("Seeding complete.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_seed())
