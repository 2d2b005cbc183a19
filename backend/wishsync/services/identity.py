from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from wishsync.core.logger import get_logger
from wishsync.db.session import transaction
from wishsync.models.models import User, utcnow
from wishsync.schemas.auth import TelegramProfile

logger = get_logger("identity")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def upsert_user(db: AsyncSession, profile: TelegramProfile) -> User:
    """Insert the Telegram user or refresh their profile fields."""
    now = utcnow()
    values = {
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "username": profile.username,
        "language_code": profile.language_code,
        "is_premium": bool(profile.is_premium),
        "photo_url": profile.photo_url,
        "updated_at": now,
    }

    async with transaction(db):
        insert = _UPSERT_DIALECTS.get(db.bind.dialect.name)
        if insert is not None:
            stmt = insert(User).values(id=profile.id, created_at=now, **values)
            stmt = stmt.on_conflict_do_update(index_elements=[User.id], set_=values)
            await db.execute(stmt)
        else:
            user = await db.get(User, profile.id)
            if user is None:
                db.add(User(id=profile.id, created_at=now, **values))
            else:
                for key, value in values.items():
                    setattr(user, key, value)

    result = await db.execute(
        select(User).where(User.id == profile.id).execution_options(populate_existing=True)
    )
    user = result.scalar_one()
    logger.debug("Upserted user id=%s", user.id)
    return user
