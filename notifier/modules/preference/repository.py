"""Repository for notification preference persistence."""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from notifier.core.exceptions import PreferenceStoreError
from notifier.modules.preference.models import NotificationPreference
from notifier.modules.preference.schemas import PreferenceEntry, PreferenceRecord


class NotificationPreferenceRepository:
    """Database access for preference rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user_preferences(self, user_id: str) -> list[NotificationPreference]:
        """All preference rows for a user, oldest update first."""
        result = await self.session.execute(
            select(NotificationPreference)
            .where(NotificationPreference.user_id == user_id)
            .order_by(NotificationPreference.updated_at)
        )
        return list(result.scalars().all())

    async def upsert_preferences(self, user_id: str, entries: list[PreferenceEntry]) -> None:
        """Create or update one row per (user, channel, category).

        Last write wins; entries are applied in a single transaction.
        """
        for entry in entries:
            stmt = insert(NotificationPreference).values(
                user_id=user_id,
                channel=entry.channel.value,
                event_category=entry.event_category.value,
                is_enabled=entry.enabled,
            )
            stmt = stmt.on_conflict_do_update(
                constraint="uq_notification_pref_user_channel_category",
                set_={"is_enabled": stmt.excluded.is_enabled, "updated_at": func.now()},
            )
            await self.session.execute(stmt)

        await self.session.commit()


class SqlPreferenceStore:
    """Preference store backed by the relational database.

    Opens a session per call so it can be used from queue consumers as well
    as request handlers.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def load(self, user_id: str) -> list[PreferenceRecord]:
        try:
            async with self.session_factory() as session:
                rows = await NotificationPreferenceRepository(session).get_user_preferences(user_id)
        except (SQLAlchemyError, OSError) as e:
            raise PreferenceStoreError(f"Failed to load preferences for {user_id}: {e}") from e

        return [
            PreferenceRecord(
                user_id=row.user_id,
                channel=row.channel,
                event_category=row.event_category,
                enabled=row.is_enabled,
            )
            for row in rows
        ]

    async def upsert(self, user_id: str, entries: list[PreferenceEntry]) -> None:
        try:
            async with self.session_factory() as session:
                await NotificationPreferenceRepository(session).upsert_preferences(user_id, entries)
        except (SQLAlchemyError, OSError) as e:
            raise PreferenceStoreError(f"Failed to save preferences for {user_id}: {e}") from e
