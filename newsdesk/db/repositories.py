"""
Repositories for tabs and per-user API keys.
Every query is scoped to the calling user's id.
"""

import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.dialects import postgresql, sqlite

from newsdesk.db.models import Tab, UserApiKey, utcnow
from newsdesk.db.postgres import DatabaseRepository
from newsdesk.errors import StoreError, TabNotFoundError

logger = logging.getLogger(__name__)

UPDATABLE_TAB_FIELDS = ("topic", "last_refreshed_at")


class TabRepository(DatabaseRepository):
    """
    CRUD operations on a user's tabs.
    """

    async def list_tabs(self, user_id: str) -> List[Tab]:
        """
        Return all tabs of a user ordered by display order.

        Args:
            user_id: Owning user id

        Returns:
            Tabs in ascending display order
        """
        try:
            result = await self.session.execute(
                select(Tab)
                .where(Tab.user_id == user_id)
                .order_by(Tab.display_order.asc())
            )
            return list(result.scalars().all())

        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch tabs for user {user_id}: {e}")
            raise StoreError("Failed to fetch tabs") from e

    async def next_display_order(self, user_id: str) -> int:
        """Current maximum display order plus one, or 0 for a user without tabs."""
        result = await self.session.execute(
            select(func.max(Tab.display_order)).where(Tab.user_id == user_id)
        )
        current_max = result.scalar_one_or_none()
        return 0 if current_max is None else current_max + 1

    async def create_tab(self, user_id: str, topic: str) -> Tab:
        """
        Create a tab at the end of the user's tab list.

        The max-then-insert sequence is not serialized. Two concurrent creates
        for the same user can compute the same order; the unique constraint
        on (user_id, display_order) rejects the second one.

        Args:
            user_id: Owning user id
            topic: Tab topic

        Returns:
            The created tab
        """
        try:
            display_order = await self.next_display_order(user_id)
            tab = Tab(user_id=user_id, topic=topic, display_order=display_order)
            self.session.add(tab)
            await self.flush()
            await self.commit()
            logger.info(f"Created tab {tab.id} for user {user_id} at order {display_order}")
            return tab

        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Failed to create tab for user {user_id}: {e}")
            raise StoreError("Failed to create tab") from e

    async def get_tab(self, user_id: str, tab_id: str) -> Optional[Tab]:
        try:
            result = await self.session.execute(
                select(Tab).where(Tab.id == tab_id, Tab.user_id == user_id)
            )
            return result.scalar_one_or_none()

        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch tab {tab_id}: {e}")
            raise StoreError("Failed to fetch tab") from e

    async def update_tab(self, user_id: str, tab_id: str, fields: Mapping[str, Any]) -> Tab:
        """
        Apply the recognized fields present in ``fields`` to a tab.

        Args:
            user_id: Owning user id
            tab_id: Tab to update
            fields: Any of ``topic`` and ``last_refreshed_at``; other keys are ignored

        Returns:
            The updated tab

        Raises:
            TabNotFoundError: The tab does not exist or belongs to another user
        """
        tab = await self.get_tab(user_id, tab_id)
        if tab is None:
            raise TabNotFoundError()

        updates = {key: fields[key] for key in UPDATABLE_TAB_FIELDS if key in fields}
        if not updates:
            return tab

        try:
            for key, value in updates.items():
                setattr(tab, key, value)
            tab.updated_at = utcnow()
            await self.flush()
            await self.commit()
            return tab

        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Failed to update tab {tab_id}: {e}")
            raise StoreError("Failed to update tab") from e

    async def delete_tab(self, user_id: str, tab_id: str) -> bool:
        """
        Delete a tab owned by the user.

        Returns:
            True if a row was removed
        """
        try:
            result = await self.session.execute(
                delete(Tab).where(Tab.id == tab_id, Tab.user_id == user_id)
            )
            await self.commit()
            return bool(result.rowcount)

        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Failed to delete tab {tab_id}: {e}")
            raise StoreError("Failed to delete tab") from e


class ApiKeyRepository(DatabaseRepository):
    """
    Storage for encrypted provider API keys, one row per user.
    """

    async def get_encrypted_api_key(self, user_id: str) -> Optional[str]:
        try:
            result = await self.session.execute(
                select(UserApiKey.encrypted_api_key).where(UserApiKey.user_id == user_id)
            )
            return result.scalar_one_or_none()

        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch API key for user {user_id}: {e}")
            raise StoreError("Failed to fetch API key") from e

    async def has_api_key(self, user_id: str) -> bool:
        return await self.get_encrypted_api_key(user_id) is not None

    async def upsert_api_key(self, user_id: str, encrypted_api_key: str) -> None:
        """
        Insert the user's encrypted key or overwrite the existing one.

        Args:
            user_id: Owning user id
            encrypted_api_key: Ciphertext produced by ``encrypt_api_key``
        """
        try:
            dialect = self.session.get_bind().dialect.name
            now = utcnow()
            values = {
                "user_id": user_id,
                "encrypted_api_key": encrypted_api_key,
                "created_at": now,
                "updated_at": now,
            }

            if dialect in ("postgresql", "sqlite"):
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = insert(UserApiKey).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[UserApiKey.user_id],
                    set_={"encrypted_api_key": encrypted_api_key, "updated_at": now},
                )
                await self.session.execute(stmt)
            else:
                result = await self.session.execute(
                    select(UserApiKey).where(UserApiKey.user_id == user_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    self.session.add(UserApiKey(**values))
                else:
                    row.encrypted_api_key = encrypted_api_key
                    row.updated_at = now

            await self.commit()
            logger.info(f"Stored API key for user {user_id}")

        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Failed to save API key for user {user_id}: {e}")
            raise StoreError("Failed to save API key") from e

    async def delete_api_key(self, user_id: str) -> None:
        try:
            await self.session.execute(
                delete(UserApiKey).where(UserApiKey.user_id == user_id)
            )
            await self.commit()

        except SQLAlchemyError as e:
            await self.rollback()
            logger.error(f"Failed to delete API key for user {user_id}: {e}")
            raise StoreError("Failed to delete API key") from e
