"""
Family Week Planner — Member Database.

Family members are owned by the identity/family service; this table is the
local projection the scheduler needs: display names for the resolved view,
the virtual flag for fairness, and the Telegram link for notifications.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from pathlib import Path

from src.data.models import Member

logger = logging.getLogger(__name__)


class MemberDB:
    """SQLite-backed storage for family members."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    id                TEXT PRIMARY KEY,
                    family_id         TEXT    NOT NULL,
                    display_name      TEXT    NOT NULL,
                    is_virtual        INTEGER NOT NULL DEFAULT 0,
                    is_admin          INTEGER NOT NULL DEFAULT 0,
                    telegram_user_id  INTEGER
                )
            """)
        logger.debug("Members table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            family_id=row["family_id"],
            display_name=row["display_name"],
            is_virtual=bool(row["is_virtual"]),
            is_admin=bool(row["is_admin"]),
            telegram_user_id=row["telegram_user_id"],
        )

    def add_member(
        self,
        family_id: str,
        display_name: str,
        is_virtual: bool = False,
        is_admin: bool = False,
        telegram_user_id: int | None = None,
        member_id: str | None = None,
    ) -> Member:
        """Register a family member."""
        member_id = member_id or uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO members
                    (id, family_id, display_name, is_virtual, is_admin, telegram_user_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    member_id, family_id, display_name,
                    int(is_virtual), int(is_admin), telegram_user_id,
                ),
            )
        member = Member(
            id=member_id,
            family_id=family_id,
            display_name=display_name,
            is_virtual=is_virtual,
            is_admin=is_admin,
            telegram_user_id=telegram_user_id,
        )
        logger.info("Member added: %s '%s' (family %s)", member_id, display_name, family_id)
        return member

    def get_member(self, member_id: str) -> Member | None:
        """Fetch a member by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE id = ?", (member_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_member(row)

    def list_members(self, family_id: str) -> list[Member]:
        """Return all members of a family, in registration order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE family_id = ? ORDER BY rowid",
                (family_id,),
            ).fetchall()
        return [self._row_to_member(r) for r in rows]

    def find_by_telegram_id(self, telegram_user_id: int) -> Member | None:
        """Look up the member linked to a Telegram account."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE telegram_user_id = ?",
                (telegram_user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_member(row)

    def list_linked(self) -> list[Member]:
        """Return every member with a Telegram account, across families."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE telegram_user_id IS NOT NULL ORDER BY rowid"
            ).fetchall()
        return [self._row_to_member(r) for r in rows]
