"""
Repository for users and their personalization profiles.
"""

from __future__ import annotations

import logging
from typing import Optional

from signal_desk.db.repositories.base import BaseRepository
from signal_desk.models.idea import UserAgentProfile

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository):
    """Read/write access to ``users`` and ``user_agent_profiles``."""

    def list_profiles(self) -> list[UserAgentProfile]:
        """Every user with their profile, oldest account first.

        Users without a profile row get the default profile (focus and
        risk level 0.5).
        """
        rows = self.fetchall(
            """
            SELECT u.user_id, p.focus, p.risk_level, p.horizon
            FROM users u
            LEFT JOIN user_agent_profiles p ON p.user_id = u.user_id
            ORDER BY u.created_at ASC, u.user_id ASC;
            """
        )
        return [
            UserAgentProfile(
                user_id=r["user_id"],
                focus=r["focus"],
                risk_level=r["risk_level"],
                horizon=r["horizon"],
            )
            for r in rows
        ]

    def upsert_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> None:
        """Insert a user, or update the email of an existing one.

        ``created_at`` (ISO text) fixes the account's position in run order;
        it defaults to now and is never changed for an existing user.
        """
        self.execute(
            """
            INSERT INTO users (user_id, email, created_at)
            VALUES (?, ?, COALESCE(?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now')))
            ON CONFLICT(user_id) DO UPDATE SET
                email = COALESCE(excluded.email, users.email);
            """,
            (user_id, email, created_at),
        )

    def upsert_profile(self, profile: UserAgentProfile) -> None:
        self.execute(
            """
            INSERT INTO user_agent_profiles (user_id, focus, risk_level, horizon, updated_at)
            VALUES (?, ?, ?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            ON CONFLICT(user_id) DO UPDATE SET
                focus      = excluded.focus,
                risk_level = excluded.risk_level,
                horizon    = excluded.horizon,
                updated_at = excluded.updated_at;
            """,
            (profile.user_id, profile.focus, profile.risk_level, profile.horizon),
        )
