"""
Repository for per-user daily feeds (``user_recommendations``).

One row per ``(user_id, rec_date)``; writing a feed for an existing key
overwrites it.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from signal_desk.db.repositories.base import BaseRepository
from signal_desk.models.idea import CANONICAL_IDEA_LIST_ADAPTER, UserRecommendationSet

logger = logging.getLogger(__name__)


class UserRecommendationRepository(BaseRepository):
    """Read/write access to ``user_recommendations``."""

    def upsert(self, rec_set: UserRecommendationSet) -> None:
        self.execute(
            """
            INSERT INTO user_recommendations (user_id, rec_date, items, updated_at)
            VALUES (?, ?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            ON CONFLICT(user_id, rec_date) DO UPDATE SET
                items      = excluded.items,
                updated_at = excluded.updated_at;
            """,
            (
                rec_set.user_id,
                rec_set.rec_date.isoformat(),
                CANONICAL_IDEA_LIST_ADAPTER.dump_json(rec_set.items).decode("utf-8"),
            ),
        )

    def get(self, user_id: str, rec_date: date) -> Optional[UserRecommendationSet]:
        row = self.fetchone(
            "SELECT * FROM user_recommendations WHERE user_id = ? AND rec_date = ?;",
            (user_id, rec_date.isoformat()),
        )
        if row is None:
            return None
        return UserRecommendationSet(
            user_id=row["user_id"],
            rec_date=date.fromisoformat(row["rec_date"]),
            items=CANONICAL_IDEA_LIST_ADAPTER.validate_json(row["items"]),
        )

    def get_raw_items(self, user_id: str, rec_date: date) -> Optional[str]:
        """Stored JSON text of a feed, for byte-level comparisons."""
        row = self.fetchone(
            "SELECT items FROM user_recommendations WHERE user_id = ? AND rec_date = ?;",
            (user_id, rec_date.isoformat()),
        )
        return row["items"] if row else None
