"""
Repository for the canonical idea pool (``base_ideas``).

The pool for a date is always replaced as a whole: ``replace_for_date``
deletes every row for the date and inserts the new pool. Both statements run
on the caller's connection, so wrapping the call in one ``get_connection()``
block makes the replacement atomic.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Sequence, Union

from signal_desk.db.repositories.base import BaseRepository
from signal_desk.models.idea import CANONICAL_IDEA_ADAPTER, RiskIdea, TradeIdea

logger = logging.getLogger(__name__)


class BaseIdeaRepository(BaseRepository):
    """Read/write access to ``base_ideas``."""

    def replace_for_date(
        self,
        idea_date: date,
        ideas: Sequence[Union[TradeIdea, RiskIdea]],
    ) -> int:
        """Delete-then-insert the idea pool for ``idea_date``.

        Returns:
            Number of ideas written.
        """
        day = idea_date.isoformat()
        deleted = self.execute("DELETE FROM base_ideas WHERE idea_date = ?;", (day,)).rowcount

        rows = []
        for position, idea in enumerate(ideas):
            if isinstance(idea, RiskIdea):
                rows.append((
                    day, position, idea.idea_id, idea.category, idea.symbol,
                    None, None, None, idea.severity.value,
                    idea.model_dump_json(),
                ))
            else:
                rows.append((
                    day, position, idea.idea_id, idea.category, idea.symbol,
                    idea.action.value, idea.confidence, idea.timeframe.value, None,
                    idea.model_dump_json(),
                ))

        if rows:
            self.executemany(
                """
                INSERT INTO base_ideas (
                    idea_date, position, idea_id, category, symbol,
                    action, confidence, timeframe, severity, payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                rows,
            )
        logger.debug("base_ideas %s: replaced %d rows with %d", day, deleted, len(rows))
        return len(rows)

    def list_for_date(self, idea_date: date) -> list[Union[TradeIdea, RiskIdea]]:
        """The day's canonical pool in generator order."""
        rows = self.fetchall(
            "SELECT payload FROM base_ideas WHERE idea_date = ? ORDER BY position;",
            (idea_date.isoformat(),),
        )
        return [CANONICAL_IDEA_ADAPTER.validate_json(r["payload"]) for r in rows]

    def count_for_date(self, idea_date: date) -> int:
        row = self.fetchone(
            "SELECT COUNT(*) AS n FROM base_ideas WHERE idea_date = ?;",
            (idea_date.isoformat(),),
        )
        return int(row["n"]) if row else 0
