"""Calendar event repository — economic events stored in SQLite.

Every filter is passed as a bound parameter; no caller value is ever
spliced into SQL text.
"""

import sqlite3
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional

from eventvol.errors import StorageError
from eventvol.market.models import CalendarEvent, normalize_impact, normalize_symbol
from eventvol.repos.candle_repo import from_db_time, to_db_time
from eventvol.repos.db import get_connection


class EventRepo:
    """Data access layer for the ``calendar_events`` table.

    Args:
        db_path: Path to the SQLite database file.
        busy_timeout_ms: How long a writer waits for a competing lock.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms

    def insert_events(self, events: Iterable[CalendarEvent]) -> int:
        """Store *events*, replacing duplicates (same symbol, time, description)."""
        rows = [
            (
                normalize_symbol(e.symbol), to_db_time(e.time),
                normalize_impact(e.impact), e.description,
                e.actual, e.forecast, e.previous, e.calendar_id,
            )
            for e in events
        ]
        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO calendar_events
                        (symbol, event_time, impact, description,
                         actual, forecast, previous, calendar_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(symbol, event_time, description) DO UPDATE SET
                        impact = excluded.impact,
                        actual = excluded.actual,
                        forecast = excluded.forecast,
                        previous = excluded.previous,
                        calendar_id = excluded.calendar_id
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Event insert failed: {exc}") from exc
        finally:
            conn.close()
        return len(rows)

    def fetch_events(
        self,
        symbol: Optional[str],
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        """Events with ``start <= time <= end``, optionally for one symbol."""
        sql = "SELECT * FROM calendar_events WHERE event_time >= ? AND event_time <= ?"
        params: list = [to_db_time(start), to_db_time(end)]
        if symbol is not None:
            sql += " AND symbol = ?"
            params.append(normalize_symbol(symbol))
        sql += " ORDER BY event_time ASC"
        return self._query(sql, params)

    def events_by_type(
        self,
        event_type: str,
        calendar_id: Optional[int] = None,
    ) -> list[CalendarEvent]:
        """Every occurrence of *event_type*, oldest first."""
        sql = "SELECT * FROM calendar_events WHERE description = ?"
        params: list = [event_type]
        if calendar_id is not None:
            sql += " AND calendar_id = ?"
            params.append(calendar_id)
        sql += " ORDER BY event_time ASC"
        return self._query(sql, params)

    def event_types(
        self,
        calendar_id: Optional[int] = None,
        impacts: Optional[Sequence[str]] = None,
    ) -> list[dict]:
        """Distinct event types with their occurrence counts.

        Returns:
            List of ``{"name", "count"}`` dicts, most frequent first.
        """
        sql = "SELECT description AS name, COUNT(*) AS count FROM calendar_events"
        clauses: list[str] = []
        params: list = []
        if calendar_id is not None:
            clauses.append("calendar_id = ?")
            params.append(calendar_id)
        if impacts:
            levels = [normalize_impact(i) for i in impacts]
            clauses.append(f"impact IN ({', '.join('?' for _ in levels)})")
            params.extend(levels)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " GROUP BY description ORDER BY count DESC, name ASC"

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Event type listing failed: {exc}") from exc
        finally:
            conn.close()
        return [{"name": r["name"], "count": r["count"]} for r in rows]

    # ── Helpers ──────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self._db_path, self._busy_timeout_ms)

    def _query(self, sql: str, params: list) -> list[CalendarEvent]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Event query failed: {exc}") from exc
        finally:
            conn.close()
        return [
            CalendarEvent(
                symbol=r["symbol"],
                time=from_db_time(r["event_time"]),
                impact=r["impact"],
                description=r["description"],
                actual=r["actual"],
                forecast=r["forecast"],
                previous=r["previous"],
                calendar_id=r["calendar_id"],
            )
            for r in rows
        ]
