"""Candle repository — persists M1 candles and per-symbol metadata to SQLite."""

import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from eventvol.errors import StorageError
from eventvol.market.models import Candle, ensure_utc, normalize_symbol
from eventvol.repos.db import get_connection

logger = logging.getLogger("eventvol.repos")


def to_db_time(dt: datetime) -> str:
    return ensure_utc(dt).isoformat()


def from_db_time(raw: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(raw))


class CandleRepo:
    """Data access layer for the ``candle_data`` and ``pair_metadata`` tables.

    Args:
        db_path: Path to the SQLite database file.
        busy_timeout_ms: How long a writer waits for a competing lock.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms

    def upsert_candles(
        self,
        symbol: str,
        candles: Iterable[Candle],
        timeframe: str = "M1",
        source_file: Optional[str] = None,
    ) -> int:
        """Insert or update a batch of candles in one transaction.

        Re-importing the same candles overwrites them in place, so the
        call is idempotent.  Returns the number of rows written.
        """
        key = normalize_symbol(symbol)
        rows = [
            (
                key, timeframe, to_db_time(c.time),
                c.open, c.high, c.low, c.close, c.volume,
                c.spread_open, c.spread_high, c.spread_low, c.spread_close,
                c.spread_mean, c.tick_count, source_file,
            )
            for c in candles
        ]
        conn = get_connection(self._db_path, self._busy_timeout_ms)
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO candle_data
                        (symbol, timeframe, time, open, high, low, close, volume,
                         spread_open, spread_high, spread_low, spread_close,
                         spread_mean, tick_count, source_file)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(symbol, timeframe, time) DO UPDATE SET
                        open = excluded.open,
                        high = excluded.high,
                        low = excluded.low,
                        close = excluded.close,
                        volume = excluded.volume,
                        spread_open = excluded.spread_open,
                        spread_high = excluded.spread_high,
                        spread_low = excluded.spread_low,
                        spread_close = excluded.spread_close,
                        spread_mean = excluded.spread_mean,
                        tick_count = excluded.tick_count,
                        source_file = excluded.source_file
                    """,
                    rows,
                )
                self._refresh_metadata(conn, key, timeframe, source_file)
        except sqlite3.Error as exc:
            raise StorageError(f"Candle upsert failed for {key}: {exc}") from exc
        finally:
            conn.close()
        logger.info("Upserted %d %s candles for %s", len(rows), timeframe, key)
        return len(rows)

    def fetch_candles(self, symbol: str, timeframe: str = "M1") -> list[Candle]:
        """Every stored candle for *symbol*, ascending by time."""
        key = normalize_symbol(symbol)
        conn = get_connection(self._db_path, self._busy_timeout_ms)
        try:
            rows = conn.execute(
                """
                SELECT * FROM candle_data
                WHERE symbol = ? AND timeframe = ?
                ORDER BY time ASC
                """,
                (key, timeframe),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Candle fetch failed for {key}: {exc}") from exc
        finally:
            conn.close()
        return [_row_to_candle(r) for r in rows]

    def get_metadata(self, symbol: str, timeframe: str = "M1") -> Optional[dict]:
        conn = get_connection(self._db_path, self._busy_timeout_ms)
        try:
            row = conn.execute(
                "SELECT * FROM pair_metadata WHERE symbol = ? AND timeframe = ?",
                (normalize_symbol(symbol), timeframe),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Metadata fetch failed: {exc}") from exc
        finally:
            conn.close()
        return dict(row) if row is not None else None

    def list_symbols(self) -> list[str]:
        conn = get_connection(self._db_path, self._busy_timeout_ms)
        try:
            rows = conn.execute(
                "SELECT DISTINCT symbol FROM pair_metadata ORDER BY symbol"
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Symbol listing failed: {exc}") from exc
        finally:
            conn.close()
        return [r["symbol"] for r in rows]

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _refresh_metadata(
        conn: sqlite3.Connection,
        symbol: str,
        timeframe: str,
        source_file: Optional[str],
    ) -> None:
        summary = conn.execute(
            """
            SELECT MIN(time) AS first_time, MAX(time) AS last_time, COUNT(*) AS n
            FROM candle_data WHERE symbol = ? AND timeframe = ?
            """,
            (symbol, timeframe),
        ).fetchone()
        conn.execute(
            """
            INSERT INTO pair_metadata
                (symbol, timeframe, first_time, last_time, candle_count,
                 source_file, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol, timeframe) DO UPDATE SET
                first_time = excluded.first_time,
                last_time = excluded.last_time,
                candle_count = excluded.candle_count,
                source_file = COALESCE(excluded.source_file, pair_metadata.source_file),
                updated_at = excluded.updated_at
            """,
            (
                symbol, timeframe, summary["first_time"], summary["last_time"],
                summary["n"], source_file,
                datetime.now(timezone.utc).isoformat(),
            ),
        )


def _row_to_candle(row: sqlite3.Row) -> Candle:
    return Candle(
        symbol=row["symbol"],
        time=from_db_time(row["time"]),
        open=row["open"],
        high=row["high"],
        low=row["low"],
        close=row["close"],
        volume=row["volume"],
        spread_open=row["spread_open"],
        spread_high=row["spread_high"],
        spread_low=row["spread_low"],
        spread_close=row["spread_close"],
        spread_mean=row["spread_mean"],
        tick_count=row["tick_count"],
        timeframe=row["timeframe"],
    )
