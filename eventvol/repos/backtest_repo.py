"""Backtest run repository — persists backtest summaries to SQLite."""

import sqlite3

from eventvol.errors import StorageError
from eventvol.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_runs`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms

    def insert_run(
        self,
        symbol: str,
        event_type: str,
        mode: str,
        stats: dict,
    ) -> int:
        """Persist a backtest run summary.  Returns the row id."""
        conn = get_connection(self._db_path, self._busy_timeout_ms)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (symbol, event_type, mode, total_trades, entered_trades,
                     winning_trades, losing_trades, whipsaws, win_rate,
                     whipsaw_frequency_pct, profit_factor, max_drawdown_pips,
                     total_pips, confidence_score)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    symbol,
                    event_type,
                    mode,
                    stats["total_trades"],
                    stats["entered_trades"],
                    stats["winning_trades"],
                    stats["losing_trades"],
                    stats["whipsaws"],
                    stats["win_rate"],
                    stats["whipsaw_frequency_pct"],
                    stats.get("profit_factor"),
                    stats["max_drawdown_pips"],
                    stats["total_pips"],
                    stats["confidence_score"],
                ),
            )
            conn.commit()
            return cur.lastrowid
        except sqlite3.Error as exc:
            raise StorageError(f"Backtest run insert failed: {exc}") from exc
        finally:
            conn.close()

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent backtest run summaries."""
        conn = get_connection(self._db_path, self._busy_timeout_ms)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            raise StorageError(f"Backtest run query failed: {exc}") from exc
        finally:
            conn.close()
