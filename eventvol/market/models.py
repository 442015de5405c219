"""Market data models — candles, calendar events, and instrument metadata."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from eventvol.errors import ValidationError


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_symbol(symbol: str) -> str:
    """``"eur_usd"`` / ``"EUR/USD"`` → ``"EURUSD"``."""
    return symbol.strip().upper().replace("_", "").replace("/", "")


@dataclass(frozen=True)
class Candle:
    """A single M1 bar as stored by the ingestion collaborator."""

    symbol: str
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    spread_open: Optional[float] = None
    spread_high: Optional[float] = None
    spread_low: Optional[float] = None
    spread_close: Optional[float] = None
    spread_mean: Optional[float] = None
    tick_count: Optional[int] = None
    timeframe: str = "M1"

    @property
    def range(self) -> float:
        """High − low, in price units."""
        return self.high - self.low


# ── Calendar events ──────────────────────────────────────────────────────

IMPACT_LEVELS = ("HIGH", "MEDIUM", "LOW")

_IMPACT_ALIASES: dict[str, str] = {
    "H": "HIGH",
    "HIGH": "HIGH",
    "M": "MEDIUM",
    "MED": "MEDIUM",
    "MEDIUM": "MEDIUM",
    "L": "LOW",
    "LOW": "LOW",
}


def normalize_impact(raw: str) -> str:
    """Map an impact tier or its single-letter alias to HIGH/MEDIUM/LOW.

    Raises:
        ValidationError: If *raw* is not a known tier.
    """
    key = raw.strip().upper()
    if key not in _IMPACT_ALIASES:
        raise ValidationError(f"Unknown impact level: {raw!r}")
    return _IMPACT_ALIASES[key]


@dataclass(frozen=True)
class CalendarEvent:
    """One occurrence of an economic-calendar event.

    ``description`` doubles as the event-type key: every event sharing a
    description is an occurrence of the same event type.
    """

    symbol: str  # currency ("USD") or pair
    time: datetime
    impact: str  # "HIGH", "MEDIUM" or "LOW"
    description: str
    actual: Optional[float] = None
    forecast: Optional[float] = None
    previous: Optional[float] = None
    calendar_id: Optional[int] = None

    @property
    def deviation(self) -> Optional[float]:
        """``|actual − forecast|`` when both are known."""
        if self.actual is None or self.forecast is None:
            return None
        return abs(self.actual - self.forecast)


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_PIP_VALUES: dict[str, float] = {
    "EURUSD": 0.0001,
    "GBPUSD": 0.0001,
    "USDCHF": 0.0001,
    "AUDUSD": 0.0001,
    "NZDUSD": 0.0001,
    "USDCAD": 0.0001,
    "EURGBP": 0.0001,
    "USDJPY": 0.01,
    "EURJPY": 0.01,
    "GBPJPY": 0.01,
    "XAUUSD": 0.1,
    "XAGUSD": 0.01,
    "BTCUSD": 1.0,
    "ETHUSD": 1.0,
    "US30": 1.0,
    "NAS100": 1.0,
    "GER40": 1.0,
}

# Substring rules applied when a symbol is not in the table, first match wins.
_ASSET_CLASS_PIP_RULES: list[tuple[tuple[str, ...], float]] = [
    (("JPY", "HUF", "CZK"), 0.01),
    (("XAU", "GOLD"), 0.1),
    (("XAG", "SILVER"), 0.01),
    (("BTC", "ETH", "SOL", "XRP", "LTC", "DOGE"), 1.0),
    (("US30", "US100", "US500", "NAS", "SPX", "DAX", "GER", "UK100",
      "FRA40", "JPN225", "HK50"), 1.0),
    (("OIL", "WTI", "BRENT", "XPT", "XPD"), 0.01),
    (("NGAS",), 0.001),
]

DEFAULT_PIP_VALUE = 0.0001


def get_pip_value(symbol: str, overrides: Optional[dict[str, float]] = None) -> float:
    """Return the price size of one pip (or index/crypto point) for *symbol*.

    Lookup order: stored overrides, the static table, asset-class rules,
    then the 5-digit forex default of ``0.0001``.
    """
    key = normalize_symbol(symbol)
    if overrides and key in overrides:
        return overrides[key]
    if key in INSTRUMENT_PIP_VALUES:
        return INSTRUMENT_PIP_VALUES[key]
    for needles, value in _ASSET_CLASS_PIP_RULES:
        if any(n in key for n in needles):
            return value
    return DEFAULT_PIP_VALUE


def get_point_size(pip_value: float) -> float:
    """Native broker point size for an instrument with *pip_value*.

    Forex and metals quote one digit beyond the pip; indices and crypto
    (pip value of 1.0 or more) quote in whole points.
    """
    if pip_value >= 1.0:
        return pip_value
    return pip_value / 10.0
