import time
from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime, timezone
from typing import Iterator, Optional, Sequence, TypeVar

T = TypeVar("T")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def today_str() -> str:
    return date.today().isoformat()


def chunk(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def parse_event_date(value: Optional[str]) -> Optional[datetime]:
    # Accept "YYYY-MM-DD HH:MM", "YYYY-MM-DDTHH:MM" or full ISO-8601
    if not value or not value.strip():
        return None
    normalized = value.strip().replace(" ", "T", 1)
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        d = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if d.tzinfo is None:
        d = d.replace(tzinfo=timezone.utc)
    return d


def normalize_bool(v) -> bool:
    s = str(v if v is not None else "").strip().lower()
    return s in ("true", "1", "yes", "y")


def normalize_number(v) -> Optional[float]:
    if v is None:
        return None
    s = str(v).strip()
    if s == "":
        return None
    try:
        n = float(s)
    except ValueError:
        return None
    if n != n or n in (float("inf"), float("-inf")):
        return None
    return n


def to_cents(amount) -> int:
    # half-up, never banker's rounding
    cents = (Decimal(str(amount)) * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(cents)
