import random
import time
from datetime import datetime, timezone, timedelta


def generate_order_reference() -> str:
    """Human-readable order reference, e.g. ORDER-1760870400-4821."""
    return f"ORDER-{int(time.time())}-{random.randint(1000, 9999)}"


def get_estimated_delivery_date(days: int = 3, now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=days)
