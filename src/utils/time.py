from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()
