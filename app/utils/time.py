from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> float:
    """Seconds since the epoch for a naive UTC datetime."""
    return value.replace(tzinfo=timezone.utc).timestamp()
