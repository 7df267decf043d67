from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Current UTC time, second precision."""
    return iso_from_datetime(datetime.now(timezone.utc))


def iso_from_epoch_ms(epoch_ms: int) -> str:
    """Convert a JavaScript-style millisecond timestamp."""
    return iso_from_datetime(datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc))


def iso_from_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")
