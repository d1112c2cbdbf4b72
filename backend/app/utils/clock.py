from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone aware UTC now; Python-side defaults keep microseconds for history ordering."""
    return datetime.now(timezone.utc)
