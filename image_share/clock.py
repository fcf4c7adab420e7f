from datetime import datetime, timezone

class SystemClock:
    """Wall clock in UTC."""
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
