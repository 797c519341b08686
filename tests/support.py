"""Fixed clock shared by the test modules."""
from datetime import datetime, timedelta, timezone

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
ESTABLISHED = NOW - timedelta(days=365)
