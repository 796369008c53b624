from shared.database.postgres import (
    AsyncSessionFactory,
    Base,
    get_async_session_factory,
    is_sqlite_url,
)
from shared.database.types import UTCDateTime, epoch_millis, utcnow

__all__ = [
    "AsyncSessionFactory",
    "Base",
    "get_async_session_factory",
    "is_sqlite_url",
    "UTCDateTime",
    "epoch_millis",
    "utcnow",
]
