"""Per-connection sync lock and last-error note, kept in the cache."""
from django.core.cache import cache

SYNC_LOCK_KEY = "ingestion:sync_lock:{connection_id}"
LAST_SYNC_ERROR_KEY = "ingestion:last_sync_error:{connection_id}"
SYNC_LOCK_TIMEOUT = 2 * 3600  # clears if the worker dies mid-run
LAST_SYNC_ERROR_TIMEOUT = 86400  # 24 hours


def acquire_sync_lock(connection_id: int, timeout_seconds: int = SYNC_LOCK_TIMEOUT) -> bool:
    """
    Acquire a connection-scoped lock for sync execution.
    Returns True if lock acquired; False if another worker already holds it.
    """
    return bool(
        cache.add(
            SYNC_LOCK_KEY.format(connection_id=connection_id),
            "1",
            timeout=timeout_seconds,
        )
    )


def release_sync_lock(connection_id: int) -> None:
    cache.delete(SYNC_LOCK_KEY.format(connection_id=connection_id))


def is_sync_locked(connection_id: int) -> bool:
    return cache.get(SYNC_LOCK_KEY.format(connection_id=connection_id)) is not None


def set_last_sync_error(connection_id: int, error_message: str) -> None:
    cache.set(
        LAST_SYNC_ERROR_KEY.format(connection_id=connection_id),
        error_message[:500],
        LAST_SYNC_ERROR_TIMEOUT,
    )


def clear_last_sync_error(connection_id: int) -> None:
    cache.delete(LAST_SYNC_ERROR_KEY.format(connection_id=connection_id))


def get_last_sync_error(connection_id: int) -> str:
    return cache.get(LAST_SYNC_ERROR_KEY.format(connection_id=connection_id)) or ""
