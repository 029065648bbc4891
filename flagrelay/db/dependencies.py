"""FastAPI dependencies for store access."""

from functools import lru_cache

from flagrelay.services.remote import RemoteExecutor, get_default_executor


@lru_cache
def get_remote_executor() -> RemoteExecutor:
    """Return the process-wide remote executor."""

    return get_default_executor()
