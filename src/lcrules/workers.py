"""Background execution for filter store mutations.

Inserts and deletes never run on the caller's thread. They go to a shared
thread pool whose default size is one worker, so mutations are applied in
the order they were submitted.
"""

import atexit
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor

logger = logging.getLogger(__name__)

_WRITE_WORKERS_ENV = "LCRULES_WRITE_WORKERS"
DEFAULT_WRITE_WORKERS = 1


def _resolve_write_worker_count() -> int:
    override = os.getenv(_WRITE_WORKERS_ENV)
    if not override:
        return DEFAULT_WRITE_WORKERS
    try:
        requested = int(override)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", _WRITE_WORKERS_ENV, override)
        return DEFAULT_WRITE_WORKERS
    return max(1, min(16, requested))


WRITE_EXECUTOR = ThreadPoolExecutor(
    max_workers=_resolve_write_worker_count(),
    thread_name_prefix="lcrules-write",
)
atexit.register(lambda: WRITE_EXECUTOR.shutdown(wait=True))


def log_failure(description: str):
    """Build a done-callback that logs a failed mutation instead of raising it."""

    def _callback(future: Future) -> None:
        if future.cancelled():
            logger.debug("%s cancelled", description)
            return
        error = future.exception()
        if error is not None:
            logger.warning("%s failed: %s", description, error)

    return _callback
