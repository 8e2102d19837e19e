"""
DiagramCore - Caller-Side Retry Helper
======================================

What:  A tenacity decorator for callers that want to retry transient storage
       failures around core operations.
How:   Retries while the wrapped coroutine raises StorageUnavailableError or
       returns a StorageUnavailable save result. Backoff is exponential with
       jitter so many autosaving tabs do not hammer a recovering database at
       the same instant.
Who:   API handlers and background autosave loops. The core itself never
       retries: a save that timed out may or may not have been applied, and
       only the caller knows whether re-sending is right.

Usage:
    @retry_storage_unavailable()
    async def load(core, actor_id, diagram_id):
        return await core.load_diagram(actor_id, diagram_id)

    # Retrying a save is only safe with the version the caller re-fetched:
    # a retried Saved can never be applied twice because the version moved.

When retries run out, the last outcome is handed back unchanged: the
exception is re-raised, or the StorageUnavailable result is returned.
"""

import logging
from typing import Any, Callable, Optional

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from diagramcore.config import settings
from diagramcore.exceptions import StorageUnavailableError
from diagramcore.schemas.diagram import StorageUnavailable

logger = logging.getLogger(__name__)


def _is_unavailable_result(value: Any) -> bool:
    return isinstance(value, StorageUnavailable)


def retry_storage_unavailable(
    max_attempts: Optional[int] = None,
    min_wait: Optional[float] = None,
    max_wait: Optional[float] = None,
    jitter: float = 1.0,
) -> Callable:
    """
    Build the retry decorator. Unset arguments come from settings.retry_*.
    """
    return retry(
        retry=(
            retry_if_exception_type(StorageUnavailableError)
            | retry_if_result(_is_unavailable_result)
        ),
        stop=stop_after_attempt(max_attempts or settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait if min_wait is None else min_wait,
            max=settings.retry_max_wait if max_wait is None else max_wait,
            jitter=jitter,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
    )
