"""Bounded confirm and purge loops with exponential backoff.

IAM changes are eventually consistent: an attached policy or a deleted
key can take a moment to show up in the next listing. These helpers
re-check until the expected condition holds and give up with
RetryExhaustedError once the configured attempt cap is reached.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence, TypeVar

from scripts.cup_init.config import RetryConfig
from scripts.cup_init.errors import RetryExhaustedError

logger = logging.getLogger("cup_init.retry")

T = TypeVar("T")


def retry_until(
    condition: Callable[[], bool],
    *,
    description: str,
    retry: RetryConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call condition() until it returns True. Returns the attempt it held on."""
    for attempt in range(retry.max_attempts):
        if condition():
            return attempt
        if attempt + 1 < retry.max_attempts:
            delay = retry.delay(attempt)
            logger.warning(
                "%s not confirmed, sleeping %.1fs", description, delay,
                extra={"attempt": attempt + 1},
            )
            sleep(delay)
    raise RetryExhaustedError(description, retry.max_attempts)


def purge_until_empty(
    list_items: Callable[[], Sequence[T]],
    delete_item: Callable[[T], None],
    *,
    description: str,
    retry: RetryConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """List, delete the first item not yet deleted, repeat until empty.

    Each listing uses one attempt. Items already deleted are never deleted
    again: when a listing shows only those, back off and list again.
    Returns the number of delete calls made.
    """
    deleted: list[T] = []
    for attempt in range(retry.max_attempts):
        items = list_items()
        if not items:
            return len(deleted)
        pending = [item for item in items if item not in deleted]
        if not pending:
            delay = retry.delay(attempt)
            logger.warning(
                "%s: deleted item still listed, sleeping %.1fs", description, delay,
                extra={"attempt": attempt + 1},
            )
            sleep(delay)
            continue
        delete_item(pending[0])
        deleted.append(pending[0])
    if not list_items():
        return len(deleted)
    raise RetryExhaustedError(description, retry.max_attempts)
