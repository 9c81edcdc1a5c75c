import logging
from typing import Callable, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from hymem.config import RetryConfig
from hymem.errors import Outcome, TransientServiceError

T = TypeVar("T")

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TransientServiceError,
    ConnectionError,
    TimeoutError,
)


def call_external(
    fn: Callable[[], T],
    name: str,
    retry: RetryConfig | None = None,
) -> Outcome[T]:
    """Run ``fn`` against an external service and never raise.

    Transient failures are retried with bounded exponential backoff; anything
    still failing afterwards, or failing non-transiently, becomes an
    ``Outcome.failure`` for the caller to degrade on.
    """
    retry = retry or RetryConfig()
    attempts = max(int(retry.max_attempts), 1)
    try:
        for attempt in Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(min=retry.min_wait_s, max=retry.max_wait_s),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        ):
            with attempt:
                return Outcome.success(fn())
    except TRANSIENT_ERRORS as exc:
        logger.warning("%s unavailable after %d attempts: %s", name, attempts, exc)
        return Outcome.failure(exc)
    except Exception as exc:
        logger.exception("%s failed", name)
        return Outcome.failure(exc)
    return Outcome.failure(TransientServiceError(f"{name} produced no result"))
