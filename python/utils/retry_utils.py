"""Retry utilities for AWS and Kubernetes API calls with exponential backoff"""

import logging
import random
import time
from enum import Enum
from functools import wraps
from typing import Callable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableErrorType(Enum):
    """Types of errors that should trigger retries"""

    NETWORK = "network"  # Connection errors, timeouts
    TEMPORARY = "temporary"  # 5xx errors, throttling
    PERMANENT = "permanent"  # 4xx errors (except throttling), auth failures


# AWS error codes returned when a request was throttled or the service is busy
AWS_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ProvisionedThroughputExceededException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ServerException",
    "InternalFailure",
    "InternalError",
}

# AWS error codes that will not go away by retrying
AWS_PERMANENT_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidParameterException",
    "RepositoryNotFoundException",
    "ImageNotFoundException",
    "ExpiredTokenException",
    "InvalidClientTokenId",
}


def is_retryable_error(error: Exception, error_message: str = "") -> Tuple[bool, RetryableErrorType]:
    """Determine if an error is retryable and what type it is

    Args:
        error: The exception that occurred
        error_message: Optional error message string

    Returns:
        Tuple of (is_retryable, error_type)
    """
    # botocore ClientError carries a structured error code
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code", "")
        if code in AWS_THROTTLING_CODES:
            return True, RetryableErrorType.TEMPORARY
        if code in AWS_PERMANENT_CODES:
            return False, RetryableErrorType.PERMANENT
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if isinstance(status, int) and status >= 500:
            return True, RetryableErrorType.TEMPORARY

    # Kubernetes ApiException carries an HTTP status
    status = getattr(error, "status", None)
    if isinstance(status, int):
        if status >= 500 or status == 429:
            return True, RetryableErrorType.TEMPORARY
        if 400 <= status < 500:
            return False, RetryableErrorType.PERMANENT

    combined = f"{error} {error_message}".lower()

    # Auth errors - not retryable (won't fix itself)
    if "401" in combined or "403" in combined or "unauthorized" in combined or "forbidden" in combined:
        return False, RetryableErrorType.PERMANENT
    if "credentials" in combined or "access denied" in combined:
        return False, RetryableErrorType.PERMANENT

    # Network/connection errors - always retryable
    network_indicators = [
        "connection",
        "could not connect",
        "timeout",
        "timed out",
        "network",
        "dns",
        "resolve",
        "refused",
        "unreachable",
        "reset",
        "broken pipe",
        "temporary failure",
    ]
    if any(indicator in combined for indicator in network_indicators):
        return True, RetryableErrorType.NETWORK

    # Throttling - retryable
    if "429" in combined or "rate exceeded" in combined or "too many requests" in combined:
        return True, RetryableErrorType.TEMPORARY

    if "404" in combined or "not found" in combined:
        return False, RetryableErrorType.PERMANENT

    # Unknown errors are not retried so bugs surface immediately
    return False, RetryableErrorType.PERMANENT


def compute_backoff_delay(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Delay before the retry following the given (zero based) attempt"""
    delay = min(initial_delay * (exponential_base**attempt), max_delay)
    if jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay = delay + random.uniform(-jitter_amount, jitter_amount)
        delay = max(0.1, delay)
    return delay


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_errors: Optional[List[RetryableErrorType]] = None,
) -> Callable:
    """Decorator for retrying functions with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay in seconds before first retry (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 60.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: True)
        retryable_errors: List of error types to retry (None = retry all retryable types)

    Returns:
        Decorator function
    """
    if retryable_errors is None:
        retryable_errors = [RetryableErrorType.NETWORK, RetryableErrorType.TEMPORARY]

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = getattr(func, "__name__", repr(func))

        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{name} succeeded on attempt {attempt + 1}")
                    return result
                except Exception as e:
                    is_retryable, error_type = is_retryable_error(e)

                    # Check if this error type should be retried
                    if not is_retryable or error_type not in retryable_errors:
                        logger.error(f"{name} failed with non-retryable error ({error_type.value}): {e}")
                        raise

                    # If this was the last attempt, raise the error
                    if attempt >= max_retries:
                        logger.error(
                            f"{name} failed after {max_retries + 1} attempts. "
                            f"Last error ({error_type.value}): {e}"
                        )
                        raise

                    delay = compute_backoff_delay(attempt, initial_delay, max_delay, exponential_base, jitter)
                    logger.warning(
                        f"{name} failed on attempt {attempt + 1}/{max_retries + 1} "
                        f"({error_type.value} error: {e}). "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
