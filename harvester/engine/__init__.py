"""Engine components: fetching, parsing, retry, throttling and batching."""

from .batching import gather_in_batches
from .fetcher import FetchError, FetchResponse, PageFetcher
from .parser import Parser, Record
from .rate_limiter import RateLimiter
from .retry import RetryExhaustedError, RetryPolicy, with_retry

__all__ = [
    "FetchError",
    "FetchResponse",
    "PageFetcher",
    "Parser",
    "RateLimiter",
    "Record",
    "RetryExhaustedError",
    "RetryPolicy",
    "gather_in_batches",
    "with_retry",
]
