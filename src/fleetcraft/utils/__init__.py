"""Utility modules."""
from .logging_config import setup_logging, timed, timed_section
from .retry import RetryPolicy, call_with_policy, with_retry

__all__ = [
    "setup_logging",
    "timed",
    "timed_section",
    "RetryPolicy",
    "call_with_policy",
    "with_retry",
]
