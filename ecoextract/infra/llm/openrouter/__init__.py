"""
OpenRouter API client components.

Clean separation of concerns:
- transport.py: HTTP requests
- response_parser.py: Response parsing and refusal detection
- retry_policy.py: Retry logic
"""

from .transport import OpenRouterTransport
from .response_parser import ResponseParser, ParsedResponse
from .retry_policy import RetryPolicy

__all__ = [
    'OpenRouterTransport',
    'ResponseParser',
    'ParsedResponse',
    'RetryPolicy',
]
