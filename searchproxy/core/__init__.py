"""
SearchProxy Core Module
"""

from searchproxy.core.errors import (
    ExtractionInconsistency,
    MalformedRequest,
    SearchProxyError,
    StoreFailure,
    UpstreamFailure,
)
from searchproxy.core.recognizers import DEFAULT_DIALECTS, Query, Recognizer, RecognizerRegistry

__all__ = [
    "DEFAULT_DIALECTS",
    "ExtractionInconsistency",
    "MalformedRequest",
    "Query",
    "Recognizer",
    "RecognizerRegistry",
    "SearchProxyError",
    "StoreFailure",
    "UpstreamFailure",
]
