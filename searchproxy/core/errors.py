"""
SearchProxy Error Taxonomy
===========================
Exceptions raised by the request pipeline and its collaborators.

  • MalformedRequest         – request cannot be forwarded (client error, 403)
  • ExtractionInconsistency  – dialect matched but extractor did not (500)
  • UpstreamFailure          – origin unreachable, reset, or timed out (500)
  • StoreFailure             – query persistence failed (logged only)

Only the error boundary turns these into HTTP responses; everything else
raises and chains with ``from``.
"""

from __future__ import annotations

from typing import Optional


class SearchProxyError(Exception):
    """Base class for all SearchProxy errors."""


class MalformedRequest(SearchProxyError):
    """The request lacks the absolute URI or Host header needed to forward it."""


class ExtractionInconsistency(SearchProxyError):
    """A recognizer's match test accepted a URI its extractor cannot parse.

    This is a defect in the dialect table, not an absent query.
    """

    def __init__(self, recognizer: str, uri: str):
        self.recognizer = recognizer
        self.uri = uri
        super().__init__(
            f"dialect '{recognizer}' matched but its extractor found no query in {uri}"
        )


class UpstreamFailure(SearchProxyError):
    """The origin server could not be reached or failed mid-exchange."""

    def __init__(self, target: str, message: str = ""):
        self.target = target
        super().__init__(f"upstream {target} failed: {message}" if message else f"upstream {target} failed")


class StoreFailure(SearchProxyError):
    """A query record could not be persisted."""

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        super().__init__(f"[{backend}] {message}" if backend else message)
