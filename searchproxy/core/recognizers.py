"""
SearchProxy Query Recognition
==============================
Decides whether a request URI targets a known search engine and, if so,
extracts the raw query string and its keywords.

Each search engine "dialect" is one row of regular expressions:

  • match    – does this URI belong to the dialect?
  • extract  – one capture group holding the raw (URL-encoded) query
  • split    – delimiter between keywords in the raw query

Recognizers are tried in table order and the first match wins. New engines
are added by appending a row, either to ``DEFAULT_DIALECTS`` or to the
``dialects`` list of the config file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from searchproxy.core.errors import ExtractionInconsistency

# ── Dialect Table ────────────────────────────────────────────────────────────

DEFAULT_DIALECTS: List[Dict[str, str]] = [
    {
        "name": "google",
        "match": r"www\.google.*q=",
        "extract": r"q=([^&]*)",
        "split": r"%20|\+",
    },
    {
        "name": "bing",
        "match": r"www\.bing\.com.*q=",
        "extract": r"q=([^&]*)",
        "split": r"\+",
    },
    {
        "name": "yahoo",
        "match": r"search\.yahoo\.com.*p=",
        "extract": r"p=([^&]*)",
        "split": r"%20|\+",
    },
    {
        "name": "wikipedia",
        "match": r"wikipedia\.org.*search=",
        "extract": r"search=([^&]*)",
        "split": r"\+",
    },
]


# ── Data Models ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Query:
    """A recognized search query."""
    text: str  # still URL-encoded
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class Recognizer:
    """One search-engine dialect."""
    name: str
    match_test: re.Pattern[str]
    extractor: re.Pattern[str]
    splitter: re.Pattern[str]

    def __post_init__(self) -> None:
        if self.extractor.groups != 1:
            raise ValueError(
                f"Dialect '{self.name}': extractor must have exactly one capture group, "
                f"got {self.extractor.groups}"
            )

    @classmethod
    def from_dict(cls, row: Dict[str, str]) -> "Recognizer":
        """Build a recognizer from a dialect-table row."""
        missing = [k for k in ("name", "match", "extract", "split") if not row.get(k)]
        if missing:
            raise ValueError(f"Dialect row is missing {', '.join(missing)}: {row!r}")
        try:
            return cls(
                name=row["name"],
                match_test=re.compile(row["match"]),
                extractor=re.compile(row["extract"]),
                splitter=re.compile(row["split"]),
            )
        except re.error as e:
            raise ValueError(f"Dialect '{row['name']}' has an invalid pattern: {e}") from e

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "match": self.match_test.pattern,
            "extract": self.extractor.pattern,
            "split": self.splitter.pattern,
        }

    def test(self, uri: str) -> bool:
        """True if the URI belongs to this dialect."""
        return self.match_test.search(uri) is not None

    def apply(self, uri: str) -> Query:
        """Extract the query from a URI accepted by :meth:`test`."""
        if not self.test(uri):
            raise ValueError(f"Dialect '{self.name}' does not apply to {uri}")

        found = self.extractor.search(uri)
        if found is None:
            raise ExtractionInconsistency(self.name, uri)

        text = found.group(1)
        return Query(text=text, keywords=tuple(self.splitter.split(text)))


# ── Registry ─────────────────────────────────────────────────────────────────

class RecognizerRegistry:
    """
    Ordered, immutable collection of recognizers.

    ``recognize`` is a pure function of the table and the URI, so a single
    registry is shared by every concurrent request without locking.
    """

    def __init__(self, recognizers: Iterable[Recognizer] = ()):
        self._recognizers: Tuple[Recognizer, ...] = tuple(recognizers)

    @classmethod
    def from_config(cls, rows: Iterable[Dict[str, str]]) -> "RecognizerRegistry":
        return cls(Recognizer.from_dict(row) for row in rows)

    @classmethod
    def default(cls) -> "RecognizerRegistry":
        return cls.from_config(DEFAULT_DIALECTS)

    def with_dialect(self, recognizer: Recognizer) -> "RecognizerRegistry":
        """Return a new registry with ``recognizer`` appended."""
        return RecognizerRegistry(self._recognizers + (recognizer,))

    @property
    def names(self) -> List[str]:
        return [r.name for r in self._recognizers]

    def __iter__(self) -> Iterator[Recognizer]:
        return iter(self._recognizers)

    def __len__(self) -> int:
        return len(self._recognizers)

    def match(self, uri: str) -> Optional[Recognizer]:
        """The first recognizer accepting ``uri``, if any."""
        for recognizer in self._recognizers:
            if recognizer.test(uri):
                return recognizer
        return None

    def recognize(self, uri: str) -> Optional[Query]:
        """Extract a query from ``uri`` or return None if no dialect applies."""
        recognizer = self.match(uri)
        if recognizer is None:
            return None
        return recognizer.apply(uri)
