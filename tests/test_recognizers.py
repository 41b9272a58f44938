"""
Tests for SearchProxy query recognition.
"""

import re

import pytest

from searchproxy.core.errors import ExtractionInconsistency
from searchproxy.core.recognizers import (
    DEFAULT_DIALECTS,
    Query,
    Recognizer,
    RecognizerRegistry,
)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _recognizer(name="test", match=r"example\.com.*x=", extract=r"x=([^&]*)", split=r"\+"):
    return Recognizer.from_dict({"name": name, "match": match, "extract": extract, "split": split})


@pytest.fixture
def registry():
    return RecognizerRegistry.default()


# ── Dialects ─────────────────────────────────────────────────────────────────


class TestDialects:
    def test_google(self, registry):
        q = registry.recognize("http://www.google.com/search?q=hello+world")
        assert q == Query(text="hello+world", keywords=("hello", "world"))

    def test_google_percent_space(self, registry):
        q = registry.recognize("http://www.google.fr/search?hl=fr&q=foo%20bar+baz&ie=UTF-8")
        assert q.text == "foo%20bar+baz"
        assert q.keywords == ("foo", "bar", "baz")

    def test_bing(self, registry):
        q = registry.recognize("http://www.bing.com/search?q=python+asyncio&form=QBLH")
        assert q.text == "python+asyncio"
        assert q.keywords == ("python", "asyncio")

    def test_bing_does_not_split_percent_space(self, registry):
        q = registry.recognize("http://www.bing.com/search?q=foo%20bar")
        assert q.keywords == ("foo%20bar",)

    def test_yahoo(self, registry):
        q = registry.recognize("http://search.yahoo.com/search?p=foo%20bar")
        assert q.text == "foo%20bar"
        assert q.keywords == ("foo", "bar")

    def test_wikipedia(self, registry):
        q = registry.recognize("http://en.wikipedia.org/w/index.php?search=monty+python&go=Go")
        assert q.text == "monty+python"
        assert q.keywords == ("monty", "python")

    def test_query_stays_url_encoded(self, registry):
        q = registry.recognize("http://www.google.com/search?q=caf%C3%A9+cr%C3%A8me")
        assert q.text == "caf%C3%A9+cr%C3%A8me"
        assert q.keywords == ("caf%C3%A9", "cr%C3%A8me")

    def test_empty_keywords_preserved(self, registry):
        q = registry.recognize("http://www.google.com/search?q=a++b")
        assert q.keywords == ("a", "", "b")

    def test_trailing_delimiter_preserved(self, registry):
        q = registry.recognize("http://www.google.com/search?q=a+")
        assert q.keywords == ("a", "")

    def test_empty_query(self, registry):
        q = registry.recognize("http://www.google.com/search?q=&hl=en")
        assert q.text == ""
        assert q.keywords == ("",)

    def test_default_table_order(self):
        assert [d["name"] for d in DEFAULT_DIALECTS] == ["google", "bing", "yahoo", "wikipedia"]


# ── Non-matching URIs ────────────────────────────────────────────────────────


class TestNoMatch:
    @pytest.mark.parametrize("uri", [
        "http://example.com/",
        "http://www.google.com/maps",
        "http://www.bing.com/images",
        "http://search.yahoo.com/",
        "http://en.wikipedia.org/wiki/Python",
        "http://duckduckgo.com/?q=hello",
        "",
    ])
    def test_returns_none(self, registry, uri):
        assert registry.recognize(uri) is None
        assert registry.match(uri) is None


# ── Recognizer ───────────────────────────────────────────────────────────────


class TestRecognizer:
    def test_test_and_apply(self):
        r = _recognizer()
        uri = "http://example.com/find?x=one+two"
        assert r.test(uri)
        assert r.apply(uri) == Query("one+two", ("one", "two"))

    def test_apply_outside_domain(self):
        r = _recognizer()
        with pytest.raises(ValueError):
            r.apply("http://other.org/?y=1")

    def test_extraction_inconsistency(self):
        r = _recognizer(match=r"example\.com", extract=r"x=([^&]*)")
        uri = "http://example.com/find?y=1"
        assert r.test(uri)
        with pytest.raises(ExtractionInconsistency) as exc:
            r.apply(uri)
        assert exc.value.recognizer == "test"
        assert exc.value.uri == uri

    def test_extractor_needs_one_group(self):
        with pytest.raises(ValueError, match="capture group"):
            _recognizer(extract=r"x=[^&]*")
        with pytest.raises(ValueError, match="capture group"):
            _recognizer(extract=r"(x)=([^&]*)")

    def test_from_dict_missing_keys(self):
        with pytest.raises(ValueError, match="missing"):
            Recognizer.from_dict({"name": "bad", "match": "x"})

    def test_from_dict_invalid_pattern(self):
        with pytest.raises(ValueError, match="invalid pattern"):
            _recognizer(match="(unclosed")

    def test_to_dict(self):
        row = {"name": "t", "match": "a", "extract": "b=(.*)", "split": ","}
        assert Recognizer.from_dict(row).to_dict() == row

    def test_is_immutable(self):
        r = _recognizer()
        with pytest.raises(AttributeError):
            r.name = "other"

    def test_direct_construction(self):
        r = Recognizer("direct", re.compile("k="), re.compile("k=([^&]*)"), re.compile(","))
        assert r.apply("http://h/?k=a,b").keywords == ("a", "b")


# ── Registry ─────────────────────────────────────────────────────────────────


class TestRecognizerRegistry:
    def test_default_names(self, registry):
        assert registry.names == ["google", "bing", "yahoo", "wikipedia"]
        assert len(registry) == 4

    def test_idempotent(self, registry):
        uri = "http://www.google.com/search?q=hello+world"
        assert registry.recognize(uri) == registry.recognize(uri)

    def test_first_match_wins(self):
        uri = "http://example.com/find?x=a+b"
        first = _recognizer(name="first", split=r"\+")
        second = _recognizer(name="second", split=r"#")
        reg = RecognizerRegistry([first, second])
        assert reg.match(uri).name == "first"
        assert reg.recognize(uri).keywords == ("a", "b")

        swapped = RecognizerRegistry([second, first])
        assert swapped.match(uri).name == "second"
        assert swapped.recognize(uri).keywords == ("a+b",)

    def test_with_dialect_appends(self, registry):
        extended = registry.with_dialect(
            _recognizer(name="ddg", match=r"duckduckgo\.com.*q=", extract=r"q=([^&]*)")
        )
        assert extended.names[-1] == "ddg"
        assert len(registry) == 4
        assert extended.recognize("http://duckduckgo.com/?q=a+b").keywords == ("a", "b")
        assert registry.recognize("http://duckduckgo.com/?q=a+b") is None

    def test_from_config(self):
        reg = RecognizerRegistry.from_config([
            {"name": "one", "match": "one", "extract": "q=(.*)", "split": " "},
            {"name": "two", "match": "two", "extract": "q=(.*)", "split": " "},
        ])
        assert reg.names == ["one", "two"]

    def test_empty_registry(self):
        assert RecognizerRegistry().recognize("http://www.google.com/search?q=x") is None

    def test_iteration(self, registry):
        assert [r.name for r in registry] == registry.names

    def test_propagates_extraction_inconsistency(self):
        reg = RecognizerRegistry([_recognizer(match="example", extract=r"x=([^&]*)")])
        with pytest.raises(ExtractionInconsistency):
            reg.recognize("http://example.com/")
