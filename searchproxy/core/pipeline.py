"""
SearchProxy Request Pipeline
=============================
The chain every proxied request passes through::

    ErrorBoundary → RecordingInterceptor → ForwardingStage

A *filter* is an async callable ``(request, next_handler) -> response`` and
the terminal *service* is an async callable ``(request) -> response``.
:class:`Pipeline` folds the filters around the service so the first filter
is outermost; the error boundary always goes first so no failure escapes
the entry point.
"""

from __future__ import annotations

import asyncio
import logging
import re
import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Awaitable, Callable, Optional, Sequence, Set, Tuple

import aiohttp
from multidict import CIMultiDict
from yarl import URL

from searchproxy.core.errors import MalformedRequest, StoreFailure, UpstreamFailure
from searchproxy.core.recognizers import Query, RecognizerRegistry
from searchproxy.core.store import QueryStore

logger = logging.getLogger(__name__)


# ── Messages ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProxyRequest:
    """An inbound request as received from the client."""
    method: str
    uri: str  # raw request target, absolute form for proxy traffic
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""


@dataclass
class ProxyResponse:
    """A response to hand back to the client."""
    status: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""
    reason: Optional[str] = None


Handler = Callable[[ProxyRequest], Awaitable[ProxyResponse]]
Filter = Callable[[ProxyRequest, Handler], Awaitable[ProxyResponse]]


# ── Error Boundary ───────────────────────────────────────────────────────────

class ErrorBoundary:
    """Turn any failure downstream into a well-formed error response.

    ``MalformedRequest`` becomes 403, everything else 500.
    """

    def __init__(self, include_traceback: bool = False):
        self.include_traceback = include_traceback

    async def __call__(self, request: ProxyRequest, next_handler: Handler) -> ProxyResponse:
        try:
            return await next_handler(request)
        except MalformedRequest as e:
            logger.warning(f"Rejected {request.method} {request.uri}: {e}")
            return self.error_response(HTTPStatus.FORBIDDEN, e)
        except Exception as e:
            logger.exception(f"Failed {request.method} {request.uri}: {e}")
            return self.error_response(HTTPStatus.INTERNAL_SERVER_ERROR, e)

    def error_response(self, status: HTTPStatus, error: BaseException) -> ProxyResponse:
        text = f"{type(error).__name__}: {error}\n"
        if self.include_traceback:
            text += "\n" + "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return ProxyResponse(
            status=status.value,
            reason=status.phrase,
            headers=CIMultiDict({"Content-Type": "text/plain; charset=utf-8"}),
            body=text.encode("utf-8"),
        )


# ── Recording Interceptor ────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordingInterceptor:
    """
    Record search queries found in request URIs, then pass the request on.

    Recording is fail-open: a store failure is logged and the request is
    still forwarded untouched. By default writes are fire-and-forget so
    store latency never adds to proxy latency; ``await_writes=True`` waits
    for each write before forwarding.
    """

    def __init__(
        self,
        registry: RecognizerRegistry,
        store: QueryStore,
        await_writes: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.store = store
        self.await_writes = await_writes
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    async def __call__(self, request: ProxyRequest, next_handler: Handler) -> ProxyResponse:
        recognizer = self.registry.match(request.uri)
        if recognizer is not None:
            query = recognizer.apply(request.uri)
            when = self._clock()
            if self.await_writes:
                await self._persist(recognizer.name, query, when)
            else:
                task = asyncio.create_task(self._persist(recognizer.name, query, when))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

        return await next_handler(request)

    async def _persist(self, dialect: str, query: Query, when: datetime) -> None:
        try:
            await self.store.insert(query, when)
        except StoreFailure as e:
            logger.error(f"Could not record {dialect} query '{query.text}': {e}")
        except Exception:
            logger.exception(f"Unexpected store error recording {dialect} query '{query.text}'")
        else:
            logger.info(f"Recorded {dialect} query '{query.text}' -> {list(query.keywords)}")

    @property
    def pending(self) -> int:
        """Number of writes still in flight."""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all in-flight writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))


# ── Forwarding Stage ─────────────────────────────────────────────────────────

# Not relayed upstream (connection-level or consumed by this proxy)
_REQUEST_SKIP_HEADERS = frozenset({
    "proxy-connection", "proxy-authorization", "connection",
    "keep-alive", "transfer-encoding", "content-length",
})
# Not relayed back to the client; the listener recomputes framing
_RESPONSE_SKIP_HEADERS = frozenset({
    "connection", "keep-alive", "transfer-encoding", "content-length",
})
# Headers aiohttp would otherwise add on its own
_SKIP_AUTO_HEADERS = ("User-Agent", "Accept", "Accept-Encoding", "Content-Type")

DEFAULT_PORT = 80

# Registered names and IPv4 literals; bracketed IPv6 literals are checked separately
_HOSTNAME_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?")
_IPV6_RE = re.compile(r"[0-9A-Fa-f:.]+(?:%[A-Za-z0-9._~-]+)?")
_PORT_SUFFIX_RE = re.compile(r":\d+$")


def target_address(host: str) -> Tuple[str, int]:
    """Split a Host header value into (hostname, port), defaulting to port 80."""
    host = host.strip()
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            raise MalformedRequest(f"Invalid Host header: {host!r}")
        hostname, rest = host[1:end], host[end + 1:]
        if rest and not rest.startswith(":"):
            raise MalformedRequest(f"Invalid Host header: {host!r}")
        port_str = rest[1:]
        if not _IPV6_RE.fullmatch(hostname):
            raise MalformedRequest(f"Invalid Host header: {host!r}")
    else:
        hostname, sep, port_str = host.partition(":")
        if sep and not port_str:
            raise MalformedRequest(f"Invalid Host header: {host!r}")
        if not _HOSTNAME_RE.fullmatch(hostname):
            raise MalformedRequest(f"Invalid Host header: {host!r}")

    if not port_str:
        return hostname, DEFAULT_PORT
    if not port_str.isdigit() or not 0 < int(port_str) < 65536:
        raise MalformedRequest(f"Invalid port in Host header: {host!r}")
    return hostname, int(port_str)


def format_target(hostname: str, port: int) -> str:
    if ":" in hostname:
        return f"[{hostname}]:{port}"
    return f"{hostname}:{port}"


def origin_path(uri: str, host: str) -> str:
    """Strip the ``http://<host>`` prefix from an absolute-form URI.

    When the Host header carries no port, the target may still spell out the
    default one (``http://example.com:80/``).
    """
    prefixes = [f"http://{host}"]
    if not _PORT_SUFFIX_RE.search(host):
        prefixes.insert(0, f"http://{host}:{DEFAULT_PORT}")

    lowered = uri.lower()
    for prefix in prefixes:
        if not lowered.startswith(prefix.lower()):
            continue
        path = uri[len(prefix):]
        if not path:
            return "/"
        if path.startswith("/"):
            return path
        if path.startswith("?"):
            return "/" + path
    raise MalformedRequest(f"Request target {uri!r} is not an absolute http:// URI for host {host!r}")


class ForwardingStage:
    """
    Relay a request to the origin named by its Host header.

    Each call opens its own client session limited to a single connection
    per destination and closes it when the exchange ends, whatever the
    outcome.
    """

    def __init__(self, timeout: float = 30.0, connections_per_host: int = 1):
        self.timeout = timeout
        self.connections_per_host = connections_per_host

    def rewrite(self, request: ProxyRequest) -> Tuple[str, ProxyRequest]:
        """Return the ``host:port`` target and the origin-relative request."""
        host = (request.headers.get("Host") or "").strip()
        if not host:
            raise MalformedRequest("Missing Host header")
        path = origin_path(request.uri, host)
        hostname, port = target_address(host)
        return format_target(hostname, port), replace(request, uri=path)

    async def __call__(self, request: ProxyRequest) -> ProxyResponse:
        target, upstream = self.rewrite(request)
        url = URL(f"http://{target}{upstream.uri}", encoded=True)
        headers = CIMultiDict(
            (k, v) for k, v in upstream.headers.items()
            if k.lower() not in _REQUEST_SKIP_HEADERS
        )

        logger.debug(f"Forwarding {upstream.method} {upstream.uri} to {target}")
        connector = aiohttp.TCPConnector(limit_per_host=self.connections_per_host)
        try:
            async with aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                auto_decompress=False,
                skip_auto_headers=_SKIP_AUTO_HEADERS,
            ) as session:
                async with session.request(
                    upstream.method,
                    url,
                    headers=headers,
                    data=upstream.body or None,
                    allow_redirects=False,
                ) as resp:
                    body = await resp.read()
                    return ProxyResponse(
                        status=resp.status,
                        reason=resp.reason,
                        headers=CIMultiDict(
                            (k, v) for k, v in resp.headers.items()
                            if k.lower() not in _RESPONSE_SKIP_HEADERS
                        ),
                        body=body,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise UpstreamFailure(target, str(e) or type(e).__name__) from e


# ── Pipeline ─────────────────────────────────────────────────────────────────

def _bind(filter_: Filter, next_handler: Handler) -> Handler:
    async def handler(request: ProxyRequest) -> ProxyResponse:
        return await filter_(request, next_handler)
    return handler


class Pipeline:
    """Filters folded around a terminal service into one entry point."""

    def __init__(self, filters: Sequence[Filter], service: Handler):
        self.filters = tuple(filters)
        self.service = service

        handler = service
        for filter_ in reversed(self.filters):
            handler = _bind(filter_, handler)
        self._entry = handler

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        return await self._entry(request)

    async def drain(self) -> None:
        """Wait for background work started by any filter."""
        for filter_ in self.filters:
            drain = getattr(filter_, "drain", None)
            if drain is not None:
                await drain()


def build_pipeline(
    registry: RecognizerRegistry,
    store: QueryStore,
    upstream_timeout: float = 30.0,
    include_traceback: bool = False,
    await_writes: bool = False,
) -> Pipeline:
    """Compose ErrorBoundary → RecordingInterceptor → ForwardingStage."""
    return Pipeline(
        filters=[
            ErrorBoundary(include_traceback=include_traceback),
            RecordingInterceptor(registry, store, await_writes=await_writes),
        ],
        service=ForwardingStage(timeout=upstream_timeout),
    )
