"""
SearchProxy Listener
=====================
Accepts HTTP/1.1 proxy requests and hands each one to the pipeline.

Architecture:
  Uses aiohttp's low-level ``web.Server`` so every request target, absolute
  or not, reaches a single handler without routing. Requests are handled
  concurrently on one event loop.

Usage::

    server = ProxyServer(pipeline, store, host="127.0.0.1", port=8080)
    await server.start()
    ...
    await server.stop()

    curl -x http://127.0.0.1:8080 "http://www.google.com/search?q=hello+world"
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from aiohttp import web
from multidict import CIMultiDict

from searchproxy.core.pipeline import Pipeline, ProxyRequest, ProxyResponse
from searchproxy.core.store import QueryStore

logger = logging.getLogger(__name__)


class ProxyServer:
    """
    Forward HTTP proxy bound to a TCP port.

    Owns the query store for its lifetime: ``stop()`` drains pending
    recordings and closes the store.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        store: Optional[QueryStore] = None,
        host: str = "127.0.0.1",
        port: int = 8080,
    ):
        self.pipeline = pipeline
        self.store = store
        self.host = host
        self.port = port
        self.is_running: bool = False
        self._runner: Optional[web.ServerRunner] = None
        self._start_time: float = 0

    # ── Request Handling ─────────────────────────────────────────────────

    async def _handle(self, request: web.BaseRequest) -> web.Response:
        body = await request.read()
        proxy_request = ProxyRequest(
            method=request.method,
            uri=request.raw_path,
            headers=CIMultiDict(request.headers),
            body=body,
        )
        response = await self.pipeline.handle(proxy_request)
        return self._to_web_response(response)

    @staticmethod
    def _to_web_response(response: ProxyResponse) -> web.Response:
        return web.Response(
            status=response.status,
            reason=response.reason,
            headers=response.headers,
            body=response.body,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> Dict[str, Any]:
        """Bind the listening socket and start serving.

        Returns:
            Status dict with the bound address, or ``ok=False`` and an
            ``error`` when the proxy is already running or cannot bind.
        """
        if self.is_running:
            return {"ok": False, "error": f"Proxy already running on port {self.port}"}

        server = web.Server(self._handle)
        self._runner = web.ServerRunner(server)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            return {"ok": False, "error": f"Cannot bind {self.host}:{self.port}: {e}"}

        # Port 0 binds an ephemeral port; report the real one
        addresses = self._runner.addresses
        if addresses:
            self.port = addresses[0][1]

        self.is_running = True
        self._start_time = time.time()
        logger.info(f"Proxy listening on {self.url}")
        return {
            "ok": True,
            "port": self.port,
            "message": f"HTTP proxy listening on {self.host}:{self.port}",
            "curl_example": f"curl -x {self.url} \"http://www.google.com/search?q=hello+world\"",
            "env_hint": f"export http_proxy={self.url}",
        }

    async def stop(self) -> Dict[str, Any]:
        """Stop serving, flush pending recordings, and close the store."""
        if not self.is_running:
            return {"ok": False, "error": "Proxy is not running"}

        await self._runner.cleanup()
        self._runner = None
        self.is_running = False

        await self.pipeline.drain()
        if self.store is not None:
            await self.store.close()

        uptime = time.time() - self._start_time
        logger.info("Proxy stopped")
        return {"ok": True, "uptime_seconds": round(uptime, 1), "message": "Proxy stopped"}

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"
