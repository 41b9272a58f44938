"""
SearchProxy CLI
================
Command-line interface: run the proxy, inspect the dialect table, and
browse recorded queries.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from searchproxy import __version__
from searchproxy.config import CONFIG_FILE, STORE_BACKENDS, SearchProxyConfig, load_config, save_config
from searchproxy.core.errors import ExtractionInconsistency, StoreFailure
from searchproxy.core.pipeline import build_pipeline
from searchproxy.core.proxy import ProxyServer
from searchproxy.core.recognizers import RecognizerRegistry
from searchproxy.core.store import create_store
from searchproxy.ui import (
    console,
    print_error,
    print_info,
    print_success,
    show_banner,
    show_config_status,
    show_dialects,
    show_queries,
    show_recognitions,
)

load_dotenv()


def _setup_logging(level: str, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    if not verbose:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def _serve(config: SearchProxyConfig, registry: RecognizerRegistry) -> None:
    store = create_store(config.store)
    pipeline = build_pipeline(
        registry,
        store,
        upstream_timeout=config.server.upstream_timeout,
        include_traceback=config.server.include_traceback,
        await_writes=config.store.await_writes,
    )
    server = ProxyServer(pipeline, store, host=config.server.host, port=config.server.port)
    info = await server.start()
    if not info["ok"]:
        await store.close()
        raise click.ClickException(info["error"])
    print_success(info["message"])
    print_info(f"  dialects: {', '.join(registry.names)}")
    print_info(f"  curl example: {info['curl_example']}")
    print_info(f"  env: {info['env_hint']}")
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


async def _recent(config: SearchProxyConfig, limit: int):
    store = create_store(config.store)
    try:
        return await store.recent(limit)
    finally:
        await store.close()


# ── Main CLI ─────────────────────────────────────────────────────────────────

@click.group()
@click.option("--config-file", "-c", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Config file (default: platform config dir)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(__version__, prog_name="searchproxy")
@click.pass_context
def main(ctx, config_file, verbose):
    """SearchProxy: search-query recording HTTP proxy"""
    ctx.ensure_object(dict)

    try:
        config = load_config(config_file)
    except (ValueError, TypeError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    _setup_logging(config.logging.level, verbose)
    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file or CONFIG_FILE


def _registry(config: SearchProxyConfig) -> RecognizerRegistry:
    try:
        return RecognizerRegistry.from_config(config.dialects)
    except ValueError as e:
        raise click.ClickException(f"Invalid dialect table: {e}")


@main.command()
@click.option("--host", default=None, help="Address to bind (default from config)")
@click.option("--port", "-p", default=None, type=int, help="Port to listen on (default 8080)")
@click.option("--store", "backend", default=None, type=click.Choice(STORE_BACKENDS), help="Query store backend")
@click.option("--await-writes", is_flag=True, help="Persist each query before forwarding")
@click.pass_context
def serve(ctx, host, port, backend, await_writes):
    """Run the proxy until interrupted."""
    config: SearchProxyConfig = ctx.obj["config"]
    if host:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if backend:
        config.store.backend = backend
    if await_writes:
        config.store.await_writes = True

    registry = _registry(config)
    show_banner()
    try:
        asyncio.run(_serve(config, registry))
    except KeyboardInterrupt:
        pass

    console.print("\n[dim]Proxy stopped.[/]\n")


@main.command()
@click.argument("uris", nargs=-1, required=True)
@click.pass_context
def recognize(ctx, uris):
    """Run the dialect table against URIs without proxying anything."""
    registry = _registry(ctx.obj["config"])
    results = []
    for uri in uris:
        recognizer = registry.match(uri)
        if recognizer is None:
            results.append((uri, None, None, []))
            continue
        try:
            query = recognizer.apply(uri)
        except ExtractionInconsistency as e:
            print_error(str(e))
            results.append((uri, recognizer.name, None, []))
            continue
        results.append((uri, recognizer.name, query.text, list(query.keywords)))
    show_recognitions(results)


@main.command()
@click.pass_context
def dialects(ctx):
    """List the configured search-engine dialects in match order."""
    registry = _registry(ctx.obj["config"])
    show_dialects(r.to_dict() for r in registry)


@main.command()
@click.option("--limit", "-n", default=20, type=int, help="Number of queries to show")
@click.pass_context
def queries(ctx, limit):
    """Show recently recorded queries."""
    config: SearchProxyConfig = ctx.obj["config"]
    try:
        records = asyncio.run(_recent(config, limit))
    except StoreFailure as e:
        print_error(f"Cannot read query store: {e}")
        ctx.exit(1)
    show_queries(records)


@main.command()
@click.pass_context
def config(ctx):
    """Show the effective configuration."""
    cfg: SearchProxyConfig = ctx.obj["config"]
    store = cfg.store
    location = (
        f"mongodb://{store.host}:{store.port}/{store.database}.{store.collection}"
        if store.backend == "mongodb" else (store.path or "default data dir")
    )
    show_config_status({
        "Listen": f"{cfg.server.host}:{cfg.server.port}",
        "Upstream timeout": f"{cfg.server.upstream_timeout}s",
        "Tracebacks in errors": cfg.server.include_traceback,
        "Store": f"{store.backend} ({location})",
        "Await writes": store.await_writes,
        "Log level": cfg.logging.level,
        "Dialects": ", ".join(d.get("name", "?") for d in cfg.dialects),
    })
    print_info(f"Config file: {ctx.obj['config_file']}")


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def init(ctx, force):
    """Write the effective configuration to the config file."""
    path: Path = ctx.obj["config_file"]
    if path.exists() and not force:
        print_error(f"{path} already exists (use --force to overwrite)")
        ctx.exit(1)
    save_config(ctx.obj["config"], path)
    print_success(f"Configuration written to {path}")


if __name__ == "__main__":
    main()
