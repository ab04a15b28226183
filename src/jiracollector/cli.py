# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Jira collector CLI: serve, assess, extract, sync commands.

Usage:
    python -m jiracollector serve [--config PATH] [--host HOST] [--port PORT]
    python -m jiracollector assess FILE --url URL
    python -m jiracollector extract FILE --url URL [--page-type TYPE]
    python -m jiracollector sync --project KEY [--config PATH] [--status S] [--type T] [--updated-after DATE]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from . import __version__
from .config import CollectorConfig, load_config
from .errors import CollectorError
from .models import IssueRecord, PageType, ProjectRecord

logger = logging.getLogger("jiracollector.cli")


def _read_html(path_str: str) -> str:
    path = Path(path_str)
    if str(path) == "-":
        return sys.stdin.read()
    return path.read_text(encoding="utf-8", errors="replace")


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def _open_storage(config: CollectorConfig):
    if config.storage.in_memory or config.storage.database_path == ":memory:":
        from .storage import InMemoryStorage

        logger.info("In-memory storage (nothing persists)")
        return InMemoryStorage()

    from .storage_sqlite import SqliteStorage

    logger.info("SQLite storage: %s", config.storage.database_path)
    return await SqliteStorage.create(config.storage.database_path)


# ── Commands ─────────────────────────────────────────────────────────


def cmd_assess(args: argparse.Namespace) -> None:
    """Classify a saved page and print the assessment."""
    from .page_classifier import assess_page

    _print_json(assess_page(_read_html(args.file), args.url).to_dict())


def cmd_extract(args: argparse.Namespace) -> None:
    """Classify (unless --page-type is given), extract and print normalized entities."""
    from .extraction import JiraExtractor
    from .normalizer import RecordNormalizer
    from .page_classifier import assess_page

    html = _read_html(args.file)
    page_type = PageType(args.page_type) if args.page_type else assess_page(html, args.url).page_type

    extractor = JiraExtractor(capture_raw_html=args.raw_html)
    normalizer = RecordNormalizer()
    records = extractor.parse_html(html, page_type, args.url)
    timestamp = datetime.now(UTC).isoformat()

    tickets = normalizer.tickets_from_records([r for r in records if isinstance(r, IssueRecord)], timestamp)
    projects = []
    for record in records:
        if isinstance(record, ProjectRecord):
            try:
                projects.append(normalizer.to_project(record, timestamp, args.url).to_dict())
            except CollectorError as e:
                logger.warning("Skipping project row: %s", e)

    _print_json(
        {
            "page_type": str(page_type),
            "projects": projects,
            "tickets": [t.to_dict() for t in tickets.values()],
        }
    )


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the ingestion server until interrupted."""
    config: CollectorConfig = args.config_obj
    host = args.host or config.server.host
    port = args.port or config.server.port
    asyncio.run(_serve(config, host, port))


async def _serve(config: CollectorConfig, host: str, port: int) -> None:
    import uvicorn

    from .app import create_app
    from .events import EventHub
    from .extraction import JiraExtractor
    from .service import CollectionService

    storage = await _open_storage(config)
    events = EventHub(queue_size=config.events.queue_size)
    service = CollectionService(
        storage,
        events=events,
        extractor=JiraExtractor(capture_raw_html=config.extraction.capture_raw_html),
        max_html_bytes=config.server.max_html_bytes,
    )
    try:
        server = uvicorn.Server(uvicorn.Config(create_app(service), host=host, port=port, log_level="info"))
        logger.info("Jira collector %s listening on http://%s:%d", __version__, host, port)
        await server.serve()
    finally:
        events.close()
        await storage.close()
        logger.info("Shutdown complete")


def cmd_sync(args: argparse.Namespace) -> None:
    """Pull issues through the REST API and merge them into storage."""
    config: CollectorConfig = args.config_obj
    if not config.jira.base_url:
        print("Error: jira.base_url is not configured.", file=sys.stderr)
        sys.exit(1)
    _print_json(asyncio.run(_sync(config, args)))


async def _sync(config: CollectorConfig, args: argparse.Namespace) -> dict:
    from .jira_client import JiraClient, build_jql
    from .service import CollectionService

    jql = build_jql(args.project, args.issue_type or (), args.status or (), args.updated_after or "")
    storage = await _open_storage(config)
    try:
        async with JiraClient(
            config.jira.base_url,
            config.jira.username,
            config.jira.api_token,
            timeout=config.jira.timeout_seconds,
        ) as client:
            tickets = await client.fetch_tickets(jql)
        stats = await CollectionService(storage).import_tickets(tickets)
    finally:
        await storage.close()
    return {"jql": jql, "fetched": len(tickets), **stats.to_dict()}


# ── Entry point ──────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Jira page collector", prog="python -m jiracollector")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_serve = subparsers.add_parser("serve", help="Start the ingestion server")
    p_serve.add_argument("--config", type=str, metavar="PATH", help="YAML configuration file")
    p_serve.add_argument("--host", type=str, help="Bind address (overrides config)")
    p_serve.add_argument("--port", type=int, help="Port (overrides config)")

    p_assess = subparsers.add_parser("assess", help="Classify a saved Jira page")
    p_assess.add_argument("file", help="HTML file ('-' for stdin)")
    p_assess.add_argument("--url", required=True, help="URL the page was captured from")

    p_extract = subparsers.add_parser("extract", help="Extract tickets/projects from a saved Jira page")
    p_extract.add_argument("file", help="HTML file ('-' for stdin)")
    p_extract.add_argument("--url", required=True, help="URL the page was captured from")
    p_extract.add_argument("--page-type", choices=[str(t) for t in PageType], help="Skip classification")
    p_extract.add_argument("--raw-html", action="store_true", help="Include raw HTML of issue pages")

    p_sync = subparsers.add_parser("sync", help="Fetch a project's issues through the REST API")
    p_sync.add_argument("--config", type=str, metavar="PATH", help="YAML configuration file")
    p_sync.add_argument("--project", required=True, help="Project key")
    p_sync.add_argument("--type", dest="issue_type", action="append", help="Issue type (repeatable)")
    p_sync.add_argument("--status", action="append", help="Status (repeatable)")
    p_sync.add_argument("--updated-after", help="Only issues updated on/after this date (YYYY-MM-DD)")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    from .logging_config import configure

    args = build_parser().parse_args(argv)
    commands = {"serve": cmd_serve, "assess": cmd_assess, "extract": cmd_extract, "sync": cmd_sync}

    try:
        if args.command in ("serve", "sync"):
            args.config_obj = load_config(args.config)
            level = "DEBUG" if args.verbose else args.config_obj.logging.level
            configure(json_output=args.config_obj.logging.json, level=level)
        else:
            configure(level="DEBUG" if args.verbose else "WARNING")
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (CollectorError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
