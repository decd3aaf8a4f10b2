from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from requests import exceptions as req_exc

from .config import MODES, ConfigError, MirrorSettings
from .hosted import CrawlApiError
from .http_client import FetchError
from .log import setup_logging
from .metadata import (
    MetadataError,
    load_metadata,
    metadata_path,
    new_metadata,
    save_metadata,
)
from .mirror import run_pass

logger = logging.getLogger(__name__)


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--workdir",
        type=Path,
        default=None,
        help="Mirror directory (default: $SITE_MIRROR_WORKDIR or the cwd)",
    )
    p.add_argument("--log-level", default=None)
    p.add_argument("--log-file", type=Path, default=None)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="site-mirror")
    sub = parser.add_subparsers(dest="cmd", required=True)

    init_p = sub.add_parser(
        "init",
        help="Write a fresh .metadata.json listing the seed URLs",
    )
    _add_common_args(init_p)
    init_p.add_argument("--url", action="append", required=True)
    init_p.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Repeatable; URL that must never be mirrored",
    )
    init_p.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing .metadata.json",
    )

    run_p = sub.add_parser("run", help="Run one mirror pass")
    _add_common_args(run_p)
    run_p.add_argument("--mode", choices=MODES, default=None)
    run_p.add_argument("--max-pages", type=int, default=None, help="0 = no limit")
    run_p.add_argument("--timeout", type=int, default=None)
    run_p.add_argument("--per-host-delay", type=float, default=None)
    run_p.add_argument("--poll-interval", type=float, default=None)
    run_p.add_argument("--firecrawl-url", default=None)
    run_p.add_argument("--no-progress", action="store_true")

    status_p = sub.add_parser(
        "status",
        help="Summarize the mirror's metadata document",
    )
    _add_common_args(status_p)
    status_p.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON to stdout",
    )

    return parser


def _cmd_init(args: argparse.Namespace, settings: MirrorSettings) -> int:
    path = metadata_path(settings.working_dir)
    if path.exists() and not bool(args.force):
        print(f"{path} already exists; use --force to overwrite", file=sys.stderr)
        return 2
    try:
        save_metadata(new_metadata(list(args.url), list(args.exclude)), path)
    except MetadataError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(str(path))
    return 0


def _cmd_run(settings: MirrorSettings) -> int:
    try:
        result = run_pass(settings)
    except MetadataError as e:
        logger.error("%s", e)
        return 1
    except (CrawlApiError, FetchError, req_exc.RequestException) as e:
        logger.error("crawl aborted: %s", e)
        _record_fatal_error(settings, str(e))
        return 1

    print(
        "run: "
        f"pages={result.pages} folders={result.folders} "
        f"removed_pages={result.reconciled.removed_pages} "
        f"removed_folders={result.reconciled.removed_folders} "
        f"errors={len(result.errors)}"
    )
    return 0


def _record_fatal_error(settings: MirrorSettings, message: str) -> None:
    path = metadata_path(settings.working_dir)
    try:
        record = load_metadata(path)
        record.output.error = message
        save_metadata(record, path)
    except MetadataError as e:
        logger.error("%s", e)


def _cmd_status(args: argparse.Namespace, settings: MirrorSettings) -> int:
    try:
        record = load_metadata(metadata_path(settings.working_dir))
    except MetadataError as e:
        print(str(e), file=sys.stderr)
        return 2

    out = record.output
    summary = {
        "working_dir": str(settings.working_dir),
        "seeds": list(record.input.urls),
        "status": out.status,
        "error": out.error,
        "pages": len(out.pages),
        "folders": len(out.folders),
        "pending_jobs": dict(out.scrape_job_ids),
    }
    if bool(args.json):
        print(json.dumps(summary, indent=2))
    else:
        print(
            "status: "
            f"pages={summary['pages']} folders={summary['folders']} "
            f"status={out.status!r} error={out.error!r}"
        )
        for seed, job_id in out.scrape_job_ids.items():
            print(f"- pending job {job_id} for {seed}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = MirrorSettings.from_env().with_overrides(
            working_dir=args.workdir,
            log_level=args.log_level.upper() if args.log_level else None,
            mode=getattr(args, "mode", None),
            max_pages=getattr(args, "max_pages", None),
            timeout_s=getattr(args, "timeout", None),
            per_host_delay_s=getattr(args, "per_host_delay", None),
            poll_interval_s=getattr(args, "poll_interval", None),
            firecrawl_url=getattr(args, "firecrawl_url", None),
            show_progress=False if getattr(args, "no_progress", False) else None,
        )
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2

    try:
        setup_logging(settings.log_level, log_file=args.log_file)
    except ValueError as e:
        print(f"invalid log level: {e}", file=sys.stderr)
        return 2

    if args.cmd == "init":
        return _cmd_init(args, settings)
    if args.cmd == "run":
        return _cmd_run(settings)
    if args.cmd == "status":
        return _cmd_status(args, settings)
    return 2
