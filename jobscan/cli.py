"""
jobscan - scan job sources, score matches and learn from rejections.

Usage:
    jobscan [command] [options]

Commands:
    init            Create the database schema
    scan            Run one scan for a user (Ctrl-C stops between postings)
    opportunities   List a user's stored matches
    reject          Reject a match (learns patterns; blocks the URL unless --allow-again)
    good            Mark a match as a good one
    archive         Archive a match
    patterns        Show what has been learned from rejections
    alerts          Show unread alerts
    sources         List, add, toggle, delete or health-check sources
    skills          Skill catalog: stats, search, match, trends, extract, related, trending, build
    profile         Import a YAML profile or show the stored one
    daily           Scheduled batch (auto-scan users, trends, archiving)

Examples:
    jobscan profile import config/profile.example.yaml --user alice --auto-scan
    jobscan sources add --user alice --name "My feed" --type rss --url https://example.com/feed.json
    jobscan scan --user alice
    jobscan reject --user alice 12
    jobscan skills match Python AWS Terraform
"""
from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from dataclasses import asdict, is_dataclass
from typing import Any

from jobscan.config import Settings, ensure_data_dir, load_settings
from jobscan.log import get_logger
from jobscan.models import SourceType
from jobscan.notify import default_sink
from jobscan.pipeline import ScanError, ScanPipeline
from jobscan.profiles import import_profile, profile_to_dict
from jobscan.sources import BUILTIN_SOURCES, build_sources
from jobscan.store import NotFoundError, Store, StoreError

log = get_logger(__name__)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_jsonable(value), indent=2, default=str, ensure_ascii=False))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobscan",
        description="Job opportunity matching and learning pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", "-c", help="Path to a settings YAML file")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("init", help="Create the database schema")

    scan_p = sub.add_parser("scan", help="Run one scan")
    scan_p.add_argument("--user", "-u", required=True)

    opp_p = sub.add_parser("opportunities", help="List stored matches")
    opp_p.add_argument("--user", "-u", required=True)
    opp_p.add_argument("--all", action="store_true", help="Include archived matches")

    rej_p = sub.add_parser("reject", help="Reject a match")
    rej_p.add_argument("--user", "-u", required=True)
    rej_p.add_argument("opportunity_id", type=int)
    rej_p.add_argument("--allow-again", action="store_true",
                       help="Learn from it but do not block the URL")

    for name, help_text in (("good", "Mark a good match"), ("archive", "Archive a match")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--user", "-u", required=True)
        p.add_argument("opportunity_id", type=int)

    pat_p = sub.add_parser("patterns", help="Rejection statistics")
    pat_p.add_argument("--user", "-u", required=True)

    al_p = sub.add_parser("alerts", help="Unread alerts")
    al_p.add_argument("--user", "-u", required=True)
    al_p.add_argument("--mark-read", type=int, metavar="ALERT_ID")

    src_p = sub.add_parser("sources", help="Manage sources")
    src_p.add_argument("action", choices=["list", "add", "enable", "disable", "delete", "health"])
    src_p.add_argument("target", nargs="?", help="Built-in key or source id")
    src_p.add_argument("--user", "-u", required=True)
    src_p.add_argument("--name")
    src_p.add_argument("--type", choices=[t.value for t in SourceType], default=SourceType.RSS.value)
    src_p.add_argument("--url", help="Feed URL (rss) or API endpoint (api)")
    src_p.add_argument("--api-key")

    sk_p = sub.add_parser("skills", help="Skill catalog")
    sk_p.add_argument("action", choices=[
        "stats", "search", "match", "trends", "extract", "related", "trending", "build",
    ])
    sk_p.add_argument("args", nargs="*")
    sk_p.add_argument("--category")
    sk_p.add_argument("--title", help="Job title for 'extract'")
    sk_p.add_argument("--company")
    sk_p.add_argument("--limit", "-n", type=int, default=100)

    prof_p = sub.add_parser("profile", help="Manage a user's profile")
    prof_p.add_argument("action", choices=["import", "show"])
    prof_p.add_argument("path", nargs="?")
    prof_p.add_argument("--user", "-u", required=True)
    prof_p.add_argument("--auto-scan", action="store_true", help="Include in the daily batch")

    daily_p = sub.add_parser("daily", help="Scheduled batch")
    daily_p.add_argument("--once", action="store_true", help="Run a single pass and exit")

    return parser


def _open(settings: Settings) -> tuple[Store, ScanPipeline]:
    ensure_data_dir(settings)
    store = Store.from_settings(settings)
    store.create_all()
    pipeline = ScanPipeline(store, settings, sink=default_sink(store, settings.notify_email))
    return store, pipeline


def cmd_scan(args, pipeline: ScanPipeline) -> int:
    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        result = pipeline.run_scan(args.user, cancel=cancel)
    except ScanError as exc:
        print(f"Scan failed after adding {exc.added_count} opportunities: {exc}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)

    print(f"Added {result.added_count} new opportunities "
          f"({result.fetched_count} fetched, {result.scored_count} scored, "
          f"{result.skipped_count} skipped){' - cancelled' if result.cancelled else ''}")
    for opp in result.opportunities:
        print(f"  [{opp.id}] {opp.fit_score:3d}%  {opp.title} @ {opp.company}  {opp.source_url}")
    return 0


def cmd_opportunities(args, pipeline: ScanPipeline) -> int:
    opps = pipeline.get_opportunities(args.user, include_archived=args.all)
    if not opps:
        print("No opportunities.")
    for opp in opps:
        flag = " (archived)" if opp.archived else ""
        print(f"[{opp.id}] {opp.fit_score:3d}%  {opp.title} @ {opp.company} "
              f"| {opp.location or '-'} | {opp.source_name}{flag}")
        print(f"       {opp.source_url}")
    return 0


def cmd_sources(args, store: Store, settings: Settings) -> int:
    if args.action == "list":
        rows = store.list_sources(args.user)
        overrides = {d.builtin_key: d.enabled for d in rows if d.is_builtin}
        defaults = set(settings.builtin_sources) if settings.builtin_sources is not None else set(BUILTIN_SOURCES)
        for key, cls in BUILTIN_SOURCES.items():
            enabled = overrides.get(key, key in defaults)
            print(f"  {'on ' if enabled else 'off'}  {key:<20} {cls.name} (built-in {cls.source_type})")
        for d in rows:
            if not d.is_builtin:
                print(f"  {'on ' if d.enabled else 'off'}  {d.id:<20} {d.name} "
                      f"({d.source_type}: {d.feed_url or d.api_endpoint})")
        return 0

    if args.action == "add":
        if not args.name or not args.url:
            print("sources add needs --name and --url", file=sys.stderr)
            return 2
        is_rss = args.type == SourceType.RSS.value
        d = store.add_source(
            args.user, args.name, args.type,
            feed_url=args.url if is_rss else None,
            api_endpoint=None if is_rss else args.url,
            api_key=args.api_key,
        )
        print(f"Added source {d.id}: {d.name}")
        return 0

    if args.action == "health":
        for source in build_sources(store.list_sources(args.user), settings):
            print(f"  {'ok  ' if source.health_check() else 'FAIL'}  {source.name}")
        return 0

    if not args.target:
        print(f"sources {args.action} needs a built-in key or source id", file=sys.stderr)
        return 2
    if args.target in BUILTIN_SOURCES:
        if args.action == "delete":
            print("Built-in sources can only be disabled", file=sys.stderr)
            return 2
        store.set_builtin_enabled(args.user, args.target, BUILTIN_SOURCES[args.target].name,
                                  args.action == "enable")
    elif args.action == "delete":
        store.delete_source(args.user, int(args.target))
    else:
        store.set_source_enabled(args.user, int(args.target), args.action == "enable")
    print(f"Source {args.target}: {args.action}d")
    return 0


def cmd_skills(args, pipeline: ScanPipeline) -> int:
    svc = pipeline.skills
    if args.action == "stats":
        _print_json(svc.get_skill_stats())
    elif args.action == "search":
        _print_json(svc.search_skills(" ".join(args.args), args.category))
    elif args.action == "match":
        _print_json(svc.match_user_skills(args.args))
    elif args.action == "trends":
        _print_json(svc.update_trends())
    elif args.action == "extract":
        text = " ".join(args.args) or sys.stdin.read()
        _print_json(svc.extract_and_save_skills(text, args.title or "Untitled", args.company))
    elif args.action == "related":
        _print_json(svc.get_related_skills(int(args.args[0])))
    elif args.action == "trending":
        _print_json(svc.get_trending_skills())
    elif args.action == "build":
        _print_json(svc.build_from_opportunities(args.limit))
    return 0


def cmd_profile(args, store: Store) -> int:
    if args.action == "import":
        if not args.path:
            print("profile import needs a YAML path", file=sys.stderr)
            return 2
        profile = import_profile(store, args.user, args.path)
        if args.auto_scan:
            store.upsert_user(args.user, profile, auto_scan=True)
        print(f"Imported profile for {args.user}")
        return 0
    _print_json(profile_to_dict(store.get_user_profile(args.user)))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = load_settings(args.config)
    if args.command == "daily":
        from jobscan.run_daily import main as daily_main

        daily_main(once=args.once)
        return 0

    try:
        store, pipeline = _open(settings)
        if args.command == "init":
            print(f"Schema ready at {settings.database_url}")
            return 0
        if args.command == "scan":
            return cmd_scan(args, pipeline)
        if args.command == "opportunities":
            return cmd_opportunities(args, pipeline)
        if args.command == "reject":
            pipeline.reject_opportunity(args.user, args.opportunity_id, forever=not args.allow_again)
            print(f"Rejected {args.opportunity_id}")
            return 0
        if args.command == "good":
            pipeline.mark_good_match(args.user, args.opportunity_id)
            print(f"Marked {args.opportunity_id} as a good match")
            return 0
        if args.command == "archive":
            pipeline.archive_opportunity(args.user, args.opportunity_id)
            print(f"Archived {args.opportunity_id}")
            return 0
        if args.command == "patterns":
            _print_json(pipeline.get_rejection_stats(args.user))
            return 0
        if args.command == "alerts":
            if args.mark_read is not None:
                store.mark_alert_read(args.user, args.mark_read)
            _print_json(store.list_alerts(args.user))
            return 0
        if args.command == "sources":
            return cmd_sources(args, store, settings)
        if args.command == "skills":
            return cmd_skills(args, pipeline)
        if args.command == "profile":
            return cmd_profile(args, store)
    except NotFoundError as exc:
        print(f"Not found: {exc}", file=sys.stderr)
        return 2
    except StoreError as exc:
        log.error("Store error: %s", exc)
        print(f"Database error: {exc}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
