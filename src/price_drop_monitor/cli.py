from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

from .config import Settings, load_settings
from .errors import MonitorError
from .extraction.chain import build_default_chain
from .orchestrator import MonitoringOrchestrator
from .resilience import CircuitBreakerRegistry
from .scheduler import MonitoringScheduler
from .store import SupabaseMonitorStore


logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str), flush=True)


def _build_orchestrator(settings: Settings) -> MonitoringOrchestrator:
    if not settings.supabase_url or not settings.supabase_key:
        raise SystemExit("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    store = SupabaseMonitorStore.from_credentials(settings.supabase_url, settings.supabase_key)
    breakers = CircuitBreakerRegistry()
    return MonitoringOrchestrator(
        store,
        build_default_chain(settings, breakers=breakers),
        breakers=breakers,
        politeness_delay_seconds=settings.politeness_delay_seconds,
        log_progress=settings.monitor_log,
    )


def _build_scheduler(settings: Settings) -> MonitoringScheduler:
    return MonitoringScheduler(
        _build_orchestrator(settings),
        check_minute=settings.check_cron_minute,
        summary_hour=settings.summary_hour,
        summary_minute=settings.summary_minute,
    )


def _cmd_serve(settings: Settings, args: argparse.Namespace) -> int:
    scheduler = _build_scheduler(settings)
    if args.run_now:
        _print_json(asdict(scheduler.check_now()))
    res = scheduler.start()
    logger.info("[cli] %s", res.message)
    try:
        while scheduler.state.is_active:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("[cli] interrupted")
    finally:
        scheduler.stop()
    return 0


def _cmd_check_now(settings: Settings, args: argparse.Namespace) -> int:
    res = _build_scheduler(settings).check_now()
    _print_json(asdict(res))
    return 0 if res.success else 1


def _cmd_check_one(settings: Settings, args: argparse.Namespace) -> int:
    outcome = _build_orchestrator(settings).check_one(args.monitor_id)
    _print_json(asdict(outcome))
    return 0 if outcome.ok else 1


def _cmd_extract(settings: Settings, args: argparse.Namespace) -> int:
    result = build_default_chain(settings).extract(args.url)
    _print_json({**asdict(result), "effective_price": result.effective_price})
    return 0 if result.success else 1


def _cmd_add(settings: Settings, args: argparse.Namespace) -> int:
    item = _build_orchestrator(settings).add(
        args.user_id,
        args.url,
        store_name=args.store_name,
        target_price=args.target_price,
        retail_price=args.retail_price,
    )
    _print_json(asdict(item))
    return 0


def _cmd_remove(settings: Settings, args: argparse.Namespace) -> int:
    _build_orchestrator(settings).remove(args.monitor_id)
    _print_json({"removed": args.monitor_id})
    return 0


def _cmd_enable(settings: Settings, args: argparse.Namespace) -> int:
    item = _build_orchestrator(settings).enable_tracking(args.monitor_id)
    _print_json(asdict(item))
    return 0


def _cmd_summary(settings: Settings, args: argparse.Namespace) -> int:
    summary = _build_orchestrator(settings).daily_summary()
    _print_json(asdict(summary))
    return 0 if summary.ok else 1


def _cmd_status(settings: Settings, args: argparse.Namespace) -> int:
    scheduler = _build_scheduler(settings)
    res = scheduler.status()
    _print_json(asdict(res))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="price-drop-monitor")
    parser.add_argument("--env-file", default=None, help="Path to a .env file (defaults to ./.env when present).")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--timeout-seconds", type=float, default=None, help="Override HTTP_TIMEOUT_SECONDS.")
    parser.add_argument("--delay-seconds", type=float, default=None, help="Override POLITENESS_DELAY_SECONDS.")
    parser.add_argument("--no-ai", action="store_true", help="Disable the AI-assisted extraction fallback.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Start the hourly check and daily summary schedule and block.")
    p.add_argument("--run-now", action="store_true", help="Run one check cycle before scheduling.")
    p.set_defaults(func=_cmd_serve)

    p = sub.add_parser("check-now", help="Run one check cycle over all active monitors.")
    p.set_defaults(func=_cmd_check_now)

    p = sub.add_parser("check-one", help="Check a single monitor.")
    p.add_argument("monitor_id")
    p.set_defaults(func=_cmd_check_one)

    p = sub.add_parser("extract", help="Extract product data from a URL without persisting anything.")
    p.add_argument("url")
    p.set_defaults(func=_cmd_extract)

    p = sub.add_parser("add", help="Start monitoring a product URL.")
    p.add_argument("user_id")
    p.add_argument("url")
    p.add_argument("--store-name", default=None)
    p.add_argument("--target-price", type=float, default=None)
    p.add_argument("--retail-price", type=float, default=None)
    p.set_defaults(func=_cmd_add)

    p = sub.add_parser("remove", help="Delete a monitor and its price history.")
    p.add_argument("monitor_id")
    p.set_defaults(func=_cmd_remove)

    p = sub.add_parser("enable", help="Re-enable tracking for a monitor disabled after repeated failures.")
    p.add_argument("monitor_id")
    p.set_defaults(func=_cmd_enable)

    p = sub.add_parser("summary", help="Log and print the last 24h of checks and drops.")
    p.set_defaults(func=_cmd_summary)

    p = sub.add_parser("status", help="Show scheduler state.")
    p.set_defaults(func=_cmd_status)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(Path(args.env_file) if args.env_file else None)

    overrides: dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.timeout_seconds is not None:
        overrides["http_timeout_seconds"] = args.timeout_seconds
    if args.delay_seconds is not None:
        overrides["politeness_delay_seconds"] = max(0.0, args.delay_seconds)
    if args.no_ai:
        overrides["gemini_api_key"] = None
    if overrides:
        settings = replace(settings, **overrides)

    _configure_logging(settings.log_level)
    try:
        return args.func(settings, args)
    except MonitorError as e:
        logger.error("[cli] %s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
