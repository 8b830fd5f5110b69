"""
School Directory Contacts - CLI Runner

Usage:
  Discover school links (writes <data_dir>/schools_data_links.json):
    python -m sdc.run discover --config config/example.yaml --mode sample

  Process detail pages in resumable batches:
    python -m sdc.run process --source=schools_data_links.json
    python -m sdc.run process --batch=3 --limit=2 --show-browser

Exit codes:
  0   - success (including "nothing left to process")
  1   - fatal error (config, source file, browser launch, zero discovered schools)
  130 - interrupted (progress flushed to disk)
"""
from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.config import ConfigError, DiscoveryMode, Settings, load_settings
from src.ops_logger import OpsLogger
from src.pipeline.batch import BatchOrchestrator
from src.pipeline.consent import ConsentHandler
from src.pipeline.details import DetailExtractor
from src.pipeline.discovery import DiscoveryEngine
from src.pipeline.fetchers.playwright import BrowserSession
from src.pipeline.retry import RetryPolicy
from src.pipeline.storage import CheckpointStore, SourceFileError, load_links, save_links


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def _raise_keyboard_interrupt(signum, frame):  # pragma: no cover - signal path
    raise KeyboardInterrupt()


def install_sigterm_handler() -> None:
    """Treat SIGTERM like Ctrl+C so the same flush-and-exit path runs."""
    try:
        signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)
    except (ValueError, AttributeError, OSError):
        # Not in the main thread or unsupported platform
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sdc.run", description="School directory contacts scraper")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", default=None, help="Path to YAML config file (optional)")
    common.add_argument("--data-dir", default=None, help="Directory for links, checkpoints and output (default: data)")
    view = common.add_mutually_exclusive_group()
    view.add_argument("--show-browser", dest="headless", action="store_false", default=None, help="Run Chromium with a visible window")
    view.add_argument("--headless", dest="headless", action="store_true", help="Run Chromium headless (default)")
    common.add_argument("--ops-log", default=None, help="Path to ops JSONL log file (default: <data-dir>/ops.log)")
    common.add_argument("--ops-stdout", action="store_true", help="Also mirror ops JSON to stdout")

    d = sub.add_parser("discover", parents=[common], help="Collect school links from the directory")
    d.add_argument("--target", type=int, default=None, help="Stop once this many unique schools are found")
    d.add_argument("--mode", choices=[m.value for m in DiscoveryMode], default=None, help="Target preset: sample=150, standard=1700, exhaustive=10000")
    d.add_argument("--max-pages", type=int, default=None, help="Pagination page cap (default 300)")
    d.add_argument("--max-scrolls", type=int, default=None, help="Incremental reveal iteration cap (default 300)")
    d.add_argument("--output", "-o", default=None, help="Links file name or path (default: schools_data_links.json)")

    p = sub.add_parser("process", parents=[common], help="Extract contacts for discovered schools")
    p.add_argument("--source", default=None, help="Discovery list (path, or file name inside --data-dir)")
    p.add_argument("--batch", type=int, default=1, help="Start at batch number N (1-based)")
    p.add_argument("--limit", type=int, default=None, help="Process at most N batches")
    p.add_argument("--batch-size", type=int, default=None, help="Schools per batch (default 50)")
    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    overrides: Dict[str, Dict[str, Any]] = {
        "browser": {"headless": args.headless},
        "output": {"data_dir": args.data_dir},
    }
    if args.command == "discover":
        overrides["discovery"] = {
            "mode": args.mode,
            "target_count": args.target,
            "max_pages": args.max_pages,
            "max_scroll_iterations": args.max_scrolls,
        }
    else:
        overrides["batch"] = {"batch_size": args.batch_size}
    settings = load_settings(Path(args.config) if args.config else None, overrides)
    # An explicit mode on the command line wins over a target set in YAML
    if args.command == "discover" and args.mode and args.target is None:
        settings.discovery.target_count = None
    return settings


def resolve_source(source: Optional[str], data_dir: Path, default_name: str) -> Path:
    """Locate the discovery list: as given, else inside ``data_dir``."""
    name = source or default_name
    candidate = Path(name)
    if candidate.is_file():
        return candidate
    in_data = data_dir / name
    if in_data.is_file():
        return in_data
    raise SourceFileError(f"source file not found: {name}")


def list_alternatives(data_dir: Path) -> List[Path]:
    if not data_dir.is_dir():
        return []
    return sorted(data_dir.glob("*links*.json"))


def run_discover(args: argparse.Namespace, settings: Settings, ops_logger: Optional[OpsLogger]) -> int:
    data_dir = settings.data_dir
    links_path = Path(args.output or settings.output.links_file)
    if not links_path.is_absolute() and links_path.parent == Path("."):
        links_path = data_dir / links_path
    cfg = settings.discovery_config()
    consent = ConsentHandler(screenshots_dir=settings.output.screenshots_dir)
    engine = DiscoveryEngine(
        cfg,
        consent=consent,
        ops_logger=ops_logger,
        on_checkpoint=lambda links: save_links(links_path, links),
    )
    print(f"🔎 Discovery target: {cfg.target_count} schools from {cfg.base_url}")
    try:
        with BrowserSession(settings.browser_settings()) as page:
            links = engine.discover(page, cfg.target_count)
    except KeyboardInterrupt:
        print("🛑 Discovery interrupted; intermediate list kept at", links_path)
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"Browser error: {e}", file=sys.stderr)
        return EXIT_FATAL

    if not links:
        print("No schools discovered.", file=sys.stderr)
        return EXIT_FATAL
    save_links(links_path, links)
    print(f"💾 Links: {links_path}")
    print(f"   Discovered schools: {len(links)}")
    if ops_logger:
        ops_logger.summary(command="discover", discovered=len(links), target=cfg.target_count)
    return EXIT_OK


def run_process(args: argparse.Namespace, settings: Settings, ops_logger: Optional[OpsLogger]) -> int:
    data_dir = settings.data_dir
    try:
        source = resolve_source(args.source, data_dir, settings.output.links_file)
        links = load_links(source)
    except SourceFileError as e:
        print(f"Input error: {e}", file=sys.stderr)
        alternatives = list_alternatives(data_dir)
        if alternatives:
            print("Available link files:", file=sys.stderr)
            for alt in alternatives:
                print(f" - {alt}", file=sys.stderr)
        return EXIT_FATAL

    b = settings.batch
    extractor = DetailExtractor(
        consent=ConsentHandler(screenshots_dir=settings.output.screenshots_dir),
        retry=RetryPolicy(max_attempts=b.max_retries, base_delay_s=b.retry_backoff_s),
        navigation_timeout_ms=settings.browser.navigation_timeout_ms,
        consent_probability=b.consent_probability,
    )
    store = CheckpointStore(data_dir)
    orchestrator = BatchOrchestrator(
        extractor,
        store,
        settings.batch_config(resume_from_batch=max(1, args.batch), batch_limit=args.limit),
        ops_logger=ops_logger,
    )
    print(f"📥 Source: {source} ({len(links)} schools, batches of {b.batch_size})")
    try:
        records = orchestrator.run(links, lambda: BrowserSession(settings.browser_settings()))
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except Exception:
        # Orchestrator already wrote the emergency backup and printed its path
        return EXIT_FATAL

    s = orchestrator.summary
    print("🏁 Done.")
    print(f"💾 Output: {store.output_path}")
    print(f"   Processed this run: {s.processed} (ok={s.succeeded}, failed={s.failed})")
    print(f"   With email this run: {s.with_email} | needs review: {s.needs_review}")
    print(f"   Total records: {len(records)}")
    if ops_logger:
        ops_logger.summary(
            command="process",
            processed=s.processed,
            succeeded=s.succeeded,
            failed=s.failed,
            batches=s.batches,
            total_records=len(records),
        )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    # Python 3.11+ gate (must run before any heavy work)
    if sys.version_info < (3, 11):
        cur = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        print(f"Python 3.11+ required. Current: {cur}.", file=sys.stderr)
        return EXIT_FATAL

    args = build_parser().parse_args(argv)
    try:
        settings = build_settings(args)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_FATAL

    data_dir = settings.data_dir
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        print(f"Output error: cannot write to {data_dir}: {e}", file=sys.stderr)
        return EXIT_FATAL

    ops_path = Path(args.ops_log or settings.output.ops_log or (data_dir / "ops.log"))
    ops_logger = OpsLogger(ops_path, also_stdout=bool(args.ops_stdout))

    print(f"Python: {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
    install_sigterm_handler()
    if args.command == "discover":
        return run_discover(args, settings, ops_logger)
    return run_process(args, settings, ops_logger)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
