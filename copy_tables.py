from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from fk_copy.alerts import format_run_alert, send_discord_alert
from fk_copy.engine import run_copy
from fk_copy.exceptions import ConfigError, CopyRunFailed
from fk_copy.report import CopyReport
from fk_copy.schema_registry import default_registry, load_registry
from fk_copy.settings import CopyConfig

log = logging.getLogger("fk_copy")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2

# ------------------------ Helpers ------------------------

def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="fk-copy",
        description="Copy the configured tables from the source database to the target, "
                    "nulling foreign keys whose referenced rows are missing in the target.",
    )
    p.add_argument("--batch-size", type=int, default=None,
                   help="rows per INSERT batch (env COPY_BATCH_SIZE, default 100)")
    p.add_argument("--no-validate", action="store_true",
                   help="skip the informational foreign-key validation pass")
    p.add_argument("--catalog", default=None,
                   help="JSON table catalog to use instead of the built-in one (env TABLE_CATALOG_PATH)")
    p.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"),
                   help="logging level (env LOG_LEVEL, default INFO)")
    p.add_argument("--no-alert", action="store_true",
                   help="never send a Discord alert, even when DISCORD_WEBHOOK is set")
    return p

def _maybe_alert(cfg: CopyConfig, report: Optional[CopyReport], enabled: bool) -> None:
    if not enabled or report is None or not cfg.discord_webhook:
        return
    if report.needs_attention():
        send_discord_alert(format_run_alert(report), webhook_url=cfg.discord_webhook)

# ------------------------ Entry point ------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    try:
        cfg = CopyConfig.from_env().with_overrides(
            batch_size=args.batch_size,
            validate_fks=False if args.no_validate else None,
            catalog_path=args.catalog,
        )
        registry = load_registry(cfg.catalog_path) if cfg.catalog_path else default_registry()
    except (ConfigError, FileNotFoundError) as e:
        log.error("💥 Configuration error: %s", e)
        return EXIT_CONFIG

    log.info("📊 Database Configuration:")
    log.info("   Source: %s", cfg.source.describe())
    log.info("   Target: %s", cfg.target.describe())
    log.info("   Tables: %s", ", ".join(registry.table_names()))

    try:
        report = run_copy(cfg, registry, log)
    except CopyRunFailed as e:
        if e.report is not None:
            e.report.log_summary(log)
        log.error("💥 Fatal error: %s", e)
        _maybe_alert(cfg, e.report, not args.no_alert)
        return EXIT_FATAL

    report.log_summary(log)
    _maybe_alert(cfg, report, not args.no_alert)
    log.info("✨ All done!")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
