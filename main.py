"""Maintainerr overlay manager CLI entry point."""
from __future__ import annotations

import argparse
import signal
import sys
import threading
from datetime import datetime
from typing import Optional

from croniter import croniter

from core.config import load_config, validate_config
from core.errors import CollectionSourceError, ConfigError
from core.models import RunStats
from core.state_store import OverlayStateStore
from services.asset_manager import AssetManager
from services.collection_sorter import CollectionSorter
from services.label_cleanup import LabelCleanup
from services.maintainerr_client import MaintainerrClient
from services.metadata_resolver import LibraryCache, MetadataResolver
from services.overlay_renderer import OverlayRenderer
from services.overlay_text import OverlayTextFormatter
from services.plex_service import PlexService
from services.reconciler import ReconciliationEngine
from services.test_images import generate_test_images
from utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Maintainerr 'leaving soon' poster overlays for Kometa asset folders")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--run", action="store_true", help="Reconcile overlays with Maintainerr once")
    group.add_argument("--restore", action="store_true", help="Restore every original poster and exit")
    group.add_argument("--schedule", action="store_true", help="Reconcile on the configured cron schedule")
    group.add_argument("--test", action="store_true", help="Render sample overlay images into the temp folder")
    return parser.parse_args(argv)


def build_engine(config: dict, plex: PlexService) -> ReconciliationEngine:
    """
    Wire up one reconciliation run. Built fresh for every run so the Plex
    library cache never outlives it.
    """
    behavior = config["behavior"]
    libraries = LibraryCache(plex.list_library_locations)
    resolver = MetadataResolver.from_config(config, plex, libraries)

    hooks_apply, hooks_restore = [], []
    if behavior.get("manage_kometa_label"):
        cleanup = LabelCleanup(plex, behavior.get("kometa_label", "Overlay"))
        hooks_apply.append(cleanup.after_apply)
        hooks_restore.append(cleanup.after_restore)

    return ReconciliationEngine.from_config(
        config,
        source=None if behavior.get("restore_only") else MaintainerrClient.from_config(config),
        resolver=resolver,
        store=OverlayStateStore(config["paths"]["state_db"]),
        assets=AssetManager(plex.download_poster, config["paths"]["temp"]),
        renderer=OverlayRenderer.from_config(config),
        sorter=CollectionSorter.from_config(config, plex),
        post_apply_hooks=hooks_apply,
        post_restore_hooks=hooks_restore,
    )


def run_once(config: dict, plex: PlexService, cancel: threading.Event) -> Optional[RunStats]:
    engine = build_engine(config, plex)
    try:
        return engine.run(cancel)
    except CollectionSourceError as e:
        logger.error(f"Run aborted, no overlays were touched: {e}")
        return None
    except Exception as e:  # noqa: BLE001
        logger.exception(f"Run failed: {e}")
        return None


def next_run(cron: str, now: Optional[datetime] = None) -> datetime:
    """Next wall-clock fire time of `cron` after `now` (local time)."""
    now = now or datetime.now().astimezone()
    return croniter(cron, now).get_next(datetime)


def run_schedule(config: dict, plex: PlexService, cancel: threading.Event, clock=None) -> None:
    clock = clock or (lambda: datetime.now().astimezone())
    cron = config["schedule"]["cron"]
    logger.info(f"Scheduler started with cron schedule '{cron}'")

    if config["schedule"].get("run_on_startup", True):
        stats = run_once(config, plex, cancel)
        if stats is not None and stats.cancelled:
            cancel.set()
    while not cancel.is_set():
        now = clock()
        upcoming = next_run(cron, now)
        logger.info(f"Next run at {upcoming:%Y-%m-%d %H:%M:%S %Z}")
        if cancel.wait(max((upcoming - now).total_seconds(), 0.0)):
            break
        stats = run_once(config, plex, cancel)
        if stats is not None and stats.cancelled:
            break
    logger.info("Scheduler stopped")


def run_test(config: dict) -> None:
    created = generate_test_images(
        OverlayRenderer.from_config(config),
        OverlayTextFormatter.from_config(config),
        config["paths"]["temp"],
    )
    logger.info(f"Created {len(created)} test images in {config['paths']['temp']}")


def install_signal_handlers(cancel: threading.Event) -> None:
    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current item")
        cancel.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)


def main(argv=None) -> int:
    args = parse_args(argv)
    config = None
    try:
        config = load_config(args.config)
        if args.restore:
            config["behavior"]["restore_only"] = True
        setup_logger(str(config["paths"]["logs"]), config["logging"].get("level", "INFO"))
        validate_config(config)
    except ConfigError as e:
        if config is None:
            setup_logger()
        for problem in e.problems:
            logger.error(f"Configuration error: {problem}")
        return 1

    if args.test:
        run_test(config)
        return 0

    cancel = threading.Event()
    install_signal_handlers(cancel)
    try:
        plex = PlexService.from_config(config)
    except Exception as e:  # noqa: BLE001
        logger.error(f"Could not connect to Plex at {config['plex']['url']}: {e}")
        return 1

    if args.schedule:
        run_schedule(config, plex, cancel)
        return 0

    stats = run_once(config, plex, cancel)
    return 0 if stats is not None else 1


if __name__ == "__main__":
    sys.exit(main())
