"""Keeps poster overlays in step with Maintainerr: apply, refresh, skip, restore."""
from __future__ import annotations

import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from core.assets import AssetLocation
from core.errors import AssetUnavailableError, CollectionSourceError, RenderError
from core.models import MaintainerrCollection, OverlayState, ResolveStatus, RunStats, TrackedItem
from core.state_store import OverlayStateStore
from services.asset_manager import AssetManager
from services.collection_sorter import CollectionSorter
from services.metadata_resolver import MetadataResolver
from services.overlay_renderer import OverlayRenderer
from services.overlay_text import OverlayTextFormatter
from utils.logger import get_logger

logger = get_logger(__name__)

ApplyHook = Callable[[OverlayState, TrackedItem], None]
RestoreHook = Callable[[OverlayState], None]


class CollectionSource(Protocol):
    def get_collections(self) -> List[MaintainerrCollection]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    def __init__(
        self,
        source: Optional[CollectionSource],
        resolver: MetadataResolver,
        store: OverlayStateStore,
        assets: AssetManager,
        renderer: OverlayRenderer,
        formatter: OverlayTextFormatter,
        assets_root: Path | str,
        backups_root: Path | str,
        sorter: Optional[CollectionSorter] = None,
        collections_filter: Sequence[str] = (),
        reapply_overlays: bool = False,
        restore_only: bool = False,
        post_apply_hooks: Iterable[ApplyHook] = (),
        post_restore_hooks: Iterable[RestoreHook] = (),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.resolver = resolver
        self.store = store
        self.assets = assets
        self.renderer = renderer
        self.formatter = formatter
        self.assets_root = Path(assets_root)
        self.backups_root = Path(backups_root)
        self.sorter = sorter
        self.collections_filter = [f for f in collections_filter if f and f.strip()]
        self.reapply_overlays = reapply_overlays
        self.restore_only = restore_only
        self.post_apply_hooks = list(post_apply_hooks)
        self.post_restore_hooks = list(post_restore_hooks)
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: dict,
        source: Optional[CollectionSource],
        resolver: MetadataResolver,
        store: OverlayStateStore,
        assets: AssetManager,
        renderer: OverlayRenderer,
        sorter: Optional[CollectionSorter] = None,
        post_apply_hooks: Iterable[ApplyHook] = (),
        post_restore_hooks: Iterable[RestoreHook] = (),
    ) -> "ReconciliationEngine":
        behavior = config.get("behavior", {})
        return cls(
            source=source,
            resolver=resolver,
            store=store,
            assets=assets,
            renderer=renderer,
            formatter=OverlayTextFormatter.from_config(config),
            assets_root=config["paths"]["assets"],
            backups_root=config["paths"]["backups"],
            sorter=sorter if behavior.get("sort_collections") else None,
            collections_filter=behavior.get("collections_filter") or [],
            reapply_overlays=bool(behavior.get("reapply_overlays", False)),
            restore_only=bool(behavior.get("restore_only", False)),
            post_apply_hooks=post_apply_hooks,
            post_restore_hooks=post_restore_hooks,
        )

    def run(self, cancel: Optional[threading.Event] = None) -> RunStats:
        """
        One reconciliation pass. Raises CollectionSourceError (before touching
        any state) when Maintainerr cannot be read.
        """
        cancel = cancel or threading.Event()
        stats = RunStats()

        if self.restore_only:
            logger.info("Restore only mode: restoring every original poster")
            self._restore_all(stats, cancel)
            logger.info(f"Restore completed. Stats: {stats}")
            return stats

        if self.source is None:
            raise CollectionSourceError("No Maintainerr client configured")
        collections = self.source.get_collections()
        if not collections:
            logger.info("Zero collections fetched from Maintainerr. If this is unexpected, please check your configuration")

        self._restore_orphans(collections, stats, cancel)
        if stats.cancelled:
            return stats

        for collection in self._filter_collections(collections):
            if cancel.is_set():
                return self._cancelled(stats)
            logger.debug(f"Processing items for {collection.display_title}")
            if not self._can_process(collection):
                continue
            self._process_collection(collection, stats, cancel)
            if stats.cancelled:
                return stats

        logger.info(f"Overlay operations completed. Stats: {stats}")
        return stats

    # ------------------------------------------------------------------ #
    # Collections
    # ------------------------------------------------------------------ #
    def _filter_collections(self, collections: List[MaintainerrCollection]) -> List[MaintainerrCollection]:
        if not self.collections_filter:
            return collections

        wanted = {name.strip().lower(): name for name in self.collections_filter}
        titles = {(c.title or "").strip().lower() for c in collections}
        for key, name in wanted.items():
            if key not in titles:
                logger.warning(f"Collection filter entry '{name}' does not match any Maintainerr collection")
        return [c for c in collections if (c.title or "").strip().lower() in wanted]

    @staticmethod
    def _can_process(collection: MaintainerrCollection) -> bool:
        if not collection.is_active:
            logger.info(f"Collection {collection.display_title} is not an active collection in Maintainerr. Skipping collection..")
            return False
        if collection.delete_after_days <= 0:
            logger.info(f"Collection {collection.display_title} does not have a 'Delete after days' value set. Skipping collection..")
            return False
        if not collection.media:
            logger.info(f"Collection {collection.display_title} has zero media items. Skipping collection..")
            return False
        return True

    def _process_collection(self, collection: MaintainerrCollection, stats: RunStats, cancel: threading.Event) -> None:
        items: List[TrackedItem] = []
        for outcome in self.resolver.resolve_outcomes(collection):
            if outcome.status == ResolveStatus.RESOLVED and outcome.item is not None:
                items.append(outcome.item)
            else:
                stats.unresolved += 1
                logger.debug(f"Not processing {outcome.media_id} ({outcome.status.value}): {outcome.reason}")

        if not items:
            logger.info(f"Was unable to fetch Plex metadata for {collection.display_title}. Skipping collection..")
            return

        for item in items:
            if cancel.is_set():
                self._cancelled(stats)
                return
            try:
                self._process_item(item, collection, stats)
            except Exception as exc:  # noqa: BLE001
                logger.exception(f"Error updating overlay for {item.media_id} - {item.title}: {exc}")
                stats.skipped_error += 1

        if self.sorter is not None and not cancel.is_set():
            try:
                moves = self.sorter.sort(collection, items)
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Sorting Plex collection {collection.display_title} failed: {exc}")
                moves = None
            if moves is not None:
                stats.sorted_items += moves
                stats.sorted_collections.append(collection.display_title)

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #
    def _process_item(self, item: TrackedItem, collection: MaintainerrCollection, stats: RunStats) -> None:
        logger.debug(f"Processing item {item.media_id}:{item.title} from collection {collection.display_title}")
        now = self.clock()
        state = self.store.get(item.media_id) or OverlayState(media_id=item.media_id)
        state.title = item.title
        state.library_section_id = item.library_id
        state.media_type = item.media_type
        state.is_child = item.is_child
        state.parent_id = item.parent_id

        overlay_text = self.formatter.format(item.expiration_date, now=now)
        text_changed = overlay_text != state.overlay_text

        if not (self.reapply_overlays or text_changed or not state.overlay_applied):
            state.last_checked = now
            self.store.upsert(state)
            stats.skipped += 1
            return

        if not self._apply(state, item, collection, overlay_text, now):
            stats.skipped_error += 1
            return

        self.store.upsert(state)
        stats.applied += 1
        logger.info(f"Applied overlay '{overlay_text}' and tracked state for {item.media_id} - {item.title}")
        for hook in self.post_apply_hooks:
            try:
                hook(state, item)
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Post-apply hook failed for {item.media_id}: {exc}")
        if self.post_apply_hooks:
            # Hooks may update the record, e.g. the label flag
            self.store.upsert(state)

    def _apply(
        self,
        state: OverlayState,
        item: TrackedItem,
        collection: MaintainerrCollection,
        overlay_text: str,
        now: datetime,
    ) -> bool:
        live_dir = item.asset_directory(self.assets_root)
        backup_dir = item.asset_directory(self.backups_root)
        if not self.assets.ensure_directory(live_dir):
            logger.info(f"Failed to create media file directory. Path: {live_dir}")
            return False
        if not self.assets.ensure_directory(backup_dir):
            logger.info(f"Failed to create backup file directory. Path: {backup_dir}")
            return False

        live = AssetLocation(live_dir, item.base_filename)
        try:
            backup = self.assets.ensure_backed_up_asset(backup_dir, live, item.base_filename, item.poster_url)
            live = live.with_extension(backup.extension)
            # Always draw on the pristine copy; the live poster may already carry a badge
            rendered = self.renderer.render(item.media_id, backup.path, overlay_text)
            _swap_into_place(rendered, live.path)
        except (AssetUnavailableError, RenderError, OSError) as exc:
            logger.error(f"Could not apply overlay for {item.media_id} - {item.title}: {exc}")
            return False

        state.collection_id = collection.id
        state.poster_path = str(live.path)
        state.backup_path = str(backup.path)
        state.overlay_applied = True
        state.overlay_text = overlay_text
        state.last_known_expiration = item.expiration_date
        state.last_checked = now
        state.label_exists = item.label_exists
        return True

    # ------------------------------------------------------------------ #
    # Restores
    # ------------------------------------------------------------------ #
    def _restore_orphans(self, collections: List[MaintainerrCollection], stats: RunStats, cancel: threading.Event) -> None:
        current_ids = {m.plex_id for c in collections for m in c.media}
        for state in self.store.pending_restores(current_ids):
            if cancel.is_set():
                self._cancelled(stats)
                return
            if self._restore(state):
                self.store.remove(state.media_id)
                stats.removed += 1
                logger.info(f"Restored original poster for {state.media_id} - {state.title} (no longer in Maintainerr)")

    def _restore_all(self, stats: RunStats, cancel: threading.Event) -> None:
        for state in self.store.applied():
            if cancel.is_set():
                self._cancelled(stats)
                return
            if self._restore(state):
                state.overlay_applied = False
                state.last_checked = self.clock()
                self.store.upsert(state)
                stats.removed += 1
                logger.info(f"Restored original poster for {state.media_id} - {state.title}")

    def _restore(self, state: OverlayState) -> bool:
        try:
            restored = self.assets.restore_poster(state.backup_path, state.poster_path)
        except OSError as exc:
            logger.error(f"Failed to restore poster for {state.media_id} - {state.title}: {exc}")
            return False
        if not restored:
            logger.warning(f"No backup found to restore {state.media_id} - {state.title} at {state.backup_path}")
            return False

        for hook in self.post_restore_hooks:
            try:
                hook(state)
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Post-restore hook failed for {state.media_id}: {exc}")
        return True

    @staticmethod
    def _cancelled(stats: RunStats) -> RunStats:
        logger.info("Manual termination requested..")
        stats.cancelled = True
        return stats


def _swap_into_place(rendered: Path, target: Path) -> None:
    """Replace `target` with `rendered` in one rename, then drop the temp file."""
    staging = target.with_name(f".{target.name}.partial")
    try:
        shutil.copyfile(rendered, staging)
        os.replace(staging, target)
    finally:
        if staging.exists():
            staging.unlink()
        if rendered.exists():
            rendered.unlink()
