from __future__ import annotations

from typing import Optional, Protocol

from core.models import MediaType, OverlayState, TrackedItem
from utils.logger import get_logger

logger = get_logger(__name__)


class LabelingMediaServer(Protocol):
    def remove_label(self, section_id: int, item_id: int, media_type: Optional[MediaType], label: str) -> bool: ...


class LabelCleanup:
    """
    Removes the Kometa overlay label from items we manage, so Kometa does not
    stack its own overlay on top of ours. Runs after state has been committed.
    """

    def __init__(self, server: LabelingMediaServer, label: str = "Overlay"):
        self.server = server
        self.label = label

    def after_apply(self, state: OverlayState, item: TrackedItem) -> None:
        if not item.label_exists:
            return
        self._remove(state)
        state.label_exists = False

    def after_restore(self, state: OverlayState) -> None:
        self._remove(state)

    def _remove(self, state: OverlayState) -> None:
        if state.library_section_id is None:
            logger.debug(f"No library section recorded for {state.media_id}; leaving label '{self.label}' alone")
            return
        if not self.server.remove_label(state.library_section_id, state.media_id, state.media_type, self.label):
            logger.info(f"Failed to remove Kometa label '{self.label}' from {state.media_id} - {state.title}")
