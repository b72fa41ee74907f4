from __future__ import annotations

from typing import List, Optional, Protocol

from core.models import MaintainerrCollection, TrackedItem
from utils.logger import get_logger

logger = get_logger(__name__)

SORT_DIRECTIONS = ("asc", "desc")


class SortableMediaServer(Protocol):
    def find_collection(self, section_id: int, title: Optional[str]) -> Optional[int]: ...

    def set_collection_custom_sort(self, collection_key: int) -> bool: ...

    def move_collection_item(self, collection_key: int, item_id: int, after_id: int) -> bool: ...


class CollectionSorter:
    """Orders a Plex collection so items leaving first (or last) come first."""

    def __init__(self, server: SortableMediaServer, direction: str = "asc"):
        direction = (direction or "asc").lower()
        if direction not in SORT_DIRECTIONS:
            raise ValueError(f"Unknown sort direction '{direction}'")
        self.server = server
        self.direction = direction

    @classmethod
    def from_config(cls, config: dict, server: SortableMediaServer) -> "CollectionSorter":
        return cls(server, config.get("behavior", {}).get("sort_direction", "asc"))

    def sort(self, collection: MaintainerrCollection, items: List[TrackedItem]) -> Optional[int]:
        """
        Reorder the Plex collection matching `collection` by expiration date.
        Returns the number of moves made, or None when the collection could not be sorted.
        """
        collection_key = self.server.find_collection(collection.library_id, collection.title)
        if collection_key is None:
            logger.error(
                f"Failed to find matching Plex collection for library {collection.library_id}, "
                f"Maintainerr collection: {collection.display_title}"
            )
            return None

        if not self.server.set_collection_custom_sort(collection_key):
            logger.error(f"Failed to set Plex collection '{collection.display_title}' to custom sort mode")
            return None

        # Seasons and episodes added by expansion are not members of the Plex collection
        member_ids = {m.plex_id for m in collection.media}
        members = [item for item in items if item.media_id in member_ids and not item.is_child]
        ordered = sorted(members, key=lambda i: i.expiration_date, reverse=self.direction == "desc")

        moves = 0
        for predecessor, item in zip(ordered, ordered[1:]):
            if not self.server.move_collection_item(collection_key, item.media_id, predecessor.media_id):
                logger.error(f"Error encountered sorting Plex collection {collection.display_title}")
                return None
            moves += 1
            logger.debug(f"Moved {item.title}({item.media_id}) after {predecessor.title}({predecessor.media_id})")

        logger.info(f"Sorted Plex collection '{collection.display_title}' ({moves} moves, {self.direction})")
        return moves
