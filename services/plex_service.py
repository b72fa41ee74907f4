from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from plexapi.exceptions import NotFound, PlexApiException
from plexapi.server import PlexServer
from requests.exceptions import RequestException

from core.models import MediaType, PlexMetadata
from utils.http import download_image, redact_url
from utils.logger import get_logger

logger = get_logger(__name__)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PlexService:
    def __init__(self, url: str, token: str, server: Optional[PlexServer] = None):
        self._plex = server or PlexServer(url, token)
        logger.info(f"Connected to Plex: {self._plex.friendlyName}")

    @classmethod
    def from_config(cls, config: dict):
        return cls(
            url=config["plex"]["url"],
            token=config["plex"]["token"]
        )

    def get_item_by_rating_key(self, rating_key: int):
        try:
            return self._plex.fetchItem(int(rating_key))
        except NotFound:
            logger.warning(f"Plex item ratingKey={rating_key} not found")
            return None
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to fetch item ratingKey={rating_key}: {e}")
            return None

    def get_metadata(self, rating_key: int) -> Optional[PlexMetadata]:
        item = self.get_item_by_rating_key(rating_key)
        if item is None:
            return None
        return self._to_metadata(item)

    def list_library_locations(self) -> Optional[Dict[int, List[str]]]:
        """Section id -> root folders, as Plex sees them. None when Plex cannot be reached."""
        try:
            sections = self._plex.library.sections()
        except (PlexApiException, RequestException) as e:
            logger.error(f"Failed to fetch Plex libraries: {e}")
            return None
        return {int(section.key): list(section.locations or []) for section in sections}

    def list_children(self, rating_key: int) -> List[int]:
        try:
            children = self._plex.fetchItems(f"/library/metadata/{int(rating_key)}/children")
        except (PlexApiException, RequestException) as e:
            logger.error(f"Failed to fetch children of {rating_key}: {e}")
            return []
        return [int(child.ratingKey) for child in children if getattr(child, "ratingKey", None) is not None]

    def download_poster(self, url: str, target_dir: Path, stem: str) -> Path:
        full_url = url if url.startswith("http") else self._plex.url(url, includeToken=True)
        return download_image(full_url, Path(target_dir), stem)

    def find_collection(self, section_id: int, title: Optional[str]) -> Optional[int]:
        if not title:
            return None
        try:
            section = self._plex.library.sectionByID(int(section_id))
            collection = section.collection(title)
        except (NotFound, PlexApiException, RequestException) as e:
            logger.error(f"Failed to find Plex collection '{title}' in library {section_id}: {e}")
            return None
        return int(collection.ratingKey)

    def set_collection_custom_sort(self, collection_key: int) -> bool:
        try:
            self._plex.fetchItem(int(collection_key)).sortUpdate(sort="custom")
            return True
        except (PlexApiException, RequestException, ValueError) as e:
            logger.error(f"Failed to set custom sort on collection {collection_key}: {e}")
            return False

    def move_collection_item(self, collection_key: int, item_id: int, after_id: int) -> bool:
        try:
            collection = self._plex.fetchItem(int(collection_key))
            item = self._plex.fetchItem(int(item_id))
            after = self._plex.fetchItem(int(after_id))
            collection.moveItem(item, after=after)
            return True
        except (PlexApiException, RequestException) as e:
            logger.error(f"Failed to move {item_id} after {after_id} in collection {collection_key}: {e}")
            return False

    def remove_label(self, section_id: int, item_id: int, media_type: Optional[MediaType], label: str) -> bool:
        type_code = int(media_type) if media_type is not None else int(MediaType.MOVIE)
        stub = (
            f"/library/sections/{section_id}/all?type={type_code}&id={item_id}"
            f"&includeExternalMedia=1&label[].tag.tag-={label}"
        )
        full_url = self._plex.url(stub, includeToken=True)
        try:
            response = httpx.put(full_url, timeout=15.0)
            response.raise_for_status()
            logger.debug(f"Removed label '{label}' from {item_id}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to remove label '{label}' from {item_id}: {redact_url(full_url)} - {e}")
            return False

    def _to_metadata(self, plex_item: Any) -> PlexMetadata:
        locations = list(getattr(plex_item, "locations", None) or [])
        media_type = {
            "movie": MediaType.MOVIE,
            "show": MediaType.SHOW,
            "season": MediaType.SEASON,
            "episode": MediaType.EPISODE,
        }.get(getattr(plex_item, "type", ""))
        is_folder = media_type in (MediaType.SHOW, MediaType.SEASON)

        return PlexMetadata(
            rating_key=int(getattr(plex_item, "ratingKey")),
            title=getattr(plex_item, "title", None) or "Unknown",
            media_type=media_type,
            library_section_id=_to_int(getattr(plex_item, "librarySectionID", None)),
            library_section_title=getattr(plex_item, "librarySectionTitle", None),
            file_path=None if is_folder or not locations else locations[0],
            location_path=locations[0] if is_folder and locations else None,
            thumb=getattr(plex_item, "thumb", None),
            parent_rating_key=_to_int(getattr(plex_item, "parentRatingKey", None)),
            grandparent_rating_key=_to_int(getattr(plex_item, "grandparentRatingKey", None)),
            index=_to_int(getattr(plex_item, "index", None)),
            parent_index=_to_int(getattr(plex_item, "parentIndex", None)),
            parent_title=getattr(plex_item, "parentTitle", None),
            grandparent_title=getattr(plex_item, "grandparentTitle", None),
            labels=[label.tag for label in getattr(plex_item, "labels", None) or []],
        )
