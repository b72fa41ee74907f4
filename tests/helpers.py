"""Test doubles for Plex and Maintainerr plus small image helpers."""
from __future__ import annotations

import io
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from PIL import Image

from core.errors import CollectionSourceError
from core.models import MaintainerrCollection, MaintainerrMedia, MediaType, PlexMetadata
from utils.http import HttpError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
ADDED = datetime(2024, 2, 20, 8, 30, tzinfo=timezone.utc)


def make_poster(path: Path, size: Tuple[int, int] = (200, 300), color: str = "#336699") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


def poster_bytes(size: Tuple[int, int] = (200, 300), color: str = "#336699") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


class FakeMediaServer:
    """In-memory Plex: metadata by rating key, library roots, children and poster bytes by thumb URL."""

    def __init__(self) -> None:
        self.items: Dict[int, PlexMetadata] = {}
        self.children: Dict[int, List[int]] = {}
        self.libraries: Dict[int, List[str]] = {}
        self.posters: Dict[str, bytes] = {}
        self.failing: Set[int] = set()
        self.library_calls = 0
        self.metadata_calls: List[int] = []
        self.removed_labels: List[Tuple[int, int, Optional[MediaType], str]] = []
        self.collections: Dict[Tuple[int, str], int] = {}
        self.custom_sorted: List[int] = []
        self.moves: List[Tuple[int, int, int]] = []

    def add(self, meta: PlexMetadata, poster: Optional[bytes] = None) -> PlexMetadata:
        self.items[meta.rating_key] = meta
        if poster is not None and meta.thumb:
            self.posters[meta.thumb] = poster
        return meta

    def get_metadata(self, rating_key: int) -> Optional[PlexMetadata]:
        self.metadata_calls.append(rating_key)
        if rating_key in self.failing:
            raise RuntimeError(f"Plex returned 500 for {rating_key}")
        return self.items.get(rating_key)

    def list_library_locations(self) -> Dict[int, List[str]]:
        self.library_calls += 1
        return self.libraries

    def list_children(self, rating_key: int) -> List[int]:
        return list(self.children.get(rating_key, []))

    def download_poster(self, url: str, target_dir: Path, stem: str) -> Path:
        if url not in self.posters:
            raise HttpError(f"404 for {url}")
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{stem}.jpg"
        target.write_bytes(self.posters[url])
        return target

    def remove_label(self, section_id: int, item_id: int, media_type: Optional[MediaType], label: str) -> bool:
        self.removed_labels.append((section_id, item_id, media_type, label))
        return True

    def find_collection(self, section_id: int, title: Optional[str]) -> Optional[int]:
        return self.collections.get((section_id, title or ""))

    def set_collection_custom_sort(self, collection_key: int) -> bool:
        self.custom_sorted.append(collection_key)
        return True

    def move_collection_item(self, collection_key: int, item_id: int, after_id: int) -> bool:
        self.moves.append((collection_key, item_id, after_id))
        return True


class FakeCollectionSource:
    def __init__(self, collections: Optional[List[MaintainerrCollection]] = None, error: Optional[str] = None) -> None:
        self.collections = collections or []
        self.error = error
        self.calls = 0

    def get_collections(self) -> List[MaintainerrCollection]:
        self.calls += 1
        if self.error:
            raise CollectionSourceError(self.error)
        return self.collections


def movie(rating_key: int, title: str, folder: str, section_id: int = 1, labels: Optional[List[str]] = None) -> PlexMetadata:
    return PlexMetadata(
        rating_key=rating_key,
        title=title,
        media_type=MediaType.MOVIE,
        library_section_id=section_id,
        library_section_title="Movies",
        file_path=f"/media/movies/{folder}/{title}.mkv",
        thumb=f"/library/metadata/{rating_key}/thumb/1",
        labels=labels or [],
    )


def collection(
    media_ids: List[int],
    title: str = "Leaving Soon",
    delete_after_days: int = 30,
    is_active: bool = True,
    type_: MediaType = MediaType.MOVIE,
    collection_id: int = 7,
    added: datetime = ADDED,
) -> MaintainerrCollection:
    return MaintainerrCollection(
        id=collection_id,
        title=title,
        is_active=is_active,
        delete_after_days=delete_after_days,
        type=int(type_),
        plex_id=900 + collection_id,
        library_id=1,
        media=[MaintainerrMedia(plex_id=i, add_date=added) for i in media_ids],
    )
