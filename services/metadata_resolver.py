"""
Resolves Maintainerr collection entries into poster locations inside the
Kometa-style asset tree.

Resolution happens in two passes:

1. `expand_entries` walks show -> season -> episode hierarchies (when enabled)
   and returns a flat list of entries annotated with their parent.
2. One `ItemResolver` per media type turns each entry's Plex metadata into a
   library-relative folder and a poster base filename.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from core.models import (
    MaintainerrCollection,
    MaintainerrMedia,
    MediaType,
    PlexMetadata,
    ResolveOutcome,
    ResolveStatus,
    TrackedItem,
)
from utils.logger import get_logger

logger = get_logger(__name__)

POSTER_BASE_FILENAME = "poster"


class MediaServer(Protocol):
    def get_metadata(self, rating_key: int) -> Optional[PlexMetadata]: ...

    def list_library_locations(self) -> Optional[Dict[int, List[str]]]: ...

    def list_children(self, rating_key: int) -> List[int]: ...


class UnresolvedItem(Exception):
    """The item is not inside any known library root. Not an error; nothing to overlay."""


class ResolutionError(Exception):
    """Plex metadata needed to place the poster is missing or unavailable."""


class LibraryCache:
    """
    Plex library section id -> root folders. Fetched at most once per run and
    handed to the resolver explicitly.
    """

    def __init__(self, fetch_locations: Callable[[], Optional[Dict[int, List[str]]]]):
        self._fetch_locations = fetch_locations
        self._locations: Optional[Dict[int, List[str]]] = None

    @property
    def locations(self) -> Dict[int, List[str]]:
        if self._locations is None:
            fetched = self._fetch_locations()
            if fetched is None:
                raise ResolutionError("Plex library metadata could not be retrieved")
            self._locations = {int(k): list(v) for k, v in fetched.items()}
            logger.debug(f"Cached root folders for {len(self._locations)} Plex libraries")
        return self._locations

    def roots_for(self, section_id: Optional[int]) -> List[str]:
        if section_id is None:
            return []
        return self.locations.get(int(section_id), [])


@dataclass(frozen=True)
class LibraryMatch:
    section_id: int
    library_name: str
    root: str
    relative_path: str     # Path below the library root, '/' separated, no leading slash


def match_library(libraries: LibraryCache, meta: PlexMetadata, path: str) -> LibraryMatch:
    roots = [root for root in libraries.roots_for(meta.library_section_id) if root and path.startswith(root)]
    if not roots:
        raise UnresolvedItem(f"'{path}' is not under any root folder of library {meta.library_section_id}")
    if not meta.library_section_title:
        raise ResolutionError(f"Plex item {meta.rating_key} has no library title")

    root = max(roots, key=len)
    remainder = path[len(root):].replace("\\", "/").strip("/")
    return LibraryMatch(int(meta.library_section_id), meta.library_section_title, root, remainder)


@dataclass(frozen=True)
class ExpandedEntry:
    media_id: int
    media_type: MediaType
    add_date: datetime
    is_child: bool = False
    parent_id: Optional[int] = None


def expand_entries(
    media_type: MediaType,
    media: Iterable[MaintainerrMedia],
    children_of: Callable[[int], List[int]],
    include_seasons: bool = False,
    include_episodes: bool = False,
) -> List[ExpandedEntry]:
    """Flatten collection entries, adding seasons of shows and episodes of seasons when enabled."""

    def expand(kind: MediaType, media_id: int, add_date: datetime, parent_id: Optional[int]) -> List[ExpandedEntry]:
        entries = [ExpandedEntry(media_id, kind, add_date, parent_id is not None, parent_id)]
        child_kind = None
        if kind == MediaType.SHOW and include_seasons:
            child_kind = MediaType.SEASON
        elif kind == MediaType.SEASON and include_episodes:
            child_kind = MediaType.EPISODE
        if child_kind is not None:
            for child_id in children_of(media_id):
                entries.extend(expand(child_kind, child_id, add_date, media_id))
        return entries

    flattened: List[ExpandedEntry] = []
    for entry in media:
        flattened.extend(expand(media_type, entry.plex_id, entry.add_date, None))
    return flattened


@dataclass(frozen=True)
class ResolvedLocation:
    title: str
    library_id: int
    library_name: str
    relative_path: str
    base_filename: str


def _require(value, what: str, meta: PlexMetadata):
    if value is None or value == "":
        raise ResolutionError(f"Plex item {meta.rating_key} ({meta.title}) has no {what}")
    return value


class ItemResolver:
    media_type: MediaType

    def __init__(self, server: MediaServer, libraries: LibraryCache):
        self.server = server
        self.libraries = libraries

    def locate(self, meta: PlexMetadata) -> ResolvedLocation:
        raise NotImplementedError

    def _show_folder(self, meta: PlexMetadata, show: PlexMetadata) -> LibraryMatch:
        match = match_library(self.libraries, meta, _require(show.location_path, "show folder", show))
        if not match.relative_path:
            raise UnresolvedItem(f"Show folder of {meta.title} is the library root itself")
        return match

    def _fetch(self, rating_key: Optional[int], what: str, meta: PlexMetadata) -> PlexMetadata:
        related = self.server.get_metadata(_require(rating_key, f"{what} id", meta))
        if related is None:
            raise ResolutionError(f"Could not fetch {what} {rating_key} of Plex item {meta.rating_key}")
        return related


class MovieResolver(ItemResolver):
    media_type = MediaType.MOVIE

    def locate(self, meta: PlexMetadata) -> ResolvedLocation:
        match = match_library(self.libraries, meta, _require(meta.file_path, "media file", meta))
        folder = posixpath.dirname(match.relative_path)
        if not folder:
            raise UnresolvedItem(f"{meta.title} sits directly in the library root; no folder for a poster")
        return ResolvedLocation(meta.title, match.section_id, match.library_name, folder, POSTER_BASE_FILENAME)


class ShowResolver(ItemResolver):
    media_type = MediaType.SHOW

    def locate(self, meta: PlexMetadata) -> ResolvedLocation:
        match = self._show_folder(meta, meta)
        return ResolvedLocation(meta.title, match.section_id, match.library_name, match.relative_path, POSTER_BASE_FILENAME)


class SeasonResolver(ItemResolver):
    media_type = MediaType.SEASON

    def locate(self, meta: PlexMetadata) -> ResolvedLocation:
        # Seasons carry no folder of their own; the show's folder holds SeasonNN posters
        show = self._fetch(meta.parent_rating_key, "show", meta)
        match = self._show_folder(meta, show)
        season = _require(meta.index, "season number", meta)
        return ResolvedLocation(
            title=f"{show.title} - {meta.title}",
            library_id=match.section_id,
            library_name=match.library_name,
            relative_path=match.relative_path,
            base_filename=f"Season{season:02d}",
        )


class EpisodeResolver(ItemResolver):
    media_type = MediaType.EPISODE

    def locate(self, meta: PlexMetadata) -> ResolvedLocation:
        show = self._fetch(meta.grandparent_rating_key, "show", meta)
        match = self._show_folder(meta, show)
        episode = _require(meta.index, "episode number", meta)
        code = f"S{meta.parent_index or 0:02d}E{episode:02d}"
        return ResolvedLocation(
            title=f"{show.title} - {code} - {meta.title}",
            library_id=match.section_id,
            library_name=match.library_name,
            relative_path=match.relative_path,
            base_filename=code,
        )


class MetadataResolver:
    def __init__(
        self,
        server: MediaServer,
        libraries: LibraryCache,
        include_seasons: bool = False,
        include_episodes: bool = False,
        label: Optional[str] = None,
    ):
        """
        include_seasons = expand shows into their seasons
        include_episodes = expand seasons into their episodes
        label = Plex label to look for on each item (None disables the check)
        """
        self.server = server
        self.libraries = libraries
        self.include_seasons = include_seasons
        self.include_episodes = include_episodes
        self.label = label
        self._resolvers: Dict[MediaType, ItemResolver] = {
            resolver.media_type: resolver
            for resolver in (
                MovieResolver(server, libraries),
                ShowResolver(server, libraries),
                SeasonResolver(server, libraries),
                EpisodeResolver(server, libraries),
            )
        }

    @classmethod
    def from_config(cls, config: dict, server: MediaServer, libraries: LibraryCache) -> "MetadataResolver":
        behavior = config.get("behavior", {})
        return cls(
            server,
            libraries,
            include_seasons=bool(behavior.get("overlay_show_seasons", False)),
            include_episodes=bool(behavior.get("overlay_season_episodes", False)),
            label=behavior.get("kometa_label", "Overlay") if behavior.get("manage_kometa_label") else None,
        )

    def resolve(self, collection: MaintainerrCollection) -> List[TrackedItem]:
        return [o.item for o in self.resolve_outcomes(collection) if o.status == ResolveStatus.RESOLVED]

    def resolve_outcomes(self, collection: MaintainerrCollection) -> List[ResolveOutcome]:
        media_type = collection.media_type
        if media_type is None:
            logger.warning(f"Collection {collection.display_title} has unsupported type {collection.type}")
            return []
        if not collection.media:
            logger.info(f"No items found for collection: {collection.display_title}")
            return []

        try:
            entries = expand_entries(
                media_type,
                collection.media,
                self._children_of,
                include_seasons=self.include_seasons,
                include_episodes=self.include_episodes,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Could not expand children for collection {collection.display_title}: {exc}")
            return [
                ResolveOutcome(m.plex_id, media_type, ResolveStatus.ERROR, reason=str(exc))
                for m in collection.media
            ]
        return [self._resolve_entry(entry, collection) for entry in entries]

    def _children_of(self, rating_key: int) -> List[int]:
        logger.debug(f"Including children of {rating_key}")
        return self.server.list_children(rating_key)

    def _resolve_entry(self, entry: ExpandedEntry, collection: MaintainerrCollection) -> ResolveOutcome:
        logger.debug(f"Fetching Plex metadata for {entry.media_id}")
        try:
            meta = self.server.get_metadata(entry.media_id)
            if meta is None:
                raise ResolutionError(f"Plex metadata for {entry.media_id} is unavailable")
            location = self._resolvers[entry.media_type].locate(meta)
        except UnresolvedItem as exc:
            logger.info(f"Plex item {entry.media_id} not matched to a library folder: {exc}")
            return ResolveOutcome(entry.media_id, entry.media_type, ResolveStatus.UNRESOLVED, reason=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Skipping {entry.media_id} due to error: {exc}")
            return ResolveOutcome(entry.media_id, entry.media_type, ResolveStatus.ERROR, reason=str(exc))

        item = TrackedItem(
            media_id=entry.media_id,
            title=location.title,
            media_type=entry.media_type,
            library_name=location.library_name,
            library_id=location.library_id,
            relative_path=location.relative_path,
            base_filename=location.base_filename,
            poster_url=meta.thumb,
            expiration_date=entry.add_date + timedelta(days=collection.delete_after_days),
            add_date=entry.add_date,
            is_child=entry.is_child,
            parent_id=entry.parent_id,
            label_exists=bool(self.label and self.label in meta.labels),
        )
        if not entry.is_child:
            logger.info(
                f"Grabbed metadata for {item.media_type.name.lower()} {item.media_id} '{item.title}' "
                f"→ {item.library_name}/{item.relative_path} (expires {item.expiration_date:%Y-%m-%d})"
            )
        return ResolveOutcome(entry.media_id, entry.media_type, ResolveStatus.RESOLVED, item=item)
