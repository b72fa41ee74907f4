from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional


class MediaType(IntEnum):
    """Item kinds. Values match Maintainerr collection types and Plex metadata type codes."""

    MOVIE = 1
    SHOW = 2
    SEASON = 3
    EPISODE = 4

    @classmethod
    def from_value(cls, value: Any) -> Optional["MediaType"]:
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return None


def parse_timestamp(value: Any) -> datetime:
    """Parse Maintainerr/ISO timestamps into aware UTC datetimes."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class MaintainerrMedia:
    plex_id: int
    add_date: datetime

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "MaintainerrMedia":
        return cls(plex_id=int(payload["plexId"]), add_date=parse_timestamp(payload["addDate"]))


@dataclass
class MaintainerrCollection:
    """
    A Maintainerr collection: a group of media that will be deleted
    `delete_after_days` after each item was added to it.
    """
    id: int
    title: Optional[str]
    is_active: bool
    delete_after_days: int
    type: int
    plex_id: int = 0
    library_id: int = 0
    media: List[MaintainerrMedia] = field(default_factory=list)

    @property
    def media_type(self) -> Optional[MediaType]:
        return MediaType.from_value(self.type)

    @property
    def display_title(self) -> str:
        if self.title and self.title.strip():
            return self.title
        if self.plex_id:
            return f"Collection {self.plex_id}"
        return "Unknown Collection"

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "MaintainerrCollection":
        return cls(
            id=int(payload.get("id", 0)),
            title=payload.get("title"),
            is_active=bool(payload.get("isActive", False)),
            delete_after_days=int(payload.get("deleteAfterDays") or 0),
            type=int(payload.get("type") or 0),
            plex_id=int(payload.get("plexId") or 0),
            library_id=int(payload.get("libraryId") or 0),
            media=[MaintainerrMedia.from_api(m) for m in payload.get("media") or []],
        )


@dataclass
class PlexMetadata:
    """The subset of a Plex metadata record needed to locate an item's poster."""
    rating_key: int
    title: str
    media_type: Optional[MediaType] = None
    library_section_id: Optional[int] = None
    library_section_title: Optional[str] = None
    file_path: Optional[str] = None        # Movies / episodes
    location_path: Optional[str] = None    # Shows
    thumb: Optional[str] = None
    parent_rating_key: Optional[int] = None
    grandparent_rating_key: Optional[int] = None
    index: Optional[int] = None
    parent_index: Optional[int] = None
    parent_title: Optional[str] = None
    grandparent_title: Optional[str] = None
    labels: List[str] = field(default_factory=list)


@dataclass
class TrackedItem:
    """A collection entry resolved to a concrete poster location."""
    media_id: int
    title: str
    media_type: MediaType
    library_name: str
    library_id: int
    relative_path: str
    base_filename: str          # Extension-less, e.g. "poster", "Season01", "S01E02"
    poster_url: Optional[str]
    expiration_date: datetime
    add_date: Optional[datetime] = None
    is_child: bool = False
    parent_id: Optional[int] = None
    label_exists: bool = False

    def asset_directory(self, root: Path | str) -> Path:
        directory = Path(root) / self.library_name
        if self.relative_path:
            directory = directory / self.relative_path
        return directory


@dataclass
class OverlayState:
    """Persistent record of what has been done to one item's poster."""
    media_id: int
    title: str = ""
    collection_id: Optional[int] = None
    media_type: Optional[MediaType] = None
    library_section_id: Optional[int] = None
    poster_path: str = ""
    backup_path: str = ""
    overlay_applied: bool = False
    overlay_text: Optional[str] = None
    last_known_expiration: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    is_child: bool = False
    parent_id: Optional[int] = None
    label_exists: bool = False


class ResolveStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"    # No library root matched; nothing to do for it
    ERROR = "error"              # Plex lookup failed


@dataclass
class ResolveOutcome:
    media_id: int
    media_type: MediaType
    status: ResolveStatus
    item: Optional[TrackedItem] = None
    reason: str = ""


@dataclass
class RunStats:
    removed: int = 0
    applied: int = 0
    skipped: int = 0
    skipped_error: int = 0
    unresolved: int = 0
    sorted_items: int = 0
    sorted_collections: List[str] = field(default_factory=list)
    cancelled: bool = False

    def __str__(self) -> str:
        sorted_names = ", ".join(f"'{name}'" for name in self.sorted_collections) or "no"
        return (
            f"{self.removed} removed, {self.applied} applied, {self.skipped} skipped, "
            f"{self.skipped_error} error skips, {self.unresolved} unresolved, "
            f"and sorted {sorted_names} collections ({self.sorted_items} moves)"
        )
