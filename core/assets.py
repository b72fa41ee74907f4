from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

BACKUP_SUFFIX = ".original"
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".webp"}


def is_image_file(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


@dataclass(frozen=True)
class AssetLocation:
    """
    Where a poster lives: a directory plus an extension-less base name.
    The extension is filled in once we know which image format we actually have.
    """
    directory: Path
    base_name: str
    extension: Optional[str] = None

    @property
    def path(self) -> Path:
        if not self.extension:
            raise ValueError(f"Extension for {self.directory / self.base_name} is not resolved yet")
        return self.directory / f"{self.base_name}{self.extension}"

    def with_extension(self, extension: str) -> "AssetLocation":
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        return replace(self, extension=extension)

    def backup(self, backup_directory: Path) -> "AssetLocation":
        """The matching `<base>.original` location under the backup tree."""
        return AssetLocation(Path(backup_directory), f"{self.base_name}{BACKUP_SUFFIX}", self.extension)

    def find_existing(self) -> Optional[Path]:
        """Return an existing image whose stem is exactly our base name."""
        if not self.directory.is_dir():
            return None
        for candidate in sorted(self.directory.iterdir()):
            if candidate.is_file() and candidate.stem == self.base_name and is_image_file(candidate):
                return candidate
        return None
