"""Poster files on disk: finding them, keeping a pristine backup, and putting it back."""
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, Optional

from core.assets import BACKUP_SUFFIX, AssetLocation, is_image_file
from core.errors import AssetUnavailableError
from utils.http import HttpError
from utils.logger import get_logger

logger = get_logger(__name__)

# (poster url, target directory, file stem) -> downloaded file
PosterFetcher = Callable[[str, Path, str], Path]


class AssetManager:
    def __init__(self, fetch_poster: Optional[PosterFetcher], temp_dir: Path | str):
        self.fetch_poster = fetch_poster
        self.temp_dir = Path(temp_dir)

    @staticmethod
    def ensure_directory(path: Path) -> bool:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning(f"Could not create directory {path}: {exc}")
            return False
        return True

    def ensure_backed_up_asset(
        self,
        backup_dir: Path,
        live_asset: AssetLocation,
        base_filename: str,
        fallback_url: Optional[str],
    ) -> AssetLocation:
        """
        Return the pristine backup of a poster, creating it if needed.

        1. `<base>.original.<ext>` already in the backup dir: trusted as-is, never rewritten.
        2. `<base>.<ext>` in the live asset dir: copied once into the backup dir.
        3. Nothing on disk: fetched from Plex and written to both places.
        """
        backup = AssetLocation(Path(backup_dir), f"{base_filename}{BACKUP_SUFFIX}")

        existing_backup = backup.find_existing()
        if existing_backup is not None:
            logger.debug(f"Using existing backup {existing_backup}")
            return backup.with_extension(existing_backup.suffix)

        existing_poster = live_asset.find_existing()
        if existing_poster is not None:
            backup = backup.with_extension(existing_poster.suffix)
            shutil.copyfile(existing_poster, backup.path)
            logger.info(f"Backed up original poster {existing_poster} → {backup.path}")
            return backup

        if not fallback_url or self.fetch_poster is None:
            raise AssetUnavailableError(f"No poster on disk for {live_asset.directory / base_filename} and no URL to fetch one")

        try:
            downloaded = self.fetch_poster(fallback_url, self.temp_dir, f"{base_filename}_download")
        except HttpError as exc:
            raise AssetUnavailableError(f"Could not fetch original poster for {base_filename}: {exc}") from exc

        try:
            if not downloaded.exists() or not is_image_file(downloaded):
                raise AssetUnavailableError(f"Downloaded poster {downloaded} is not an image")
            backup = backup.with_extension(downloaded.suffix)
            live = live_asset.with_extension(downloaded.suffix)
            shutil.copyfile(downloaded, live.path)
            shutil.copyfile(downloaded, backup.path)
            logger.info(f"Fetched original poster from Plex → {live.path}")
        finally:
            if downloaded.exists():
                downloaded.unlink()
        return backup

    @staticmethod
    def restore_poster(backup_path: Path | str, target_path: Path | str) -> bool:
        """Copy the backup over the live poster and delete the backup. False if there is no backup."""
        if not backup_path or not target_path:
            return False
        backup_path = Path(backup_path)
        target_path = Path(target_path)
        if not backup_path.is_file():
            return False

        target_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(backup_path, target_path)
        backup_path.unlink()
        logger.debug(f"Restored {target_path} from {backup_path}")
        return True
