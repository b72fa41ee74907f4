"""Exception types shared across the overlay manager."""
from __future__ import annotations

from typing import Iterable, List


class ConfigError(Exception):
    """Raised when the configuration is unusable. Collects every problem found."""

    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems) or "Invalid configuration")


class CollectionSourceError(Exception):
    """Maintainerr could not be reached or returned something unreadable."""


class AssetUnavailableError(Exception):
    """No poster could be found on disk or fetched from Plex."""


class RenderError(Exception):
    """The overlay could not be drawn onto the poster."""


class FontNotFoundError(RenderError, FileNotFoundError):
    pass
