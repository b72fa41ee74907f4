from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterator, List

import pytest
from loguru import logger
from PIL import ImageFont

from core.state_store import OverlayStateStore
from services.asset_manager import AssetManager
from services.metadata_resolver import LibraryCache, MetadataResolver
from services.overlay_renderer import OverlayRenderer, OverlayStyle
from services.overlay_text import OverlayTextFormatter
from services.reconciler import ReconciliationEngine
from tests.helpers import NOW, FakeCollectionSource, FakeMediaServer


@pytest.fixture
def font_loader() -> Callable[[int], ImageFont.FreeTypeFont]:
    """Pillow's bundled scalable font, so rendering works without a TTF on disk."""

    return lambda size: ImageFont.load_default(size=size)


@pytest.fixture
def server() -> FakeMediaServer:
    fake = FakeMediaServer()
    fake.libraries = {1: ["/media/movies"], 2: ["/media/tv"]}
    return fake


@pytest.fixture
def log_messages() -> Iterator[List[str]]:
    """Collect Loguru messages emitted during the test."""

    messages: List[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def make_engine(
    tmp_path: Path, server: FakeMediaServer, font_loader: Callable[[int], ImageFont.FreeTypeFont]
) -> Callable[..., ReconciliationEngine]:
    """Build an engine over the fakes; resolver options and engine overrides as keyword args."""

    def _make(source: FakeCollectionSource, resolver_options: dict | None = None, **overrides: Any) -> ReconciliationEngine:
        resolver = MetadataResolver(server, LibraryCache(server.list_library_locations), **(resolver_options or {}))
        style = OverlayStyle(font_dir=tmp_path / "fonts", font_size=40, back_height=0, back_width=0)
        options: dict = dict(
            source=source,
            resolver=resolver,
            store=OverlayStateStore(tmp_path / "state" / "overlay_state.sqlite"),
            assets=AssetManager(server.download_poster, tmp_path / "temp"),
            renderer=OverlayRenderer(style, tmp_path / "temp", font_loader=font_loader),
            formatter=OverlayTextFormatter(),
            assets_root=tmp_path / "assets",
            backups_root=tmp_path / "backups",
            clock=lambda: NOW,
        )
        options.update(overrides)
        return ReconciliationEngine(**options)

    return _make
