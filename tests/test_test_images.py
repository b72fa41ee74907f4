from __future__ import annotations

import random
from pathlib import Path

from PIL import Image

from services.overlay_renderer import OverlayRenderer, OverlayStyle
from services.overlay_text import OverlayTextFormatter
from services.test_images import gradient_poster, generate_test_images
from tests.helpers import NOW


def test_gradient_runs_from_start_to_end_colour() -> None:
    image = gradient_poster((10, 101), (0, 0, 0), (200, 100, 0))

    assert image.size == (10, 101)
    assert image.getpixel((5, 0)) == (0, 0, 0)
    assert image.getpixel((5, 100)) == (200, 100, 0)


def test_generate_test_images_writes_previews(tmp_path: Path, font_loader) -> None:
    renderer = OverlayRenderer(OverlayStyle(font_dir=tmp_path), tmp_path / "temp", font_loader=font_loader)

    created = generate_test_images(
        renderer, OverlayTextFormatter(), tmp_path / "out", count=3, rng=random.Random(1), now=NOW
    )

    assert [p.name for p in created] == [
        "20240301120000_overlay_test_00_expiration_24-03-02_final.jpg",
        "20240301120000_overlay_test_01_expiration_24-03-07_final.jpg",
        "20240301120000_overlay_test_02_expiration_24-03-12_final.jpg",
    ]
    assert sorted((tmp_path / "out").iterdir()) == sorted(created)
    with Image.open(created[0]) as image:
        assert image.size == (1000, 1500)
