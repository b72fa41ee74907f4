"""
Draws the "leaving soon" badge onto posters.

Layouts are authored against a 1000px wide poster; every dimension is scaled by
`image_width / 1000` so the badge looks the same at any resolution.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont

from core.errors import FontNotFoundError, RenderError
from utils.logger import get_logger

logger = get_logger(__name__)

REFERENCE_WIDTH = 1000
DEFAULT_FONT_NAME = "AvenirNextLTPro-Bold"

FontLoader = Callable[[int], ImageFont.FreeTypeFont]


@dataclass
class OverlayStyle:
    font_dir: Path
    font_name: str = DEFAULT_FONT_NAME
    font_color: str = "#FFFFFF"
    font_transparency: float = 1.0
    back_color: str = "#B20710"
    back_transparency: float = 1.0
    font_size: float = 65
    padding: int = 15
    back_radius: int = 20
    horizontal_offset: int = 0
    horizontal_align: str = "center"
    vertical_offset: int = 0
    vertical_align: str = "bottom"
    back_width: int = 1920
    back_height: int = 100

    @classmethod
    def from_config(cls, config: dict) -> "OverlayStyle":
        overlay = config.get("overlay", {})
        return cls(
            font_dir=Path(config["paths"]["fonts"]),
            font_name=overlay.get("font_name", DEFAULT_FONT_NAME),
            font_color=overlay.get("font_color", "#FFFFFF"),
            font_transparency=float(overlay.get("font_transparency", 1.0)),
            back_color=overlay.get("back_color", "#B20710"),
            back_transparency=float(overlay.get("back_transparency", 1.0)),
            font_size=float(overlay.get("font_size", 65)),
            padding=int(overlay.get("padding", 15)),
            back_radius=int(overlay.get("back_radius", 20)),
            horizontal_offset=int(overlay.get("horizontal_offset", 0)),
            horizontal_align=str(overlay.get("horizontal_align", "center")).lower(),
            vertical_offset=int(overlay.get("vertical_offset", 0)),
            vertical_align=str(overlay.get("vertical_align", "bottom")).lower(),
            back_width=int(overlay.get("back_width", 1920)),
            back_height=int(overlay.get("back_height", 100)),
        )


@dataclass(frozen=True)
class TextMetrics:
    width: float
    ascent: float
    descent: float


def scale_factor(image_width: int) -> float:
    return image_width / REFERENCE_WIDTH


def scaled_font_size(style: OverlayStyle, image_width: int) -> int:
    return max(1, int(style.font_size * scale_factor(image_width)))


class OverlayGeometry:
    """Back-plate and text placement for one image. Pure arithmetic, no drawing."""

    def __init__(self, image_width: int, image_height: int, metrics: TextMetrics, style: OverlayStyle):
        self.image_width = image_width
        self.image_height = image_height
        self.metrics = metrics
        self.style = style
        self.scale = scale_factor(image_width)

    def _scaled(self, value: float) -> int:
        return int(value * self.scale)

    @property
    def font_size(self) -> int:
        return scaled_font_size(self.style, self.image_width)

    @property
    def padding(self) -> int:
        return self._scaled(self.style.padding)

    @property
    def back_radius(self) -> int:
        return self._scaled(self.style.back_radius)

    @property
    def horizontal_offset(self) -> int:
        return self._scaled(self.style.horizontal_offset)

    @property
    def vertical_offset(self) -> int:
        return self._scaled(self.style.vertical_offset)

    @property
    def padding_y(self) -> int:
        # Descent keeps letters like "g" and "y" inside the plate
        return self.padding + int(abs(self.metrics.descent))

    @property
    def back_width(self) -> int:
        if self.style.back_width > 0:
            width = self._scaled(self.style.back_width)
        else:
            width = int(self.metrics.width + self.padding * 2)
        return min(width, self.image_width)

    @property
    def back_height(self) -> int:
        if self.style.back_height > 0:
            height = self._scaled(self.style.back_height)
        else:
            height = int(self.metrics.ascent + self.padding_y * 2)
        return min(height, self.image_height)

    @property
    def x(self) -> int:
        align = self.style.horizontal_align
        if align == "left":
            x = self.horizontal_offset
        elif align == "center":
            x = (self.image_width - self.back_width) // 2 + self.horizontal_offset
        else:
            x = self.image_width - self.back_width - self.horizontal_offset
        return _clamp(x, 0, self.image_width - self.back_width)

    @property
    def y(self) -> int:
        align = self.style.vertical_align
        if align == "top":
            y = self.vertical_offset
        elif align == "center":
            y = (self.image_height - self.back_height) // 2 + self.vertical_offset
        else:
            y = self.image_height - self.back_height - self.vertical_offset
        return _clamp(y, 0, self.image_height - self.back_height)

    @property
    def text_x(self) -> float:
        return self.x + self.back_width / 2

    @property
    def text_y(self) -> int:
        return self.y + self.back_height - self.padding_y

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """Inclusive pixel box of the back-plate."""
        return (self.x, self.y, self.x + self.back_width - 1, self.y + self.back_height - 1)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, max(high, low)))


def resolve_font_path(style: OverlayStyle) -> Path:
    font_file = style.font_dir / f"{style.font_name}.ttf"
    if not font_file.exists():
        fallback = style.font_dir / f"{DEFAULT_FONT_NAME}.ttf"
        if fallback.exists():
            logger.warning(f"Font {font_file} not found, falling back to {fallback}")
        font_file = fallback
    if not font_file.exists():
        raise FontNotFoundError(
            f"Could not locate suitable font file using {style.font_dir}/{style.font_name}.ttf"
        )
    return font_file


def measure_text(text: str, font: ImageFont.FreeTypeFont) -> TextMetrics:
    width = font.getlength(text)
    ascent, descent = font.getmetrics()
    if not text.strip() or width <= 0:
        raise RenderError(f"Could not determine the size of overlay text '{text}'. Check configuration")
    return TextMetrics(width=width, ascent=ascent, descent=descent)


def _rgba(color: str, transparency: float) -> Tuple[int, int, int, int]:
    rgb = ImageColor.getrgb(color)[:3]
    return (*rgb, int(round(transparency * 255)))


class OverlayRenderer:
    def __init__(self, style: OverlayStyle, temp_dir: Path | str, font_loader: Optional[FontLoader] = None):
        """
        style = badge appearance
        temp_dir = where rendered posters are written before being swapped into place
        font_loader = builds a font for a pixel size; defaults to the configured TrueType file
        """
        self.style = style
        self.temp_dir = Path(temp_dir)
        self._font_loader = font_loader

    @classmethod
    def from_config(cls, config: dict) -> "OverlayRenderer":
        return cls(OverlayStyle.from_config(config), temp_dir=config["paths"]["temp"])

    def load_font(self, size: int) -> ImageFont.FreeTypeFont:
        if self._font_loader is not None:
            return self._font_loader(size)
        return ImageFont.truetype(str(resolve_font_path(self.style)), size)

    def geometry_for(self, width: int, height: int, text: str) -> Tuple[OverlayGeometry, ImageFont.FreeTypeFont]:
        font = self.load_font(scaled_font_size(self.style, width))
        metrics = measure_text(text, font)
        return OverlayGeometry(width, height, metrics, self.style), font

    def render(self, media_id: int, image_path: Path | str, text: str) -> Path:
        """
        Draw the badge onto a copy of `image_path`.
        Returns the path of the rendered temp file; the input is never modified.
        """
        image_path = Path(image_path)
        try:
            with Image.open(image_path) as source:
                source.load()
                has_alpha = "A" in source.getbands()
                poster = source.convert("RGBA")
        except OSError as e:
            raise RenderError(f"Could not read image {image_path}: {e}") from e

        geometry, font = self.geometry_for(poster.width, poster.height, text)

        layer = Image.new("RGBA", poster.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        back_fill = _rgba(self.style.back_color, self.style.back_transparency)
        radius = min(geometry.back_radius, geometry.back_width // 2, geometry.back_height // 2)
        if radius > 0:
            draw.rounded_rectangle(geometry.box, radius=radius, fill=back_fill)
        else:
            draw.rectangle(geometry.box, fill=back_fill)

        draw.text(
            (geometry.text_x, geometry.text_y),
            text,
            font=font,
            fill=_rgba(self.style.font_color, self.style.font_transparency),
            anchor="ms",
        )

        result = Image.alpha_composite(poster, layer)
        extension = image_path.suffix.lower() or ".jpg"
        if extension in (".jpg", ".jpeg") or not has_alpha:
            result = result.convert("RGB")

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        output_file = self.temp_dir / f"{media_id}_temp{extension}"
        try:
            result.save(output_file)
        except (OSError, ValueError) as e:
            raise RenderError(f"Could not write rendered image {output_file}: {e}") from e

        logger.debug(f"Overlay '{text}' rendered for {media_id} → {output_file}")
        return output_file
