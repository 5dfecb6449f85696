"""
Screen Annotator
================

Burns a 1-based numeric label into the screenshot at the center of every
element so the model can refer to elements by number.

Usage:
    from app.perception.annotator import ScreenAnnotator

    annotator = ScreenAnnotator("./screenshots", dark_mode=False)
    annotated = annotator.annotate(frame_png, elements, prefix="round_3")
    print(annotated.path)
"""

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

from PIL import Image, ImageDraw, ImageFont

from app.perception.element_extractor import UIElement
from app.utils.logger import get_logger

logger = get_logger(__name__)

LABEL_PADDING = 8
DEFAULT_FONT_SIZE = 30

_BOLD_FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "DejaVuSans-Bold.ttf",
    "Arial Bold.ttf",
)

# (text color, background color) as RGBA
_LIGHT_ON_DARK = ((255, 255, 255, 255), (0, 0, 0, 128))
_DARK_ON_LIGHT = ((0, 0, 0, 255), (255, 255, 255, 255))


@dataclass
class AnnotatedScreen:
    """
    Result of annotating a frame.

    Attributes:
        path: File the labeled PNG was written to.
        png: The labeled PNG bytes.
        label_count: Number of labels drawn.
    """

    path: Path
    png: bytes
    label_count: int


def _load_font(size: int) -> ImageFont.ImageFont:
    for candidate in _BOLD_FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except (IOError, OSError):
            continue
    logger.debug("Bold TrueType font not found, using default font")
    try:
        return ImageFont.load_default(size=size)
    except TypeError:
        # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


class ScreenAnnotator:
    """
    Draws element labels onto frames and saves the result.

    The palette is light text on a translucent dark box by default, or dark
    text on a white box with ``dark_mode``.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        dark_mode: bool = False,
        font_size: int = DEFAULT_FONT_SIZE,
    ) -> None:
        """
        Initialize the annotator.

        Args:
            output_dir: Directory annotated images are written to.
            dark_mode: Use the dark-on-light palette.
            font_size: Label font size in pixels.
        """
        self.output_dir = Path(output_dir)
        self.dark_mode = dark_mode
        self.font = _load_font(font_size)

    @property
    def palette(self) -> tuple[tuple[int, ...], tuple[int, ...]]:
        return _DARK_ON_LIGHT if self.dark_mode else _LIGHT_ON_DARK

    def render(self, image: Image.Image, elements: Sequence[UIElement]) -> Image.Image:
        """
        Draw labels on a copy of ``image``.

        Args:
            image: Source frame; left untouched.
            elements: Elements in label order.

        Returns:
            A new RGB image with one label per element.
        """
        base = image.copy().convert("RGBA")
        overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
        overlay_draw = ImageDraw.Draw(overlay)
        text_color, background = self.palette

        labels = []
        for index, element in enumerate(elements, start=1):
            label = str(index)
            cx, cy = element.center
            left, top, right, bottom = overlay_draw.textbbox((0, 0), label, font=self.font)
            text_w, text_h = right - left, bottom - top
            box_w = text_w + LABEL_PADDING * 2
            box_h = text_h + LABEL_PADDING * 2
            box = (
                cx - box_w // 2,
                cy - box_h // 2,
                cx - box_w // 2 + box_w,
                cy - box_h // 2 + box_h,
            )
            overlay_draw.rectangle(box, fill=background)
            # Offset by the glyph bbox origin so the text is centered in the box
            text_pos = (box[0] + LABEL_PADDING - left, box[1] + LABEL_PADDING - top)
            labels.append((text_pos, label))

        composed = Image.alpha_composite(base, overlay)
        draw = ImageDraw.Draw(composed)
        for text_pos, label in labels:
            draw.text(text_pos, label, fill=text_color, font=self.font)

        return composed.convert("RGB")

    def annotate(
        self,
        frame_png: bytes,
        elements: Sequence[UIElement],
        prefix: str,
    ) -> AnnotatedScreen:
        """
        Label a PNG frame and persist it.

        Args:
            frame_png: Encoded source frame.
            elements: Elements in label order.
            prefix: File name prefix; written as ``{prefix}_labeled.png``.

        Returns:
            AnnotatedScreen with the file path and PNG bytes.
        """
        with Image.open(io.BytesIO(frame_png)) as source:
            source.load()
            labeled = self.render(source, elements)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{prefix}_labeled.png"

        output = io.BytesIO()
        labeled.save(output, format="PNG")
        png = output.getvalue()
        path.write_bytes(png)

        logger.debug("Frame annotated", path=str(path), labels=len(elements))
        return AnnotatedScreen(path=path, png=png, label_count=len(elements))
