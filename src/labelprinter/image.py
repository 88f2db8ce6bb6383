"""
Image Processing for P-touch Labels.

Converts an arbitrary image into the 1-bit bitmap the raster encoder
expects: scaled so its height matches the tape's print-head pixels,
converted to grayscale, then binarized by threshold or Floyd-Steinberg
error diffusion.
"""

from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Union

from PIL import Image, ImageDraw

from .responses import LabelSize

# Sources are checked before decoding; a label never needs more than this
MAX_SOURCE_SIDE = 10000
MAX_SOURCE_PIXELS = 10_000_000

ImageSource = Union[str, Path, bytes, Image.Image]


class ImageSizeError(ValueError):
    """Source image is too large to scale onto a label."""


def check_source_size(width: int, height: int) -> None:
    """Raise ImageSizeError if a width x height source is over the limits."""
    if max(width, height) > MAX_SOURCE_SIDE:
        raise ImageSizeError(
            f"Image is {width}x{height}, larger than the "
            f"{MAX_SOURCE_SIDE}x{MAX_SOURCE_SIDE} limit"
        )
    if width * height > MAX_SOURCE_PIXELS:
        raise ImageSizeError(
            f"Image has {width * height:,} pixels, more than the {MAX_SOURCE_PIXELS:,} limit"
        )


class DitherMode(Enum):
    """How grayscale is reduced to black and white."""

    NONE = "none"  # plain threshold
    FLOYD_STEINBERG = "floyd-steinberg"


class ImageTransformer:
    """Prepare images for printing on a given tape width."""

    DEFAULT_THRESHOLD = 0.5

    def load(self, source: ImageSource) -> Image.Image:
        """
        Open a label source without decoding its pixels.

        Args:
            source: Path, encoded image bytes, or an already open PIL image

        Raises:
            ImageSizeError: Source is over MAX_SOURCE_SIDE or MAX_SOURCE_PIXELS
            ValueError: Source is none of the above
        """
        if isinstance(source, (str, Path)):
            image = Image.open(source)
        elif isinstance(source, bytes):
            image = Image.open(BytesIO(source))
        elif isinstance(source, Image.Image):
            image = source
        else:
            raise ValueError(f"Unsupported source type: {type(source).__name__}")

        check_source_size(*image.size)
        return image

    @staticmethod
    def to_grayscale(image: Image.Image) -> Image.Image:
        """Convert to mode "L", flattening transparency onto white."""
        if image.mode in ("RGBA", "LA", "PA") or (
            image.mode == "P" and "transparency" in image.info
        ):
            rgba = image.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            image = Image.alpha_composite(background, rgba)
        if image.mode != "L":
            image = image.convert("L")
        return image

    @staticmethod
    def scaled_size(width: int, height: int, label_size: LabelSize) -> tuple[int, int]:
        """Size after scaling the height to the label's pixel height."""
        scale = label_size.pixels / height
        return max(1, int(width * scale)), label_size.pixels

    def transform(
        self,
        image: Image.Image,
        label_size: LabelSize,
        dither: DitherMode = DitherMode.FLOYD_STEINBERG,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> Image.Image:
        """
        Produce the monochrome label bitmap.

        Args:
            image: Source image in any mode
            label_size: Tape in the printer; sets the output height
            dither: Binarization method
            threshold: 0..1 cut-off used when dither is NONE; darker pixels
                become black

        Returns:
            Mode "1" image of (scaled width, label_size.pixels)

        Raises:
            ValueError: If threshold is outside [0, 1] or the image is empty
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be between 0 and 1, got {threshold}")
        if image.width == 0 or image.height == 0:
            raise ValueError("Image is empty")

        gray = self.to_grayscale(image)

        size = self.scaled_size(gray.width, gray.height, label_size)
        if gray.size != size:
            gray = gray.resize(size, Image.Resampling.LANCZOS)

        if dither is DitherMode.FLOYD_STEINBERG:
            return gray.convert("1", dither=Image.Dither.FLOYDSTEINBERG)

        cutoff = int(threshold * 255)
        return gray.point(lambda x: 0 if x < cutoff else 255, mode="1")


def create_test_pattern(label_size: LabelSize = LabelSize.MM12, width: int = 96) -> Image.Image:
    """Border, both diagonals and a tick every 8 dots along the top edge."""
    height = label_size.pixels
    pattern = Image.new("1", (width, height), 1)
    draw = ImageDraw.Draw(pattern)
    draw.rectangle((0, 0, width - 1, height - 1), outline=0)
    draw.line((0, 0, width - 1, height - 1), fill=0)
    draw.line((width - 1, 0, 0, height - 1), fill=0)
    for x in range(0, width, 8):
        draw.line((x, 0, x, min(3, height - 1)), fill=0)
    return pattern
