"""
Image effects applied before encoding.

Each effect takes an image and returns a new image, or None when it leaves
the image unchanged. Effects never modify the image they are given.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from PIL import Image, ImageFilter, ImageOps

from .surface_models import TransformFailedError

logger = logging.getLogger(__name__)


class ImageEffect:
    """Base class for effects."""

    def apply(self, image: Image.Image) -> Optional[Image.Image]:
        raise NotImplementedError

    def __str__(self) -> str:
        return type(self).__name__


def _split_alpha(image: Image.Image) -> Tuple[Image.Image, Optional[Image.Image]]:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        return rgba.convert("RGB"), rgba.getchannel("A")
    return image.convert("RGB"), None


def _merge_alpha(image: Image.Image, alpha: Optional[Image.Image]) -> Image.Image:
    if alpha is None:
        return image
    result = image.convert("RGBA")
    result.putalpha(alpha)
    return result


@dataclass
class GrayscaleEffect(ImageEffect):
    def apply(self, image):
        rgb, alpha = _split_alpha(image)
        gray = ImageOps.grayscale(rgb).convert("RGB")
        return _merge_alpha(gray, alpha)


@dataclass
class InvertEffect(ImageEffect):
    def apply(self, image):
        rgb, alpha = _split_alpha(image)
        return _merge_alpha(ImageOps.invert(rgb), alpha)


@dataclass
class MonochromeEffect(ImageEffect):
    threshold: int = 127

    def apply(self, image):
        gray = image.convert("L")
        return gray.point(lambda value: 255 if value > self.threshold else 0, mode="1")


@dataclass
class BorderEffect(ImageEffect):
    width: int = 2
    color: Tuple[int, int, int] = (0, 0, 0)

    def apply(self, image):
        if self.width <= 0:
            return None
        fill = self.color if image.mode != "RGBA" else tuple(self.color) + (255,)
        return ImageOps.expand(image, border=self.width, fill=fill)


@dataclass
class DropShadowEffect(ImageEffect):
    """Puts the image on a transparent canvas with a blurred shadow."""

    shadow_size: int = 7
    offset: Tuple[int, int] = (-1, -1)
    darkness: float = 0.6

    def apply(self, image):
        source = image.convert("RGBA")
        margin = self.shadow_size * 2
        canvas_size = (source.width + margin * 2, source.height + margin * 2)
        shadow = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
        shadow_alpha = int(255 * max(0.0, min(1.0, self.darkness)))
        shadow_box = Image.new("RGBA", source.size, (0, 0, 0, shadow_alpha))
        shadow_mask = source.getchannel("A")
        shadow.paste(shadow_box, (margin + self.shadow_size, margin + self.shadow_size), shadow_mask)
        shadow = shadow.filter(ImageFilter.GaussianBlur(self.shadow_size))
        position = (margin + self.offset[0] + self.shadow_size // 2,
                    margin + self.offset[1] + self.shadow_size // 2)
        shadow.alpha_composite(source, dest=(max(0, position[0]), max(0, position[1])))
        return shadow


@dataclass
class ResizeEffect(ImageEffect):
    width: int = 0
    height: int = 0
    maintain_aspect_ratio: bool = True

    def apply(self, image):
        if self.width <= 0 and self.height <= 0:
            return None
        if self.maintain_aspect_ratio:
            scale_w = self.width / image.width if self.width > 0 else None
            scale_h = self.height / image.height if self.height > 0 else None
            scale = min(s for s in (scale_w, scale_h) if s is not None)
            size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
        else:
            size = (self.width or image.width, self.height or image.height)
        if size == image.size:
            return None
        return image.resize(size, Image.Resampling.LANCZOS)


@dataclass
class RotateEffect(ImageEffect):
    angle: int = 90

    def apply(self, image):
        if self.angle % 360 == 0:
            return None
        return image.rotate(-self.angle, expand=True)


@dataclass
class ReduceColorsEffect(ImageEffect):
    colors: int = 256

    def apply(self, image):
        if image.mode == "RGBA":
            return image.quantize(colors=self.colors, method=Image.Quantize.FASTOCTREE)
        return image.convert("RGB").quantize(colors=self.colors)


def apply_effects(image: Image.Image, effects: Iterable[ImageEffect],
                  owns_image: bool = False) -> Tuple[Image.Image, bool]:
    """
    Apply effects in order.

    Args:
        image: Image to start with
        effects: Effects to apply
        owns_image: Whether the caller may close the starting image

    Returns:
        Tuple of the resulting image and whether the caller owns it
    """
    current = image
    owned = owns_image
    for effect in effects:
        try:
            result = effect.apply(current)
        except Exception as e:
            error = TransformFailedError(f"Effect {effect} failed: {e}")
            logger.warning("%s, continuing with previous image", error, exc_info=True)
            continue

        if result is None or result is current:
            continue

        if owned:
            current.close()
        current = result
        owned = True
        logger.debug("Applied effect %s, image is now %s %s", effect, current.mode, current.size)

    return current, owned
