"""
Encode pipeline.

Turns a surface into the image that is handed to the codec: picks the base
image, applies effects, removes transparency the target codec cannot store,
optionally reduces the palette and builds the codec metadata carrying the
software identity.

The pipeline never modifies the surface image. The first image is borrowed
from the surface and every transformed image is owned by the pipeline, which
closes it as soon as it is replaced.
"""

import logging
from typing import Tuple

from PIL import Image
from PIL.PngImagePlugin import PngInfo

from .. import SOFTWARE_NAME
from .effects import apply_effects
from .surface_models import (
    OutputFormat, SurfaceOutputSettings, PreparedImage,
    MetadataUnsupportedError, TransformFailedError
)

logger = logging.getLogger(__name__)

# TIFF / EXIF "Software" tag
PROPERTY_TAG_SOFTWARE_USED = 0x0131

# A palette of this many entries or fewer is written as an 8-bit image
MAX_PALETTE_COLORS = 255

_ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")
_JPEG_MODES = ("1", "L", "RGB", "RGBX", "CMYK", "YCbCr")


def has_alpha(image: Image.Image) -> bool:
    """Check whether an image carries transparency."""
    if image.mode in _ALPHA_MODES:
        return True
    return "transparency" in image.info


def count_colors(image: Image.Image, limit: int = 256) -> int:
    """
    Count distinct colors, stopping at the limit.

    Returns:
        Number of colors, or the limit when the image has at least that many
    """
    rgba = image.convert("RGBA")
    try:
        colors = rgba.getcolors(maxcolors=limit)
    finally:
        rgba.close()
    return limit if colors is None else len(colors)


def remove_alpha(image: Image.Image, background=(255, 255, 255)) -> Image.Image:
    """Composite an image onto an opaque background and return an RGB copy."""
    rgba = image.convert("RGBA")
    try:
        flattened = Image.new("RGB", rgba.size, background)
        flattened.paste(rgba, mask=rgba.getchannel("A"))
    finally:
        rgba.close()
    return flattened


def quantize(image: Image.Image, colors: int = MAX_PALETTE_COLORS) -> Image.Image:
    """Reduce an image to a palette of at most the given number of colors."""
    if image.mode == "RGBA":
        return image.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
    rgb = image.convert("RGB")
    try:
        return rgb.quantize(colors=colors)
    finally:
        rgb.close()


def build_save_params(output_format: OutputFormat, settings: SurfaceOutputSettings,
                      software_name: str = SOFTWARE_NAME) -> dict:
    """
    Build the keyword arguments passed to Image.save for a format.

    Raises:
        MetadataUnsupportedError: If the format has no slot for the software tag
    """
    params = {}
    if output_format is OutputFormat.JPG:
        params['quality'] = settings.jpeg_quality

    if output_format in (OutputFormat.PNG, OutputFormat.GREENSHOT):
        info = PngInfo()
        info.add_text("Software", software_name)
        params['pnginfo'] = info
    elif output_format is OutputFormat.JPG:
        exif = Image.Exif()
        exif[PROPERTY_TAG_SOFTWARE_USED] = software_name
        params['exif'] = exif.tobytes()
    elif output_format is OutputFormat.TIFF:
        params['tiffinfo'] = {PROPERTY_TAG_SOFTWARE_USED: software_name}
    else:
        raise MetadataUnsupportedError(
            f"Image of type {output_format.pil_format} does not support property {PROPERTY_TAG_SOFTWARE_USED}"
        )
    return params


class EncodePipeline:
    """
    Prepares surface images for encoding.

    Color reduction runs when the settings force it, or when automatic
    reduction is enabled and the image already fits in an 8-bit palette
    (fewer than 256 colors). Images with more colors are only reduced when
    forced.
    """

    def __init__(self, auto_reduce_colors: bool = False, software_name: str = SOFTWARE_NAME):
        self.auto_reduce_colors = auto_reduce_colors
        self.software_name = software_name

    def prepare(self, surface, settings: SurfaceOutputSettings) -> PreparedImage:
        """
        Run the pipeline.

        Args:
            surface: Surface providing the image
            settings: Output settings for this call

        Returns:
            PreparedImage; call release() once the codec consumed it
        """
        output_format = settings.format

        if output_format is OutputFormat.GREENSHOT or settings.save_background_only:
            image = surface.image
            owned = False
            if image is None:
                raise ValueError("Surface has no image to save")
        else:
            image = surface.get_image_for_export()
            owned = True

        try:
            image, owned = apply_effects(image, settings.effects, owns_image=owned)
            image, owned = self._remove_unsupported_alpha(image, owned, output_format)
            image, owned = self._reduce_colors(image, owned, settings)
            image, owned = self._ensure_codec_mode(image, owned, output_format)
        except BaseException:
            if owned:
                image.close()
            raise

        save_params = self._create_save_params(output_format, settings)
        logger.debug("Prepared image with format %s and mode %s", output_format.value, image.mode)
        return PreparedImage(image=image, format=output_format, owned=owned, save_params=save_params)

    def _remove_unsupported_alpha(self, image: Image.Image, owned: bool,
                                  output_format: OutputFormat) -> Tuple[Image.Image, bool]:
        if output_format.supports_alpha or not has_alpha(image):
            return image, owned

        flattened = remove_alpha(image)
        if owned:
            image.close()
        logger.debug("Removed transparency for format %s", output_format.value)
        return flattened, True

    def _reduce_colors(self, image: Image.Image, owned: bool,
                       settings: SurfaceOutputSettings) -> Tuple[Image.Image, bool]:
        if not (self.auto_reduce_colors or settings.reduce_colors):
            return image, owned

        color_count = count_colors(image)
        logger.info("Image with mode %s has %s colors", image.mode,
                    f"{color_count}+" if color_count >= 256 else color_count)
        if not (settings.reduce_colors or color_count < 256):
            return image, owned

        try:
            logger.info("Reducing colors on image to %d", MAX_PALETTE_COLORS)
            quantized = quantize(image, MAX_PALETTE_COLORS)
        except Exception as e:
            error = TransformFailedError(f"Quantizing failed: {e}")
            logger.warning("%s, ignoring and using original", error, exc_info=True)
            return image, owned

        if owned:
            image.close()
        return quantized, True

    def _ensure_codec_mode(self, image: Image.Image, owned: bool,
                           output_format: OutputFormat) -> Tuple[Image.Image, bool]:
        if output_format is not OutputFormat.JPG or image.mode in _JPEG_MODES:
            return image, owned
        converted = image.convert("RGB")
        if owned:
            image.close()
        return converted, True

    def _create_save_params(self, output_format: OutputFormat,
                            settings: SurfaceOutputSettings) -> dict:
        try:
            return build_save_params(output_format, settings, self.software_name)
        except MetadataUnsupportedError as e:
            logger.warning("%s", e)
            params = {}
            if output_format is OutputFormat.JPG:
                params['quality'] = settings.jpeg_quality
            return params
