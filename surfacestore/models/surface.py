"""
Surface and annotation elements.

A surface owns the captured raster image and an ordered list of annotation
elements drawn on top of it. Elements know how to draw themselves with
Pillow's ImageDraw and how to round-trip through a JSON document, which is
the blob stored inside the native container.
"""

import json
import logging
import math
from dataclasses import dataclass, asdict
from typing import Any, BinaryIO, ClassVar, Dict, List, Optional, Tuple, Type

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

ELEMENTS_DOCUMENT_VERSION = 1

Color = Tuple[int, int, int, int]


@dataclass
class AnnotationElement:
    """Base class for all annotation elements."""

    element_type: ClassVar[str] = "element"

    left: int = 0
    top: int = 0
    width: int = 0
    height: int = 0
    line_color: Color = (255, 0, 0, 255)
    line_thickness: int = 2
    fill_color: Optional[Color] = None

    @property
    def bounds(self) -> Tuple[int, int, int, int]:
        """Normalized (x0, y0, x1, y1) box, also for negative sizes."""
        x0, x1 = sorted((self.left, self.left + self.width))
        y0, y1 = sorted((self.top, self.top + self.height))
        return x0, y0, x1, y1

    def draw(self, draw: ImageDraw.ImageDraw) -> None:
        """Paint the element onto an RGBA overlay."""
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data['type'] = self.element_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnnotationElement':
        """Create from a dictionary produced by to_dict."""
        values = {k: v for k, v in data.items() if k != 'type'}
        for key in ('line_color', 'fill_color'):
            if values.get(key) is not None:
                values[key] = tuple(values[key])
        return cls(**values)


@dataclass
class RectangleElement(AnnotationElement):
    element_type: ClassVar[str] = "rectangle"

    def draw(self, draw: ImageDraw.ImageDraw) -> None:
        draw.rectangle(self.bounds, outline=self.line_color,
                       fill=self.fill_color, width=self.line_thickness)


@dataclass
class EllipseElement(AnnotationElement):
    element_type: ClassVar[str] = "ellipse"

    def draw(self, draw: ImageDraw.ImageDraw) -> None:
        draw.ellipse(self.bounds, outline=self.line_color,
                     fill=self.fill_color, width=self.line_thickness)


@dataclass
class LineElement(AnnotationElement):
    element_type: ClassVar[str] = "line"

    def draw(self, draw: ImageDraw.ImageDraw) -> None:
        end = (self.left + self.width, self.top + self.height)
        draw.line([(self.left, self.top), end], fill=self.line_color,
                  width=self.line_thickness)


@dataclass
class ArrowElement(LineElement):
    element_type: ClassVar[str] = "arrow"

    head_size: int = 12

    def draw(self, draw: ImageDraw.ImageDraw) -> None:
        super().draw(draw)
        if self.width == 0 and self.height == 0:
            return
        end_x, end_y = self.left + self.width, self.top + self.height
        angle = math.atan2(self.height, self.width)
        spread = math.radians(25)
        points = [(end_x, end_y)]
        for side in (-1, 1):
            points.append((
                end_x - self.head_size * math.cos(angle + side * spread),
                end_y - self.head_size * math.sin(angle + side * spread),
            ))
        draw.polygon(points, fill=self.line_color)


@dataclass
class TextElement(AnnotationElement):
    element_type: ClassVar[str] = "text"

    text: str = ""

    def draw(self, draw: ImageDraw.ImageDraw) -> None:
        if self.fill_color is not None:
            draw.rectangle(self.bounds, fill=self.fill_color)
        draw.text((self.left, self.top), self.text, fill=self.line_color,
                  font=ImageFont.load_default())


ELEMENT_TYPES: Dict[str, Type[AnnotationElement]] = {
    cls.element_type: cls
    for cls in (RectangleElement, EllipseElement, LineElement, ArrowElement, TextElement)
}


def serialize_elements(elements: List[AnnotationElement]) -> bytes:
    """Encode elements as a compact, deterministic JSON document."""
    document = {
        'version': ELEMENTS_DOCUMENT_VERSION,
        'elements': [element.to_dict() for element in elements],
    }
    return json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")


def deserialize_elements(data: bytes) -> List[AnnotationElement]:
    """
    Decode a document produced by serialize_elements.

    Raises:
        ValueError: If the document is malformed or names an unknown element type
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid elements document: {e}") from e

    if not isinstance(document, dict) or 'elements' not in document:
        raise ValueError("Invalid elements document: missing 'elements'")
    if not isinstance(document['elements'], list):
        raise ValueError("Invalid elements document: 'elements' is not a list")

    elements = []
    for item in document['elements']:
        if not isinstance(item, dict):
            raise ValueError(f"Invalid element entry: {item!r}")
        element_type = item.get('type')
        element_cls = ELEMENT_TYPES.get(element_type) if isinstance(element_type, str) else None
        if element_cls is None:
            raise ValueError(f"Unknown element type: {element_type!r}")
        try:
            elements.append(element_cls.from_dict(item))
        except TypeError as e:
            raise ValueError(f"Invalid {element_type} element: {e}") from e
    return elements


class Surface:
    """
    A captured image plus its annotation layer.

    The surface exclusively owns its image. Code that needs a modified image
    works on a copy (see get_image_for_export).
    """

    def __init__(self, image: Optional[Image.Image] = None,
                 elements: Optional[List[AnnotationElement]] = None):
        self._image = image
        self.elements: List[AnnotationElement] = list(elements or [])

    @property
    def image(self) -> Optional[Image.Image]:
        return self._image

    @image.setter
    def image(self, value: Image.Image) -> None:
        if self._image is not None and self._image is not value:
            self._image.close()
        self._image = value

    @property
    def has_elements(self) -> bool:
        return bool(self.elements)

    def add_element(self, element: AnnotationElement) -> None:
        self.elements.append(element)

    def get_image_for_export(self) -> Image.Image:
        """
        Render the image with all elements flattened onto it.

        Returns:
            A new image owned by the caller, in the surface image's mode
            when that mode is RGB or RGBA
        """
        if self._image is None:
            raise ValueError("Surface has no image")

        base = self._image.convert("RGBA")
        if not self.elements:
            return base if self._image.mode == "RGBA" else self._flatten_mode(base)

        overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        for element in self.elements:
            element.draw(draw)

        composite = Image.alpha_composite(base, overlay)
        base.close()
        overlay.close()
        if self._image.mode == "RGBA":
            return composite
        return self._flatten_mode(composite)

    def _flatten_mode(self, image: Image.Image) -> Image.Image:
        if self._image.mode != "RGB":
            return image
        converted = image.convert("RGB")
        image.close()
        return converted

    def save_elements_to_stream(self, stream: BinaryIO) -> int:
        """
        Write the elements document to a stream.

        Returns:
            Number of bytes written
        """
        data = serialize_elements(self.elements)
        stream.write(data)
        logger.debug("Wrote %d elements (%d bytes)", len(self.elements), len(data))
        return len(data)

    def load_elements_from_stream(self, stream: BinaryIO) -> None:
        """Replace the elements with the document read from a stream."""
        self.elements = deserialize_elements(stream.read())
        logger.debug("Loaded %d elements", len(self.elements))

    def __str__(self) -> str:
        size = self._image.size if self._image is not None else None
        return f"Surface(size={size}, elements={len(self.elements)})"
