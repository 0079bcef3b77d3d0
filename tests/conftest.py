"""Shared fixtures for the surfacestore tests."""

import pytest
from PIL import Image

from surfacestore.models.settings_manager import SettingsManager
from surfacestore.models.surface import (
    Surface, RectangleElement, ArrowElement, TextElement
)
from surfacestore.models.surface_output import SurfaceOutput
from surfacestore.models.temp_file_cache import TempFileCache


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_gradient(width=24, height=16, mode="RGBA"):
    image = Image.new("RGBA", (width, height))
    for y in range(height):
        for x in range(width):
            image.putpixel((x, y), (x * 10 % 256, y * 15 % 256, (x + y) * 5 % 256, 255 - x * 3))
    if mode != "RGBA":
        converted = image.convert(mode)
        image.close()
        return converted
    return image


@pytest.fixture
def surface():
    elements = [
        RectangleElement(left=2, top=2, width=10, height=6, line_color=(0, 0, 255, 255)),
        ArrowElement(left=1, top=14, width=20, height=-10, line_thickness=1),
        TextElement(left=3, top=3, width=12, height=8, text="hi"),
    ]
    return Surface(make_gradient(), elements)


@pytest.fixture
def settings_manager():
    return SettingsManager()


@pytest.fixture
def tmp_file_cache(clock):
    return TempFileCache(ttl_seconds=3600, clock=clock)


class Recorder:
    """Collects calls made through injected callbacks."""

    def __init__(self, result=None):
        self.calls = []
        self.result = result

    def __call__(self, *args):
        self.calls.append(args)
        return self.result


@pytest.fixture
def output(settings_manager, tmp_file_cache):
    surface_output = SurfaceOutput(
        settings_manager=settings_manager,
        tmp_file_cache=tmp_file_cache,
        choose_path=Recorder(),
        prompt_settings=lambda settings: settings,
        notify_error=Recorder(),
        copy_to_clipboard=Recorder(True),
    )
    yield surface_output
    surface_output.shutdown()
