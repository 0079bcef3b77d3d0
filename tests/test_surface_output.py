"""Tests for file level save and load operations."""

import os
import time
from datetime import datetime

import pytest
from PIL import Image

from surfacestore.models import surface_output
from surfacestore.models.surface import Surface, serialize_elements
from surfacestore.models.surface_models import (
    OutputFormat, SurfaceOutputSettings, CaptureDetails, AlreadyExistsError, NotRecognizedContainerError,
    ContainerIOError, NoWriteAccessError
)
from surfacestore.models.surface_output import SurfaceOutput, format_for_filename
from surfacestore.models.temp_file_cache import TempFileCache


@pytest.mark.parametrize("filename, expected", [
    ("shot.png", OutputFormat.PNG),
    ("C:/captures/shot.JPG", OutputFormat.JPG),
    ("shot.jpeg", OutputFormat.JPG),
    ("shot.tif", OutputFormat.TIFF),
    ("shot.tiff", OutputFormat.TIFF),
    ("shot.bmp", OutputFormat.BMP),
    ("shot.gif", OutputFormat.GIF),
    ("shot.greenshot", OutputFormat.GREENSHOT),
    ("shot.webp", OutputFormat.PNG),
    ("no_extension", OutputFormat.PNG),
])
def test_format_for_filename(filename, expected):
    assert format_for_filename(filename) is expected


def test_save_and_load_native_file(output, surface, tmp_path):
    settings = output.create_output_settings(OutputFormat.GREENSHOT)

    saved = output.save(surface, str(tmp_path / "capture.greenshot"), False, settings)
    loaded = output.load_surface(saved)

    assert saved == str(tmp_path / "capture.greenshot")
    assert loaded.image.size == surface.image.size
    assert serialize_elements(loaded.elements) == serialize_elements(surface.elements)


def test_save_creates_missing_directories(output, surface, tmp_path):
    target = tmp_path / "a" / "b" / "shot.png"

    output.save(surface, str(target), False, output.create_output_settings(OutputFormat.PNG))

    with Image.open(target) as image:
        assert image.format == "PNG"


def test_save_refuses_to_overwrite(output, surface, tmp_path):
    target = tmp_path / "shot.png"
    target.write_bytes(b"keep me")

    with pytest.raises(AlreadyExistsError) as excinfo:
        output.save(surface, str(target), False, output.create_output_settings(OutputFormat.PNG))

    assert excinfo.value.full_path == str(target)
    assert target.read_bytes() == b"keep me"

    output.save(surface, str(target), True, output.create_output_settings(OutputFormat.PNG))
    assert target.read_bytes() != b"keep me"


def test_save_copies_path_to_clipboard(output, surface, tmp_path):
    saved = output.save(surface, str(tmp_path / "shot.png"), False,
                        output.create_output_settings(OutputFormat.PNG), copy_path_to_clipboard=True)

    assert output.copy_to_clipboard.calls == [(saved,)]


def test_create_output_settings_uses_configuration(output, settings_manager):
    settings_manager.update_setting('output.jpeg_quality', 55)
    settings_manager.update_setting('output.format', 'jpg')

    settings = output.create_output_settings()
    forced = output.create_output_settings(OutputFormat.BMP, jpeg_quality=10, reduce_colors=True)

    assert settings.format is OutputFormat.JPG
    assert settings.jpeg_quality == 55
    assert forced.format is OutputFormat.BMP
    assert forced.jpeg_quality == 10
    assert forced.reduce_colors


def test_auto_reduce_configuration_reaches_the_pipeline(output, settings_manager, tmp_path):
    settings_manager.update_setting('output.auto_reduce_colors', True)
    flat = Surface(Image.new("RGB", (6, 6), (0, 0, 200)))

    saved = output.save(flat, str(tmp_path / "flat.png"), False,
                        output.create_output_settings(OutputFormat.PNG))

    with Image.open(saved) as image:
        assert image.mode == "P"


def test_load_plain_png_is_not_recognized(output, surface, tmp_path):
    saved = output.save(surface, str(tmp_path / "plain.png"), False,
                        output.create_output_settings(OutputFormat.PNG))

    with pytest.raises(NotRecognizedContainerError, match="is not a Greenshot file"):
        output.load_surface(saved)


def test_load_errors_are_io_errors(output, tmp_path):
    with pytest.raises(ContainerIOError):
        output.load_surface("")

    with pytest.raises(ContainerIOError):
        output.load_surface(str(tmp_path / "missing.greenshot"))


def test_save_to_tmp_file_is_tracked_and_removed(output, surface, tmp_path):
    path = output.save_to_tmp_file(surface, output.create_output_settings(OutputFormat.PNG),
                                   destination_path=str(tmp_path))

    assert path is not None
    assert os.path.dirname(path) == str(tmp_path)
    assert path.endswith(".png")
    assert path in output.tmp_file_cache

    assert output.remove_tmp_files() == 1
    assert not os.path.exists(path)


def test_tmp_files_expire_after_ttl(output, surface, tmp_path, clock):
    path = output.save_to_tmp_file(surface, output.create_output_settings(OutputFormat.PNG),
                                   destination_path=str(tmp_path))

    clock.advance(output.tmp_file_cache.ttl_seconds)
    output.tmp_file_cache.expire_due()

    assert not os.path.exists(path)


def test_save_to_tmp_file_returns_none_on_failure(output, surface, tmp_path, monkeypatch):
    def failing_save(*args, **kwargs):
        raise NoWriteAccessError(str(tmp_path))

    monkeypatch.setattr(output, "save", failing_save)

    assert output.save_to_tmp_file(surface, output.create_output_settings(OutputFormat.PNG)) is None
    assert len(output.tmp_file_cache) == 0


def test_save_named_tmp_file_uses_pattern(output, surface, tmp_path, monkeypatch):
    monkeypatch.setattr(surface_output.tempfile, "gettempdir", lambda: str(tmp_path))
    details = CaptureDetails(title="Editor", date_time=datetime(2024, 1, 2, 3, 4, 5))

    path = output.save_named_tmp_file(surface, details, output.create_output_settings(OutputFormat.PNG))

    assert path == str(tmp_path / "greenshot_2024_01_02_03_04_05.png")
    assert os.path.exists(path)
    assert path in output.tmp_file_cache


def test_save_named_tmp_file_falls_back_to_dialog(output, surface, tmp_path, monkeypatch):
    real_save = output.save
    chosen = str(tmp_path / "chosen.png")
    output.choose_path.result = chosen

    def save(surface_, full_path, allow_overwrite, settings, copy_path_to_clipboard=False):
        if full_path != chosen:
            raise NoWriteAccessError(full_path)
        return real_save(surface_, full_path, allow_overwrite, settings, copy_path_to_clipboard)

    monkeypatch.setattr(output, "save", save)

    path = output.save_named_tmp_file(surface, None, output.create_output_settings(OutputFormat.PNG))

    assert path == chosen
    assert len(output.notify_error.calls) == 1
    assert len(output.tmp_file_cache) == 0


def test_save_with_dialog_records_last_saved_path(output, surface, settings_manager, tmp_path):
    settings_manager.update_setting('output.file_path', str(tmp_path))
    output.choose_path.result = str(tmp_path / "picked.jpg")
    details = CaptureDetails(date_time=datetime(2024, 5, 6, 7, 8, 9))

    path = output.save_with_dialog(surface, details)

    (suggested,) = output.choose_path.calls[0]
    assert suggested == os.path.join(str(tmp_path), "greenshot 2024-05-06 07_08_09.png")
    assert path == str(tmp_path / "picked.jpg")
    with Image.open(path) as image:
        assert image.format == "JPEG"
    assert settings_manager.get_setting('output.last_saved_path') == path


def test_save_with_dialog_prompts_for_quality_when_configured(output, surface, settings_manager, tmp_path):
    prompted = []

    def prompt(settings):
        prompted.append(settings)
        return settings

    output.prompt_settings = prompt
    settings_manager.update_setting('output.prompt_quality', True)
    output.choose_path.result = str(tmp_path / "picked.jpg")

    output.save_with_dialog(surface)

    assert len(prompted) == 1
    assert prompted[0].format is OutputFormat.JPG


def test_save_with_dialog_cancelled(output, surface, settings_manager):
    assert output.save_with_dialog(surface) is None
    assert settings_manager.get_setting('output.last_saved_path') is None


def test_save_with_dialog_reports_unwritable_destination(output, surface, tmp_path, monkeypatch):
    output.choose_path.result = str(tmp_path / "locked.png")

    def failing_save(*args, **kwargs):
        raise NoWriteAccessError(str(tmp_path / "locked.png"))

    monkeypatch.setattr(output, "save", failing_save)

    assert output.save_with_dialog(surface) is None
    assert len(output.notify_error.calls) == 1


def test_injected_registry_is_used_even_when_empty(settings_manager, tmp_file_cache):
    assert len(tmp_file_cache) == 0

    shared_output = SurfaceOutput(settings_manager=settings_manager, tmp_file_cache=tmp_file_cache)
    try:
        assert shared_output.tmp_file_cache is tmp_file_cache
        assert shared_output.settings_manager is settings_manager
    finally:
        shared_output.shutdown()


def test_expired_tmp_files_are_deleted_without_manual_sweep(settings_manager, surface, tmp_path):
    registry = TempFileCache(ttl_seconds=0.05, sweep_interval=0.01)
    shared_output = SurfaceOutput(settings_manager=settings_manager, tmp_file_cache=registry)
    try:
        path = shared_output.save_to_tmp_file(surface, SurfaceOutputSettings(format=OutputFormat.PNG),
                                              destination_path=str(tmp_path))
        assert path is not None

        deadline = time.monotonic() + 5
        while os.path.exists(path) and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        shared_output.shutdown()

    assert not os.path.exists(path)
    assert len(registry) == 0


def test_failed_encode_keeps_previous_file_contents(output, surface, tmp_path, monkeypatch):
    target = tmp_path / "shot.png"
    target.write_bytes(b"previous content")

    def broken_save(self, fp, format=None, **params):
        fp.write(b"partial")
        raise OSError("disk full")

    monkeypatch.setattr(Image.Image, "save", broken_save)

    with pytest.raises(ContainerIOError):
        output.save(surface, str(target), True, output.create_output_settings(OutputFormat.PNG))
    with pytest.raises(ContainerIOError):
        output.save(surface, str(tmp_path / "new.png"), False, output.create_output_settings(OutputFormat.PNG))

    assert target.read_bytes() == b"previous content"
    assert os.listdir(tmp_path) == ["shot.png"]


def test_tmp_saves_fall_back_on_any_failure(output, tmp_path, monkeypatch):
    monkeypatch.setattr(surface_output.tempfile, "gettempdir", lambda: str(tmp_path))
    empty = Surface()
    settings = output.create_output_settings(OutputFormat.PNG)

    assert output.save_to_tmp_file(empty, settings) is None
    assert output.save_named_tmp_file(empty, None, settings) is None

    assert len(output.notify_error.calls) == 1
    assert len(output.choose_path.calls) == 1
    assert os.listdir(tmp_path) == []
    assert len(output.tmp_file_cache) == 0
