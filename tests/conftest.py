from pathlib import Path

import pytest
from PIL import Image

from settings import Settings


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a fresh data directory with an empty uploads/ folder.

    Face detection is disabled so nothing tries to spawn a helper process.
    """
    (tmp_path / "uploads").mkdir()
    return Settings(data_dir=tmp_path, face_detection_enabled=False)


@pytest.fixture
def make_upload(settings: Settings):
    """Write a synthetic image into uploads/ and return its public path."""

    def _make(name: str, size: tuple[int, int] = (640, 480), color=(90, 140, 200), fmt: str | None = None) -> str:
        path = settings.uploads_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path, format=fmt)
        return f"/uploads/{name}"

    return _make
