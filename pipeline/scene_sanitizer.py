"""Scene face sanitizer: face-blurred copies of scene reference photos.

Reads:  data/uploads/<name>.<ext>
Writes: data/uploads/<name>.scene-noface.jpg

Sanitizing is an enhancement to the generation flow, never a prerequisite:
paths that cannot be processed come back unchanged, detector trouble counts
as "no faces", and the warm/batch wrappers absorb every remaining failure.
Only write errors escape ``get_or_create``.
"""
import asyncio
import io
import logging
import weakref
from collections.abc import Sequence
from pathlib import Path

from PIL import Image

from models.references import Detection, SanitizeResult
from pipeline import compositor
from pipeline.face_detector import FaceDetector, select_face_detector
from settings import Settings
from utils.artifact_cache import SANITIZED_MARKER, is_fresh, sanitized_filename, write_bytes_atomic
from utils.upload_paths import UPLOADS_PREFIX, normalize_upload_path, resolve_upload_path, to_public_path

logger = logging.getLogger(__name__)

# EXIF orientation values that swap width/height for display
_TRANSPOSING_ORIENTATIONS = frozenset({5, 6, 7, 8})


class SceneFaceSanitizer:
    def __init__(self, settings: Settings, detector: FaceDetector | None = None) -> None:
        self.settings = settings
        self.detector = detector if detector is not None else select_face_detector(settings)
        # entries vanish once no task holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def get_or_create(self, image_path: str) -> str:
        """Return the public path of the sanitized copy of ``image_path``.

        Falls back to ``image_path`` itself when it is not an upload, does not
        exist, or cannot be decoded.
        """
        local = normalize_upload_path(image_path)
        if local is None:
            return image_path
        if SANITIZED_MARKER in local:
            return to_public_path(local)

        source = resolve_upload_path(self.settings.data_dir, local)
        if not source.is_file():
            logger.debug("Scene image missing, using original: %s", source)
            return image_path

        local_output = UPLOADS_PREFIX + sanitized_filename(local)
        output = resolve_upload_path(self.settings.data_dir, local_output)
        self.settings.uploads_dir.mkdir(parents=True, exist_ok=True)

        async with self._lock_for(local_output):
            if is_fresh(output, [source]):
                logger.debug("Sanitized cache hit: %s", output.name)
                return to_public_path(local_output)

            try:
                source_bytes = await asyncio.to_thread(source.read_bytes)
                width, height = await asyncio.to_thread(_measure, source_bytes)
            except (OSError, Image.DecompressionBombError) as exc:
                logger.warning("Could not read scene image %s: %s", source.name, exc)
                return image_path
            if width <= 0 or height <= 0:
                logger.warning("Scene image %s has no pixels", source.name)
                return image_path

            detection = await self.detector.detect(source)
            if not _has_faces(detection):
                await asyncio.to_thread(write_bytes_atomic, output, source_bytes)
                logger.info("No faces in %s; cached verbatim copy → %s", source.name, output.name)
                return to_public_path(local_output)

            data = await asyncio.to_thread(self._blur, source_bytes, detection)
            await asyncio.to_thread(write_bytes_atomic, output, data)

        logger.info(
            "Blurred %d face(s) in %s → %s", len(detection.faces), source.name, output.name
        )
        return to_public_path(local_output)

    async def try_sanitize(self, image_path: str) -> SanitizeResult:
        """Run ``get_or_create`` and report failures instead of raising them."""
        try:
            path = await self.get_or_create(image_path)
        except Exception as exc:
            return SanitizeResult(source=image_path, path=image_path, error=f"{type(exc).__name__}: {exc}")
        return SanitizeResult(source=image_path, path=path)

    async def warm(self, image_path: str | None) -> None:
        """Pre-populate the cache, e.g. right after upload. Never raises."""
        if not image_path:
            return
        result = await self.try_sanitize(image_path)
        if not result.ok:
            logger.warning("Warm-up sanitization failed for %s: %s", image_path, result.error)

    async def sanitize_many(self, values: Sequence[str]) -> list[str]:
        """Sanitize each path in order; failed items keep their original value."""
        output: list[str] = []
        for value in values:
            result = await self.try_sanitize(value)
            if not result.ok:
                logger.warning("  %s  SKIPPED: %s", value, result.error)
            output.append(result.path)
        return output

    def _blur(self, source_bytes: bytes, detection: Detection) -> bytes:
        img = compositor.load_image(source_bytes)
        blurred, boxes = compositor.blur_faces(
            img,
            detection.faces,
            sigma=self.settings.face_blur_sigma,
            padding_ratio=self.settings.face_padding_ratio,
        )
        if not boxes:
            # every region clamped away; keep the original file
            return source_bytes
        return compositor.encode_jpeg(blurred, self.settings.sanitized_jpeg_quality)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


def _measure(data: bytes) -> tuple[int, int]:
    """Display size of an encoded image without decoding the pixels."""
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        orientation = img.getexif().get(274, 1)  # 274 = Orientation
    if orientation in _TRANSPOSING_ORIENTATIONS:
        width, height = height, width
    return width, height


def _has_faces(detection: Detection | None) -> bool:
    return detection is not None and len(detection.faces) > 0
