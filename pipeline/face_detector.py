"""Best-effort face detection through an external helper process.

The helper receives the absolute image path as its only argument and prints a
single JSON object::

    {"width": 1200, "height": 800, "faces": [{"x": 0.41, "y": 0.12, "width": 0.1, "height": 0.14}]}

Face coordinates are fractions of the image size with a top-left origin.

Detection is a privacy enhancement, not a requirement of the generation flow:
every failure mode (unsupported platform, missing executable, timeout,
non-zero exit, oversized or malformed output) resolves to ``None`` and the
caller proceeds as if no faces were found.
"""
import asyncio
import importlib.util
import json
import logging
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from models.references import Detection
from settings import Settings

logger = logging.getLogger(__name__)

# Module run with ``python -m`` when no helper command is configured
_BUNDLED_HELPER_MODULE = "detect_faces"

_READ_CHUNK = 64 * 1024


class FaceDetector(Protocol):
    async def detect(self, image_path: Path) -> Detection | None: ...


class NullFaceDetector:
    """Used where no helper is available. Always reports "unavailable"."""

    async def detect(self, image_path: Path) -> Detection | None:
        return None


class SubprocessFaceDetector:
    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout: float = 7.0,
        max_output_bytes: int = 1024 * 1024,
        platforms: Sequence[str] | None = None,
    ) -> None:
        self.command = list(command)
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.platforms = frozenset(platforms) if platforms is not None else None

    async def detect(self, image_path: Path) -> Detection | None:
        if self.platforms is not None and sys.platform not in self.platforms:
            return None

        args = [*self.command, str(Path(image_path).resolve())]
        logger.debug("Running face detector: %s", args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.debug("Face detector not runnable (%s): %s", self.command[0], exc)
            return None

        try:
            stdout = await asyncio.wait_for(self._collect(proc), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Face detector timed out after %.1fs for %s", self.timeout, image_path
            )
            await _terminate(proc)
            return None

        if stdout is None:
            logger.warning(
                "Face detector output exceeded %d bytes for %s", self.max_output_bytes, image_path
            )
            return None
        if proc.returncode != 0:
            logger.debug("Face detector exited with %s for %s", proc.returncode, image_path)
            return None
        return _parse_detection(stdout)

    async def _collect(self, proc: asyncio.subprocess.Process) -> bytes | None:
        """Read stdout to EOF and wait for exit; None if the output limit is exceeded."""
        chunks: list[bytes] = []
        size = 0
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            size += len(chunk)
            if size > self.max_output_bytes:
                await _terminate(proc)
                return None
            chunks.append(chunk)
        await proc.wait()
        return b"".join(chunks)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


def _parse_detection(stdout: bytes) -> Detection | None:
    try:
        payload = json.loads(stdout.decode("utf-8").strip())
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.debug("Face detector printed unparsable output")
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("faces"), list):
        return None
    try:
        return Detection.model_validate(payload)
    except ValidationError as exc:
        logger.debug("Face detector output rejected: %s", exc)
        return None


def select_face_detector(settings: Settings) -> FaceDetector:
    """Pick the detector implementation once, at startup.

    Priority:
    1. ``face_detector_command`` when set, the platform is allowed and the
       executable resolves
    2. the bundled ``detect_faces`` helper when its MediaPipe backend is installed
    3. ``NullFaceDetector``
    """
    if not settings.face_detection_enabled:
        logger.info("Face detection disabled; scene images are copied unchanged")
        return NullFaceDetector()

    platforms = settings.face_detector_platforms
    if platforms is not None and sys.platform not in platforms:
        logger.info("Face detection not supported on %s", sys.platform)
        return NullFaceDetector()

    if settings.face_detector_command:
        executable = settings.face_detector_command[0]
        if shutil.which(executable) is None and not Path(executable).is_file():
            logger.warning("Face detector executable not found: %s", executable)
            return NullFaceDetector()
        command = settings.face_detector_command
    elif importlib.util.find_spec("mediapipe") is not None:
        command = [sys.executable, "-m", _BUNDLED_HELPER_MODULE]
    else:
        logger.info("No face detector available (install the 'detect' extra)")
        return NullFaceDetector()

    logger.info("Face detector: %s", " ".join(command))
    return SubprocessFaceDetector(
        command,
        timeout=settings.face_detector_timeout_s,
        max_output_bytes=settings.face_detector_max_output_bytes,
        platforms=platforms,
    )
