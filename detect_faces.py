#!/usr/bin/env python3
"""Face-detection helper run as a child process by the scene sanitizer.

Usage:
    python -m detect_faces /abs/path/to/image.jpg

Prints one JSON object to stdout:
    {"width": W, "height": H, "faces": [{"x": .., "y": .., "width": .., "height": ..}]}

Boxes are normalized to [0, 1] with a top-left origin, measured on the
EXIF-rotated image. Exit codes: 2 usage, 3 unreadable image, 5 detection failed.
Detection needs the optional MediaPipe backend (``pip install .[detect]``);
without it the helper exits with code 5.
"""
import json
import sys

from PIL import Image, ImageOps

_MIN_CONFIDENCE = 0.5


def _emit(width: int, height: int, faces: list[dict], code: int = 0) -> None:
    print(json.dumps({"width": width, "height": height, "faces": faces}))
    sys.exit(code)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def boxes_from_detections(detections) -> list[dict]:
    """Convert MediaPipe detections to boxes clipped to the image."""
    faces = []
    for det in detections:
        rbox = det.location_data.relative_bounding_box
        x = _clamp(rbox.xmin)
        y = _clamp(rbox.ymin)
        faces.append({
            "x": x,
            "y": y,
            "width": _clamp(rbox.xmin + rbox.width) - x,
            "height": _clamp(rbox.ymin + rbox.height) - y,
        })
    return faces


def detect(img: Image.Image, min_confidence: float = _MIN_CONFIDENCE) -> list[dict]:
    """Return normalized face boxes for an already-rotated image."""
    import mediapipe as mp
    import numpy as np

    arr = np.array(img.convert("RGB"))
    with mp.solutions.face_detection.FaceDetection(
        model_selection=1, min_detection_confidence=min_confidence
    ) as detector:
        results = detector.process(arr)
    return boxes_from_detections(results.detections or [])


def main(argv: list[str]) -> None:
    if len(argv) < 2:
        _emit(0, 0, [], 2)

    try:
        with Image.open(argv[1]) as raw:
            img = ImageOps.exif_transpose(raw)
            img.load()
    except OSError:
        _emit(0, 0, [], 3)

    width, height = img.size
    try:
        faces = detect(img)
    except Exception:
        _emit(width, height, [], 5)
    _emit(width, height, faces)


if __name__ == "__main__":
    main(sys.argv)
