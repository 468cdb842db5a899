"""Canonical upload paths.

Every image entering the pipeline is addressed by a path relative to the data
directory of the form ``uploads/<filename>``; callers see the public form
``/uploads/<filename>``. ``normalize_upload_path`` is the only gate between
caller-supplied strings and the filesystem, so it works as an allow-list.
"""
from pathlib import Path

UPLOADS_PREFIX = "uploads/"

_FORBIDDEN_SEGMENTS = frozenset({".", ".."})


def normalize_upload_path(raw: str) -> str | None:
    """Return ``uploads/<...>`` for an acceptable upload path, otherwise None.

    Accepts ``/uploads/...`` and ``uploads/...``. Absolute OS paths, URLs,
    other roots and anything that could step outside the uploads directory are
    refused; the caller should then keep using the original value.
    """
    value = raw.strip()
    if not value:
        return None
    if value.startswith("/" + UPLOADS_PREFIX):
        value = value[1:]
    elif not value.startswith(UPLOADS_PREFIX):
        return None

    if "\\" in value or "\x00" in value:
        return None

    segments = [s for s in value[len(UPLOADS_PREFIX):].split("/") if s]
    if not segments or any(s in _FORBIDDEN_SEGMENTS for s in segments):
        return None
    return UPLOADS_PREFIX + "/".join(segments)


def to_public_path(local_path: str) -> str:
    """``uploads/a.jpg`` → ``/uploads/a.jpg``."""
    return f"/{local_path}"


def resolve_upload_path(data_dir: Path, local_path: str) -> Path:
    return data_dir / local_path
