"""Deterministic artifact names and mtime-based freshness.

Derived images are cached on disk under a name computed from their inputs.
Source edits are not part of the name; they are caught by ``is_fresh``, which
treats an artifact as stale once any source is newer than it.
"""
import hashlib
import os
import tempfile
from collections.abc import Iterable, Sequence
from pathlib import Path, PurePosixPath

from models.references import ReferenceItem

SANITIZED_MARKER = ".scene-noface."

_KEY_LENGTH = 12


def build_cache_key(version: str, rows: Iterable[Sequence[object]]) -> str:
    """Hash a version line plus one ``|``-joined line per row.

    Row order is significant. None fields hash as the empty string.
    """
    digest = hashlib.sha1()
    digest.update(f"{version}\n".encode("utf-8"))
    for row in rows:
        line = "|".join("" if field is None else str(field) for field in row)
        digest.update(f"{line}\n".encode("utf-8"))
    return digest.hexdigest()[:_KEY_LENGTH]


def collage_filename(version: str, items: Sequence[ReferenceItem], local_paths: Sequence[str]) -> str:
    """``identity-collage-<version>-<key>.jpg`` for items in layout order.

    ``local_paths`` are the normalized upload paths, aligned with ``items``.
    """
    rows = [(item.index, item.role, path) for item, path in zip(items, local_paths)]
    return f"identity-collage-{version}-{build_cache_key(version, rows)}.jpg"


def sanitized_filename(local_path: str) -> str:
    """``uploads/shoot/IMG_1.PNG`` → ``IMG_1.scene-noface.jpg``.

    Only the stem survives, so ``uploads/a.jpg`` and ``uploads/a.png`` (or
    ``uploads/x/a.jpg``) share one artifact. Whichever source is sanitized
    first is served to both while the copy is at least as new as the source
    asked about.
    """
    stem = PurePosixPath(local_path).stem
    return f"{stem}{SANITIZED_MARKER}jpg"


def is_fresh(derived: Path, sources: Iterable[Path]) -> bool:
    """True if ``derived`` exists and is at least as new as every source.

    Raises FileNotFoundError if a source is missing.
    """
    source_mtimes = [source.stat().st_mtime_ns for source in sources]
    try:
        derived_mtime = derived.stat().st_mtime_ns
    except FileNotFoundError:
        return False
    return derived_mtime >= max(source_mtimes, default=0)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write via a sibling temp file and ``os.replace`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
