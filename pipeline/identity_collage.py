"""Identity reference collage: several reference photos in one labeled grid.

Reads:  data/uploads/<reference images>
Writes: data/uploads/identity-collage-<version>-<key>.jpg

The key covers the collage version and the ordered (index, role, path) of
every item, so identical requests resolve to the same file. Edits to a source
image are picked up by the mtime freshness check instead.
"""
import asyncio
import logging
import weakref
from collections.abc import Sequence
from pathlib import Path

from models.references import ReferenceItem
from pipeline import compositor
from settings import Settings
from utils.artifact_cache import collage_filename, is_fresh, write_bytes_atomic
from utils.upload_paths import UPLOADS_PREFIX, normalize_upload_path, resolve_upload_path, to_public_path

logger = logging.getLogger(__name__)

_MIN_ITEMS = 2


class IdentityCollageBuilder:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        # entries vanish once no task holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def get_or_create(self, items: Sequence[ReferenceItem]) -> str | None:
        """Return the public path of the collage for ``items``, building it if needed.

        Returns None when there are fewer than two items or when any item is
        not a readable upload; no partial collages are produced.
        """
        if len(items) < _MIN_ITEMS:
            return None

        local_paths: list[str] = []
        source_paths: list[Path] = []
        for item in items:
            local = normalize_upload_path(item.image)
            if local is None:
                logger.debug("Collage item %s is not an upload path: %r", item.index, item.image)
                return None
            full = resolve_upload_path(self.settings.data_dir, local)
            if not full.is_file():
                logger.debug("Collage item %s missing on disk: %s", item.index, full)
                return None
            local_paths.append(local)
            source_paths.append(full)

        filename = collage_filename(self.settings.collage_version, items, local_paths)
        local_output = UPLOADS_PREFIX + filename
        output = resolve_upload_path(self.settings.data_dir, local_output)
        self.settings.uploads_dir.mkdir(parents=True, exist_ok=True)

        async with self._lock_for(filename):
            if is_fresh(output, source_paths):
                logger.debug("Collage cache hit: %s", filename)
                return to_public_path(local_output)

            data = await asyncio.to_thread(
                self._render, source_paths, [item.label for item in items]
            )
            await asyncio.to_thread(write_bytes_atomic, output, data)

        logger.info("Collage written → %s (%d images)", output, len(items))
        return to_public_path(local_output)

    def _render(self, sources: Sequence[Path], labels: Sequence[str]) -> bytes:
        s = self.settings
        layout = compositor.collage_layout(
            len(sources), s.collage_tile_size, s.collage_gap, s.collage_outer_margin
        )
        tiles = [
            compositor.resize_to_tile(compositor.load_image(path.read_bytes()), s.collage_tile_size)
            for path in sources
        ]
        canvas = compositor.build_collage_canvas(tiles, labels, layout)
        return compositor.encode_jpeg(canvas, s.collage_jpeg_quality)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
