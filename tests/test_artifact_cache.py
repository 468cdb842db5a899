import os
import re

import pytest

from models.references import ReferenceItem
from utils.artifact_cache import (
    SANITIZED_MARKER,
    build_cache_key,
    collage_filename,
    is_fresh,
    sanitized_filename,
    write_bytes_atomic,
)


def set_mtime(path, seconds):
    os.utime(path, (seconds, seconds))


# ---------------------------------------------------------------------------
# build_cache_key / filenames
# ---------------------------------------------------------------------------

class TestCacheKey:
    def test_twelve_hex_chars(self):
        key = build_cache_key("v2", [(1, "identity", "uploads/a.jpg")])
        assert re.fullmatch(r"[0-9a-f]{12}", key)

    def test_deterministic(self):
        rows = [(1, "identity", "uploads/a.jpg"), (2, None, "uploads/b.jpg")]
        assert build_cache_key("v2", rows) == build_cache_key("v2", list(rows))

    def test_order_sensitive(self):
        a = (1, "identity", "uploads/a.jpg")
        b = (2, "scene", "uploads/b.jpg")
        assert build_cache_key("v2", [a, b]) != build_cache_key("v2", [b, a])

    def test_version_changes_key(self):
        rows = [(1, "identity", "uploads/a.jpg")]
        assert build_cache_key("v2", rows) != build_cache_key("v3", rows)

    def test_none_hashes_like_empty_string(self):
        assert build_cache_key("v2", [(1, None, "x")]) == build_cache_key("v2", [(1, "", "x")])

    def test_matches_line_format(self):
        import hashlib
        expected = hashlib.sha1(b"v2\n1|identity|uploads/a.jpg\n").hexdigest()[:12]
        assert build_cache_key("v2", [(1, "identity", "uploads/a.jpg")]) == expected


class TestFilenames:
    def test_collage_filename(self):
        items = [
            ReferenceItem(index=1, role="identity", image="/uploads/a.jpg"),
            ReferenceItem(index=2, role="scene", image="/uploads/b.jpg"),
        ]
        name = collage_filename("v2", items, ["uploads/a.jpg", "uploads/b.jpg"])
        assert re.fullmatch(r"identity-collage-v2-[0-9a-f]{12}\.jpg", name)

    @pytest.mark.parametrize("local, expected", [
        ("uploads/a.jpg", "a.scene-noface.jpg"),
        ("uploads/a.JPEG", "a.scene-noface.jpg"),
        ("uploads/shoot/IMG_1.png", "IMG_1.scene-noface.jpg"),
        ("uploads/photo.final.webp", "photo.final.scene-noface.jpg"),
    ])
    def test_sanitized_filename(self, local, expected):
        assert sanitized_filename(local) == expected
        assert SANITIZED_MARKER in expected

    def test_same_stem_shares_sanitized_name(self):
        names = {sanitized_filename(p) for p in ("uploads/a.jpg", "uploads/a.png", "uploads/x/a.webp")}
        assert names == {"a.scene-noface.jpg"}


# ---------------------------------------------------------------------------
# is_fresh
# ---------------------------------------------------------------------------

class TestIsFresh:
    def test_missing_derived_is_stale(self, tmp_path):
        src = tmp_path / "src.jpg"
        src.write_bytes(b"x")
        assert is_fresh(tmp_path / "out.jpg", [src]) is False

    def test_newer_derived_is_fresh(self, tmp_path):
        src = tmp_path / "src.jpg"
        out = tmp_path / "out.jpg"
        src.write_bytes(b"x")
        out.write_bytes(b"y")
        set_mtime(src, 1_000_000)
        set_mtime(out, 1_000_100)
        assert is_fresh(out, [src]) is True

    def test_equal_mtime_is_fresh(self, tmp_path):
        src = tmp_path / "src.jpg"
        out = tmp_path / "out.jpg"
        src.write_bytes(b"x")
        out.write_bytes(b"y")
        set_mtime(src, 1_000_000)
        set_mtime(out, 1_000_000)
        assert is_fresh(out, [src]) is True

    def test_any_newer_source_makes_stale(self, tmp_path):
        a, b, out = tmp_path / "a.jpg", tmp_path / "b.jpg", tmp_path / "out.jpg"
        for p in (a, b, out):
            p.write_bytes(b"x")
        set_mtime(a, 1_000_000)
        set_mtime(out, 1_000_100)
        set_mtime(b, 1_000_200)
        assert is_fresh(out, [a, b]) is False

    def test_missing_source_raises(self, tmp_path):
        out = tmp_path / "out.jpg"
        out.write_bytes(b"y")
        with pytest.raises(FileNotFoundError):
            is_fresh(out, [tmp_path / "gone.jpg"])


# ---------------------------------------------------------------------------
# write_bytes_atomic
# ---------------------------------------------------------------------------

class TestWriteBytesAtomic:
    def test_writes_and_creates_parent(self, tmp_path):
        target = tmp_path / "uploads" / "out.jpg"
        write_bytes_atomic(target, b"abc")
        assert target.read_bytes() == b"abc"

    def test_overwrites_without_leftovers(self, tmp_path):
        target = tmp_path / "out.jpg"
        target.write_bytes(b"old")
        write_bytes_atomic(target, b"new")
        assert target.read_bytes() == b"new"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["out.jpg"]
