from __future__ import annotations

import hashlib
import os
from pathlib import Path

import pytest

from transfer.manifest import build_manifest, walk_files


def _sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def test_manifest_has_one_entry_per_file_with_digest(tmp_path: Path, device_info) -> None:
    root = tmp_path / "src"
    (root / "nested" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    (root / "nested" / "b.bin").write_bytes(b"\x00\x01\x02" * 100)
    (root / "nested" / "deeper" / "c").write_bytes(b"")

    manifest = build_manifest(root, device_info)

    assert len(manifest) == 3
    assert set(manifest.files) == {"a.txt", "b.bin", "c"}
    for file_id, meta in manifest.files.items():
        source = manifest.sources[file_id]
        assert meta.id == meta.file_name == file_id
        assert meta.size == source.stat().st_size
        assert meta.sha256 == _sha256(source)
    assert manifest.files["a.txt"].file_type == ".txt"
    assert manifest.files["c"].file_type == ""


def test_basename_collision_keeps_later_file(tmp_path: Path, device_info) -> None:
    (tmp_path / "x").mkdir()
    (tmp_path / "y").mkdir()
    (tmp_path / "x" / "a.txt").write_text("first", encoding="utf-8")
    (tmp_path / "y" / "a.txt").write_text("second!", encoding="utf-8")

    manifest = build_manifest(tmp_path, device_info)

    assert list(manifest.files) == ["a.txt"]
    meta = manifest.files["a.txt"]
    assert meta.size == len("second!")
    assert meta.sha256 == _sha256(tmp_path / "y" / "a.txt")
    assert manifest.sources["a.txt"] == tmp_path / "y" / "a.txt"


def test_walk_order_is_lexical_depth_first(tmp_path: Path) -> None:
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "z.txt").write_text("1", encoding="utf-8")
    (tmp_path / "b.txt").write_text("2", encoding="utf-8")
    (tmp_path / "0.txt").write_text("3", encoding="utf-8")

    names = [p.relative_to(tmp_path).as_posix() for p in walk_files(tmp_path)]

    assert names == ["0.txt", "a/z.txt", "b.txt"]


def test_single_file_root(tmp_path: Path, device_info) -> None:
    target = tmp_path / "only.dat"
    target.write_bytes(b"payload")

    manifest = build_manifest(target, device_info)

    assert list(manifest.files) == ["only.dat"]
    assert manifest.files["only.dat"].size == 7


def test_missing_root_raises(tmp_path: Path, device_info) -> None:
    with pytest.raises(FileNotFoundError):
        build_manifest(tmp_path / "missing", device_info)


def test_hash_failure_aborts_manifest(tmp_path: Path, device_info) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "b.txt").write_text("b", encoding="utf-8")

    def failing_hasher(path: Path) -> str:
        if path.name == "b.txt":
            raise PermissionError("denied")
        return "digest"

    with pytest.raises(PermissionError):
        build_manifest(tmp_path, device_info, hasher=failing_hasher)


def test_preview_only_for_small_text_files(tmp_path: Path, device_info) -> None:
    (tmp_path / "note.txt").write_text("hello clipboard", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    with_preview = build_manifest(tmp_path, device_info, include_preview=True)
    without_preview = build_manifest(tmp_path, device_info)

    assert with_preview.files["note.txt"].preview == "hello clipboard"
    assert with_preview.files["image.png"].preview is None
    assert without_preview.files["note.txt"].preview is None


def test_wire_format_uses_localsend_names(tmp_path: Path, device_info) -> None:
    (tmp_path / "a.txt").write_text("alpha", encoding="utf-8")

    payload = build_manifest(tmp_path, device_info).to_request().to_wire()

    entry = payload["files"]["a.txt"]
    assert set(entry) == {"id", "fileName", "size", "fileType", "sha256"}
    assert payload["info"]["alias"] == "Tester"
    assert payload["info"]["deviceModel"]
    assert "download" in payload["info"]


def test_walk_skips_symlinked_dirs_and_special_files(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "real.txt").write_text("x", encoding="utf-8")
    (tmp_path / "sub" / "loop").symlink_to(tmp_path, target_is_directory=True)
    os.mkfifo(tmp_path / "pipe")

    names = [p.relative_to(tmp_path).as_posix() for p in walk_files(tmp_path)]

    assert names == ["sub/real.txt"]
