from pathlib import Path

from batch_image_converter.input_paths import (
    collect_input_paths,
    dedupe_paths,
    discover_image_paths,
    normalize_dropped_path_text,
    parse_drop_paths,
)


def test_normalize_dropped_path_text_keeps_plain_path() -> None:
    value = "/tmp/example.png"
    assert normalize_dropped_path_text(value) == value


def test_normalize_dropped_path_text_decodes_file_uri() -> None:
    uri = "file:///tmp/a%20b.png"
    assert normalize_dropped_path_text(uri) == "/tmp/a b.png"


def test_normalize_dropped_path_text_supports_unc_file_uri() -> None:
    uri = "file://server/share/sample.png"
    assert normalize_dropped_path_text(uri) == "//server/share/sample.png"


def test_dedupe_paths_is_case_insensitive() -> None:
    paths = [Path("/tmp/A.png"), Path("/tmp/a.png"), Path("/tmp/B.png")]
    assert dedupe_paths(paths) == [Path("/tmp/A.png"), Path("/tmp/B.png")]


def test_parse_drop_paths_splits_lines_and_strips_wrappers() -> None:
    raw = '{/tmp/with space.png}\n"/tmp/quoted.gif"\nfile:///tmp/uri.bmp\n/tmp/URI.BMP\n'
    assert parse_drop_paths(raw) == [
        Path("/tmp/with space.png"),
        Path("/tmp/quoted.gif"),
        Path("/tmp/uri.bmp"),
    ]


def test_parse_drop_paths_uses_toolkit_splitter() -> None:
    def splitlist(text: str):
        return ("/tmp/a.png", "/tmp/b.tiff")

    assert parse_drop_paths("ignored", split_texts=splitlist) == [Path("/tmp/a.png"), Path("/tmp/b.tiff")]


def test_parse_drop_paths_empty_payload() -> None:
    assert parse_drop_paths(None) == []
    assert parse_drop_paths("   ") == []


def test_parse_drop_paths_falls_back_when_splitter_fails() -> None:
    def broken_splitlist(text: str):
        raise ValueError("unbalanced braces")

    assert parse_drop_paths("/tmp/a.png", split_texts=broken_splitlist) == [Path("/tmp/a.png")]


def test_normalize_dropped_path_text_localhost_uri() -> None:
    assert normalize_dropped_path_text("  file://localhost/tmp/x.gif ") == "/tmp/x.gif"
    assert normalize_dropped_path_text("file://") == "file://"


def test_discover_image_paths_filters_and_recurses(tmp_path: Path) -> None:
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "root.JPG").write_bytes(b"x")
    (tmp_path / "a" / "img.gif").write_bytes(b"x")
    (tmp_path / "a" / "b" / "img.tiff").write_bytes(b"x")
    (tmp_path / "a" / "b" / "skip.webp").write_bytes(b"x")
    (tmp_path / "a" / "b" / "skip.txt").write_bytes(b"x")

    found = discover_image_paths(tmp_path)
    rel_paths = {p.relative_to(tmp_path).as_posix() for p in found}
    assert rel_paths == {"root.JPG", "a/img.gif", "a/b/img.tiff"}

    shallow = discover_image_paths(tmp_path, recursive=False)
    assert [p.name for p in shallow] == ["root.JPG"]


def test_discover_image_paths_returns_sorted_paths(tmp_path: Path) -> None:
    for name in ("z.bmp", "A.png", "m.jpeg"):
        (tmp_path / name).write_bytes(b"x")

    normalized = [str(p).lower() for p in discover_image_paths(tmp_path)]
    assert normalized == sorted(normalized)


def test_collect_input_paths_expands_folders(tmp_path: Path) -> None:
    folder = tmp_path / "album"
    (folder / "nested").mkdir(parents=True)
    (folder / "one.png").write_bytes(b"x")
    (folder / "nested" / "two.png").write_bytes(b"x")
    loose = tmp_path / "loose.bmp"
    loose.write_bytes(b"x")
    missing = tmp_path / "missing.gif"

    flat = collect_input_paths([folder, loose, tmp_path / "notes.txt", missing, str(loose).upper()])
    assert flat == [folder / "one.png", loose, missing]

    deep = collect_input_paths([folder], recursive=True)
    assert deep == [folder / "nested" / "two.png", folder / "one.png"]
