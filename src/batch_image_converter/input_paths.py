"""Helpers for turning dropped or selected items into candidate image paths."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Union
from urllib.parse import unquote, urlparse

from loguru import logger

from batch_image_converter.image_formats import is_accepted_input

SplitTexts = Callable[[str], Sequence[str]]


def dedupe_paths(paths: Iterable[Path]) -> List[Path]:
    """Deduplicate paths case-insensitively, preserving order."""
    seen: set[str] = set()
    deduped: List[Path] = []
    for path in paths:
        marker = str(path).lower()
        if marker in seen:
            continue
        seen.add(marker)
        deduped.append(path)
    return deduped


def normalize_dropped_path_text(value: str) -> str:
    """Strip one dropped item and turn a ``file://`` URI into a plain path."""
    text = value.strip()
    parsed = urlparse(text) if text.startswith("file://") else None
    if parsed is None or not parsed.path:
        return text

    path_text = unquote(parsed.path)
    host = parsed.netloc.lower()
    if host and host != "localhost":
        # UNC共有 (file://server/share/x.png)
        return f"//{parsed.netloc}{path_text}"
    if os.name == "nt" and len(path_text) >= 3 and path_text[0] == "/" and path_text[2] == ":":
        return path_text[1:]
    return path_text


def parse_drop_paths(raw_data: Any, split_texts: Optional[SplitTexts] = None) -> List[Path]:
    """Turn a drop payload into a deduplicated path list.

    Tk delivers ``{C:/with space.png} C:/plain.png``; other toolkits and the
    clipboard deliver one path or ``file://`` URI per line. ``split_texts`` is
    the toolkit's own splitter (e.g. Tk ``splitlist``).
    """
    payload = str(raw_data or "").strip()
    if not payload:
        return []

    paths = [Path(text) for text in map(_clean_drop_item, _drop_items(payload, split_texts)) if text]
    return dedupe_paths(paths)


def _drop_items(payload: str, split_texts: Optional[SplitTexts]) -> Iterator[str]:
    if split_texts is None:
        chunks: Sequence[str] = payload.splitlines()
    else:
        try:
            chunks = split_texts(payload)
        except Exception:
            logger.debug("ドロップデータを分割できないため1件として扱います")
            chunks = [payload]
    for chunk in chunks:
        # splitlist の結果に改行区切りの複数パスが残ることがある
        yield from str(chunk).splitlines() or [""]


def _clean_drop_item(item: str) -> str:
    text = item.strip()
    if len(text) >= 2 and text[0] == "{" and text[-1] == "}":
        text = text[1:-1]
    return normalize_dropped_path_text(text.strip().strip('"'))


def discover_image_paths(root_dir: Path, *, recursive: bool = True) -> List[Path]:
    """Return accepted image files under ``root_dir``, sorted case-insensitively."""
    pattern = "**/*" if recursive else "*"
    found = [path for path in root_dir.glob(pattern) if path.is_file() and is_accepted_input(path)]
    return sorted(found, key=lambda p: str(p).lower())


def collect_input_paths(
    items: Iterable[Union[str, Path]],
    *,
    recursive: bool = False,
) -> List[Path]:
    """Expand folders and drop anything that is not an accepted image file.

    Missing files with an accepted extension are kept so that the job store
    can report them.
    """
    collected: List[Path] = []
    for item in items:
        path = Path(normalize_dropped_path_text(str(item)))
        if path.is_dir():
            discovered = discover_image_paths(path, recursive=recursive)
            logger.debug(f"フォルダから{len(discovered)}件の画像を検出: {path}")
            collected.extend(discovered)
        elif is_accepted_input(path):
            collected.append(path)
        else:
            logger.debug(f"対象外の拡張子のためスキップ: {path}")
    return dedupe_paths(collected)
