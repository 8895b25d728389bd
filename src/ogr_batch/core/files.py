"""File discovery helpers shared across ogr-batch modules."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Set

__all__ = [
    "parse_extensions",
    "iter_input_files",
]


def parse_extensions(
    values: Optional[Sequence[str]],
    *,
    default: Optional[Iterable[str]] = None,
) -> Set[str]:
    """Normalize extension strings to a lowercase set without leading dots.

    Parameters
    ----------
    values:
        Raw extension inputs (with or without leading dots).
    default:
        Fallback used when ``values`` is empty or only holds blanks.
        Defaults to ``{"shp"}``.
    """
    fallback = set(default or {"shp"})
    if not values:
        return fallback

    normalized: Set[str] = set()
    for item in values:
        candidate = item.strip().lower().lstrip(".")
        if candidate:
            normalized.add(candidate)
    return normalized or fallback


def iter_input_files(root: Path, extensions: Set[str]) -> Iterator[Path]:
    """Yield files under ``root`` whose suffix is in ``extensions``.

    The walk is recursive and sorted by path so sequential runs visit files
    in a stable order.
    """
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")
    for candidate in _sorted_directory_files(root):
        if _matches_extension(candidate, extensions):
            yield candidate


def _sorted_directory_files(root: Path) -> List[Path]:
    return sorted(
        (child for child in root.rglob("*") if child.is_file()),
        key=lambda p: str(p.relative_to(root)).lower(),
    )


def _matches_extension(path: Path, extensions: Set[str]) -> bool:
    return path.suffix.lower().lstrip(".") in extensions
