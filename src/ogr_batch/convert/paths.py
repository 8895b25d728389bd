"""Mirror the source tree layout under the destination root."""

from __future__ import annotations

from pathlib import Path


def relative_parent(source_root: Path, input_path: Path) -> Path:
    """Return the directory of ``input_path`` relative to ``source_root``.

    Raises ``ValueError`` when ``input_path`` does not live under
    ``source_root``. Inputs come from walking ``source_root`` so this only
    fires on programming errors.
    """

    relative = input_path.relative_to(source_root)
    return relative.parent


def output_directory_for(
    source_root: Path, dest_root: Path, input_path: Path
) -> Path:
    parent = relative_parent(source_root, input_path)
    # Path(".") for files directly under the source root.
    if parent == Path("."):
        return dest_root
    return dest_root / parent


def resolve_output_directory(
    source_root: Path, dest_root: Path, input_path: Path
) -> Path:
    """Return the mirrored output directory, creating it when missing.

    Safe to call from several workers at once for the same directory.
    """

    directory = output_directory_for(source_root, dest_root, input_path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


__all__ = [
    "output_directory_for",
    "relative_parent",
    "resolve_output_directory",
]
