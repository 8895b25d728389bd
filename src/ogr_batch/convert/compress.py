"""Gzip post-processing for converted outputs."""

from __future__ import annotations

import gzip
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

GZIP_SUFFIX = ".gz"


@dataclass(frozen=True)
class CompressionResult:
    ok: bool
    path: Path
    reason: Optional[str] = None


def compressed_path(path: Path) -> Path:
    return path.with_name(path.name + GZIP_SUFFIX)


def compress_output(path: Path) -> CompressionResult:
    """Write ``<path>.gz`` next to ``path``, replacing any earlier copy.

    The whole file is read into memory first. IO errors are reported in the
    result rather than raised.
    """

    target = compressed_path(path)
    try:
        payload = path.read_bytes()
        with gzip.open(target, "wb") as handle:
            handle.write(payload)
    except OSError as exc:
        return CompressionResult(ok=False, path=target, reason=str(exc))
    return CompressionResult(ok=True, path=target)


__all__ = [
    "CompressionResult",
    "GZIP_SUFFIX",
    "compress_output",
    "compressed_path",
]
