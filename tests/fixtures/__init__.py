"""Shared testing fixtures and stubs for the ogr_batch test suite."""

from .ogr2ogr import FAKE_EXECUTABLE, FakeConverter  # noqa: F401
from .workspace import WorkspaceBuilder, build_tree  # noqa: F401

__all__ = [
    "FAKE_EXECUTABLE",
    "FakeConverter",
    "WorkspaceBuilder",
    "build_tree",
]
