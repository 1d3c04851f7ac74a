"""Pytest configuration for archive importer tests."""

import io
import logging
import sys
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from archive_importer.module_resolution import ArchiveLoader


def tar_bytes(files: dict[str, bytes | str], compress: bool = True) -> bytes:
    """Build a tar (or tar.gz) archive in memory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz" if compress else "w") as tar:
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def make_archive(tmp_path) -> Callable[..., Path]:
    """Factory writing an archive below tmp_path."""

    def _make(relative: str, files: dict[str, bytes | str], compress: bool = True) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(tar_bytes(files, compress=compress))
        return path

    return _make


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate settings from the developer's environment and home directory."""
    for key in (
        "ARCHIVE_IMPORTER_MIRROR",
        "CPAN_MIRROR",
        "ARCHIVE_IMPORTER_EXTRACT",
        "ARCHIVE_IMPORTER_HOME",
        "ARCHIVE_IMPORTER_DEBUG",
    ):
        monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return home


@pytest.fixture
def restore_import_state(tmp_path):
    """Remove archive finders, archive-served modules and modules loaded from tmp_path after a test."""
    meta_path = list(sys.meta_path)
    modules = set(sys.modules)
    yield
    sys.meta_path[:] = meta_path
    for name in set(sys.modules) - modules:
        spec = getattr(sys.modules.get(name), "__spec__", None)
        if spec is None:
            continue
        if isinstance(spec.loader, ArchiveLoader) or spec.origin is None or spec.origin.startswith(str(tmp_path)):
            sys.modules.pop(name, None)


@pytest.fixture
def archive_bytes() -> Callable[..., bytes]:
    """In-memory archive builder."""
    return tar_bytes


@pytest.fixture
def root_logger():
    """Restore root logger handlers and level after a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
