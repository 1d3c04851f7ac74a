"""Import hook serving modules from a resolution index.

The ArchiveFinder sits in sys.meta_path ahead of the filesystem PathFinder,
so archive contents shadow installed modules of the same name. Lookups the
index cannot answer are declined and the normal search continues.
"""

from __future__ import annotations

import importlib.abc
import importlib.machinery
import importlib.util
import inspect
import io
import logging
import sys
from collections.abc import Iterable
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import BinaryIO

from ..settings import ArchiveImporterSettings
from ..settings import load_settings
from .errors import ExtractionError
from .extract import extract_module
from .index import ResolutionIndex
from .index import build_index

logger = logging.getLogger(__name__)


class ArchiveLoader(importlib.abc.ExecutionLoader):
    """Loader for one module whose source was read from an archive."""

    def __init__(self, fullname: str, relative_path: str, origin: str, data: bytes, is_package: bool):
        self.fullname = fullname
        self.relative_path = relative_path
        self.origin = origin
        self.data = data
        self._is_package = is_package

    def _check_name(self, fullname: str) -> None:
        if fullname != self.fullname:
            raise ImportError(f"{self!r} cannot handle {fullname!r}", name=fullname)

    def get_filename(self, fullname: str) -> str:
        self._check_name(fullname)
        return self.origin

    def get_source(self, fullname: str) -> str:
        self._check_name(fullname)
        return importlib.util.decode_source(self.data)

    def get_code(self, fullname: str):
        self._check_name(fullname)
        # Compile the raw bytes so PEP 263 coding declarations are honored
        return self.source_to_code(self.data, self.origin)

    def is_package(self, fullname: str) -> bool:
        self._check_name(fullname)
        return self._is_package

    def __repr__(self) -> str:
        return f"ArchiveLoader({self.fullname} from {self.origin})"


class ArchiveFinder(importlib.abc.MetaPathFinder):
    """Meta path finder answering imports from a ResolutionIndex.

    In extraction mode (extract_dir configured or debug enabled) every
    served module is first written below the extraction root and the
    written file becomes the module's origin. Otherwise modules are served
    from memory and the origin is the archive provenance, which is for
    display only.
    """

    def __init__(self, index: ResolutionIndex, settings: ArchiveImporterSettings | None = None):
        """Initialize finder.

        Args:
            index: Index to serve modules from
            settings: Active settings (suffixes, extraction)
        """
        self.index = index
        self.settings = settings or ArchiveImporterSettings()
        self.suffixes = tuple(self.settings.module_suffixes)
        self.extraction_root: Path | None = (
            self.settings.extraction_root if self.settings.extraction_enabled else None
        )
        self._origins: dict[str, str] = {}
        self._extracted: dict[str, Path] = {}

    @property
    def origins(self) -> Mapping[str, str]:
        """Recorded origin of every module served so far, by relative path."""
        return MappingProxyType(self._origins)

    def resolve(self, relative_path: str) -> BinaryIO | None:
        """Open a module by its relative path.

        Args:
            relative_path: Path as stored in the index, e.g. "pkg/mod.py"

        Returns:
            Readable stream positioned at the module content, None if unknown

        Raises:
            ExtractionError: Extraction mode is active and the module file could not
                be written or read back
        """
        entry = self.index.get(relative_path)
        if entry is None:
            return None

        if self.extraction_root is not None:
            path = self._extracted.get(relative_path)
            if path is None or not path.exists():
                path = extract_module(self.extraction_root, relative_path, entry.version, entry.content)
                self._extracted[relative_path] = path
            self._origins[relative_path] = str(path)
            try:
                return open(path, "rb")
            except OSError as e:
                raise ExtractionError(f"Couldn't read {path}: {e}") from e

        self._origins.setdefault(relative_path, entry.provenance)
        return io.BytesIO(entry.content)

    def _candidates(self, fullname: str) -> Iterable[tuple[str, bool]]:
        base = fullname.replace(".", "/")
        for suffix in self.suffixes:
            # Package directories win over same-named modules, as on the filesystem
            yield f"{base}/__init__{suffix}", True
            yield f"{base}{suffix}", False

    def find_spec(self, fullname, path=None, target=None):
        for relative_path, is_package in self._candidates(fullname):
            stream = self.resolve(relative_path)
            if stream is None:
                continue
            with stream:
                data = stream.read()

            origin = self._origins[relative_path]
            loader = ArchiveLoader(fullname, relative_path, origin, data, is_package)
            spec = importlib.util.spec_from_loader(fullname, loader, origin=origin, is_package=is_package)
            spec.has_location = True
            logger.debug(f"[archive:import] {fullname} -> {origin}")
            return spec

        if not self.index.has_prefix(fullname.replace(".", "/")):
            return None

        # Namespace portions rank last: any regular module or package wins
        found = self._find_elsewhere(fullname, path, target)
        if found is not None and not _is_namespace(found):
            logger.debug(f"[archive:import] {fullname} -> declined, found {found.origin}")
            return None

        spec = importlib.machinery.ModuleSpec(fullname, None, is_package=True)
        if found is not None:
            spec.submodule_search_locations = list(found.submodule_search_locations)
        logger.debug(f"[archive:import] {fullname} -> namespace package {spec.submodule_search_locations}")
        return spec

    def _find_elsewhere(self, fullname, path, target):
        """Ask the finders after this one in sys.meta_path."""
        finders = sys.meta_path
        if self in finders:
            finders = finders[finders.index(self) + 1 :]
        for finder in list(finders):
            if finder is self:
                continue
            find_spec = getattr(finder, "find_spec", None)
            if find_spec is None:
                continue
            spec = find_spec(fullname, path, target)
            if spec is not None:
                return spec
        return None

    def __repr__(self) -> str:
        mode = f"extract to {self.extraction_root}" if self.extraction_root else "in-memory"
        return f"ArchiveFinder({len(self.index)} modules, {mode})"


def _is_namespace(spec: importlib.machinery.ModuleSpec) -> bool:
    return spec.origin is None and spec.submodule_search_locations is not None


def _insert_finder(finder: ArchiveFinder) -> None:
    # Ahead of earlier archive finders and the filesystem search
    for position, existing in enumerate(sys.meta_path):
        if isinstance(existing, ArchiveFinder) or existing is importlib.machinery.PathFinder:
            sys.meta_path.insert(position, finder)
            return
    sys.meta_path.append(finder)


def _calling_file(depth: int) -> str:
    frame = inspect.currentframe()
    try:
        for _ in range(depth + 1):
            if frame is None:
                break
            frame = frame.f_back
        return frame.f_code.co_filename if frame is not None else "<unknown>"
    finally:
        del frame


def install(
    *sources: str,
    caller_file: str | Path | None = None,
    settings: ArchiveImporterSettings | None = None,
) -> ArchiveFinder:
    """Index archives and make their modules importable.

    Example:
        install("../external/*.tgz", "CPAN://YAML-PP-0.007.tar.gz", "__DATA__")

    Args:
        sources: Source specifications, highest priority first
        caller_file: File that relative globs and __DATA__ refer to
            (default: the file calling install)
        settings: Settings to use (default: load_settings())

    Returns:
        The installed ArchiveFinder

    Raises:
        ArchiveImporterError: Building the index failed; nothing is installed
    """
    if caller_file is None:
        caller_file = _calling_file(1)
    if settings is None:
        settings = load_settings()

    index = build_index(sources, caller_file, settings)
    finder = ArchiveFinder(index, settings)
    _insert_finder(finder)
    logger.debug(f"[archive:install] {finder!r}")
    return finder


def uninstall(finder: ArchiveFinder) -> bool:
    """Remove a finder from sys.meta_path.

    Modules it already served stay in sys.modules.

    Returns:
        True if the finder was installed
    """
    try:
        sys.meta_path.remove(finder)
    except ValueError:
        return False
    return True
