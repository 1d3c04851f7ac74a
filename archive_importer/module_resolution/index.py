"""Resolution index - relative module path to archive content.

Sources are folded in the order given, archives within a source in the
order they were opened. The first archive to provide a relative path owns
it for the lifetime of the index.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from ..settings import ArchiveImporterSettings
from .indexer import index_archive
from .sources import ArchiveRef
from .sources import parse_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    """A resolvable module."""

    relative_path: str
    full_path: str
    provenance: str
    content: bytes
    version: str


class ResolutionIndex:
    """Mapping of relative module path to IndexEntry, first registration wins."""

    def __init__(self):
        self._entries: dict[str, IndexEntry] = {}
        self._directories: set[str] = set()
        self._frozen = False

    def register(self, entry: IndexEntry) -> bool:
        """Add entry unless its relative path is already taken.

        Returns:
            True if the entry was stored, False if an earlier one kept the path

        Raises:
            RuntimeError: Index has been frozen
        """
        if self._frozen:
            raise RuntimeError("Resolution index is frozen")
        if entry.relative_path in self._entries:
            logger.debug(
                f"[archive:index] {entry.relative_path} from {entry.provenance} shadowed by "
                f"{self._entries[entry.relative_path].provenance}"
            )
            return False
        self._entries[entry.relative_path] = entry
        return True

    def freeze(self) -> None:
        """Stop accepting registrations."""
        for path in self._entries:
            parts = path.split("/")[:-1]
            self._directories.update("/".join(parts[: depth + 1]) for depth in range(len(parts)))
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, relative_path: str) -> IndexEntry | None:
        return self._entries.get(relative_path)

    def has_prefix(self, directory: str) -> bool:
        """Check if any module lives below the given directory."""
        directory = directory.rstrip("/")
        if self._frozen:
            return directory in self._directories
        prefix = directory + "/"
        return any(path.startswith(prefix) for path in self._entries)

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(self._entries.values())

    def __repr__(self) -> str:
        return f"ResolutionIndex({len(self._entries)} modules)"


def build_index(
    sources: Iterable[str],
    caller_file: str | Path,
    settings: ArchiveImporterSettings,
) -> ResolutionIndex:
    """Build a frozen index from source specifications.

    Args:
        sources: Globs, URLs, CPAN:// shorthands or __DATA__, highest priority first
        caller_file: File relative globs and embedded data refer to
        settings: Active settings

    Returns:
        Frozen ResolutionIndex

    Raises:
        ArchiveImporterError: Any source failed; no index is returned
    """
    specs = list(sources)
    index = ResolutionIndex()

    for spec in specs:
        source = parse_source(spec, caller_file, settings)
        logger.debug(f"[archive:source] {spec} -> {source!r}")
        refs: list[ArchiveRef] = source.resolve()
        try:
            while refs:
                ref = refs.pop(0)
                archive = index_archive(ref, settings.module_suffixes)
                for module in archive.modules:
                    index.register(
                        IndexEntry(
                            relative_path=module.relative_path,
                            full_path=module.full_path,
                            provenance=f"{archive.source_path}/{module.full_path}",
                            content=module.content,
                            version=archive.version,
                        )
                    )
        finally:
            for ref in refs:
                ref.close()

    index.freeze()
    logger.info(f"Indexed {len(index)} modules from {len(specs)} source(s)")
    return index
