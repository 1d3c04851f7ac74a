"""Module resolution from tar archives.

Builds a resolution index from archive sources (local globs, URLs,
embedded data) and serves it to Python's import system.
"""

from .errors import ArchiveDecodeError
from .errors import ArchiveImporterError
from .errors import EmbeddedDataError
from .errors import ExtractionError
from .errors import FetchError
from .errors import SourceError
from .extract import extract_module
from .extract import extraction_target
from .finder import ArchiveFinder
from .finder import ArchiveLoader
from .finder import install
from .finder import uninstall
from .index import IndexEntry
from .index import ResolutionIndex
from .index import build_index
from .indexer import index_archive
from .indexer import version_token
from .sources import ArchiveRef
from .sources import EmbeddedSource
from .sources import GlobSource
from .sources import UrlSource
from .sources import parse_source

__all__ = [
    "ArchiveDecodeError",
    "ArchiveFinder",
    "ArchiveImporterError",
    "ArchiveLoader",
    "ArchiveRef",
    "EmbeddedDataError",
    "EmbeddedSource",
    "ExtractionError",
    "FetchError",
    "GlobSource",
    "IndexEntry",
    "ResolutionIndex",
    "SourceError",
    "UrlSource",
    "build_index",
    "extract_module",
    "extraction_target",
    "index_archive",
    "install",
    "parse_source",
    "uninstall",
    "version_token",
]
