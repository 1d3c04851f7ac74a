"""Errors raised while building the resolution index or serving modules.

Lookup misses are not errors: the finder simply declines and Python's
normal import search continues.
"""


class ArchiveImporterError(Exception):
    """Base class for all archive importer failures."""


class SourceError(ArchiveImporterError):
    """A source specification could not be turned into archives."""


class EmbeddedDataError(SourceError):
    """The caller's embedded data section is missing or malformed."""


class FetchError(ArchiveImporterError):
    """An archive download did not succeed."""

    def __init__(self, url: str, status: int | None, reason: str = ""):
        self.url = url
        self.status = status
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"GET '{url}' failed with status: {status}{detail}")


class ArchiveDecodeError(ArchiveImporterError):
    """An archive could not be read."""


class ExtractionError(ArchiveImporterError):
    """A module could not be written to the extraction directory."""
