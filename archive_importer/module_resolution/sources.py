"""Archive source implementations.

Concrete implementations of the ArchiveSource protocol for the supported
source specifications:
- GlobSource: Local archives matched by a filesystem glob
- UrlSource: Archives downloaded over HTTP(S), including CPAN:// shorthands
- EmbeddedSource: Base64 blocks embedded in the caller's own file
"""

from __future__ import annotations

import base64
import binascii
import glob
import gzip
import io
import logging
import os
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO
from typing import Protocol

import httpx

from ..settings import DEFAULT_MIRROR
from ..settings import ArchiveImporterSettings
from .errors import EmbeddedDataError
from .errors import FetchError
from .errors import SourceError

logger = logging.getLogger(__name__)

DATA_MARKER = "__DATA__"
CPAN_SCHEME = "CPAN://"
TAR_GZ_SUFFIX = ".tar.gz"
GZIP_MAGIC = b"\x1f\x8b"

URL_PATTERN = re.compile(r"^(?:CPAN|https?)://")
_ARCHIVE_NAME_PATTERN = re.compile(r"/([^/]+)\.tar\.gz$")
_DATA_START_PATTERN = re.compile(rf"^.*\n{DATA_MARKER}\r?\n", re.DOTALL)
_DATA_END_PATTERN = re.compile(r"^(?:\"\"\"|''')[ \t]*\r?$", re.MULTILINE)
_BLOCK_SEPARATOR = re.compile(r"(?:\r?\n){2,}")


@dataclass
class ArchiveRef:
    """An opened archive waiting to be indexed.

    Attributes:
        stream: Readable tar stream, decompressed where the source decompresses
        name_prefix: Top-level directory name stripped from entries when present
        source_path: Provenance prefix for entries (file path, URL, data block)
        display_name: Name the version token is derived from
    """

    stream: BinaryIO
    name_prefix: str
    source_path: str
    display_name: str

    def close(self) -> None:
        self.stream.close()


class ArchiveSource(Protocol):
    """A source specification that opens to zero or more archives."""

    def resolve(self) -> list[ArchiveRef]: ...


def resolve_glob_pattern(pattern: str, caller_file: str | Path) -> str:
    """Make a glob pattern absolute relative to the caller's directory.

    Args:
        pattern: Glob as given by the caller, any slash style
        caller_file: File of the code that asked for the archives

    Returns:
        Normalized absolute pattern using forward slashes
    """
    pattern = pattern.replace("\\", "/")
    if not os.path.isabs(pattern):
        caller_dir = os.path.dirname(os.path.abspath(caller_file)).replace("\\", "/")
        pattern = f"{caller_dir}/{pattern}"
    return posixpath.normpath(pattern)


def strip_tar_gz(filename: str) -> str:
    if filename.endswith(TAR_GZ_SUFFIX):
        return filename[: -len(TAR_GZ_SUFFIX)]
    return filename


class GlobSource:
    """Local archives matched by a glob pattern."""

    def __init__(self, pattern: str, caller_file: str | Path):
        """Initialize with glob pattern.

        Args:
            pattern: Absolute glob, or glob relative to the caller's directory
            caller_file: File of the code that asked for the archives
        """
        self.pattern = pattern
        self.resolved_pattern = resolve_glob_pattern(pattern, caller_file)

    def resolve(self) -> list[ArchiveRef]:
        """Open every matching archive in lexicographic order.

        Raises:
            SourceError: Nothing matched the pattern
        """
        matches = sorted(glob.glob(self.resolved_pattern))
        if not matches:
            raise SourceError(f"No archives match '{self.pattern}' (searched {self.resolved_pattern})")

        refs: list[ArchiveRef] = []
        try:
            for path in matches:
                logger.debug(f"[archive:open] {path}")
                refs.append(
                    ArchiveRef(
                        stream=open(path, "rb"),
                        name_prefix=strip_tar_gz(os.path.basename(path)),
                        source_path=path,
                        display_name=path,
                    )
                )
        except OSError as e:
            for ref in refs:
                ref.close()
            raise SourceError(f"Couldn't open archive: {e}") from e
        return refs

    def __repr__(self) -> str:
        return f"GlobSource({self.resolved_pattern})"


class UrlSource:
    """Gzipped tar archive downloaded over HTTP(S)."""

    def __init__(self, url: str, mirror: str = DEFAULT_MIRROR, timeout: float | None = 30.0):
        """Initialize with archive URL.

        Args:
            url: http(s):// URL or CPAN://<archive>.tar.gz shorthand
            mirror: Base URL substituted for the CPAN:// shorthand
            timeout: Download timeout in seconds

        Raises:
            SourceError: URL does not name a .tar.gz archive
        """
        self.url = url
        self.mirror = mirror
        self.timeout = timeout
        self.archive_name, self.expanded_url = expand_url(url, mirror)

    def resolve(self) -> list[ArchiveRef]:
        """Download the archive.

        Raises:
            FetchError: Request failed or returned a non-success status
        """
        logger.info(f"Downloading archive: {self.expanded_url}")
        try:
            response = httpx.get(self.expanded_url, timeout=self.timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            raise FetchError(self.expanded_url, None, str(e)) from e

        if not response.is_success:
            raise FetchError(self.expanded_url, response.status_code, response.reason_phrase)

        return [
            ArchiveRef(
                stream=gzip.GzipFile(fileobj=io.BytesIO(response.content)),
                name_prefix=self.archive_name,
                source_path=self.url,
                display_name=self.url,
            )
        ]

    def __repr__(self) -> str:
        return f"UrlSource({self.expanded_url})"


def expand_url(url: str, mirror: str = DEFAULT_MIRROR) -> tuple[str, str]:
    """Split the archive name out of a URL and expand the CPAN:// shorthand.

    Example: CPAN://JSON-PP-2.97001.tar.gz
           → ("JSON-PP-2.97001",
              "https://www.cpan.org/modules/by-module/JSON/JSON-PP-2.97001.tar.gz")

    Returns:
        Tuple of (archive_name, expanded_url)

    Raises:
        SourceError: URL does not end in <name>.tar.gz
    """
    match = _ARCHIVE_NAME_PATTERN.search(url)
    if not match:
        raise SourceError(f"Cannot determine archive name from '{url}': expected a .tar.gz file")

    archive_name = match.group(1)
    if url.startswith(CPAN_SCHEME):
        top = archive_name.split("-", 1)[0]
        url = f"{mirror.rstrip('/')}/modules/by-module/{top}/{url[len(CPAN_SCHEME) :]}"
    return archive_name, url


class EmbeddedSource:
    """Base64 encoded archives following a __DATA__ line in the caller's file.

    Python callers keep the section inside a trailing string literal:

        '''
        __DATA__
        <base64 tar or tar.gz>

        <base64 tar or tar.gz>
        '''
    """

    def __init__(self, caller_file: str | Path):
        self.caller_file = str(caller_file)

    def resolve(self) -> list[ArchiveRef]:
        """Decode every embedded block.

        Raises:
            SourceError: Caller file unreadable
            EmbeddedDataError: No data section, or a block is not valid base64
        """
        refs: list[ArchiveRef] = []
        for number, content in enumerate(self._decode_blocks(), start=1):
            if content.startswith(GZIP_MAGIC):
                stream: BinaryIO = gzip.GzipFile(fileobj=io.BytesIO(content))
            else:
                stream = io.BytesIO(content)
            refs.append(
                ArchiveRef(
                    stream=stream,
                    name_prefix="",
                    source_path=f"{self.caller_file}:{DATA_MARKER}[{number}]",
                    display_name="",
                )
            )
        logger.debug(f"[archive:open] {len(refs)} embedded block(s) in {self.caller_file}")
        return refs

    def _decode_blocks(self) -> list[bytes]:
        try:
            text = Path(self.caller_file).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceError(f"Couldn't open {self.caller_file}: {e}") from e

        match = _DATA_START_PATTERN.match(text)
        if not match:
            raise EmbeddedDataError(f"No {DATA_MARKER} line found in {self.caller_file}")
        data = text[match.end() :]

        end = _DATA_END_PATTERN.search(data)
        if end:
            data = data[: end.start()]

        blocks: list[bytes] = []
        for number, block in enumerate(b for b in _BLOCK_SEPARATOR.split(data) if b.strip()):
            try:
                blocks.append(base64.b64decode(block))
            except (binascii.Error, ValueError) as e:
                raise EmbeddedDataError(
                    f"Embedded block {number + 1} in {self.caller_file} is not valid base64: {e}"
                ) from e
        return blocks

    def __repr__(self) -> str:
        return f"EmbeddedSource({self.caller_file})"


def parse_source(spec: str, caller_file: str | Path, settings: ArchiveImporterSettings) -> ArchiveSource:
    """Parse one source specification into an ArchiveSource.

    Args:
        spec: Glob pattern, URL, CPAN:// shorthand or the __DATA__ sentinel
        caller_file: File of the code that asked for the archives
        settings: Active settings (mirror, timeout)

    Returns:
        ArchiveSource instance
    """
    if URL_PATTERN.match(spec):
        return UrlSource(spec, mirror=settings.mirror, timeout=settings.http_timeout)
    if spec == DATA_MARKER:
        return EmbeddedSource(caller_file)
    return GlobSource(spec, caller_file)
