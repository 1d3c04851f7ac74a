"""Read one archive into relative module paths.

Archives come in different layouts: a bare tree of modules, modules below
a top-level ``lib/`` directory, or a release tarball whose single top
directory is named after the archive (``JSON-PP-2.97001/lib/...``). The
strip decision is made once per archive: if any module entry starts with
the archive's name prefix (or ``lib``), that segment is treated as the
archive's root for every entry.
"""

from __future__ import annotations

import logging
import posixpath
import re
import tarfile
import zlib
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field

from .errors import ArchiveDecodeError
from .sources import ArchiveRef

logger = logging.getLogger(__name__)

LIB_DIR = "lib"
VERSION_PATTERN = re.compile(r"(v?\d+\.\d+(?:\.\d+)?)", re.IGNORECASE)


@dataclass
class IndexedModule:
    """One module found in an archive."""

    relative_path: str
    full_path: str
    content: bytes


@dataclass
class ArchiveIndex:
    """Modules of a single archive after prefix stripping."""

    source_path: str
    version: str
    strip_prefix: bool = False
    strip_lib: bool = False
    modules: list[IndexedModule] = field(default_factory=list)


def version_token(name: str) -> str:
    """Last version-like substring of a file name, or "" if there is none.

    Example: Foo-Bar-2.97001.tar.gz → 2.97001
    """
    if not name:
        return ""
    matches = VERSION_PATTERN.findall(posixpath.basename(name.replace("\\", "/")))
    return matches[-1] if matches else ""


def index_archive(ref: ArchiveRef, suffixes: Iterable[str] = (".py",)) -> ArchiveIndex:
    """Index every module entry of an archive.

    Consumes and closes the archive stream.

    Args:
        ref: Opened archive
        suffixes: File suffixes that mark module entries

    Returns:
        ArchiveIndex with modules keyed by their relative path

    Raises:
        ArchiveDecodeError: Archive could not be read
    """
    suffixes = tuple(suffixes)
    by_relative: dict[str, dict[str, bytes]] = {}
    strip_prefix = False
    strip_lib = False

    try:
        with tarfile.open(fileobj=ref.stream, mode="r|*") as tar:
            for member in tar:
                full_path = member.name
                if not member.isfile() or not full_path.endswith(suffixes):
                    continue

                parts = full_path.split("/")
                if parts[0] == ref.name_prefix:
                    strip_prefix = True
                    parts = parts[1:]
                if parts and parts[0] == LIB_DIR:
                    strip_lib = True
                    parts = parts[1:]

                extracted = tar.extractfile(member)
                if extracted is None:
                    continue
                by_relative.setdefault("/".join(parts), {})[full_path] = extracted.read()
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise ArchiveDecodeError(f"Couldn't read archive {ref.source_path}: {e}") from e
    finally:
        ref.close()

    index = ArchiveIndex(
        source_path=ref.source_path,
        version=version_token(ref.display_name),
        strip_prefix=strip_prefix,
        strip_lib=strip_lib,
    )

    root = [*([ref.name_prefix] if strip_prefix else []), *([LIB_DIR] if strip_lib else [])]
    for relative_path, contents in by_relative.items():
        full_path = "/".join([*root, relative_path])
        if full_path not in contents:
            # Entry sits at a different depth than the archive's root
            logger.debug(f"[archive:index] dropping {relative_path} from {ref.source_path}: no entry at {full_path}")
            continue
        index.modules.append(IndexedModule(relative_path, full_path, contents[full_path]))

    logger.debug(
        f"[archive:index] {ref.source_path}: {len(index.modules)} modules "
        f"(version={index.version!r}, prefix={strip_prefix}, lib={strip_lib})"
    )
    return index
