"""Import Python modules directly from tar archives.

    import archive_importer

    archive_importer.install("../external/*.tgz", "lib/extra.tar")

    import my_module  # the given archives are searched first
"""

from .module_resolution import ArchiveFinder
from .module_resolution import ArchiveImporterError
from .module_resolution import ResolutionIndex
from .module_resolution import build_index
from .module_resolution import install
from .module_resolution import uninstall
from .settings import ArchiveImporterSettings
from .settings import load_settings

__version__ = "0.1.0"

__all__ = [
    "ArchiveFinder",
    "ArchiveImporterError",
    "ArchiveImporterSettings",
    "ResolutionIndex",
    "build_index",
    "install",
    "load_settings",
    "uninstall",
]
