"""Installation manifests.

Public Interface:
    - InstallationManifest / InstalledFileRecord / InstalledProfile: Models
    - ManifestStore: Atomic load/save of a target's manifest
    - TargetRegistry: Targets known to hold a manifest
    - MANIFEST_FILENAME: Name of the manifest file inside a target
"""

from .models import InstallationManifest
from .models import InstalledFileRecord
from .models import InstalledProfile
from .store import MANIFEST_FILENAME
from .store import ManifestStore
from .store import TargetRegistry
from .store import parse_manifest

__all__ = [
    "InstallationManifest",
    "InstalledFileRecord",
    "InstalledProfile",
    "ManifestStore",
    "TargetRegistry",
    "MANIFEST_FILENAME",
    "parse_manifest",
]
