"""Profile sources.

Public Interface:
    - ProfileManager: list / get / resolve / create / copy / import_dir / remove
    - ProfileMetadata / ProfileSource / SourceKind / ProfileInfo: Models
    - validate_profile_name: Name rules shared by every profile operation
"""

from .manager import ProfileManager
from .models import METADATA_FILENAME
from .models import ProfileInfo
from .models import ProfileMetadata
from .models import ProfileSource
from .models import SourceKind
from .models import validate_profile_name

__all__ = [
    "ProfileManager",
    "ProfileInfo",
    "ProfileMetadata",
    "ProfileSource",
    "SourceKind",
    "METADATA_FILENAME",
    "validate_profile_name",
]
