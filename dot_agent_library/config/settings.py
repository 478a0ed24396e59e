"""Settings model for the dot-agent engine.

Contract:
- Inputs: Environment variables (DOT_AGENT_*), YAML values passed by the loader
- Outputs: Validated settings objects
- Side Effects: None (read-only)
"""

from pathlib import Path

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict

# Agent system directories living inside a global config root; never snapshotted.
DEFAULT_TARGET_EXCLUDED_ROOT_DIRS = [
    "debug",
    "file-history",
    "paste-cache",
    "cache",
    "backups",
    "plans",
    "ide",
    "data",
    "config",
    "projects",
    "todos",
    ".claude",
    "_bk",
]

DEFAULT_TARGET_EXCLUDED_FILES = [
    ".DS_Store",
    "history.jsonl",
    "__store.db",
    "config.json",
]

DEFAULT_PROFILE_EXCLUDED_DIRS = [
    ".git",
    "__pycache__",
    ".pytest_cache",
    "node_modules",
    ".vscode",
    ".idea",
    ".github",
    ".gitlab",
]

DEFAULT_PROFILE_EXCLUDED_FILES = [
    ".DS_Store",
    ".gitignore",
    ".gitkeep",
]


class EngineSettings(BaseSettings):
    """Configuration for the reconciliation engine.

    Attributes:
        home: Root directory for engine state (default: ~/.dot-agent)
        log_level: Logging level (default: info)
        lock_timeout: Seconds a mutating operation waits for the target lock
        prefix_by_default: Prefix installed paths with the profile name
        protected_paths: Profile-relative paths never overwritten or deleted
        snapshot_before_switch: Take a pre-switch snapshot of the target

    Example:
        >>> settings = EngineSettings(home="/tmp/dot-agent")
        >>> assert settings.lock_timeout == 30.0
    """

    model_config = SettingsConfigDict(
        env_prefix="DOT_AGENT_",
        case_sensitive=False,
        extra="ignore",
    )

    home: str = "~/.dot-agent"
    log_level: str = "info"
    lock_timeout: float = 30.0

    prefix_by_default: bool = True
    protected_paths: list[str] = Field(default_factory=lambda: ["CLAUDE.md"])
    snapshot_before_switch: bool = True

    target_excluded_root_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_TARGET_EXCLUDED_ROOT_DIRS))
    target_excluded_files: list[str] = Field(default_factory=lambda: list(DEFAULT_TARGET_EXCLUDED_FILES))
    profile_excluded_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_PROFILE_EXCLUDED_DIRS))
    profile_excluded_files: list[str] = Field(default_factory=lambda: list(DEFAULT_PROFILE_EXCLUDED_FILES))

    @field_validator("home")
    @classmethod
    def expand_and_resolve_path(cls, v: str) -> str:
        """Expand ~ and resolve to absolute path.

        Args:
            v: Path string (may contain ~ or be relative)

        Returns:
            Absolute path as string
        """
        return str(Path(v).expanduser().resolve())

    @field_validator("lock_timeout")
    @classmethod
    def non_negative_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("lock_timeout must be >= 0")
        return v
