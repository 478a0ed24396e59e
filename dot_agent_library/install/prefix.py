"""Mapping of profile-relative paths to installed paths.

Several profiles can share one target, so the entries of well-known
directories are renamed with the profile name:

    agents/code-reviewer.md   -> agents/<profile>-code-reviewer.md
    rules/testing.md          -> rules/<profile>-testing.md
    skills/my-skill/SKILL.md  -> skills/<profile>-my-skill/SKILL.md
    commands/profile:cmd.md   -> commands/profile:cmd.md (already namespaced)
    CLAUDE.md                 -> CLAUDE.md
"""

from pathlib import PurePosixPath

# Files directly inside these directories are prefixed.
PREFIXED_DIRS = frozenset({"agents", "commands", "rules"})
# Subdirectories of these directories are prefixed.
PREFIXED_SUBDIRS = frozenset({"skills"})


def is_already_prefixed(name: str, profile_name: str) -> bool:
    return ":" in name or name.startswith(f"{profile_name}-")


def prefix_path(relative_path: str, profile_name: str) -> str:
    """Return the installed path for a profile-relative POSIX path."""
    parts = PurePosixPath(relative_path).parts
    if len(parts) < 2:
        return relative_path

    top, name = parts[0], parts[1]
    if top not in PREFIXED_DIRS and top not in PREFIXED_SUBDIRS:
        return relative_path
    if is_already_prefixed(name, profile_name):
        return relative_path

    return str(PurePosixPath(top, f"{profile_name}-{name}", *parts[2:]))


def installed_path_for(relative_path: str, profile_name: str, prefix: bool) -> str:
    return prefix_path(relative_path, profile_name) if prefix else relative_path
