"""
Shared pytest fixtures for the dot-agent test suite.

Provides fixtures for:
- Isolated engine homes and settings
- Content stores, lock managers and engines bound to them
- Profile and target directories built from {path: content} mappings
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from dot_agent_library.config.settings import EngineSettings
from dot_agent_library.engine import DotAgentEngine
from dot_agent_library.storage.content_store import ContentStore

TreeSpec = dict[str, str | bytes]


def write_tree(root: Path, files: TreeSpec) -> Path:
    """Write {relative path: content} into root, creating directories."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return root


def read_tree(root: Path) -> dict[str, bytes]:
    """Read every regular file under root, skipping engine metadata."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file() and not p.name.startswith(".dot-agent")
    }


@pytest.fixture
def mock_engine_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point DOT_AGENT_HOME at a temporary directory.

    Example:
        >>> def test_with_isolated_home(mock_engine_env):
        ...     settings = load_config()
        ...     assert settings.home == str(mock_engine_env)
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("DOT_AGENT_HOME", str(home))
    return home


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Settings with an isolated home and a short lock timeout."""
    return EngineSettings(home=str(tmp_path / "home"), lock_timeout=0.2)


@pytest.fixture
def content_store(tmp_path: Path) -> ContentStore:
    return ContentStore(tmp_path / "store" / "objects")


@pytest.fixture
def engine(settings: EngineSettings) -> DotAgentEngine:
    """Engine bound to an isolated home."""
    return DotAgentEngine(settings)


@pytest.fixture
def target(tmp_path: Path) -> Path:
    """Empty target directory."""
    path = tmp_path / "target"
    path.mkdir()
    return path


@pytest.fixture
def make_profile(engine: DotAgentEngine) -> Callable[[str, TreeSpec], Path]:
    """Factory writing a profile directory into the engine's profiles dir.

    Calling it again with the same name replaces the profile's files, which
    is how tests publish a new version of a profile.

    Example:
        >>> def test_install(make_profile, engine, target):
        ...     make_profile("work", {"agents/a.md": "x"})
        ...     engine.install("work", target)
    """

    def _make(name: str, files: TreeSpec) -> Path:
        root = engine.paths.profiles_dir / name
        if root.exists():
            for path in sorted(root.rglob("*"), reverse=True):
                if path.is_file():
                    path.unlink()
                else:
                    path.rmdir()
        return write_tree(root, files)

    return _make


@pytest.fixture
def tree_writer() -> Callable[[Path, TreeSpec], Path]:
    """The write_tree helper, for tests that build arbitrary directories."""
    return write_tree


@pytest.fixture
def tree_reader() -> Callable[[Path], dict[str, bytes]]:
    """The read_tree helper, for comparing directory contents."""
    return read_tree
