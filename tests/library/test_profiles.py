"""Unit tests for profile management and profile metadata."""

from collections.abc import Callable
from pathlib import Path

import pytest
import yaml

from dot_agent_library.errors import CorruptManifestError
from dot_agent_library.errors import InvalidProfileNameError
from dot_agent_library.errors import ProfileExistsError
from dot_agent_library.errors import ProfileNotFoundError
from dot_agent_library.errors import TargetNotFoundError
from dot_agent_library.profiles import METADATA_FILENAME
from dot_agent_library.profiles import ProfileManager
from dot_agent_library.profiles import ProfileMetadata
from dot_agent_library.profiles import ProfileSource
from dot_agent_library.profiles import SourceKind
from dot_agent_library.profiles import validate_profile_name


@pytest.fixture
def manager(tmp_path: Path) -> ProfileManager:
    return ProfileManager(tmp_path / "profiles", ignore_dirs=[".git", "__pycache__"])


@pytest.mark.unit
class TestProfileNames:
    """Test profile name validation."""

    @pytest.mark.parametrize("name", ["work", "Personal", "team_2", "a-b-c", "x" * 64])
    def test_valid_names(self, name: str) -> None:
        """Test accepted names are returned unchanged."""
        assert validate_profile_name(name) == name

    @pytest.mark.parametrize("name", ["", "2fast", "-lead", "has space", "../escape", "a/b", "x" * 65, "dot.name"])
    def test_invalid_names(self, name: str) -> None:
        """Test rejected names raise InvalidProfileNameError."""
        with pytest.raises(InvalidProfileNameError):
            validate_profile_name(name)


@pytest.mark.unit
class TestProfileMetadata:
    """Test .dot-agent.yaml handling."""

    def test_missing_file_returns_none(self, tmp_path: Path) -> None:
        """Test profiles without metadata load None."""
        assert ProfileMetadata.load_from_dir(tmp_path) is None

    def test_save_writes_yaml(self, tmp_path: Path) -> None:
        """Test metadata is saved as block-style YAML and loads back."""
        metadata = ProfileMetadata(
            name="work",
            version="1.2.0",
            exclude=["docs/*"],
            source=ProfileSource(kind=SourceKind.GIT, details={"url": "https://example.com/p.git"}),
        )

        metadata.save_to_dir(tmp_path)

        data = yaml.safe_load((tmp_path / METADATA_FILENAME).read_text())
        assert data["name"] == "work"
        assert data["source"] == {"kind": "git", "details": {"url": "https://example.com/p.git"}}
        assert ProfileMetadata.load_from_dir(tmp_path) == metadata

    def test_invalid_yaml_is_corrupt(self, tmp_path: Path) -> None:
        """Test unparsable YAML raises CorruptManifestError."""
        (tmp_path / METADATA_FILENAME).write_text("name: [unclosed\n")

        with pytest.raises(CorruptManifestError):
            ProfileMetadata.load_from_dir(tmp_path)

    def test_invalid_fields_are_corrupt(self, tmp_path: Path) -> None:
        """Test YAML that fails validation raises CorruptManifestError."""
        (tmp_path / METADATA_FILENAME).write_text("name: work\nexclude: 5\n")

        with pytest.raises(CorruptManifestError):
            ProfileMetadata.load_from_dir(tmp_path)


@pytest.mark.unit
class TestProfileManager:
    """Test profile directory operations."""

    def test_create_scaffolds_profile(self, manager: ProfileManager) -> None:
        """Test create lays out the standard directories, CLAUDE.md and metadata."""
        info = manager.create("work", description="Work setup")

        assert info.path == manager.profiles_dir / "work"
        for directory in ("agents", "commands", "hooks", "rules", "skills"):
            assert (info.path / directory).is_dir()
        assert (info.path / "CLAUDE.md").read_text().startswith("# work Profile")
        assert info.description == "Work setup"
        assert not [p for p in manager.profiles_dir.iterdir() if p.name.startswith(".")]

    def test_create_existing_raises(self, manager: ProfileManager) -> None:
        """Test creating a profile twice fails."""
        manager.create("work")

        with pytest.raises(ProfileExistsError):
            manager.create("work")

    def test_create_invalid_name_raises(self, manager: ProfileManager) -> None:
        """Test names are validated before anything is written."""
        with pytest.raises(InvalidProfileNameError):
            manager.create("../outside")

        assert list(manager.profiles_dir.iterdir()) == []

    def test_list_and_get(self, manager: ProfileManager, tree_writer: Callable) -> None:
        """Test listing skips engine temp directories and counts files."""
        manager.create("beta")
        tree_writer(manager.profiles_dir / "alpha", {"rules/r.md": "r", ".git/HEAD": "ref"})
        (manager.profiles_dir / ".dot-agent-new-abc-gamma").mkdir()

        profiles = manager.list_profiles()

        assert [p.name for p in profiles] == ["alpha", "beta"]
        assert profiles[0].file_count == 1
        assert profiles[0].metadata is None

    def test_resolve_missing_raises(self, manager: ProfileManager) -> None:
        """Test resolving an unknown profile fails."""
        with pytest.raises(ProfileNotFoundError):
            manager.resolve("ghost")

    def test_copy_renames_metadata(self, manager: ProfileManager, tree_writer: Callable) -> None:
        """Test copy duplicates files and gives the copy its own metadata name."""
        manager.create("work", description="Work setup")
        tree_writer(manager.profiles_dir / "work", {"agents/a.md": "a"})

        info = manager.copy("work", "work2")

        assert (info.path / "agents/a.md").read_text() == "a"
        assert info.metadata.name == "work2"
        assert info.description == "Work setup"
        assert manager.get("work").metadata.name == "work"

    def test_copy_requires_force_to_replace(self, manager: ProfileManager, tree_writer: Callable) -> None:
        """Test copying onto an existing profile needs force, which replaces it."""
        tree_writer(manager.profiles_dir / "src", {"new.md": "n"})
        tree_writer(manager.profiles_dir / "dest", {"old.md": "o"})

        with pytest.raises(ProfileExistsError):
            manager.copy("src", "dest")

        info = manager.copy("src", "dest", force=True)

        assert (info.path / "new.md").exists()
        assert not (info.path / "old.md").exists()

    def test_import_dir(self, manager: ProfileManager, tmp_path: Path, tree_writer: Callable) -> None:
        """Test importing copies files, skips ignored dirs and records the origin."""
        source = tree_writer(
            tmp_path / "checkout",
            {"agents/a.md": "a", ".git/HEAD": "ref", METADATA_FILENAME: "name: upstream\nversion: '2.0'\n"},
        )
        origin = ProfileSource(kind=SourceKind.GIT, details={"url": "https://example.com/p.git", "branch": "main"})

        info = manager.import_dir(source, "team", origin=origin)

        assert (info.path / "agents/a.md").read_text() == "a"
        assert not (info.path / ".git").exists()
        assert info.metadata.name == "team"
        assert info.version == "2.0"
        assert info.metadata.source.kind == SourceKind.GIT
        assert (source / ".git/HEAD").exists()

    def test_import_missing_source_raises(self, manager: ProfileManager, tmp_path: Path) -> None:
        """Test importing a missing directory fails."""
        with pytest.raises(TargetNotFoundError):
            manager.import_dir(tmp_path / "missing", "team")

    def test_remove(self, manager: ProfileManager) -> None:
        """Test remove deletes the profile directory."""
        manager.create("work")

        manager.remove("work")

        assert not manager.exists("work")
        with pytest.raises(ProfileNotFoundError):
            manager.remove("work")
