"""Tests for project detection and session file selection."""

import pytest

from bazinga.errors import ResourceError
from bazinga.models.project import Project, ProjectType
from bazinga.services.project import (
    ProjectDetector,
    detect_project_type,
    matches_gitignore,
    select_session_files,
    should_skip_file,
)


def touch(root, *paths):
    for rel in paths:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")


class TestDetection:
    """Tests for project type detection and scanning."""

    @pytest.mark.parametrize(
        "marker, expected",
        [
            ("go.mod", ProjectType.GO),
            ("pyproject.toml", ProjectType.PYTHON),
            ("Cargo.toml", ProjectType.RUST),
            ("pom.xml", ProjectType.JAVA),
            ("package.json", ProjectType.JAVASCRIPT),
        ],
    )
    def test_marker_files(self, tmp_path, marker, expected):
        """Test that each marker file selects its project type."""
        touch(tmp_path, marker)

        assert detect_project_type(tmp_path) == expected

    def test_typescript_wins_over_package_json(self, tmp_path):
        """Test that tsconfig.json is checked before package.json."""
        touch(tmp_path, "package.json", "tsconfig.json")

        assert detect_project_type(tmp_path) == ProjectType.TYPESCRIPT

    def test_generic_without_markers(self, tmp_path):
        """Test the fallback type."""
        assert detect_project_type(tmp_path) == ProjectType.GENERIC

    def test_scan_filters_ignored_and_irrelevant(self, tmp_path):
        """Test that ignores, hidden files and irrelevant extensions are skipped."""
        touch(
            tmp_path,
            "pyproject.toml", "README.md", "app/main.py", "app/logo.png",
            "node_modules/x/index.py", ".env", "generated/out.py",
        )  # fmt: skip
        (tmp_path / ".gitignore").write_text("# build output\ngenerated/\n")

        project = ProjectDetector().detect_project(tmp_path)

        assert project.type == ProjectType.PYTHON
        assert project.files == ["README.md", "pyproject.toml", "app/main.py"]
        assert "app" in project.directories
        assert project.gitignore_patterns == ["generated/"]

    def test_scan_limits(self, tmp_path):
        """Test the file count and depth bounds."""
        touch(tmp_path, *(f"f{i}.md" for i in range(5)), "a/b/c/deep.md")

        assert len(ProjectDetector(max_files=3).detect_project(tmp_path).files) == 3
        assert "a/b/c/deep.md" not in ProjectDetector(max_depth=2).detect_project(tmp_path).files

    def test_missing_root(self, tmp_path):
        """Test that a missing directory is a resource error."""
        with pytest.raises(ResourceError, match="directory does not exist"):
            ProjectDetector().detect_project(tmp_path / "nope")

    @pytest.mark.parametrize(
        "rel_path, pattern, expected",
        [
            ("logs/app.log", "*.log", True),
            ("src/logs/x.txt", "logs/", True),
            ("secrets.txt", "secrets.txt", True),
            ("out/file.txt", "out", True),
            ("keep.txt", "!keep.txt", False),
            ("src/main.py", "*.log", False),
        ],
    )
    def test_matches_gitignore(self, rel_path, pattern, expected):
        """Test the simplified gitignore matcher."""
        assert matches_gitignore(rel_path, pattern) is expected

    def test_summary(self):
        """Test the project summary text."""
        project = Project(type=ProjectType.GO, root="/work/svc", name="svc", files=["main.go"], directories=["cmd"])

        assert project.get_summary().splitlines() == [
            "Project: svc (go)",
            "Root: /work/svc",
            "Files: 1 relevant files found",
            "Directories: 1",
        ]


class TestSessionFileSelection:
    """Tests for select_session_files."""

    def test_priority_order(self):
        """Test essential files, then entry points and architecture, then other sources."""
        project = Project(
            type=ProjectType.PYTHON,
            root="/work",
            name="work",
            files=["README.md", "pyproject.toml", "tools/helper.py", "main.py", "tests/test_main.py", "models/user.py"],
        )

        assert select_session_files(project) == [
            "README.md", "pyproject.toml", "main.py", "models/user.py", "tools/helper.py",
        ]  # fmt: skip

    def test_cap_is_strict(self):
        """Test that no more than max_files are chosen."""
        files = [f"pkg/mod{i}.go" for i in range(30)]
        project = Project(type=ProjectType.GO, root="/work", name="work", files=["go.mod", *files])

        selected = select_session_files(project, max_files=5)

        assert len(selected) == 5
        assert selected[0] == "go.mod"

    def test_tests_and_build_output_skipped(self):
        """Test the skip patterns for non-essential files."""
        assert should_skip_file("handler_test.go")
        assert should_skip_file("dist/bundle.js")
        assert not should_skip_file("src/handler.go")
