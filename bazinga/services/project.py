"""Project type detection and bounded workspace scanning."""

import fnmatch
import os
from pathlib import Path

from bazinga.errors import ResourceError
from bazinga.models.project import Project, ProjectType
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

# Checked in order; the first marker present decides the type
TYPE_MARKERS = [
    (ProjectType.TYPESCRIPT, ["tsconfig.json"]),
    (ProjectType.GO, ["go.mod"]),
    (ProjectType.RUST, ["Cargo.toml"]),
    (ProjectType.PYTHON, ["requirements.txt", "pyproject.toml", "setup.py", "Pipfile"]),
    (ProjectType.JAVA, ["pom.xml", "build.gradle", "gradle.properties"]),
    (ProjectType.JAVASCRIPT, ["package.json"]),
]

RELEVANT_EXTENSIONS = {
    ProjectType.GO: [".go", ".mod", ".sum", ".md"],
    ProjectType.JAVASCRIPT: [".js", ".jsx", ".json", ".md", ".ts", ".tsx"],
    ProjectType.TYPESCRIPT: [".ts", ".tsx", ".js", ".jsx", ".json", ".md"],
    ProjectType.PYTHON: [".py", ".pyx", ".pyi", ".txt", ".toml", ".cfg", ".ini", ".md"],
    ProjectType.RUST: [".rs", ".toml", ".md"],
    ProjectType.JAVA: [".java", ".xml", ".properties", ".gradle", ".md"],
    ProjectType.GENERIC: [".md", ".txt", ".json", ".yaml", ".yml", ".toml"],
}

SPECIAL_FILES = ["readme", "license", "changelog", "makefile", "dockerfile", "gitignore", "gitattributes", "editorconfig"]

COMMON_IGNORES = {
    "node_modules", ".git", ".svn", ".hg", "vendor", "target", "build", "dist",
    ".vscode", ".idea", "__pycache__", ".pytest_cache", ".DS_Store", "Thumbs.db",
}  # fmt: skip


def detect_project_type(root: str | Path) -> ProjectType:
    root = Path(root)
    for project_type, markers in TYPE_MARKERS:
        if any((root / marker).exists() for marker in markers):
            return project_type
    return ProjectType.GENERIC


def load_gitignore(root: str | Path) -> list[str]:
    path = Path(root) / ".gitignore"
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


def matches_gitignore(rel_path: str, pattern: str) -> bool:
    """Simplified gitignore matching: directory, extension glob, glob, or substring patterns."""
    pattern = pattern.strip().lstrip("/")
    if not pattern or pattern.startswith("!"):
        return False
    if pattern.endswith("/"):
        directory = pattern.rstrip("/")
        return directory in rel_path.split("/")
    name = rel_path.rsplit("/", 1)[-1]
    if any(char in pattern for char in "*?["):
        return fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern)
    return name == pattern or rel_path == pattern or rel_path.startswith(f"{pattern}/")


def should_ignore(rel_path: str, patterns: list[str]) -> bool:
    if any(part in COMMON_IGNORES for part in rel_path.split("/")):
        return True
    return any(matches_gitignore(rel_path, pattern) for pattern in patterns)


def is_relevant_file(name: str, extensions: list[str]) -> bool:
    lowered = name.lower()
    if os.path.splitext(lowered)[1] in extensions:
        return True
    return any(
        lowered == special or lowered.startswith(f"{special}.") or lowered == f".{special}" for special in SPECIAL_FILES
    )


class ProjectDetector:
    """Scans a project tree to a bounded depth and file count."""

    def __init__(self, max_files: int = 500, max_depth: int = 5, include_hidden: bool = False):
        self.max_files = max_files
        self.max_depth = max_depth
        self.include_hidden = include_hidden

    def detect_project(self, root_path: str | Path) -> Project:
        """Detect the project type and collect relevant files and directories.

        Raises:
            ResourceError: If root_path is not a directory
        """
        root = Path(root_path).resolve()
        if not root.is_dir():
            raise ResourceError(f"directory does not exist: {root}")

        project = Project(
            type=detect_project_type(root),
            root=str(root),
            name=root.name,
            gitignore_patterns=load_gitignore(root),
        )
        self._scan(project)
        logger.info(f"Detected {project.type} project {project.name} ({len(project.files)} files)")
        return project

    def _keep(self, name: str, rel_path: str, patterns: list[str]) -> bool:
        if not self.include_hidden and name.startswith("."):
            return False
        return not should_ignore(rel_path, patterns)

    def _scan(self, project: Project) -> None:
        extensions = RELEVANT_EXTENSIONS[project.type]
        root = Path(project.root)

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = Path(dirpath).relative_to(root).as_posix()
            depth = 0 if rel_dir == "." else rel_dir.count("/") + 1
            prefix = "" if rel_dir == "." else f"{rel_dir}/"

            if depth + 1 > self.max_depth:
                dirnames[:] = []
                continue

            kept_dirs = []
            for name in sorted(dirnames):
                if self._keep(name, f"{prefix}{name}", project.gitignore_patterns):
                    kept_dirs.append(name)
                    project.directories.append(f"{prefix}{name}")
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                rel_path = f"{prefix}{name}"
                if not self._keep(name, rel_path, project.gitignore_patterns):
                    continue
                if is_relevant_file(name, extensions):
                    project.files.append(rel_path)
                    if len(project.files) >= self.max_files:
                        logger.debug(f"File limit of {self.max_files} reached while scanning {root}")
                        return


def detect_project(root_path: str | Path) -> Project:
    return ProjectDetector().detect_project(root_path)


MAX_AUTO_FILES = 12

ESSENTIAL_FILES = [
    "README.md", "readme.md", "Readme.md",
    "package.json", "go.mod", "Cargo.toml", "pyproject.toml", "requirements.txt",
    "Makefile", "makefile", "CMakeLists.txt",
    "tsconfig.json", "webpack.config.js", "vite.config.js",
    ".gitignore", "LICENSE", "CHANGELOG.md",
]  # fmt: skip

ENTRY_POINTS = {
    ProjectType.GO: ["main.go", "cmd/", "app.go"],
    ProjectType.JAVASCRIPT: ["index.js", "index.ts", "app.js", "app.ts", "src/index", "src/app", "src/main"],
    ProjectType.TYPESCRIPT: ["index.js", "index.ts", "app.js", "app.ts", "src/index", "src/app", "src/main"],
    ProjectType.PYTHON: ["main.py", "app.py", "__init__.py", "src/", "app/"],
    ProjectType.RUST: ["main.rs", "lib.rs", "src/main.rs", "src/lib.rs"],
    ProjectType.JAVA: ["Main.java", "Application.java", "src/main/"],
    ProjectType.GENERIC: ["main", "index", "app"],
}

ARCHITECTURAL_DIRS = {
    ProjectType.GO: ["internal/", "pkg/", "api/", "cmd/", "config/"],
    ProjectType.JAVASCRIPT: ["src/", "lib/", "components/", "pages/", "api/", "config/"],
    ProjectType.TYPESCRIPT: ["src/", "lib/", "components/", "pages/", "api/", "config/"],
    ProjectType.PYTHON: ["src/", "lib/", "api/", "config/", "models/", "views/"],
    ProjectType.RUST: ["src/", "benches/", "examples/"],
    ProjectType.JAVA: ["src/main/java/", "src/main/resources/", "src/test/"],
    ProjectType.GENERIC: ["src/", "lib/", "config/"],
}

SOURCE_EXTENSIONS = {
    ProjectType.GO: [".go"],
    ProjectType.JAVASCRIPT: [".js", ".jsx", ".mjs"],
    ProjectType.TYPESCRIPT: [".ts", ".tsx", ".js", ".jsx"],
    ProjectType.PYTHON: [".py", ".pyi"],
    ProjectType.RUST: [".rs"],
    ProjectType.JAVA: [".java"],
    ProjectType.GENERIC: [".js", ".ts", ".py", ".go", ".rs", ".java", ".cpp", ".c", ".h"],
}

SKIP_PATTERNS = [
    "_test.", "test_", ".test.",
    "node_modules/", "vendor/", ".git/",
    "build/", "dist/", "target/",
    ".min.", ".bundle.",
    "__pycache__/", ".pyc",
]  # fmt: skip


def should_skip_file(rel_path: str) -> bool:
    return any(pattern in rel_path for pattern in SKIP_PATTERNS)


def select_session_files(project: Project, max_files: int = MAX_AUTO_FILES) -> list[str]:
    """Pick the most useful files to preload, as paths relative to the project root.

    Priority: essential project files, entry points, architectural directories,
    then remaining source files. Tests and build output are skipped except among
    the essential files.
    """
    selected: list[str] = []

    def take(rel_path: str) -> bool:
        if len(selected) >= max_files:
            return False
        if rel_path not in selected:
            selected.append(rel_path)
        return True

    for essential in ESSENTIAL_FILES:
        match = next((f for f in project.files if f == essential or f.endswith(f"/{essential}")), None)
        if match is not None and not take(match):
            return selected

    for marker in ENTRY_POINTS[project.type] + ARCHITECTURAL_DIRS[project.type]:
        for rel_path in project.files:
            if marker in rel_path and not should_skip_file(rel_path) and not take(rel_path):
                return selected

    extensions = SOURCE_EXTENSIONS[project.type]
    for rel_path in project.files:
        if rel_path.endswith(tuple(extensions)) and not should_skip_file(rel_path) and not take(rel_path):
            return selected

    return selected
