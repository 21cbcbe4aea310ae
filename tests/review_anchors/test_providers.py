"""Tests for content providers and project path helpers."""

import shutil
import subprocess
from pathlib import Path

import pytest

from review_anchors.providers import (
    GitRevisionProvider,
    NotAGitRepositoryError,
    WorkingTreeProvider,
    detect_current_branch,
    find_project_root,
    is_binary,
    to_relative_path,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(repo: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=repo,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def git_repo(tmp_path):
    """A real git repository with one commit of src/app.py."""
    repo = tmp_path / "repo"
    (repo / "src").mkdir(parents=True)
    (repo / "src" / "app.py").write_text("L1\nL2\nL3\n", encoding="utf-8")
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/review-branch")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


class TestFindProjectRoot:
    """Tests for find_project_root()."""

    def test_finds_git_directory(self, tmp_path):
        """The directory containing .git is the root."""
        (tmp_path / ".git").mkdir()
        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_walks_up_from_subdirectory(self, tmp_path):
        """Parents are searched until .git is found."""
        (tmp_path / ".git").mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert find_project_root(nested) == tmp_path.resolve()

    def test_git_file_counts(self, tmp_path):
        """A .git file (worktrees, submodules) marks the root too."""
        (tmp_path / ".git").write_text("gitdir: elsewhere", encoding="utf-8")
        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_no_repository(self, tmp_path):
        """Outside any repository a ValueError is raised."""
        with pytest.raises(ValueError, match="No .git directory found"):
            find_project_root(tmp_path)

    def test_defaults_to_cwd(self, tmp_path, monkeypatch):
        """Without an argument the search starts at the working directory."""
        (tmp_path / ".git").mkdir()
        monkeypatch.chdir(tmp_path)
        assert find_project_root() == tmp_path.resolve()


class TestToRelativePath:
    """Tests for to_relative_path()."""

    def test_absolute_path_inside_root(self, tmp_path):
        """Absolute paths become POSIX paths relative to the root."""
        assert to_relative_path(tmp_path / "src" / "app.py", tmp_path) == "src/app.py"

    def test_relative_path_resolved_against_root(self, tmp_path):
        """Relative paths are taken relative to the root."""
        assert to_relative_path(Path("src/../lib/util.py"), tmp_path) == "lib/util.py"

    def test_outside_root(self, tmp_path):
        """Paths escaping the root are rejected."""
        with pytest.raises(ValueError, match="outside project root"):
            to_relative_path(tmp_path.parent / "elsewhere.py", tmp_path)


class TestIsBinary:
    """Tests for is_binary()."""

    def test_text(self):
        """Plain text is not binary."""
        assert not is_binary(b"hello\nworld\n")

    def test_null_byte(self):
        """A null byte marks content as binary."""
        assert is_binary(b"PK\x03\x04\x00\x00")


class TestWorkingTreeProvider:
    """Tests for WorkingTreeProvider."""

    def test_reads_files(self, tmp_path):
        """Requested files are returned keyed by their relative path."""
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")

        contents = WorkingTreeProvider(tmp_path).read(["src/app.py"])

        assert contents == {"src/app.py": "print('hi')\n"}

    def test_missing_files_omitted(self, tmp_path):
        """Files that do not exist are left out."""
        assert WorkingTreeProvider(tmp_path).read(["nope.py"]) == {}

    def test_directories_omitted(self, tmp_path):
        """Directories are not files."""
        (tmp_path / "pkg").mkdir()
        assert WorkingTreeProvider(tmp_path).read(["pkg"]) == {}

    def test_binary_files_omitted(self, tmp_path):
        """Binary files are left out."""
        (tmp_path / "image.png").write_bytes(b"\x89PNG\x00\x00")
        assert WorkingTreeProvider(tmp_path).read(["image.png"]) == {}

    def test_line_endings_preserved(self, tmp_path):
        """Content is returned as stored; normalization happens at comparison."""
        (tmp_path / "win.txt").write_bytes(b"a\r\nb\r\n")
        assert WorkingTreeProvider(tmp_path).read(["win.txt"]) == {"win.txt": "a\r\nb\r\n"}

    def test_invalid_utf8_replaced(self, tmp_path):
        """Undecodable bytes do not abort the read."""
        (tmp_path / "latin.txt").write_bytes(b"caf\xe9\n")
        assert WorkingTreeProvider(tmp_path).read(["latin.txt"])["latin.txt"].startswith("caf")


@requires_git
class TestGitRevisionProvider:
    """Tests for GitRevisionProvider."""

    def test_reads_committed_content(self, git_repo):
        """Files are read as committed, ignoring working tree edits."""
        (git_repo / "src" / "app.py").write_text("edited\n", encoding="utf-8")

        contents = GitRevisionProvider(git_repo, "HEAD").read(["src/app.py"])

        assert contents == {"src/app.py": "L1\nL2\nL3\n"}

    def test_missing_paths_omitted(self, git_repo):
        """Paths absent at the revision are left out."""
        assert GitRevisionProvider(git_repo, "HEAD").read(["nope.py"]) == {}

    def test_unknown_revision_omits_paths(self, git_repo):
        """An unknown revision yields no content."""
        assert GitRevisionProvider(git_repo, "no-such-ref").read(["src/app.py"]) == {}

    def test_not_a_repository(self, tmp_path):
        """Reading outside a repository raises NotAGitRepositoryError."""
        with pytest.raises(NotAGitRepositoryError):
            GitRevisionProvider(tmp_path, "HEAD").read(["a.py"])


@requires_git
class TestDetectCurrentBranch:
    """Tests for detect_current_branch()."""

    def test_branch_name(self, git_repo):
        """The checked-out branch name is returned."""
        assert detect_current_branch(git_repo) == "review-branch"

    def test_detached_head(self, git_repo):
        """A detached HEAD has no branch name."""
        git(git_repo, "checkout", "-q", "--detach")
        assert detect_current_branch(git_repo) is None

    def test_not_a_repository(self, tmp_path):
        """Outside a repository there is no branch."""
        assert detect_current_branch(tmp_path) is None
