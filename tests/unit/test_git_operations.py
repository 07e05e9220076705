"""Unit tests for git operations: species listing and checkouts."""

from unittest.mock import Mock, PropertyMock, patch

import pytest
from git import Repo
from git.exc import GitCommandError

from colony.core.git_operations import GitOperationError, GitRepository, SpeciesResolver


class TestListRemoteBranches:
    """Test cases for parsing ``git branch -r``."""

    @pytest.fixture
    def repository(self):
        repository = GitRepository("/repo")
        repo = Mock()
        origin = Mock()
        origin.name = "origin"
        repo.remotes = [origin]
        repository._repo = repo
        return repository

    def test_strips_remote_prefix_and_skips_head(self, repository):
        repository._repo.git.branch.return_value = (
            "  origin/HEAD -> origin/main\n"
            "  origin/main\n"
            "  origin/feature/dark-mode\n"
            "\n"
        )

        assert repository.list_remote_branches() == ["main", "feature/dark-mode"]
        repository._repo.git.branch.assert_called_once_with("-r")

    def test_empty_output(self, repository):
        repository._repo.git.branch.return_value = ""
        assert repository.list_remote_branches() == []

    def test_deduplicates_across_remotes(self, repository):
        upstream = Mock()
        upstream.name = "upstream"
        repository._repo.remotes.append(upstream)
        repository._repo.git.branch.return_value = (
            "  origin/main\n  upstream/main\n  upstream/release\n"
        )

        assert repository.list_remote_branches() == ["main", "release"]

    def test_only_remote_prefix_is_stripped(self, repository):
        repository._repo.git.branch.return_value = "  origin/team/feature/x\n"
        assert repository.list_remote_branches() == ["team/feature/x"]

    def test_git_failure_raises(self, repository):
        repository._repo.git.branch.side_effect = GitCommandError("branch", 128)

        with pytest.raises(GitOperationError, match="Failed to list remote branches"):
            repository.list_remote_branches()

    def test_not_a_repository(self, tmp_path):
        with pytest.raises(GitOperationError, match="Invalid git repository"):
            _ = GitRepository(str(tmp_path)).repo

    def test_real_repository(self, temp_git_repo):
        _, clone_path = temp_git_repo

        branches = GitRepository(str(clone_path)).list_remote_branches()

        assert sorted(branches) == ["feature/dark-mode", "main"]


class TestResolveCloneSource:
    """Test cases for choosing what instances are cloned from."""

    def test_explicit_clone_url_wins(self):
        repository = GitRepository("/repo", clone_url="https://example.com/app.git")
        assert repository.resolve_clone_source() == "https://example.com/app.git"

    def test_origin_url(self, temp_git_repo):
        origin_path, clone_path = temp_git_repo
        source = GitRepository(str(clone_path)).resolve_clone_source()
        assert source == str(origin_path)

    def test_falls_back_to_working_tree(self, tmp_path):
        repo_path = tmp_path / "solo"
        Repo.init(repo_path)

        source = GitRepository(str(repo_path)).resolve_clone_source()

        assert source == str(repo_path)


class TestCloneBranch:
    """Test cases for cloning a species checkout."""

    def test_clones_requested_branch(self, temp_git_repo, tmp_path):
        _, clone_path = temp_git_repo
        destination = tmp_path / "instances" / "alpha"

        sha = GitRepository(str(clone_path)).clone_branch("feature/dark-mode", destination)

        cloned = Repo(destination)
        assert cloned.active_branch.name == "feature/dark-mode"
        assert cloned.head.commit.hexsha == sha
        assert (destination / "theme.txt").read_text() == "dark\n"

    def test_existing_destination_rejected(self, temp_git_repo, tmp_path):
        _, clone_path = temp_git_repo
        destination = tmp_path / "taken"
        destination.mkdir()

        with pytest.raises(GitOperationError, match="already exists"):
            GitRepository(str(clone_path)).clone_branch("main", destination)

    def test_unknown_branch_fails(self, temp_git_repo, tmp_path):
        _, clone_path = temp_git_repo

        with pytest.raises(GitOperationError, match="Failed to clone branch 'nope'"):
            GitRepository(str(clone_path)).clone_branch("nope", tmp_path / "x")


class TestSpeciesResolver:
    """Test cases for SpeciesResolver."""

    @pytest.mark.asyncio
    async def test_lists_branches(self):
        repository = Mock()
        repository.list_remote_branches.return_value = ["main"]

        assert await SpeciesResolver(repository).list_species() == ["main"]

    @pytest.mark.asyncio
    async def test_git_failure_yields_empty_list(self, tmp_path):
        resolver = SpeciesResolver(GitRepository(str(tmp_path)))

        with patch("colony.core.git_operations.logger") as mock_logger:
            assert await resolver.list_species() == []

        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_git_binary_yields_empty_list(self):
        repository = GitRepository("/repo")
        with patch.object(
            GitRepository,
            "repo",
            new_callable=PropertyMock,
            side_effect=GitOperationError("git not found"),
        ):
            assert await SpeciesResolver(repository).list_species() == []
