"""Git operations: species discovery and instance checkouts."""

import asyncio
import os
from pathlib import Path

from git import Git, Repo
from git.exc import GitCommandError, GitError, InvalidGitRepositoryError, NoSuchPathError

from ..utils.logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.SPECIES)


class GitOperationError(Exception):
    """Base exception for git operations."""

    pass


class GitRepository:
    """The orchestrator's own repository, accessed through GitPython."""

    def __init__(self, repo_path: str | None = None, clone_url: str | None = None):
        """Initialize the repository wrapper.

        Args:
            repo_path: Path to the git repository. If None, uses current directory.
            clone_url: Explicit clone source; overrides origin/repo path resolution
        """
        self.repo_path = repo_path or os.getcwd()
        self.clone_url = clone_url
        self._repo: Repo | None = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository object."""
        if self._repo is None:
            try:
                self._repo = Repo(self.repo_path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise GitOperationError(
                    f"Invalid git repository at {self.repo_path}"
                ) from e
        return self._repo

    def list_remote_branches(self) -> list[str]:
        """Return remote branch names with their ``<remote>/`` prefix removed.

        Symbolic pointers such as ``origin/HEAD -> origin/main`` and blank
        lines are skipped; a branch present on several remotes is listed once.

        Raises:
            GitOperationError: if git cannot be queried
        """
        try:
            output = self.repo.git.branch("-r")
            remotes = {remote.name for remote in self.repo.remotes}
        except GitError as e:
            raise GitOperationError(f"Failed to list remote branches: {e}") from e

        branches: list[str] = []
        for line in output.splitlines():
            entry = line.strip()
            if not entry or "->" in entry:
                continue
            remote, sep, branch = entry.partition("/")
            if sep and (remote in remotes or not remotes):
                entry = branch
            if not entry or entry == "HEAD" or entry in branches:
                continue
            branches.append(entry)

        logger.debug("Found remote branches", count=len(branches))
        return branches

    def resolve_clone_source(self) -> str:
        """Pick what new instances are cloned from.

        Remote branches of the orchestrator's checkout are local branches of
        its origin, so origin is preferred over the checkout itself.
        """
        if self.clone_url:
            return self.clone_url
        try:
            origin = self.repo.remotes["origin"]
            urls = list(origin.urls)
            if urls:
                return urls[0]
        except (IndexError, GitError):
            pass
        return str(Path(self.repo.working_tree_dir or self.repo_path))

    def clone_branch(
        self, branch: str, destination: Path, timeout: float | None = None
    ) -> str:
        """Clone *branch* into *destination*, which must not exist yet.

        Args:
            branch: Branch to check out
            destination: Directory created by the clone
            timeout: Seconds after which git is killed; unbounded when None

        Returns:
            The commit SHA checked out

        Raises:
            GitOperationError: if the destination exists or the clone fails
        """
        if destination.exists():
            raise GitOperationError(f"Path {destination} already exists")

        source = self.resolve_clone_source()
        logger.info(
            "Cloning branch", branch=branch, source=source, destination=str(destination)
        )
        try:
            Git().clone(
                "--branch", branch, "--", source, str(destination), kill_after_timeout=timeout
            )
            return Repo(destination).head.commit.hexsha
        except GitCommandError as e:
            raise GitOperationError(
                f"Failed to clone branch '{branch}': {e.stderr.strip() or e}"
            ) from e
        except GitError as e:
            raise GitOperationError(f"Failed to clone branch '{branch}': {e}") from e


class SpeciesResolver:
    """Enumerates the species (branches) new instances can be spawned from."""

    def __init__(self, repository: GitRepository):
        self.repository = repository

    async def list_species(self) -> list[str]:
        """Return available species; an empty list if git cannot be queried.

        Species listing is advisory, so failures are logged, never raised.
        """
        try:
            return await asyncio.to_thread(self.repository.list_remote_branches)
        except GitOperationError as e:
            logger.warning("Could not list species", error=str(e))
            return []
