import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Set

from loguru import logger

from quizdash.config.settings import ConfigurationError, settings
from quizdash.storage.csv_storage import CsvStorage
from quizdash.storage.interface import StorageError

GIT_USER_NAME = "QuizDash Scraper"
GIT_USER_EMAIL = "scraper@quizdash.local"
LOCK_FILES = ("index.lock", "config.lock")
META_ENTRIES = {".git", ".gitattributes"}


class GitCommandError(StorageError):
    """A git subprocess exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str):
        super().__init__(f"Command failed ({returncode}): {command}\n{stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr


class GitSyncStorage(CsvStorage):
    """CSV storage whose data directory is a git working copy pushed after each run."""

    def __init__(
        self,
        data_path: Optional[Path] = None,
        token: Optional[str] = None,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        branch: Optional[str] = None,
    ):
        super().__init__(data_path)
        self.token = token or settings.github_token
        self.owner = owner or settings.github_owner
        self.repo = repo or settings.github_repo
        self.branch = branch or settings.github_branch

        if not self.token or not self.owner or not self.repo:
            raise ConfigurationError(
                "GitHub storage needs GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO to be set."
            )

        self.modified_files: Set[Path] = set()
        logger.info(f"Initialized GitHub storage for {self.owner}/{self.repo} ({self.branch})")

    @property
    def remote_url(self) -> str:
        return f"https://{self.token}@github.com/{self.owner}/{self.repo}.git"

    def _redact(self, text: str) -> str:
        return text.replace(self.token, "****") if self.token else text

    async def _git(self, *args: str) -> str:
        """Runs git in the data directory and returns stdout; raises GitCommandError on failure."""
        command = self._redact("git " + " ".join(args))
        logger.debug(f"Running {command}")

        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(self.data_path),
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StorageError(f"Cannot run {command}: {e}") from e
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise GitCommandError(command, process.returncode, self._redact(stderr.decode(errors="replace")))
        return stdout.decode(errors="replace")

    async def _has_staged_changes(self) -> bool:
        try:
            await self._git("diff", "--staged", "--quiet")
        except GitCommandError as e:
            if e.returncode == 1:
                return True
            raise
        return False

    def _clean_locks(self) -> None:
        for name in LOCK_FILES:
            lock = self.data_path / ".git" / name
            if lock.exists():
                logger.warning(f"Removing stale git lock {lock}")
                lock.unlink()

    def _touched(self, path: Path) -> None:
        self.modified_files.add(path)
        logger.debug(f"Marked {path.name} for sync")

    async def initialize(self) -> None:
        logger.info("Initializing GitHub storage...")
        try:
            self.data_path.mkdir(parents=True, exist_ok=True)
            self._clean_locks()
        except OSError as e:
            raise StorageError(f"Cannot prepare data directory {self.data_path}") from e

        entries = [p.name for p in self.data_path.iterdir() if p.name not in META_ENTRIES]
        is_repo = (self.data_path / ".git").exists()

        if not entries and not is_repo:
            logger.info("Data directory is empty, cloning from GitHub...")
            try:
                await self._git("clone", "--branch", self.branch, self.remote_url, ".")
                is_repo = True
                logger.info("Cloned data repository")
            except GitCommandError as e:
                logger.warning(f"Could not clone data repository, starting a new one: {e}")

        if not is_repo:
            await self._init_repository()
        else:
            await self._ensure_remote()
            await self._pull_remote()

        await self._git("config", "--local", "user.name", GIT_USER_NAME)
        await self._git("config", "--local", "user.email", GIT_USER_EMAIL)
        await self._ensure_data_files()
        logger.info("GitHub storage initialized")

    async def _init_repository(self) -> None:
        logger.info("Initializing new git repository with existing data...")
        await self._git("init")
        await self._ensure_remote()
        await self._git("checkout", "-B", self.branch)
        try:
            await self._git("fetch", "origin")
            await self._git("merge", "--allow-unrelated-histories", f"origin/{self.branch}")
        except GitCommandError as e:
            logger.warning(f"Remote has nothing to merge yet: {e}")

    async def _ensure_remote(self) -> None:
        try:
            current = (await self._git("remote", "get-url", "origin")).strip()
        except GitCommandError:
            current = None
        if current == self.remote_url:
            return
        if current is not None:
            await self._git("remote", "remove", "origin")
        await self._git("remote", "add", "origin", self.remote_url)

    async def _pull_remote(self) -> None:
        logger.info("Fetching latest changes...")
        try:
            await self._git("fetch", "origin")
        except GitCommandError as e:
            logger.warning(f"Could not fetch from origin, keeping local data: {e}")
            return
        try:
            await self._git("merge", f"origin/{self.branch}")
        except GitCommandError as e:
            logger.warning(f"Merge with origin/{self.branch} failed: {e}")
            await self._resolve_conflicts()

    async def _resolve_conflicts(self) -> None:
        """Keeps the local side of every conflicted file."""
        status = await self._git("status", "--porcelain")
        unmerged = [line[3:] for line in status.splitlines() if line.startswith("UU")]
        if not unmerged:
            return
        for file in unmerged:
            await self._git("checkout", "--ours", file)
            await self._git("add", file)
        await self._git("commit", "-m", "Resolve merge conflicts keeping local changes")
        logger.warning(f"Resolved {len(unmerged)} merge conflicts in favor of local data")

    async def _ensure_data_files(self) -> None:
        for path in self.data_files:
            if path.exists():
                continue
            try:
                path.touch()
            except OSError as e:
                raise StorageError(f"Cannot create {path}") from e
            await self._git("add", path.name)

        if await self._has_staged_changes():
            await self._git("commit", "-m", "Add missing data files")

    async def sync_changes(self, message: str = "update data files") -> None:
        try:
            self._clean_locks()
        except OSError as e:
            raise StorageError("Cannot remove stale git locks") from e

        status = await self._git("status", "--porcelain")
        if not status.strip() and not self.modified_files:
            logger.info("No changes to sync")
            return
        if status.strip() and not self.modified_files:
            logger.info("Found unsynced changes from a previous run")

        await self._git("add", ".")
        if not await self._has_staged_changes():
            logger.info("No staged changes to commit")
            self.modified_files.clear()
            return

        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        try:
            await self._git("commit", "-m", f"{message} [{stamp}]")
            try:
                await self._git("pull", "--rebase", "origin", self.branch)
            except GitCommandError as e:
                logger.warning(f"Failed to pull latest changes: {e}")
                try:
                    await self._git("rebase", "--abort")
                except GitCommandError as abort_error:
                    logger.warning(f"Failed to abort rebase: {abort_error}")
            await self._git("push", "origin", self.branch)
        except GitCommandError as e:
            raise StorageError(f"Failed to sync data repository: {e}") from e

        self.modified_files.clear()
        logger.success("Successfully synced all changes")
