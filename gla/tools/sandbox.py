"""Sandbox — a disposable git repository the learner practises in.

Isolation model:
  - One directory per process: <base>/gla-sandbox/<8 hex chars>
  - git runs as an argument vector (no shell) with cwd pinned to the root
  - System/global git config is ignored; no editor, no credential prompts
  - Hard timeout per invocation; expiry is a failed command, not a crash
  - File helpers refuse paths that resolve outside the root
  - One coarse lock: a single git process touches the repository at a time
"""

from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import os
import shlex
import shutil
import stat
import tempfile
import uuid
from pathlib import Path

import structlog

from gla.config import settings
from gla.errors import EnvironmentSetupError, SandboxFileError, SandboxPathError
from gla.models.schemas import CommandResult

logger = structlog.get_logger().bind(component="sandbox")

TIMEOUT_EXIT_CODE = 124

# Inherited variables that would point git at some other repository
_LEAKY_GIT_VARS = (
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_OBJECT_DIRECTORY",
    "GIT_ALTERNATE_OBJECT_DIRECTORIES",
    "GIT_NAMESPACE",
    "GIT_CEILING_DIRECTORIES",
)


def _git_env() -> dict[str, str]:
    env = os.environ.copy()
    for var in _LEAKY_GIT_VARS:
        env.pop(var, None)
    env.update({
        "GIT_CONFIG_NOSYSTEM": "1",
        "GIT_CONFIG_GLOBAL": os.devnull,
        "GIT_TERMINAL_PROMPT": "0",
        "GIT_EDITOR": ":",
        "GIT_SEQUENCE_EDITOR": ":",
        "GIT_MERGE_AUTOEDIT": "no",
        "GIT_PAGER": "cat",
    })
    return env


def _blocked_global_option(argv: list[str]) -> str | None:
    """Return the first global option (before the subcommand) that could
    make git operate outside the sandbox, or None.

    Options after the subcommand are left alone: `log -C` means
    "detect copies", not "change directory".
    """
    for token in argv:
        if not token.startswith("-"):
            return None
        if token in ("-C", "-c") or token.startswith(("--git-dir", "--work-tree", "--exec-path", "--config-env")):
            return token
    return None


def _make_writable(root: Path) -> None:
    """Add the owner-write bit everywhere under root.

    git marks pack and object files read-only, which blocks deletion on Windows.
    """
    for dirpath, dirnames, filenames in os.walk(root):
        for name in (*dirnames, *filenames):
            path = os.path.join(dirpath, name)
            if os.path.islink(path):
                continue
            with contextlib.suppress(OSError):
                os.chmod(path, os.stat(path).st_mode | stat.S_IWRITE)


class SandboxEnvironment:
    """Isolated, resettable git working directory.

    Lifecycle:
        construct  → path computed, nothing on disk
        initialize → directory + `git init` + committer identity
        reset      → delete and initialize again at the same path
        dispose    → best-effort delete, never raises

    Usage:
        async with SandboxEnvironment() as sandbox:
            await sandbox.create_file("a.txt", "hello")
            result = await sandbox.execute_command("add a.txt")
    """

    def __init__(
        self,
        base_dir: str | Path | None = None,
        *,
        git_binary: str | None = None,
        command_timeout: float | None = None,
        default_branch: str | None = None,
        committer_name: str | None = None,
        committer_email: str | None = None,
    ) -> None:
        base = Path(base_dir or settings.sandbox_base_dir or tempfile.gettempdir())
        self.root_path: Path = (base / "gla-sandbox" / uuid.uuid4().hex[:8]).resolve()
        self.git_binary = git_binary or settings.git_binary
        self.command_timeout = command_timeout if command_timeout is not None else settings.command_timeout
        self.default_branch = default_branch or settings.default_branch
        self.committer_name = committer_name or settings.committer_name
        self.committer_email = committer_email or settings.committer_email
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def __aenter__(self) -> SandboxEnvironment:
        try:
            await self.initialize()
        except BaseException:
            self.dispose()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()

    # ---- Lifecycle ----

    async def initialize(self) -> None:
        """Create the directory and a fresh repository. No-op if already done.

        Raises:
            EnvironmentSetupError: directory not creatable, git missing, or
                any setup command exited non-zero.
        """
        async with self._lock:
            await self._initialize()

    async def _initialize(self) -> None:
        if self._initialized:
            return

        try:
            self.root_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EnvironmentSetupError(
                f"Could not create sandbox directory {self.root_path}: {e}"
            ) from e

        setup_steps = [
            ["init"],
            ["symbolic-ref", "HEAD", f"refs/heads/{self.default_branch}"],
            ["config", "user.email", self.committer_email],
            ["config", "user.name", self.committer_name],
        ]
        for argv in setup_steps:
            result = await self._run_git(argv)
            if not result.success:
                raise EnvironmentSetupError(
                    f"`git {' '.join(argv)}` failed: {result.message or f'exit code {result.exit_code}'}"
                )

        self._initialized = True
        logger.info("sandbox_initialized", path=str(self.root_path), branch=self.default_branch)

    async def reset(self) -> None:
        """Wipe everything and start over with an empty repository at the same path."""
        async with self._lock:
            self._remove_tree()
            self._initialized = False
            await self._initialize()
        logger.info("sandbox_reset", path=str(self.root_path))

    def dispose(self) -> None:
        """Delete the sandbox. Best effort: errors are logged, never raised."""
        try:
            self._remove_tree()
            # Drop the shared gla-sandbox/ parent once the last sandbox is gone
            with contextlib.suppress(OSError):
                self.root_path.parent.rmdir()
        except Exception as e:
            logger.warning("sandbox_dispose_failed", path=str(self.root_path), error=str(e))
        self._initialized = False

    def _remove_tree(self) -> None:
        if not self.root_path.exists():
            return
        try:
            _make_writable(self.root_path)
            shutil.rmtree(self.root_path)
            logger.debug("sandbox_removed", path=str(self.root_path))
        except OSError as e:
            logger.warning("sandbox_cleanup_failed", path=str(self.root_path), error=str(e))

    # ---- Commands ----

    async def execute_command(self, arguments: str) -> CommandResult:
        """Run `git <arguments>` inside the sandbox.

        Never raises for a failing command: non-zero exits, timeouts, bad
        quoting and a missing git binary all come back as success=False.
        """
        try:
            argv = shlex.split(arguments)
        except ValueError as e:
            return CommandResult(success=False, stderr=f"Could not parse command: {e}")

        if argv and argv[0] == "git":
            argv = argv[1:]
        if not argv:
            return CommandResult(success=False, stderr="No git command given.")

        blocked = _blocked_global_option(argv)
        if blocked:
            return CommandResult(
                success=False,
                stderr=f"Option '{blocked}' is not allowed: commands must run inside the sandbox.",
            )

        async with self._lock:
            # reset() clears the flag while holding the same lock
            if not self._initialized:
                return CommandResult(success=False, stderr="Sandbox is not initialized.")
            result = await self._run_git(argv)

        logger.info(
            "git_command",
            args=argv,
            success=result.success,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
        )
        return result

    async def _run_git(self, argv: list[str]) -> CommandResult:
        """Spawn git, capture both streams, enforce the timeout."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.git_binary,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.root_path,
                env=_git_env(),
            )
        except FileNotFoundError as e:
            if shutil.which(self.git_binary) is None:
                message = f"git executable not found: {self.git_binary}"
            else:
                message = str(e)
            logger.error("git_spawn_failed", error=message)
            return CommandResult(success=False, stderr=message)
        except OSError as e:
            logger.error("git_spawn_failed", error=str(e))
            return CommandResult(success=False, stderr=str(e))

        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            logger.warning("git_timeout", args=argv, timeout=self.command_timeout)
            return CommandResult(
                success=False,
                stderr=f"git {' '.join(argv)} timed out after {self.command_timeout:g}s",
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
            )
        except asyncio.CancelledError:
            proc.kill()
            raise

        return CommandResult(
            success=proc.returncode == 0,
            stdout=stdout_b.decode("utf-8", errors="replace").rstrip(),
            stderr=stderr_b.decode("utf-8", errors="replace").rstrip(),
            exit_code=proc.returncode,
        )

    async def status(self) -> str:
        """Short-form status (stdout only)."""
        return (await self.execute_command("status --short")).stdout

    async def log(self, count: int = 5) -> str:
        """One-line log of the last `count` commits (stdout only)."""
        return (await self.execute_command(f"log --oneline -n {int(count)}")).stdout

    # ---- Files ----

    def _resolve(self, relative_path: str) -> Path:
        root = self.root_path
        target = (root / relative_path).resolve()
        if target == root:
            raise SandboxPathError(f"Not a file path: {relative_path!r}")
        try:
            target.relative_to(root)
        except ValueError:
            raise SandboxPathError(f"Path escapes the sandbox: {relative_path}") from None
        return target

    async def create_file(self, relative_path: str, content: str) -> Path:
        """Write content verbatim, creating parent directories. Overwrites."""
        target = self._resolve(relative_path)
        if target.relative_to(self.root_path).parts[0] == ".git":
            raise SandboxPathError(f"Refusing to write inside repository metadata: {relative_path}")

        async with self._lock:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content.encode("utf-8"))
            except OSError as e:
                raise SandboxFileError(f"Could not write {relative_path}: {e.strerror or e}") from e

        logger.debug("file_created", path=relative_path, size=len(content))
        return target

    async def setup_scenario_files(self, files: dict[str, str]) -> None:
        """Create several files at once (scenario scaffolding)."""
        for relative_path, content in files.items():
            await self.create_file(relative_path, content)

    async def read_file(self, relative_path: str) -> str:
        """File content, or "" when the file does not exist.

        Use file_exists() to tell an empty file from a missing one.
        """
        target = self._resolve(relative_path)
        async with self._lock:
            if not target.is_file():
                return ""
            try:
                data = target.read_bytes()
            except OSError as e:
                raise SandboxFileError(f"Could not read {relative_path}: {e.strerror or e}") from e
        return data.decode("utf-8", errors="replace")

    def file_exists(self, relative_path: str) -> bool:
        return self._resolve(relative_path).is_file()

    def list_files(self, pattern: str = "*") -> list[str]:
        """Recursively list files whose name matches `pattern`.

        Paths are relative to the root, '/'-separated. The .git metadata
        directory is skipped.
        """
        if not self.root_path.is_dir():
            return []

        found: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root_path):
            if Path(dirpath) == self.root_path and ".git" in dirnames:
                dirnames.remove(".git")
            for name in filenames:
                if fnmatch.fnmatch(name, pattern):
                    found.append(Path(dirpath, name).relative_to(self.root_path).as_posix())
        return sorted(found)
