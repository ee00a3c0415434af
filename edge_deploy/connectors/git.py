"""
Local working copies of cluster repositories, driven through the git CLI.
"""

import asyncio
import io
import logging
import os
import re
import shutil
import tempfile
from typing import Any
from urllib.parse import urlparse, urlunparse

from ruamel.yaml import YAML, YAMLError

from edge_deploy.core.config import settings
from edge_deploy.models import ManifestShapeError

logger = logging.getLogger(__name__)


class GitCommandError(RuntimeError):
    """A git subprocess exited with a non-zero status."""


def _obfuscate_git_command(cmd_str: str) -> str:
    """
    Obfuscate credentials embedded in URLs before logging a git command.

    Args:
        cmd_str: The command string to obfuscate

    Returns:
        Command string with passwords replaced by asterisks
    """
    return re.sub(r"(https?://[^:/@\s]+):([^@\s]+)@", r"\1:***@", cmd_str)


def _yaml() -> YAML:
    yaml = YAML()
    yaml.width = 4096
    yaml.default_flow_style = False
    return yaml


class Checkout:
    """
    A scratch working copy of one repository.

    Create one with Checkout.clone() for an existing repository or
    Checkout.init() for an empty one. The working directory is removed by
    dispose(), which is also called on leaving an ``async with`` block.

    Manifests are stored one per file at ``<namespace>/<Kind>/<name>.yaml``.
    """

    def __init__(
        self,
        url: str,
        branch: str | None = None,
        username: str | None = None,
        password: str | None = None,
    ):
        self.url = url
        self.branch = branch or settings.GIT_BRANCH
        self.username = username if username is not None else settings.SERVICE_USERNAME
        self.password = password if password is not None else settings.SERVICE_PASSWORD

        self.working_dir = tempfile.mkdtemp(prefix="edge-checkout-", dir=settings.TEMP_DIR)
        self._disposed = False
        self._git_user_configured = False
        logger.debug(f"Created checkout directory {self.working_dir} for {self.url}")

    @classmethod
    async def clone(cls, url: str, **kwargs: Any) -> "Checkout":
        """Clone the current state of an existing repository."""
        checkout = cls(url, **kwargs)
        try:
            stdout, stderr, code = await checkout._run_git_command(
                ["clone", "--depth", "1", "--branch", checkout.branch, checkout.url_with_credentials, "."]
            )
            checkout._check_git_command_result(code, stderr, "clone repository")
        except Exception:
            await checkout.dispose()
            raise
        logger.debug(f"Cloned {url}")
        return checkout

    @classmethod
    async def init(cls, url: str, **kwargs: Any) -> "Checkout":
        """Start a new history for an empty repository; url becomes origin."""
        checkout = cls(url, **kwargs)
        try:
            stdout, stderr, code = await checkout._run_git_command(["init", "-b", checkout.branch])
            checkout._check_git_command_result(code, stderr, "initialise repository")
            stdout, stderr, code = await checkout._run_git_command(
                ["remote", "add", "origin", checkout.url_with_credentials]
            )
            checkout._check_git_command_result(code, stderr, "add remote")
        except Exception:
            await checkout.dispose()
            raise
        logger.debug(f"Initialised new checkout for {url}")
        return checkout

    async def __aenter__(self) -> "Checkout":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()
        return False

    @property
    def url_with_credentials(self) -> str:
        """The repository URL with service credentials embedded for http(s)."""
        parsed = urlparse(self.url)
        if parsed.scheme not in ("http", "https") or not (self.username and self.password):
            return self.url

        netloc = f"{self.username}:{self.password}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        return urlunparse((parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment))

    async def _run_git_command(self, args: list[str]) -> tuple[str, str, int]:
        """
        Run a git command in the working directory.

        Returns:
            Tuple of (stdout, stderr, return_code)
        """
        cmd = ["git"] + args
        logger.debug(f"Running Git command: {_obfuscate_git_command(' '.join(cmd))} in {self.working_dir}")

        env = os.environ.copy()
        # Never wait for interactive credentials
        env["GIT_TERMINAL_PROMPT"] = "0"

        process = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE, env=env, cwd=self.working_dir
        )
        stdout, stderr = await process.communicate()
        stdout_str = stdout.decode("utf-8").strip()
        stderr_str = _obfuscate_git_command(stderr.decode("utf-8").strip())

        if process.returncode != 0:
            logger.debug(f"Git command failed with code {process.returncode}: {stderr_str}")

        return stdout_str, stderr_str, process.returncode or 0

    def _check_git_command_result(self, code: int, stderr: str, operation: str) -> None:
        if code != 0:
            error_msg = f"Failed to {operation} for {_obfuscate_git_command(self.url)}: {stderr}"
            logger.error(error_msg)
            raise GitCommandError(error_msg)

    async def _configure_git_user(self) -> None:
        if self._git_user_configured:
            return

        for key, value in (("user.name", settings.GIT_USER_NAME), ("user.email", settings.GIT_USER_EMAIL)):
            stdout, stderr, code = await self._run_git_command(["config", key, value])
            if code != 0:
                logger.warning(f"Failed to configure git {key}: {stderr}")

        self._git_user_configured = True

    def _abs_path(self, file_path: str) -> str:
        abs_path = os.path.normpath(os.path.join(self.working_dir, file_path.lstrip("/")))
        if os.path.commonpath([abs_path, self.working_dir]) != self.working_dir:
            raise ValueError(f"Path {file_path} is outside the checkout")
        return abs_path

    @staticmethod
    def manifest_path(namespace: str, kind: str, name: str) -> str:
        return f"{namespace}/{kind}/{name}.yaml"

    async def write_file(self, file_path: str, content: str) -> None:
        abs_path = self._abs_path(file_path)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        with open(abs_path, "w", encoding="utf-8") as f:
            f.write(content)
        logger.debug(f"Wrote {file_path}")

    async def read_file(self, file_path: str) -> str | None:
        abs_path = self._abs_path(file_path)
        if not os.path.exists(abs_path):
            return None
        with open(abs_path, encoding="utf-8") as f:
            return f.read()

    async def write_manifest(self, doc: dict[str, Any]) -> None:
        """Write a manifest to the file named by its namespace, kind and name."""
        metadata = doc["metadata"]
        path = self.manifest_path(metadata["namespace"], doc["kind"], metadata["name"])

        stream = io.StringIO()
        _yaml().dump(doc, stream)
        await self.write_file(path, stream.getvalue())

    async def read_manifest(self, namespace: str, kind: str, name: str) -> Any | None:
        """
        Read a manifest back, or None if there is no such file.

        Raises:
            ManifestShapeError: If the file is not valid YAML
        """
        path = self.manifest_path(namespace, kind, name)
        content = await self.read_file(path)
        if content is None:
            return None
        try:
            return _yaml().load(content)
        except YAMLError as e:
            raise ManifestShapeError(f"{path} is not valid YAML: {e}") from e

    async def delete_manifest(self, namespace: str, kind: str, name: str) -> bool:
        abs_path = self._abs_path(self.manifest_path(namespace, kind, name))
        if not os.path.exists(abs_path):
            return False
        os.unlink(abs_path)
        logger.debug(f"Deleted manifest {namespace}/{kind}/{name}")
        return True

    async def list_manifests(self, namespace: str, kind: str) -> list[tuple[str, str, str]]:
        """List (namespace, kind, name) of every manifest of one kind in a namespace."""
        directory = self._abs_path(f"{namespace}/{kind}")
        if not os.path.isdir(directory):
            return []

        return [
            (namespace, kind, entry[: -len(".yaml")])
            for entry in sorted(os.listdir(directory))
            if entry.endswith(".yaml") and os.path.isfile(os.path.join(directory, entry))
        ]

    async def commit(self, message: str) -> None:
        """Stage everything in the working directory and commit it."""
        stdout, stderr, code = await self._run_git_command(["add", "-A"])
        self._check_git_command_result(code, stderr, "stage changes")

        await self._configure_git_user()

        stdout, stderr, code = await self._run_git_command(["commit", "--no-verify", "-m", message])
        if code != 0:
            if "nothing to commit" in stdout or "nothing to commit" in stderr:
                logger.debug("No changes to commit")
                return
            self._check_git_command_result(code, stderr, "commit changes")

        logger.debug(f"Committed: {message}")

    async def push(self) -> None:
        stdout, stderr, code = await self._run_git_command(["push", "origin", f"HEAD:refs/heads/{self.branch}"])
        self._check_git_command_result(code, stderr, f"push to {self.branch}")
        logger.debug(f"Pushed to {self.branch}")

    async def dispose(self) -> None:
        """Remove the working directory. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        logger.debug(f"Removing checkout directory {self.working_dir}")
        shutil.rmtree(self.working_dir, ignore_errors=True)
