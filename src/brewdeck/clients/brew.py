"""
Homebrew Command Client

Runs the local ``brew`` executable with a per-call timeout and turns its text
output into names, messages and :class:`Package` records.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from brewdeck.core.exceptions import (
    ErrorCode,
    ExecutionError,
    NotFoundError,
    OperationTimeoutError,
)
from brewdeck.models import Package, PackageKind


logger = logging.getLogger(__name__)

COMMON_BREW_PATHS = (
    "/opt/homebrew/bin/brew",               # Apple Silicon
    "/usr/local/bin/brew",                  # Intel
    "/home/linuxbrew/.linuxbrew/bin/brew",  # Linux
)


class CommandExecutor(Protocol):
    """Interface the data layer consumes from the local package tool."""

    async def list_installed(self, kind: PackageKind) -> List[str]: ...

    async def list_outdated(self, kind: PackageKind) -> List[str]: ...

    async def install(self, name: str, kind: PackageKind) -> str: ...

    async def uninstall(self, name: str, kind: PackageKind) -> str: ...

    async def update(self, name: str, kind: PackageKind) -> str: ...

    async def update_all(self, kind: Optional[PackageKind] = None) -> str: ...

    async def get_info(self, name: str, kind: PackageKind) -> str: ...

    async def search(self, query: str, kind: Optional[PackageKind] = None) -> List[str]: ...


@dataclass
class CommandResult:
    """Captured output of one brew invocation."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def find_brew_path() -> str:
    """
    Locate the brew executable.

    Raises:
        NotFoundError: If Homebrew is not installed
    """
    for path in COMMON_BREW_PATHS:
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path

    found = shutil.which("brew")
    if found:
        return found

    raise NotFoundError(
        "Homebrew not found. Please install Homebrew first.",
        error_code=ErrorCode.NOT_FOUND_HOMEBREW,
    )


def _kind_flag(kind: PackageKind) -> str:
    return "--cask" if kind == PackageKind.CASK else "--formula"


def _output_names(stdout: str) -> List[str]:
    """First token of every non-empty, non-header output line."""
    names = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line or line.startswith("==>"):
            continue
        names.append(line.split()[0])
    return names


class BrewClient:
    """Async wrapper around the ``brew`` command line."""

    def __init__(
        self,
        brew_path: Optional[str] = None,
        command_timeout: float = 300.0,
        install_timeout: float = 600.0,
        bulk_update_timeout: float = 1800.0,
    ):
        """
        Initialize brew client.

        Args:
            brew_path: Explicit executable path; auto-detected on first use when None
            command_timeout: Timeout for read-only commands (seconds)
            install_timeout: Timeout for install and upgrade (seconds)
            bulk_update_timeout: Timeout for upgrading everything (seconds)
        """
        self._brew_path = brew_path
        self.command_timeout = command_timeout
        self.install_timeout = install_timeout
        self.bulk_update_timeout = bulk_update_timeout

    @property
    def brew_path(self) -> str:
        if self._brew_path is None:
            self._brew_path = find_brew_path()
            logger.info(f"Found Homebrew at: {self._brew_path}")
        return self._brew_path

    async def execute(self, args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        """
        Run brew once with ``args``.

        Raises:
            NotFoundError: The executable is missing
            ExecutionError: The process could not be started
            OperationTimeoutError: The command exceeded its timeout
        """
        timeout = timeout or self.command_timeout
        command = " ".join(["brew", *args])
        logger.debug(f"Executing brew command: {command}")

        env = dict(os.environ)
        env["HOMEBREW_NO_AUTO_UPDATE"] = "1"
        env["HOMEBREW_NO_INSTALL_CLEANUP"] = "1"

        try:
            process = await asyncio.create_subprocess_exec(
                self.brew_path, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise NotFoundError(
                f"Homebrew executable not found: {e}",
                error_code=ErrorCode.NOT_FOUND_HOMEBREW,
                cause=e,
            )
        except PermissionError as e:
            raise ExecutionError(
                f"Permission denied running brew: {e}",
                command=command,
                error_code=ErrorCode.EXECUTION_PERMISSION_DENIED,
                cause=e,
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise OperationTimeoutError(f"Command timed out after {timeout:.0f}s: {command}", cause=e)

        result = CommandResult(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=process.returncode if process.returncode is not None else -1,
        )

        if result.success:
            logger.debug("Command executed successfully")
        else:
            logger.warning(f"Command failed with exit code {result.exit_code}: {result.stderr.strip()}")

        return result

    async def _run_checked(
        self,
        args: Sequence[str],
        failure: str,
        timeout: Optional[float] = None,
        error_code: ErrorCode = ErrorCode.EXECUTION_FAILED,
    ) -> CommandResult:
        result = await self.execute(args, timeout)
        if not result.success:
            raise ExecutionError(
                f"{failure}: {result.stderr.strip()}",
                command=" ".join(["brew", *args]),
                exit_code=result.exit_code,
                error_code=error_code,
            )
        return result

    async def list_installed(self, kind: PackageKind) -> List[str]:
        result = await self._run_checked(["list", "-1", _kind_flag(kind)], "Failed to list installed packages")
        return _output_names(result.stdout)

    async def list_outdated(self, kind: PackageKind) -> List[str]:
        result = await self._run_checked(["outdated", "--quiet", _kind_flag(kind)], "Failed to list outdated packages")
        return _output_names(result.stdout)

    async def install(self, name: str, kind: PackageKind) -> str:
        args = ["install", name] if kind == PackageKind.FORMULA else ["install", "--cask", name]
        await self._run_checked(
            args, f"Failed to install {name}", self.install_timeout,
            ErrorCode.EXECUTION_INSTALL_FAILED,
        )
        return f"Successfully installed {name}"

    async def uninstall(self, name: str, kind: PackageKind) -> str:
        args = ["uninstall", name] if kind == PackageKind.FORMULA else ["uninstall", "--cask", name]
        await self._run_checked(
            args, f"Failed to uninstall {name}",
            error_code=ErrorCode.EXECUTION_UNINSTALL_FAILED,
        )
        return f"Successfully uninstalled {name}"

    async def update(self, name: str, kind: PackageKind) -> str:
        args = ["upgrade", name] if kind == PackageKind.FORMULA else ["upgrade", "--cask", name]
        await self._run_checked(
            args, f"Failed to update {name}", self.install_timeout,
            ErrorCode.EXECUTION_UPDATE_FAILED,
        )
        return f"Successfully updated {name}"

    async def update_all(self, kind: Optional[PackageKind] = None) -> str:
        args = ["upgrade"] if kind is None else ["upgrade", _kind_flag(kind)]
        await self._run_checked(
            args, "Failed to update packages", self.bulk_update_timeout,
            ErrorCode.EXECUTION_UPDATE_FAILED,
        )
        return "Successfully updated all packages"

    async def get_info(self, name: str, kind: PackageKind) -> str:
        args = ["info", name] if kind == PackageKind.FORMULA else ["info", "--cask", name]
        result = await self.execute(args)
        if not result.success:
            raise NotFoundError(f"Package '{name}' not found: {result.stderr.strip()}", package=name)
        return result.stdout

    async def search(self, query: str, kind: Optional[PackageKind] = None) -> List[str]:
        args = ["search"]
        if kind is not None:
            args.append(_kind_flag(kind))
        args.append(query)
        result = await self._run_checked(args, "Search failed")
        return _output_names(result.stdout)


def parse_brew_info(
    name: str,
    info_output: str,
    kind: PackageKind,
    installed: Sequence[str] = (),
    outdated: Sequence[str] = (),
) -> Package:
    """
    Build a :class:`Package` from ``brew info`` text output.

    Picks up the version from the ``==> name: stable x.y`` header, the first
    free-text line as description, the first URL as homepage and the
    ``==> Caveats`` section.
    """
    version = "unknown"
    description = ""
    homepage = ""
    caveats: List[str] = []
    in_caveats = False
    header = f"==> {name}: "

    for raw in info_output.splitlines():
        line = raw.strip()
        if not line:
            continue

        if line.startswith("==>"):
            in_caveats = line.startswith("==> Caveats")
            if line.startswith(header):
                # formulae: "stable 1.2.3 (bottled)", casks: "1.2.3 (auto_updates)"
                parts = line[len(header):].split()
                if parts and parts[0] == "stable":
                    parts = parts[1:]
                if parts:
                    version = parts[0].rstrip(",")
            continue

        if in_caveats:
            caveats.append(line)
        elif line.startswith(("https://", "http://")):
            if not homepage:
                homepage = line
        elif not description:
            description = line

    is_installed = name in installed
    return Package(
        name=name,
        version=version,
        description=description,
        homepage=homepage,
        caveats="\n".join(caveats),
        installed=is_installed,
        outdated=is_installed and name in outdated,
        kind=kind,
    )
