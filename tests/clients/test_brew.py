"""
Test suite for the brew command client.

Subprocess creation is mocked; no real brew executable is needed.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from brewdeck.clients.brew import BrewClient, CommandResult, find_brew_path, parse_brew_info
from brewdeck.core.exceptions import ErrorCode, ExecutionError, NotFoundError, OperationTimeoutError
from brewdeck.models import PackageKind


def make_process(stdout: str = "", stderr: str = "", returncode: int = 0):
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout.encode(), stderr.encode()))
    process.wait = AsyncMock(return_value=returncode)
    process.returncode = returncode
    return process


@pytest.fixture
def client():
    return BrewClient(brew_path="/opt/homebrew/bin/brew", command_timeout=5.0)


class TestParseBrewInfo:
    """Test parsing of `brew info` output."""

    def test_parses_fields(self, wget_info):
        package = parse_brew_info("wget", wget_info, PackageKind.FORMULA)

        assert package.name == "wget"
        assert package.version == "1.24.5"
        assert package.description == "Internet file retriever"
        assert package.homepage == "https://www.gnu.org/software/wget/"
        assert package.caveats == "wget is keg-only for testing.\nRun wget --help for options."
        assert package.kind == PackageKind.FORMULA

    def test_installed_and_outdated(self, wget_info):
        package = parse_brew_info("wget", wget_info, PackageKind.FORMULA, ["wget"], ["wget"])
        assert package.installed is True
        assert package.outdated is True

    def test_outdated_requires_installed(self, wget_info):
        package = parse_brew_info("wget", wget_info, PackageKind.FORMULA, [], ["wget"])
        assert package.installed is False
        assert package.outdated is False

    def test_cask_version_line(self):
        text = "==> firefox: 125.0.1 (auto_updates)\nWeb browser\nhttps://www.mozilla.org/firefox/\n"
        package = parse_brew_info("firefox", text, PackageKind.CASK)
        assert package.version == "125.0.1"
        assert package.description == "Web browser"

    def test_empty_output(self):
        package = parse_brew_info("ghost", "", PackageKind.FORMULA)
        assert package.version == "unknown"
        assert package.description == ""
        assert package.caveats == ""


class TestBrewClientExecute:
    """Test command execution."""

    @pytest.mark.asyncio
    async def test_execute_success(self, client):
        process = make_process(stdout="wget\ncurl\n")
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)) as mock_exec:
            result = await client.execute(["list", "-1", "--formula"])

        assert result == CommandResult(stdout="wget\ncurl\n", stderr="", exit_code=0)
        args, kwargs = mock_exec.call_args
        assert args == ("/opt/homebrew/bin/brew", "list", "-1", "--formula")
        assert kwargs['env']['HOMEBREW_NO_AUTO_UPDATE'] == "1"
        assert kwargs['env']['HOMEBREW_NO_INSTALL_CLEANUP'] == "1"

    @pytest.mark.asyncio
    async def test_missing_executable(self, client):
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(side_effect=FileNotFoundError("brew"))):
            with pytest.raises(NotFoundError) as exc_info:
                await client.execute(["--version"])
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND_HOMEBREW

    @pytest.mark.asyncio
    async def test_permission_denied(self, client):
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(side_effect=PermissionError("denied"))):
            with pytest.raises(ExecutionError) as exc_info:
                await client.execute(["--version"])
        assert exc_info.value.error_code == ErrorCode.EXECUTION_PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, client):
        process = make_process()
        process.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)):
            with pytest.raises(OperationTimeoutError) as exc_info:
                await client.execute(["install", "wget"], timeout=1.0)

        process.kill.assert_called_once()
        assert exc_info.value.kind == "Timeout"
        assert exc_info.value.recoverable is True


class TestBrewClientCommands:
    """Test the typed command wrappers."""

    @pytest.mark.asyncio
    async def test_list_outdated_takes_first_token(self, client):
        process = make_process(stdout="wget (1.21) < 1.24.5\ncurl\n\n")
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)):
            assert await client.list_outdated(PackageKind.FORMULA) == ["wget", "curl"]

    @pytest.mark.asyncio
    async def test_search_filters_headers(self, client):
        process = make_process(stdout="==> Formulae\nwget\nwget2\n\n==> Casks\n")
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)) as mock_exec:
            assert await client.search("wget", PackageKind.FORMULA) == ["wget", "wget2"]
        assert mock_exec.call_args.args[1:] == ("search", "--formula", "wget")

    @pytest.mark.asyncio
    async def test_install_cask_uses_flag_and_long_timeout(self, client):
        process = make_process()
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)) as mock_exec, \
                patch('asyncio.wait_for', wraps=asyncio.wait_for) as mock_wait:
            message = await client.install("firefox", PackageKind.CASK)

        assert message == "Successfully installed firefox"
        assert mock_exec.call_args.args[1:] == ("install", "--cask", "firefox")
        assert mock_wait.call_args.args[1] == 600.0

    @pytest.mark.asyncio
    async def test_failed_install_raises_execution_error(self, client):
        process = make_process(stderr="Error: No available formula", returncode=1)
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)):
            with pytest.raises(ExecutionError) as exc_info:
                await client.install("nope", PackageKind.FORMULA)

        assert exc_info.value.exit_code == 1
        assert exc_info.value.error_code == ErrorCode.EXECUTION_INSTALL_FAILED
        assert "No available formula" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_get_info_failure_is_not_found(self, client):
        process = make_process(stderr="Error: No available formula", returncode=1)
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)):
            with pytest.raises(NotFoundError) as exc_info:
                await client.get_info("nope", PackageKind.FORMULA)
        assert exc_info.value.context.package == "nope"

    @pytest.mark.asyncio
    async def test_update_all_uses_bulk_timeout(self, client):
        process = make_process()
        with patch('asyncio.create_subprocess_exec', new=AsyncMock(return_value=process)) as mock_exec, \
                patch('asyncio.wait_for', wraps=asyncio.wait_for) as mock_wait:
            await client.update_all()

        assert mock_exec.call_args.args[1:] == ("upgrade",)
        assert mock_wait.call_args.args[1] == 1800.0


class TestFindBrewPath:
    """Test brew executable discovery."""

    def test_common_path(self):
        with patch('os.path.isfile', side_effect=lambda p: p == "/usr/local/bin/brew"), \
                patch('os.access', return_value=True):
            assert find_brew_path() == "/usr/local/bin/brew"

    def test_falls_back_to_which(self):
        with patch('os.path.isfile', return_value=False), \
                patch('shutil.which', return_value="/custom/bin/brew"):
            assert find_brew_path() == "/custom/bin/brew"

    def test_not_installed(self):
        with patch('os.path.isfile', return_value=False), \
                patch('shutil.which', return_value=None):
            with pytest.raises(NotFoundError):
                find_brew_path()
