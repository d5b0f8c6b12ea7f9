"""
Shared Test Configuration and Fixtures

Provides in-memory fakes for the two upstreams, a controllable clock for the
cache, and sample catalog data.
"""

from collections import Counter
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, patch

import pytest

from brewdeck.clients.catalog import CaskRecord, FormulaRecord
from brewdeck.core.cache import CacheConfig, CacheManager
from brewdeck.core.config.models import RetryConfig
from brewdeck.core.exceptions import ExecutionError, NotFoundError
from brewdeck.models import PackageKind
from brewdeck.services.packages import PackageService


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBrew:
    """In-memory stand-in for the brew command client."""

    def __init__(
        self,
        installed: Optional[Dict[PackageKind, List[str]]] = None,
        outdated: Optional[Dict[PackageKind, List[str]]] = None,
        info: Optional[Dict[str, str]] = None,
        search_results: Optional[List[str]] = None,
    ):
        self.installed = installed or {PackageKind.FORMULA: [], PackageKind.CASK: []}
        self.outdated = outdated or {PackageKind.FORMULA: [], PackageKind.CASK: []}
        self.info = info or {}
        self.search_results = search_results or []
        self.failures: Dict[str, Exception] = {}
        self.calls = Counter()

    def _check(self, method: str) -> None:
        self.calls[method] += 1
        if method in self.failures:
            raise self.failures[method]

    async def list_installed(self, kind):
        self._check('list_installed')
        return list(self.installed.get(kind, []))

    async def list_outdated(self, kind):
        self._check('list_outdated')
        return list(self.outdated.get(kind, []))

    async def install(self, name, kind):
        self._check('install')
        return f"Successfully installed {name}"

    async def uninstall(self, name, kind):
        self._check('uninstall')
        return f"Successfully uninstalled {name}"

    async def update(self, name, kind):
        self._check('update')
        return f"Successfully updated {name}"

    async def update_all(self, kind=None):
        self._check('update_all')
        return "Successfully updated all packages"

    async def get_info(self, name, kind):
        self._check('get_info')
        if name not in self.info:
            raise NotFoundError(f"Package '{name}' not found", package=name)
        return self.info[name]

    async def search(self, query, kind=None):
        self._check('search')
        return list(self.search_results)


class FakeCatalog:
    """In-memory stand-in for the catalog API client."""

    def __init__(self, records: Optional[Dict[PackageKind, list]] = None):
        self.records = records or {PackageKind.FORMULA: [], PackageKind.CASK: []}
        self.failures: Dict[str, Exception] = {}
        self.calls = Counter()

    def _check(self, method: str) -> None:
        self.calls[method] += 1
        if method in self.failures:
            raise self.failures[method]

    async def fetch_all(self, kind):
        self._check('fetch_all')
        return list(self.records.get(kind, []))

    async def fetch_one(self, name, kind):
        self._check('fetch_one')
        for record in self.records.get(kind, []):
            if record.key == name:
                return record
        raise NotFoundError(f"Package '{name}' not found", package=name)


def formula(name: str, downloads: int = 0, desc: str = "", dependencies=None) -> FormulaRecord:
    return FormulaRecord.model_validate({
        'name': name,
        'desc': desc or f"{name} formula",
        'homepage': f"https://{name}.example.org",
        'versions': {'stable': '1.0.0'},
        'dependencies': dependencies or [],
        'analytics': {'install': {'365d': {name: downloads}}},
    })


def cask(token: str, downloads: int = 0) -> CaskRecord:
    return CaskRecord.model_validate({
        'token': token,
        'name': [token.title()],
        'desc': f"{token} app",
        'version': '2.0',
        'analytics': {'install': {'365d': {token: downloads}}},
    })


WGET_INFO = """\
==> wget: stable 1.24.5 (bottled), HEAD
Internet file retriever
https://www.gnu.org/software/wget/
Installed
/opt/homebrew/Cellar/wget/1.24.5 (92 files, 4.5MB) *
==> Dependencies
Required: libidn2, openssl@3
==> Caveats
wget is keg-only for testing.
Run wget --help for options.
==> Analytics
install: 150,000 (30 days)
"""


@pytest.fixture
def wget_info():
    return WGET_INFO


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheManager(CacheConfig(default_ttl=300.0, max_entries=100), clock=clock)


@pytest.fixture
def brew():
    return FakeBrew()


@pytest.fixture
def catalog():
    return FakeCatalog({
        PackageKind.FORMULA: [
            formula("wget", 150000, "Internet file retriever", ["openssl@3", "libidn2"]),
            formula("curl", 90000, "Get a file from an HTTP, HTTPS or FTP server"),
            formula("jq", 40000, "Lightweight and flexible command-line JSON processor"),
            formula("obscure", 12),
        ],
        PackageKind.CASK: [
            cask("firefox", 300000),
            cask("iterm2", 200000),
        ],
    })


@pytest.fixture
def retry_config():
    return RetryConfig(api_max_retries=2, command_max_retries=2, base_backoff=0.0)


@pytest.fixture
def package_service(cache, brew, catalog, retry_config):
    return PackageService(cache, brew, catalog, retry_config)


@pytest.fixture
def no_sleep():
    """Patch asyncio.sleep so backoff and pacing delays return at once."""
    with patch('asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def execution_failure():
    return ExecutionError("Error: No available formula", command="brew install nope", exit_code=1)
