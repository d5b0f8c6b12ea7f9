"""
Catalog API Client

Fetches package metadata from the public Homebrew JSON API and decodes it into
typed records. Records that do not fit the expected shape are skipped
individually; a response that is not a list (or object, for single lookups)
is a parsing failure.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from brewdeck.core.exceptions import (
    ErrorCode,
    NetworkError,
    NotFoundError,
    OperationTimeoutError,
    ParsingError,
    RateLimitedError,
)
from brewdeck.models import (
    Package,
    PackageAnalytics,
    PackageKind,
    PackageWarning,
    WarningSeverity,
    WarningType,
)


logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://formulae.brew.sh/api"
DEFAULT_USER_AGENT = "BrewDeck/1.0"
NO_DESCRIPTION = "No description available"


def classify_warning(message: str) -> Tuple[WarningType, WarningSeverity]:
    """Map a free-text warning onto a type and severity by keyword."""
    text = message.lower()

    if "deprecated" in text:
        return WarningType.DEPRECATED, WarningSeverity.MEDIUM
    if "disabled" in text:
        return WarningType.DEPRECATED, WarningSeverity.HIGH
    if "conflicts" in text:
        return WarningType.CONFLICTS_WITH, WarningSeverity.MEDIUM
    if "requires" in text or "depends" in text or "keg-only" in text:
        return WarningType.COMPATIBILITY, WarningSeverity.LOW
    if "experimental" in text or "beta" in text:
        return WarningType.EXPERIMENTAL, WarningSeverity.MEDIUM
    return WarningType.COMPATIBILITY, WarningSeverity.LOW


def to_package_warnings(messages: Sequence[str]) -> List[PackageWarning]:
    warnings = []
    for message in messages:
        warning_type, severity = classify_warning(message)
        warnings.append(PackageWarning(warning_type=warning_type, message=message, severity=severity))
    return warnings


def _with_reason(text: str, reason: Optional[str]) -> str:
    return f"{text}: {reason}" if reason else text


class RecordAnalytics(BaseModel):
    """The ``analytics`` block; only install counts are used."""

    model_config = ConfigDict(extra="ignore")

    install: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("install", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or {}

    def downloads_365d(self) -> int:
        """
        Installs over the last year.

        The API reports either a plain number or a mapping of
        package name (and options) to counts; the latter is summed.
        """
        value = self.install.get("365d", 0)
        if isinstance(value, dict):
            return sum(int(count) for count in value.values() if isinstance(count, (int, float)))
        if isinstance(value, (int, float)):
            return int(value)
        return 0


def _analytics(block: Optional[RecordAnalytics]) -> PackageAnalytics:
    downloads = block.downloads_365d() if block else 0
    return PackageAnalytics(downloads_365d=downloads, popularity=downloads / 1000.0)


class FormulaVersions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stable: Optional[str] = None


class FormulaRecord(BaseModel):
    """One entry of ``formula.json`` / ``formula/<name>.json``."""

    model_config = ConfigDict(extra="ignore")

    name: str
    desc: Optional[str] = None
    homepage: Optional[str] = None
    versions: FormulaVersions = Field(default_factory=FormulaVersions)
    dependencies: List[str] = Field(default_factory=list)
    conflicts_with: List[str] = Field(default_factory=list)
    caveats: Optional[str] = None
    keg_only: bool = False
    keg_only_reason: Optional[Any] = None
    deprecated: bool = False
    deprecation_reason: Optional[str] = None
    disabled: bool = False
    disable_reason: Optional[str] = None
    analytics: Optional[RecordAnalytics] = None

    @field_validator("dependencies", "conflicts_with", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []

    @field_validator("keg_only", "deprecated", "disabled", mode="before")
    @classmethod
    def _none_to_false(cls, v):
        return bool(v)

    @property
    def key(self) -> str:
        return self.name

    def warnings(self) -> List[str]:
        messages = []
        if self.deprecated:
            messages.append(_with_reason("This formula is deprecated", self.deprecation_reason))
        if self.disabled:
            messages.append(_with_reason("This formula is disabled", self.disable_reason))
        if self.keg_only:
            reason = self.keg_only_reason
            if isinstance(reason, dict):
                reason = reason.get("explanation") or reason.get("reason")
            messages.append(_with_reason("This formula is keg-only", reason))
        if self.conflicts_with:
            messages.append(f"Conflicts with: {', '.join(self.conflicts_with)}")
        return messages

    def to_package(self, installed: Sequence[str] = (), outdated: Sequence[str] = ()) -> Package:
        is_installed = self.name in installed
        return Package(
            name=self.name,
            version=self.versions.stable or "unknown",
            description=self.desc or NO_DESCRIPTION,
            installed=is_installed,
            outdated=is_installed and self.name in outdated,
            homepage=self.homepage or "",
            dependencies=list(self.dependencies),
            conflicts=list(self.conflicts_with),
            caveats=self.caveats or "",
            analytics=_analytics(self.analytics),
            warnings=to_package_warnings(self.warnings()),
            kind=PackageKind.FORMULA,
        )


class CaskDependsOn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    formula: List[str] = Field(default_factory=list)
    cask: List[str] = Field(default_factory=list)

    @field_validator("formula", "cask", mode="before")
    @classmethod
    def _as_list(cls, v):
        if not v:
            return []
        return [v] if isinstance(v, str) else v


class CaskRecord(BaseModel):
    """One entry of ``cask.json`` / ``cask/<token>.json``."""

    model_config = ConfigDict(extra="ignore")

    token: str
    name: List[str] = Field(default_factory=list)
    desc: Optional[str] = None
    homepage: Optional[str] = None
    version: Optional[str] = None
    caveats: Optional[str] = None
    auto_updates: Optional[bool] = None
    depends_on: CaskDependsOn = Field(default_factory=CaskDependsOn)
    analytics: Optional[RecordAnalytics] = None

    @field_validator("name", mode="before")
    @classmethod
    def _names(cls, v):
        if not v:
            return []
        return [v] if isinstance(v, str) else v

    @field_validator("depends_on", mode="before")
    @classmethod
    def _depends_on(cls, v):
        return v or {}

    @field_validator("version", mode="before")
    @classmethod
    def _version_str(cls, v):
        return None if v is None else str(v)

    @property
    def key(self) -> str:
        return self.token

    def warnings(self) -> List[str]:
        messages = []
        if self.auto_updates is False:
            messages.append("This application does not auto-update")
        if self.depends_on.formula:
            messages.append(f"Requires formulae: {', '.join(self.depends_on.formula)}")
        if self.depends_on.cask:
            messages.append(f"Requires other casks: {', '.join(self.depends_on.cask)}")
        return messages

    def to_package(self, installed: Sequence[str] = (), outdated: Sequence[str] = ()) -> Package:
        is_installed = self.token in installed
        return Package(
            name=self.token,
            version=self.version or "unknown",
            description=self.desc or NO_DESCRIPTION,
            installed=is_installed,
            outdated=is_installed and self.token in outdated,
            homepage=self.homepage or "",
            dependencies=list(self.depends_on.formula),
            caveats=self.caveats or "",
            analytics=_analytics(self.analytics),
            warnings=to_package_warnings(self.warnings()),
            kind=PackageKind.CASK,
        )


CatalogRecord = Union[FormulaRecord, CaskRecord]

_RECORD_TYPES = {
    PackageKind.FORMULA: FormulaRecord,
    PackageKind.CASK: CaskRecord,
}


def decode_record(data: Any, kind: PackageKind) -> CatalogRecord:
    """
    Decode one JSON object into a typed record.

    Raises:
        ParsingError: If the object lacks required fields or has the wrong shape
    """
    try:
        return _RECORD_TYPES[kind].model_validate(data)
    except ValidationError as e:
        raise ParsingError(f"Malformed {kind} record: {e.error_count()} validation error(s)", cause=e)


def decode_records(data: Any, kind: PackageKind) -> List[CatalogRecord]:
    """
    Decode a listing response, skipping individual malformed records.

    Raises:
        ParsingError: If the response is not a JSON list
    """
    if not isinstance(data, list):
        raise ParsingError(f"Expected a list of {kind} records, got {type(data).__name__}")

    records = []
    skipped = 0
    for item in data:
        try:
            records.append(decode_record(item, kind))
        except ParsingError:
            skipped += 1

    if skipped:
        logger.warning(f"Skipped {skipped} malformed {kind} records")
    return records


class CatalogSource(Protocol):
    """Interface the data layer consumes from the remote catalog."""

    async def fetch_all(self, kind: PackageKind) -> List[CatalogRecord]: ...

    async def fetch_one(self, name: str, kind: PackageKind) -> CatalogRecord: ...


class CatalogClient:
    """aiohttp client for the Homebrew formulae API."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        """
        Initialize catalog client.

        Args:
            base_url: API root, e.g. ``https://formulae.brew.sh/api``
            timeout: Total per-request timeout in seconds
            user_agent: User-Agent header sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={'User-Agent': self.user_agent},
            )
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def _listing_url(self, kind: PackageKind) -> str:
        return f"{self.base_url}/{kind.value}.json"

    def _record_url(self, name: str, kind: PackageKind) -> str:
        return f"{self.base_url}/{kind.value}/{name}.json"

    async def get_json(self, url: str) -> Any:
        """
        GET ``url`` once and decode the JSON body.

        Raises:
            OperationTimeoutError: Request timed out
            RateLimitedError: HTTP 429
            NotFoundError: HTTP 404
            NetworkError: Connection failure or other non-success status
            ParsingError: Body is not valid JSON
        """
        logger.debug(f"Fetching from API: {url}")
        session = self._get_session()

        try:
            async with session.get(url) as response:
                if response.status == 429:
                    raise RateLimitedError(
                        f"Rate limited by catalog API: {url}",
                        retry_after=_parse_retry_after(response.headers.get('Retry-After')),
                        url=url,
                    )
                if response.status == 404:
                    raise NotFoundError(f"Catalog entry not found: {url}")
                if response.status >= 400:
                    raise NetworkError(
                        f"API request failed with status: {response.status}",
                        url=url,
                        status_code=response.status,
                        error_code=ErrorCode.NETWORK_HTTP_ERROR,
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ParsingError(f"Invalid JSON from {url}: {e}", cause=e)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"Request timed out after {self.timeout:.0f}s: {url}",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                cause=e,
            )
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed: {e}", url=url, cause=e)

    async def fetch_all(self, kind: PackageKind) -> List[CatalogRecord]:
        data = await self.get_json(self._listing_url(kind))
        records = decode_records(data, kind)
        logger.debug(f"Decoded {len(records)} {kind} records from catalog")
        return records

    async def fetch_one(self, name: str, kind: PackageKind) -> CatalogRecord:
        try:
            data = await self.get_json(self._record_url(name, kind))
        except NotFoundError as e:
            raise NotFoundError(f"Package '{name}' not found", package=name, cause=e)
        return decode_record(data, kind)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
