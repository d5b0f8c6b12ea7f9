"""
Domain models shared by the clients and services.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from brewdeck.core.exceptions import ConfigurationError


class PackageKind(str, Enum):
    """The two Homebrew package categories."""
    FORMULA = "formula"
    CASK = "cask"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value) -> 'PackageKind':
        """Parse ``formula``/``formulae``/``cask``/``casks`` case-insensitively."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("formula", "formulae"):
            return cls.FORMULA
        if normalized in ("cask", "casks"):
            return cls.CASK
        raise ConfigurationError(f"Invalid package type: {value}", config_key="kind", config_value=value)


class WarningType(str, Enum):
    SECURITY = "security"
    COMPATIBILITY = "compatibility"
    DEPRECATED = "deprecated"
    EXPERIMENTAL = "experimental"
    REQUIRES_ROOT = "requires_root"
    CONFLICTS_WITH = "conflicts_with"


class WarningSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PackageWarning(BaseModel):
    warning_type: WarningType
    message: str
    severity: WarningSeverity


class PackageAnalytics(BaseModel):
    downloads_365d: int = 0
    popularity: float = 0.0
    rating: Optional[float] = None


class Package(BaseModel):
    """One installable formula or cask."""

    name: str
    version: str = "unknown"
    description: str = ""
    installed: bool = False
    outdated: bool = False
    homepage: str = ""
    dependencies: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    caveats: str = ""
    analytics: PackageAnalytics = Field(default_factory=PackageAnalytics)
    category: Optional[str] = None
    warnings: List[PackageWarning] = Field(default_factory=list)
    install_size: Optional[int] = None
    last_updated: Optional[datetime] = None
    kind: PackageKind = PackageKind.FORMULA


class SearchResult(BaseModel):
    packages: List[Package] = Field(default_factory=list)
    total_count: int = 0
    search_time_ms: int = 0


class OperationResult(BaseModel):
    """Outcome of a mutating operation; failures are data, not exceptions."""

    success: bool
    message: str
    package_name: str
    duration_ms: int = 0


class Overview(BaseModel):
    packages: List[Package] = Field(default_factory=list)
    total_installed: int = 0
    total_outdated: int = 0
