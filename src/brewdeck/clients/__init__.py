"""
Upstream Clients

Default adapters for the local ``brew`` tool and the remote catalog API.
"""

from brewdeck.clients.brew import BrewClient, CommandExecutor, CommandResult, parse_brew_info
from brewdeck.clients.catalog import (
    CaskRecord,
    CatalogClient,
    CatalogSource,
    FormulaRecord,
    decode_record,
    decode_records,
)

__all__ = [
    'BrewClient',
    'CommandExecutor',
    'CommandResult',
    'parse_brew_info',
    'CaskRecord',
    'CatalogClient',
    'CatalogSource',
    'FormulaRecord',
    'decode_record',
    'decode_records',
]
