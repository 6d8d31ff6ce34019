"""
Monster import from external platforms.

Currently supports:
- Nimble Nexus (monsters via URL or ID, or a saved API response)
"""

from .nimble_nexus.fetcher import NimbleNexusApiError, NimbleNexusClient, read_monster_file
from .nimble_nexus.mapper import to_actor_data
from .base import ImportResult, ImportError

__all__ = [
    "NimbleNexusApiError",
    "NimbleNexusClient",
    "read_monster_file",
    "to_actor_data",
    "ImportResult",
    "ImportError",
]
