"""Services package for tiergate.

Main Components:
- ConfigService: Configuration, database engine creation and readiness policies
- DatabaseConnectionManager: Connection pool, retry loops and status probes
- ConnectionStatusCell: Owned connection state shared by handlers and pool events
"""

from .config_service import AppSettings, ConfigService
from .connection_manager import DatabaseConnectionManager
from .state import ConnectionSnapshot, ConnectionStatus, ConnectionStatusCell

__all__ = [
    "AppSettings",
    "ConfigService",
    "ConnectionSnapshot",
    "ConnectionStatus",
    "ConnectionStatusCell",
    "DatabaseConnectionManager",
]
