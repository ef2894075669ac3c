"""
guacsetup - idempotent Apache Guacamole installer and updater
"""

__version__ = "1.0.0"

from .core import GuacamoleInstaller, GuacamoleUpdater, SchemaUpgradeGate
from .errors import ProvisionError

__all__ = ["GuacamoleInstaller", "GuacamoleUpdater", "SchemaUpgradeGate", "ProvisionError"]
