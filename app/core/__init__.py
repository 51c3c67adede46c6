"""
Core module initialization.
Exports configuration, logging and cache utilities.
"""

from app.core.config import get_settings, setup_logging, Settings, EnvironmentMode, UberEnvironment

__all__ = ["get_settings", "setup_logging", "Settings", "EnvironmentMode", "UberEnvironment"]
