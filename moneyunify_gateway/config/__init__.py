"""Configuration package for the MoneyUnify gateway."""
from .settings import SUPPORTED_CURRENCIES, Settings, get_settings

__all__ = ["SUPPORTED_CURRENCIES", "Settings", "get_settings"]
