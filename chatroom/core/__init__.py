"""Core modules for the relay server."""

from .config import config_loader, get_settings

__all__ = ['config_loader', 'get_settings']
