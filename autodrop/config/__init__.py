"""Configuration and security utilities."""

from autodrop.config.settings import settings, Settings
from autodrop.config.security import (
    sanitize_input,
    mask_api_key,
    validate_api_key_format,
)

__all__ = [
    'settings',
    'Settings',
    'sanitize_input',
    'mask_api_key',
    'validate_api_key_format',
]
