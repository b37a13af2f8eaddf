# implications_explorer/config.py
"""
Implications Explorer configuration module.

Provides configurable locations for the backend API and the local cache, so
the same explorer works against different backends and machines.

Configuration precedence:
1. IMPLICATIONS_* environment variables (for CI and explicit override)
2. Command line flags handled in explorer.main()
3. Built-in defaults below
"""

import os
from pathlib import Path

DEFAULT_API_URL = 'http://localhost:3000'
DEFAULT_TIMEOUT = 30.0

CACHE_FILENAME = 'cache.json'


def get_api_url() -> str:
    """Get the base URL of the companion backend."""
    return os.environ.get('IMPLICATIONS_API_URL', DEFAULT_API_URL).rstrip('/')


def get_request_timeout() -> float:
    """Get the timeout in seconds for a single backend round-trip."""
    raw = os.environ.get('IMPLICATIONS_API_TIMEOUT')
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT


def get_data_dir() -> Path:
    """Get the directory holding the explorer's local cache."""
    if env_dir := os.environ.get('IMPLICATIONS_DATA_DIR'):
        return Path(env_dir)
    return Path.home() / '.implications-explorer'


def get_cache_path() -> Path:
    """Get path to the local key-value cache file."""
    return get_data_dir() / CACHE_FILENAME
