"""
Configuration Paths

Resolves the YAML configuration directory shared by the ingestion, storage
and analysis components.
"""

import os
from pathlib import Path

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


def default_config_dir() -> Path:
    """Config directory, overridable with LEDGER_CONFIG_DIR."""
    return Path(os.getenv("LEDGER_CONFIG_DIR") or DEFAULT_CONFIG_DIR)
