"""
Memory Agent Configuration Loader
==================================
Loads the YAML config file shared by every component.
Usage:
    from memagent.utils.config import load_config
    cfg = load_config()
    print(cfg["generation"]["model"])  # "llama3.1:8b"
"""

import os

import yaml

CONFIG_ENV_VAR = "MEMAGENT_CONFIG"


def project_root() -> str:
    """Return the repository root (two levels above this file)."""
    # This file lives at: memagent/utils/config.py
    return os.path.dirname(
        os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    )


def load_config(config_path: str = None) -> dict:
    """
    Load the YAML configuration file.

    Args:
        config_path: Optional path to config file. Falls back to the
                     MEMAGENT_CONFIG environment variable, then to
                     config/memagent_config.yaml under the project root.

    Returns:
        Dictionary containing all configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or os.path.join(
            project_root(), "config", "memagent_config.yaml"
        )

    if not os.path.exists(config_path):
        raise FileNotFoundError(
            f"Config file not found at: {config_path}\n"
            f"Set {CONFIG_ENV_VAR} or run from the project root"
        )

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config or {}
