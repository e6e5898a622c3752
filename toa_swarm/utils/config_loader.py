"""Configuration loading utilities."""

import yaml
from pathlib import Path
from typing import Dict, Any, List


def load_config(config_path: str = "configs/default.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_file, "r") as f:
        config = yaml.safe_load(f)

    return config or {}


def get_simulation_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Extract simulation configuration."""
    return config.get("simulation", {})


def get_filter_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Extract particle filter configuration."""
    return config.get("filter", {})


def get_swarm_config(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Extract swarm element definitions."""
    return config.get("swarm", [])


def get_anchor_config(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Extract anchor definitions."""
    return config.get("anchors", [])
