"""Utility functions for toa_swarm."""

from .config_loader import (
    load_config,
    get_simulation_config,
    get_filter_config,
    get_swarm_config,
    get_anchor_config,
)
from .logger import setup_logger

__all__ = [
    "load_config",
    "get_simulation_config",
    "get_filter_config",
    "get_swarm_config",
    "get_anchor_config",
    "setup_logger",
]
