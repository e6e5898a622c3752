"""Evaluation module for toa_swarm."""

from .metrics import ElementTrack, EstimationMetrics

__all__ = ["ElementTrack", "EstimationMetrics"]
