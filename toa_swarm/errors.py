"""Error types and diagnostic events for the ToA swarm filter."""

from dataclasses import dataclass


class ConstructionError(ValueError):
    """Raised when a component is built from an invalid configuration."""


class PublishError(RuntimeError):
    """Raised when a visualizer cannot accept or deliver a frame."""


@dataclass(frozen=True)
class DegenerateWeightsEvent:
    """Record of a weight collapse that was recovered by uniform reset."""

    step: int
    num_particles: int
    weight_sum: float
    reason: str = "underflow"
