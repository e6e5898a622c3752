"""
ToA swarm localization with particle filters.

Estimates the 3D positions of mobile swarm elements from noisy
time-of-arrival ranges to fixed anchors and between elements.
"""

# env must load before models: agents imports the particle filter
from .env import (
    Anchor,
    BoundingBox,
    KinematicState,
    NoiseSource,
    RandomWalk,
    RangingModel,
    Simulation,
    Sphere,
    SwarmElement,
    WhiteNoiseAcceleration,
    build_simulation,
    create_simulation,
)
from .errors import ConstructionError, DegenerateWeightsEvent, PublishError
from .models import ParticleFilter

__version__ = "0.1.0"

__all__ = [
    "Anchor",
    "BoundingBox",
    "KinematicState",
    "NoiseSource",
    "RandomWalk",
    "RangingModel",
    "Simulation",
    "Sphere",
    "SwarmElement",
    "WhiteNoiseAcceleration",
    "build_simulation",
    "create_simulation",
    "ConstructionError",
    "DegenerateWeightsEvent",
    "PublishError",
    "ParticleFilter",
]
