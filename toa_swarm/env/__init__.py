"""Environment module for toa_swarm."""

# Leaf modules first: the particle filter imports them while agents loads
from .noise import NoiseSource
from .sampling import SamplingDomain, Sphere, BoundingBox, build_domain
from .physics_models import (
    KinematicState,
    DynamicsModel,
    WhiteNoiseAcceleration,
    RandomWalk,
    RangingModel,
    build_dynamics_model,
)
from .agents import Anchor, RangeMeasurement, SwarmElement
from .visualization import (
    SimulationFrame,
    Visualizer,
    NullVisualizer,
    SwarmVisualizer,
    BackgroundPublisher,
)
from .simulation import Simulation, SimulationResult, create_simulation
from .scenario import build_simulation

__all__ = [
    "NoiseSource",
    "SamplingDomain",
    "Sphere",
    "BoundingBox",
    "build_domain",
    "KinematicState",
    "DynamicsModel",
    "WhiteNoiseAcceleration",
    "RandomWalk",
    "RangingModel",
    "build_dynamics_model",
    "Anchor",
    "RangeMeasurement",
    "SwarmElement",
    "SimulationFrame",
    "Visualizer",
    "NullVisualizer",
    "SwarmVisualizer",
    "BackgroundPublisher",
    "Simulation",
    "SimulationResult",
    "create_simulation",
    "build_simulation",
]
