"""Models module for toa_swarm."""

from .particle_filter import (
    Particle,
    ParticleFilter,
    FilterDiagnostics,
    systematic_resample_indices,
)

__all__ = [
    "Particle",
    "ParticleFilter",
    "FilterDiagnostics",
    "systematic_resample_indices",
]
