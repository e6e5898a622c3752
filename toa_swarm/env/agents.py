"""
Anchors and swarm elements.

Anchors are fixed, known-position range references. Swarm elements couple a
ground-truth kinematic state with a particle filter belief and synthesize
the range measurements they take each step.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..errors import ConstructionError
from ..models.particle_filter import ParticleFilter
from .noise import NoiseSource
from .physics_models import DynamicsModel, KinematicState, RangingModel


ANCHOR_LINK = "anchor"
PEER_LINK = "peer"


@dataclass(frozen=True)
class RangeMeasurement:
    """One observed range between an element and an anchor or a peer."""
    source_id: str              # Measuring swarm element
    target_id: str              # Anchor or peer identifier
    link: str                   # ANCHOR_LINK or PEER_LINK
    observed_range: float       # meters
    stddev: float               # Stddev the filter weights this link with
    step: int
    reference_position: np.ndarray  # Point the filter weights against


@dataclass(frozen=True)
class Anchor:
    """Fixed reference with known position."""
    anchor_id: str
    position: np.ndarray
    stddev: float = 0.0  # Anchor-side ranging noise (meters)

    def __post_init__(self):
        position = np.array(self.position, dtype=float)
        if position.shape != (3,) or not np.all(np.isfinite(position)):
            raise ConstructionError(
                f"Anchor {self.anchor_id} position must be a finite 3-vector"
            )
        if not np.isfinite(self.stddev) or self.stddev < 0:
            raise ConstructionError(
                f"Anchor {self.anchor_id} stddev must be >= 0, got {self.stddev}"
            )
        position.setflags(write=False)
        object.__setattr__(self, "position", position)
        object.__setattr__(self, "stddev", float(self.stddev))


class SwarmElement:
    """Mobile agent with a true state and a particle filter belief."""

    def __init__(
        self,
        name: str,
        initial_state: KinematicState,
        dynamics_model: DynamicsModel,
        particle_filter: ParticleFilter,
        transmission_noise: float,
        ranging_noise: float,
        noise: Optional[NoiseSource] = None,
    ):
        """
        Initialize swarm element.

        Args:
            name: Unique element identifier
            initial_state: True position/velocity at t = 0, shape (3,)
            dynamics_model: Model driving the true state
            particle_filter: Belief state for this element
            transmission_noise: Range stddev on element-to-element links
            ranging_noise: Range stddev on element-to-anchor links
            noise: Source for truth and measurement draws; split into two
                independent streams
        """
        if initial_state.position.shape != (3,):
            raise ConstructionError(
                f"{name}: initial state must be a single 3D body, "
                f"got shape {initial_state.position.shape}"
            )
        for label, value in (
            ("transmission_noise", transmission_noise),
            ("ranging_noise", ranging_noise),
        ):
            if not np.isfinite(value) or value < 0:
                raise ConstructionError(f"{name}: {label} must be >= 0, got {value}")
        if particle_filter.noise is noise and noise is not None:
            raise ConstructionError(
                f"{name}: true state and particle filter must not share a noise source"
            )

        self.name = str(name)
        self.state = initial_state.copy()
        self.dynamics_model = dynamics_model
        self.particle_filter = particle_filter
        self.transmission_noise = float(transmission_noise)
        self.ranging_noise = float(ranging_noise)

        noise = noise if noise is not None else NoiseSource()
        self._truth_noise, self._measurement_noise = noise.spawn(2)

    @property
    def true_position(self) -> np.ndarray:
        return self.state.position.copy()

    @property
    def true_velocity(self) -> np.ndarray:
        return self.state.velocity.copy()

    @property
    def estimate(self) -> np.ndarray:
        return self.particle_filter.estimate

    def estimate_variance(self) -> float:
        """Mean per-axis variance of the particle cloud (m^2)."""
        return float(np.trace(self.particle_filter.covariance()) / 3.0)

    def anchor_link_stddev(self, anchor: Anchor) -> float:
        """Combined anchor-side and element-side ranging stddev."""
        return float(np.hypot(self.ranging_noise, anchor.stddev))

    def advance(self, dt: float):
        """Advance the true state by one step with the truth noise stream."""
        self.state = self.dynamics_model.predict(self.state, dt, self._truth_noise)

    def generate_measurements(
        self,
        anchors: Sequence[Anchor],
        peers: Sequence["SwarmElement"],
        step: int = 0,
        peer_references: Optional[Dict[str, np.ndarray]] = None,
        peer_variances: Optional[Dict[str, float]] = None,
    ) -> List[RangeMeasurement]:
        """
        Synthesize one range per anchor and one per peer from the true position.

        Args:
            anchors: Anchors in range
            peers: Other swarm elements (self is skipped)
            step: Step index stamped on each measurement
            peer_references: Reference point per peer name for weighting;
                defaults to each peer's current estimate
            peer_variances: Per-axis variance of each reference point (m^2),
                added to the transmission variance for weighting; defaults
                to the peer's cloud variance when references default to
                estimates, else 0

        Returns:
            Measurements relevant to this element
        """
        measurements = []
        position = self.state.position

        for anchor in anchors:
            stddev = self.anchor_link_stddev(anchor)
            measurements.append(
                RangeMeasurement(
                    source_id=self.name,
                    target_id=anchor.anchor_id,
                    link=ANCHOR_LINK,
                    observed_range=RangingModel.simulate_measurement(
                        position, anchor.position, stddev, self._measurement_noise
                    ),
                    stddev=stddev,
                    step=step,
                    reference_position=anchor.position,
                )
            )

        for peer in peers:
            if peer is self:
                continue
            if peer_references is not None:
                reference = peer_references[peer.name]
                variance = (peer_variances or {}).get(peer.name, 0.0)
            else:
                reference = peer.estimate
                variance = peer.estimate_variance()
            # An uncertain reference widens the link
            stddev = float(np.sqrt(self.transmission_noise**2 + variance))
            measurements.append(
                RangeMeasurement(
                    source_id=self.name,
                    target_id=peer.name,
                    link=PEER_LINK,
                    observed_range=RangingModel.simulate_measurement(
                        position,
                        peer.state.position,
                        self.transmission_noise,
                        self._measurement_noise,
                    ),
                    stddev=stddev,
                    step=step,
                    reference_position=reference,
                )
            )

        return measurements

    def step(self, dt: float, measurements: Sequence[RangeMeasurement]) -> np.ndarray:
        """Run the filter cycle on this step's measurements."""
        return self.particle_filter.step(dt, measurements)

    def __repr__(self) -> str:
        return (
            f"SwarmElement(name={self.name!r}, "
            f"particles={self.particle_filter.num_particles})"
        )
