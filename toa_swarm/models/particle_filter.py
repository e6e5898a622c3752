"""
Particle filter for ToA range-based localization.

Represents one swarm element's belief as a fixed-size weighted particle
population and runs the predict -> weight -> normalize -> estimate ->
(maybe) resample and jitter cycle each time step.

Degenerate weight collapse is never fatal: weights are reset to uniform
and the event is recorded in the filter diagnostics.
"""

import logging
import numbers
import numpy as np
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Sequence

from ..env.noise import NoiseSource
from ..env.physics_models import DynamicsModel, KinematicState, RangingModel
from ..env.sampling import SamplingDomain
from ..errors import ConstructionError, DegenerateWeightsEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Particle:
    """Single particle snapshot."""
    position: np.ndarray  # [x, y, z]
    velocity: np.ndarray  # [vx, vy, vz]
    weight: float


@dataclass
class FilterDiagnostics:
    """Counters and recent events for one filter."""
    steps: int = 0
    updates: int = 0
    resample_count: int = 0
    degenerate_count: int = 0
    last_ess: float = 0.0
    resampled_last_step: bool = False
    degenerate_events: Deque[DegenerateWeightsEvent] = field(
        default_factory=lambda: deque(maxlen=100)
    )

    def to_dict(self) -> dict:
        return {
            "steps": self.steps,
            "updates": self.updates,
            "resample_count": self.resample_count,
            "degenerate_count": self.degenerate_count,
            "last_ess": self.last_ess,
        }


def systematic_resample_indices(
    weights: np.ndarray, rng: np.random.Generator
) -> np.ndarray:
    """
    Systematic (low-variance) resampling in O(N).

    One uniform offset u places N evenly spaced pointers (k + u) / N over the
    cumulative weights. Particle i receives one copy per pointer that falls in
    [c_{i-1}, c_i), counted directly from the cumulative sum.

    Args:
        weights: Normalized weights (N,)
        rng: Random generator for the offset

    Returns:
        Parent indices (N,), sorted ascending
    """
    weights = np.asarray(weights, dtype=float)
    n = weights.size

    cumulative = np.cumsum(weights)
    cumulative /= cumulative[-1]
    cumulative[-1] = 1.0

    u = rng.uniform(0.0, 1.0)
    pointers_below = np.clip(np.ceil(n * cumulative - u), 0, n).astype(np.int64)
    copies = np.diff(pointers_below, prepend=0)

    return np.repeat(np.arange(n), copies)


def _as_axis_std(value, name: str) -> np.ndarray:
    try:
        std = np.broadcast_to(np.asarray(value, dtype=float), (3,)).copy()
    except (TypeError, ValueError) as e:
        raise ConstructionError(f"{name} must be a scalar or 3-vector, got {value!r}") from e
    if np.any(std < 0) or not np.all(np.isfinite(std)):
        raise ConstructionError(f"{name} must be finite and >= 0, got {std.tolist()}")
    return std


class ParticleFilter:
    """Weighted particle population tracking one swarm element."""

    def __init__(
        self,
        domain: SamplingDomain,
        num_particles: int,
        tau: float,
        dynamics_model: DynamicsModel,
        noise: Optional[NoiseSource] = None,
        initial_velocity_std: float = 0.0,
        jitter_std=0.0,
        velocity_jitter_std=0.0,
        event_history: int = 100,
    ):
        """
        Initialize particle filter.

        Args:
            domain: Sampling domain for uniform initial placement
            num_particles: Population size (>= 1)
            tau: Resample when N_eff / N < tau, 0 < tau <= 1
            dynamics_model: Motion model for particle prediction
            noise: Noise stream owned by this filter
            initial_velocity_std: Stddev of initial particle velocities
            jitter_std: Position jitter per axis added after each resample (m)
            velocity_jitter_std: Velocity jitter per axis added after each
                resample (m/s)
            event_history: Number of degenerate events kept for diagnostics
        """
        if isinstance(num_particles, bool) or not isinstance(num_particles, numbers.Integral):
            raise ConstructionError(f"num_particles must be an integer, got {num_particles!r}")
        if num_particles < 1:
            raise ConstructionError(f"num_particles must be >= 1, got {num_particles}")
        if not isinstance(domain, SamplingDomain):
            raise ConstructionError(f"domain must be a SamplingDomain, got {domain!r}")
        if not (0.0 < float(tau) <= 1.0):
            raise ConstructionError(f"tau must be in (0, 1], got {tau}")
        if not isinstance(dynamics_model, DynamicsModel):
            raise ConstructionError(f"dynamics_model must be a DynamicsModel, got {dynamics_model!r}")
        if initial_velocity_std < 0:
            raise ConstructionError(
                f"initial_velocity_std must be >= 0, got {initial_velocity_std}"
            )

        self.jitter_std = _as_axis_std(jitter_std, "jitter_std")
        self.velocity_jitter_std = _as_axis_std(velocity_jitter_std, "velocity_jitter_std")

        self.domain = domain
        self.num_particles = int(num_particles)
        self.tau = float(tau)
        self.dynamics_model = dynamics_model
        self.noise = noise if noise is not None else NoiseSource()

        positions = domain.sample_uniform(self.noise.generator, size=self.num_particles)
        velocities = self.noise.gaussian(
            0.0, initial_velocity_std, size=(self.num_particles, 3)
        )
        self._state = KinematicState(position=positions, velocity=velocities)
        self.weights = np.full(self.num_particles, 1.0 / self.num_particles)

        self.step_index = 0
        self.diagnostics = FilterDiagnostics(
            degenerate_events=deque(maxlen=event_history)
        )

        self._estimate = self._weighted_mean(self._state.position, self.weights)
        self._velocity_estimate = self._weighted_mean(self._state.velocity, self.weights)

    # ------------------------------------------------------------------
    # Population access
    # ------------------------------------------------------------------

    @property
    def positions(self) -> np.ndarray:
        return self._state.position

    @property
    def velocities(self) -> np.ndarray:
        return self._state.velocity

    @property
    def particles(self) -> List[Particle]:
        """Snapshot of the population as Particle records."""
        return [
            Particle(position=p.copy(), velocity=v.copy(), weight=float(w))
            for p, v, w in zip(self._state.position, self._state.velocity, self.weights)
        ]

    def __len__(self) -> int:
        return self.num_particles

    @property
    def estimate(self) -> np.ndarray:
        """Current position estimate."""
        return self._estimate.copy()

    @property
    def velocity_estimate(self) -> np.ndarray:
        return self._velocity_estimate.copy()

    # ------------------------------------------------------------------
    # Filter cycle
    # ------------------------------------------------------------------

    def predict(self, dt: float):
        """Propagate every particle with an independent process-noise draw."""
        self._state = self.dynamics_model.predict(self._state, dt, self.noise)

    def update(self, measurements: Sequence) -> None:
        """
        Multiply weights by the likelihood of each range measurement.

        Accumulates in log space and rescales by the best particle, so the
        result only collapses when every hypothesis is impossible (non-finite
        log-weights). Weights are left unnormalized.

        Args:
            measurements: Objects with ``observed_range``,
                ``reference_position`` and ``stddev``
        """
        with np.errstate(divide="ignore"):
            log_weights = np.log(self.weights)

        for measurement in measurements:
            hypothesis_ranges = RangingModel.true_range(
                self._state.position, measurement.reference_position
            )
            log_weights += RangingModel.log_likelihood(
                measurement.observed_range, hypothesis_ranges, measurement.stddev
            )

        peak = np.max(log_weights)
        if np.isnan(peak):
            self.weights = np.full(self.num_particles, np.nan)
        elif peak == -np.inf:
            self.weights = np.zeros(self.num_particles)
        else:
            self.weights = np.exp(log_weights - peak)
        self.diagnostics.updates += 1

    def normalize(self) -> bool:
        """
        Normalize weights to sum to 1.

        Returns:
            False if the weights collapsed and were reset to uniform
        """
        total = float(np.sum(self.weights))

        if total > 0.0 and np.isfinite(total):
            self.weights /= total
            return True

        event = DegenerateWeightsEvent(
            step=self.step_index,
            num_particles=self.num_particles,
            weight_sum=total,
            reason="underflow" if total == 0.0 else "non-finite",
        )
        self.diagnostics.degenerate_count += 1
        self.diagnostics.degenerate_events.append(event)
        logger.warning(
            "Degenerate particle weights at step %d (sum=%r); reset to uniform",
            event.step,
            total,
        )

        self.weights = np.full(self.num_particles, 1.0 / self.num_particles)
        return False

    def effective_sample_size(self) -> float:
        """N_eff = 1 / sum(w^2), within [1, N]."""
        if np.all(self.weights == self.weights[0]):
            return float(self.num_particles)

        ess = 1.0 / float(np.sum(self.weights**2))
        return float(np.clip(ess, 1.0, self.num_particles))

    def resample(self):
        """Systematic resampling followed by a uniform weight reset."""
        indices = systematic_resample_indices(self.weights, self.noise.generator)

        self._state = KinematicState(
            position=self._state.position[indices],
            velocity=self._state.velocity[indices],
        )
        self.weights = np.full(self.num_particles, 1.0 / self.num_particles)
        self.diagnostics.resample_count += 1

    def rejuvenate(self):
        """
        Jitter every particle so resampled duplicates spread out again.

        Adds N(0, jitter_std) to positions and N(0, velocity_jitter_std) to
        velocities per axis. A zero jitter leaves the population unchanged.
        """
        shape = self._state.position.shape
        self._state = KinematicState(
            position=self._state.position + self.noise.gaussian(0.0, self.jitter_std, size=shape),
            velocity=self._state.velocity
            + self.noise.gaussian(0.0, self.velocity_jitter_std, size=shape),
        )

    def step(self, dt: float, measurements: Sequence) -> np.ndarray:
        """
        Run one full filter cycle.

        Args:
            dt: Time step (seconds)
            measurements: Range measurements relevant to this element

        Returns:
            Position estimate after this step
        """
        self.step_index += 1
        self.diagnostics.steps += 1
        self.diagnostics.resampled_last_step = False

        self.predict(dt)

        if not measurements:
            return self.estimate

        self.update(measurements)
        self.normalize()

        # Estimate from the informative weights, before any reset
        self._estimate = self._weighted_mean(self._state.position, self.weights)
        self._velocity_estimate = self._weighted_mean(self._state.velocity, self.weights)

        ess = self.effective_sample_size()
        self.diagnostics.last_ess = ess

        if ess / self.num_particles < self.tau:
            logger.debug(
                "Resampling at step %d (N_eff=%.1f, N=%d)",
                self.step_index,
                ess,
                self.num_particles,
            )
            self.resample()
            self.rejuvenate()
            self.diagnostics.resampled_last_step = True

        return self.estimate

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    @staticmethod
    def _weighted_mean(values: np.ndarray, weights: np.ndarray) -> np.ndarray:
        return weights @ values

    def covariance(self) -> np.ndarray:
        """Weighted position covariance (3, 3)."""
        diff = self._state.position - self._weighted_mean(self._state.position, self.weights)
        return (self.weights[:, None] * diff).T @ diff

    def spread(self) -> float:
        """Root of the trace of the position covariance."""
        return float(np.sqrt(np.trace(self.covariance())))
