"""
Physics models for swarm element motion and ToA ranging.

Implements the closed family of dynamics models shared by the true
state and the particle hypotheses, plus the range sensor model used to
synthesize measurements and weight particles.
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict

from ..errors import ConstructionError
from .noise import NoiseSource


@dataclass
class KinematicState:
    """Position and velocity, either (3,) for one body or (N, 3) for N."""

    position: np.ndarray  # meters
    velocity: np.ndarray  # m/s

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        if self.velocity is None:
            self.velocity = np.zeros_like(self.position)
        self.velocity = np.array(self.velocity, dtype=float)
        if self.position.shape != self.velocity.shape:
            raise ConstructionError(
                f"position {self.position.shape} and velocity "
                f"{self.velocity.shape} shapes differ"
            )
        if self.position.shape[-1] != 3:
            raise ConstructionError(
                f"state must be 3D, got shape {self.position.shape}"
            )

    def copy(self) -> "KinematicState":
        return KinematicState(position=self.position.copy(), velocity=self.velocity.copy())


def _check_dt(dt: float) -> float:
    dt = float(dt)
    if not np.isfinite(dt) or dt < 0:
        raise ValueError(f"dt must be finite and >= 0, got {dt}")
    return dt


class DynamicsModel(ABC):
    """Motion model: predicts the next state under process noise."""

    name: str = "dynamics"

    @abstractmethod
    def predict(
        self, state: KinematicState, dt: float, noise: NoiseSource
    ) -> KinematicState:
        """
        Propagate ``state`` by ``dt`` with one independent noise draw per body.

        Args:
            state: Current state, (3,) or (N, 3)
            dt: Time step (seconds, >= 0)
            noise: Noise source owned by the caller

        Returns:
            New state; the input is not modified
        """

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Config-style description of the model."""


class WhiteNoiseAcceleration(DynamicsModel):
    """
    Constant-acceleration kinematics with Gaussian acceleration per step.

    Each step draws a ~ N(mean_acceleration, sigma_acceleration) per axis and
    integrates exactly over the step:

        position' = position + velocity * dt + 0.5 * a * dt^2
        velocity' = velocity + a * dt
    """

    name = "white_noise_acceleration"

    def __init__(
        self,
        mean_acceleration=(0.0, 0.0, 0.0),
        sigma_acceleration=(0.0, 0.0, 0.0),
    ):
        """
        Initialize model.

        Args:
            mean_acceleration: Mean acceleration per axis (m/s^2)
            sigma_acceleration: Acceleration stddev per axis (m/s^2, >= 0)
        """
        self.mean_acceleration = np.broadcast_to(
            np.asarray(mean_acceleration, dtype=float), (3,)
        ).copy()
        self.sigma_acceleration = np.broadcast_to(
            np.asarray(sigma_acceleration, dtype=float), (3,)
        ).copy()

        if np.any(self.sigma_acceleration < 0) or not np.all(
            np.isfinite(self.sigma_acceleration)
        ):
            raise ConstructionError(
                f"sigma_acceleration must be finite and >= 0, "
                f"got {self.sigma_acceleration.tolist()}"
            )

    def predict(
        self, state: KinematicState, dt: float, noise: NoiseSource
    ) -> KinematicState:
        dt = _check_dt(dt)
        if dt == 0.0:
            return state.copy()

        acceleration = noise.gaussian(
            self.mean_acceleration, self.sigma_acceleration, size=state.position.shape
        )

        position = state.position + state.velocity * dt + 0.5 * acceleration * dt**2
        velocity = state.velocity + acceleration * dt

        return KinematicState(position=position, velocity=velocity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.name,
            "mean_acceleration": self.mean_acceleration.tolist(),
            "sigma_acceleration": self.sigma_acceleration.tolist(),
        }


class RandomWalk(DynamicsModel):
    """Position random walk with stddev sigma_position * sqrt(dt) per axis."""

    name = "random_walk"

    def __init__(self, sigma_position=(0.0, 0.0, 0.0)):
        self.sigma_position = np.broadcast_to(
            np.asarray(sigma_position, dtype=float), (3,)
        ).copy()

        if np.any(self.sigma_position < 0) or not np.all(
            np.isfinite(self.sigma_position)
        ):
            raise ConstructionError(
                f"sigma_position must be finite and >= 0, "
                f"got {self.sigma_position.tolist()}"
            )

    def predict(
        self, state: KinematicState, dt: float, noise: NoiseSource
    ) -> KinematicState:
        dt = _check_dt(dt)
        if dt == 0.0:
            return state.copy()

        step = noise.gaussian(0.0, self.sigma_position * np.sqrt(dt), size=state.position.shape)

        return KinematicState(
            position=state.position + step,
            velocity=np.zeros_like(state.velocity),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.name, "sigma_position": self.sigma_position.tolist()}


DYNAMICS_MODELS = {
    WhiteNoiseAcceleration.name: WhiteNoiseAcceleration,
    RandomWalk.name: RandomWalk,
}


def build_dynamics_model(config: Dict[str, Any]) -> DynamicsModel:
    """
    Build a dynamics model from a config section.

    Args:
        config: Dict with ``type`` and the model's parameters

    Returns:
        Dynamics model instance
    """
    params = dict(config)
    model_type = params.pop("type", WhiteNoiseAcceleration.name)

    if model_type not in DYNAMICS_MODELS:
        raise ConstructionError(
            f"Unknown dynamics model '{model_type}', "
            f"expected one of {sorted(DYNAMICS_MODELS)}"
        )

    try:
        return DYNAMICS_MODELS[model_type](**params)
    except TypeError as e:
        raise ConstructionError(f"Invalid parameters for {model_type}: {e}") from e


class RangingModel:
    """
    Time-of-arrival range sensor model.
    Includes true range, noisy range synthesis and Gaussian (log-)likelihood.
    """

    @staticmethod
    def true_range(a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """
        Euclidean distance between points.

        Args:
            a: Point (3,) or points (N, 3)
            b: Point (3,) or points (N, 3)

        Returns:
            Distance (float) or distances (N,)
        """
        distance = np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float), axis=-1)
        if np.ndim(distance) == 0:
            return float(distance)
        return distance

    @classmethod
    def simulate_measurement(
        cls, a: np.ndarray, b: np.ndarray, stddev: float, noise: NoiseSource
    ) -> float:
        """
        Add Gaussian ranging noise to the true range.

        Args:
            a: First endpoint
            b: Second endpoint
            stddev: Range noise stddev (>= 0; 0 returns the true range)
            noise: Noise source used for the draw

        Returns:
            Observed range
        """
        distance = cls.true_range(a, b)
        if stddev == 0:
            return distance
        return distance + noise.gaussian(0.0, stddev)

    @staticmethod
    def likelihood(observed, hypothesis_range, stddev: float):
        """
        Gaussian density of the residual ``observed - hypothesis_range``.

        Args:
            observed: Observed range
            hypothesis_range: Range(s) predicted by the hypotheses
            stddev: Measurement stddev (must be > 0)

        Returns:
            Density value(s)
        """
        stddev = float(stddev)
        if not stddev > 0:
            raise ValueError(f"likelihood requires stddev > 0, got {stddev}")

        residual = np.asarray(observed, dtype=float) - np.asarray(hypothesis_range, dtype=float)
        density = np.exp(-0.5 * (residual / stddev) ** 2) / (stddev * np.sqrt(2.0 * np.pi))

        if np.ndim(density) == 0:
            return float(density)
        return density

    @staticmethod
    def log_likelihood(observed, hypothesis_range, stddev: float):
        """
        Log of the Gaussian residual density.

        Products of many likelihoods underflow in linear space; sums of
        log-likelihoods do not.

        Args:
            observed: Observed range
            hypothesis_range: Range(s) predicted by the hypotheses
            stddev: Measurement stddev (must be > 0)

        Returns:
            Log-density value(s)
        """
        stddev = float(stddev)
        if not stddev > 0:
            raise ValueError(f"log_likelihood requires stddev > 0, got {stddev}")

        residual = np.asarray(observed, dtype=float) - np.asarray(hypothesis_range, dtype=float)
        log_density = -0.5 * (residual / stddev) ** 2 - np.log(stddev * np.sqrt(2.0 * np.pi))

        if np.ndim(log_density) == 0:
            return float(log_density)
        return log_density
