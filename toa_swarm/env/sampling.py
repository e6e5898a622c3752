"""
Sampling domains for initial particle placement.

Both domains draw points with uniform density over their volume.
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import ConstructionError


def _as_point(value, name: str) -> np.ndarray:
    try:
        point = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as e:
        raise ConstructionError(f"{name} must be a finite 3-vector, got {value!r}") from e
    if point.shape != (3,) or not np.all(np.isfinite(point)):
        raise ConstructionError(f"{name} must be a finite 3-vector, got {value!r}")
    return point


class SamplingDomain(ABC):
    """Region of space that seeds a particle population."""

    @abstractmethod
    def sample_uniform(
        self, rng: np.random.Generator, size: Optional[int] = None
    ) -> np.ndarray:
        """Draw one point (3,) or ``size`` points (size, 3)."""

    @abstractmethod
    def contains(self, points: np.ndarray, tolerance: float = 1e-9) -> np.ndarray:
        """Boolean mask of points lying inside the domain."""

    @property
    @abstractmethod
    def center(self) -> np.ndarray:
        """Geometric center of the domain."""


class Sphere(SamplingDomain):
    """Solid ball of given radius around an origin."""

    def __init__(self, radius: float, origin=(0.0, 0.0, 0.0)):
        """
        Initialize sphere.

        Args:
            radius: Ball radius (must be > 0)
            origin: Center [x, y, z]
        """
        try:
            radius = float(radius)
        except (TypeError, ValueError) as e:
            raise ConstructionError(f"Sphere radius must be a number, got {radius!r}") from e
        if not np.isfinite(radius) or radius <= 0:
            raise ConstructionError(f"Sphere radius must be > 0, got {radius}")

        self.radius = radius
        self.origin = _as_point(origin, "Sphere origin")

    @property
    def center(self) -> np.ndarray:
        return self.origin.copy()

    def sample_uniform(
        self, rng: np.random.Generator, size: Optional[int] = None
    ) -> np.ndarray:
        n = 1 if size is None else int(size)

        # Isotropic direction from a normalized Gaussian
        direction = rng.standard_normal((n, 3))
        norms = np.linalg.norm(direction, axis=1, keepdims=True)
        norms[norms == 0.0] = 1.0
        direction /= norms

        # Cube-root radius gives uniform density over the volume
        r = self.radius * np.cbrt(rng.uniform(0.0, 1.0, size=(n, 1)))

        points = self.origin + r * direction
        return points[0] if size is None else points

    def contains(self, points: np.ndarray, tolerance: float = 1e-9) -> np.ndarray:
        points = np.atleast_2d(points)
        distances = np.linalg.norm(points - self.origin, axis=1)
        return distances <= self.radius + tolerance

    def __repr__(self) -> str:
        return f"Sphere(radius={self.radius}, origin={self.origin.tolist()})"


class BoundingBox(SamplingDomain):
    """Axis-aligned box between two corners."""

    def __init__(self, minimum, maximum):
        self.minimum = _as_point(minimum, "BoundingBox minimum")
        self.maximum = _as_point(maximum, "BoundingBox maximum")

        if np.any(self.maximum <= self.minimum):
            raise ConstructionError(
                f"BoundingBox requires minimum < maximum on every axis, "
                f"got {self.minimum.tolist()} / {self.maximum.tolist()}"
            )

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.minimum + self.maximum)

    def sample_uniform(
        self, rng: np.random.Generator, size: Optional[int] = None
    ) -> np.ndarray:
        shape = (3,) if size is None else (int(size), 3)
        return rng.uniform(self.minimum, self.maximum, size=shape)

    def contains(self, points: np.ndarray, tolerance: float = 1e-9) -> np.ndarray:
        points = np.atleast_2d(points)
        return np.all(
            (points >= self.minimum - tolerance) & (points <= self.maximum + tolerance),
            axis=1,
        )

    def __repr__(self) -> str:
        return (
            f"BoundingBox(minimum={self.minimum.tolist()}, "
            f"maximum={self.maximum.tolist()})"
        )


def build_domain(config: dict) -> SamplingDomain:
    """
    Build a sampling domain from a config section.

    Args:
        config: ``{"type": "sphere", "radius": r, "origin": [...]}`` or
            ``{"type": "box", "minimum": [...], "maximum": [...]}``

    Returns:
        Sampling domain
    """
    domain_type = str(config.get("type", "sphere")).lower()

    if domain_type == "sphere":
        if "radius" not in config:
            raise ConstructionError("Sphere domain requires 'radius'")
        return Sphere(config["radius"], config.get("origin", (0.0, 0.0, 0.0)))
    if domain_type in ("box", "bounding_box"):
        if "minimum" not in config or "maximum" not in config:
            raise ConstructionError("Box domain requires 'minimum' and 'maximum'")
        return BoundingBox(config["minimum"], config["maximum"])

    raise ConstructionError(f"Unknown sampling domain type: {domain_type}")
