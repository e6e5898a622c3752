"""
Seedable Gaussian noise source.

Every stochastic draw in the simulation goes through a NoiseSource so that
runs are reproducible and independent consumers never share a stream.
"""

import numpy as np
from typing import List, Optional, Tuple, Union


class NoiseSource:
    """Explicitly owned random stream backed by a numpy Generator."""

    def __init__(self, seed: Optional[Union[int, np.random.SeedSequence]] = None):
        """
        Initialize noise source.

        Args:
            seed: Integer seed, SeedSequence, or None for OS entropy
        """
        if isinstance(seed, np.random.SeedSequence):
            self._seed_sequence = seed
        else:
            self._seed_sequence = np.random.SeedSequence(seed)
        self._rng = np.random.default_rng(self._seed_sequence)

    @property
    def generator(self) -> np.random.Generator:
        return self._rng

    def gaussian(
        self,
        mean=0.0,
        stddev=1.0,
        size: Optional[Union[int, Tuple[int, ...]]] = None,
    ):
        """
        Draw from N(mean, stddev).

        Args:
            mean: Scalar or array mean
            stddev: Scalar or array standard deviation (>= 0)
            size: Output shape (None for the broadcast shape of mean/stddev)

        Returns:
            Sample(s); exactly ``mean`` wherever stddev is zero
        """
        stddev = np.asarray(stddev, dtype=float)
        if np.any(stddev < 0) or not np.all(np.isfinite(stddev)):
            raise ValueError(f"stddev must be finite and >= 0, got {stddev}")

        if size is None:
            size = np.broadcast(np.asarray(mean), stddev).shape

        if not np.any(stddev > 0):
            sample = np.broadcast_to(np.asarray(mean, dtype=float), size).copy()
        else:
            sample = self._rng.normal(loc=mean, scale=stddev, size=size)
            # Zero-stddev components must return the mean bit-for-bit
            sample = np.where(np.broadcast_to(stddev, sample.shape) > 0, sample, mean)

        if np.ndim(sample) == 0:
            return float(sample)
        return sample

    def uniform(self, low=0.0, high=1.0, size=None):
        """Draw uniformly from [low, high)."""
        return self._rng.uniform(low, high, size=size)

    def spawn(self, n: int) -> List["NoiseSource"]:
        """Create ``n`` independent child streams."""
        return [NoiseSource(child) for child in self._seed_sequence.spawn(n)]
