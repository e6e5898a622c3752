"""
Visualization collaborators for the swarm simulation.

The simulation publishes one SimulationFrame per step. Publishing is
fire-and-forget: BackgroundPublisher hands frames to a worker thread so a
slow renderer never stalls the filter loop.
"""

import logging
import queue
import threading
import numpy as np
import matplotlib.pyplot as plt
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import PublishError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationFrame:
    """State published to a visualizer after each step."""
    step_index: int
    true_positions: Dict[str, np.ndarray]
    estimates: Dict[str, np.ndarray]
    particle_clouds: Dict[str, np.ndarray] = field(default_factory=dict)
    anchor_positions: Dict[str, np.ndarray] = field(default_factory=dict)


class Visualizer(ABC):
    """Receives simulation frames."""

    # Whether the simulation should build particle-cloud snapshots
    enabled: bool = True

    @abstractmethod
    def publish(self, frame: SimulationFrame) -> None:
        """
        Accept one frame.

        Raises:
            PublishError: If the frame cannot be accepted
        """

    def close(self):
        """Release resources."""


class NullVisualizer(Visualizer):
    """No-op stand-in used when no visualizer is configured."""

    enabled = False

    def publish(self, frame: SimulationFrame) -> None:
        return None


class SwarmVisualizer(Visualizer):
    """
    Records frames and renders trajectories, particle clouds and errors
    with matplotlib.
    """

    def __init__(
        self,
        max_cloud_points: int = 500,
        figsize: Tuple[int, int] = (12, 10),
    ):
        """
        Initialize visualizer.

        Args:
            max_cloud_points: Particles kept per element per frame
            figsize: Figure size (width, height)
        """
        self.max_cloud_points = max_cloud_points
        self.figsize = figsize

        # Storage for plotting
        self.history = {
            "steps": [],
            "true_positions": [],
            "estimates": [],
        }
        self.anchor_positions: Dict[str, np.ndarray] = {}
        self.last_clouds: Dict[str, np.ndarray] = {}

    def reset_history(self):
        """Clear stored history."""
        for key in self.history:
            self.history[key] = []
        self.anchor_positions = {}
        self.last_clouds = {}

    def publish(self, frame: SimulationFrame) -> None:
        self.history["steps"].append(frame.step_index)
        self.history["true_positions"].append(
            {name: np.array(p, dtype=float) for name, p in frame.true_positions.items()}
        )
        self.history["estimates"].append(
            {name: np.array(p, dtype=float) for name, p in frame.estimates.items()}
        )
        if frame.anchor_positions:
            self.anchor_positions = {
                name: np.array(p, dtype=float) for name, p in frame.anchor_positions.items()
            }
        self.last_clouds = {
            name: np.asarray(cloud)[: self.max_cloud_points].copy()
            for name, cloud in frame.particle_clouds.items()
        }

    def _element_names(self) -> List[str]:
        if not self.history["true_positions"]:
            return []
        return list(self.history["true_positions"][0].keys())

    def _trajectory(self, key: str, name: str) -> np.ndarray:
        return np.array([positions[name] for positions in self.history[key]])

    def render_frame(self, show_particles: bool = True) -> plt.Figure:
        """
        Render the latest frame in 3D.

        Args:
            show_particles: Whether to draw the particle clouds

        Returns:
            Matplotlib figure
        """
        fig = plt.figure(figsize=self.figsize)
        ax = fig.add_subplot(111, projection="3d")

        step = self.history["steps"][-1] if self.history["steps"] else 0
        ax.set_title(f"ToA Particle Filter - Step {step}", fontsize=12, fontweight="bold")
        ax.set_xlabel("X (m)")
        ax.set_ylabel("Y (m)")
        ax.set_zlabel("Z (m)")

        if self.anchor_positions:
            anchors = np.array(list(self.anchor_positions.values()))
            ax.scatter(
                anchors[:, 0], anchors[:, 1], anchors[:, 2],
                c="black", s=120, marker="^", label="Anchors",
            )

        colors = plt.cm.tab10(np.linspace(0, 1, max(len(self._element_names()), 1)))

        for i, name in enumerate(self._element_names()):
            if show_particles and name in self.last_clouds:
                cloud = self.last_clouds[name]
                ax.scatter(
                    cloud[:, 0], cloud[:, 1], cloud[:, 2],
                    color=colors[i], s=2, alpha=0.2,
                )

            true_pos = self.history["true_positions"][-1][name]
            estimate = self.history["estimates"][-1][name]
            ax.scatter(*true_pos, color=colors[i], s=150, marker="*", label=f"{name} truth")
            ax.scatter(
                *estimate, color=colors[i], s=80, marker="o",
                edgecolors="black", label=f"{name} estimate",
            )

        ax.legend(loc="upper right", fontsize=8)
        plt.tight_layout()
        return fig

    def plot_trajectory_history(self, output_path: str = "trajectories.png"):
        """
        Plot true and estimated trajectories of every element.

        Args:
            output_path: Path to save plot
        """
        if len(self.history["steps"]) == 0:
            logger.warning("No history recorded. Cannot plot trajectories.")
            return

        fig = plt.figure(figsize=self.figsize)
        ax = fig.add_subplot(111, projection="3d")
        ax.set_xlabel("X (m)")
        ax.set_ylabel("Y (m)")
        ax.set_zlabel("Z (m)")
        ax.set_title("True vs Estimated Trajectories", fontsize=14, fontweight="bold")

        if self.anchor_positions:
            anchors = np.array(list(self.anchor_positions.values()))
            ax.scatter(
                anchors[:, 0], anchors[:, 1], anchors[:, 2],
                c="black", s=120, marker="^", label="Anchors",
            )

        names = self._element_names()
        colors = plt.cm.tab10(np.linspace(0, 1, max(len(names), 1)))

        for i, name in enumerate(names):
            truth = self._trajectory("true_positions", name)
            estimate = self._trajectory("estimates", name)
            ax.plot(truth[:, 0], truth[:, 1], truth[:, 2], color=colors[i], linewidth=2, label=f"{name} truth")
            ax.plot(
                estimate[:, 0], estimate[:, 1], estimate[:, 2],
                color=colors[i], linestyle="--", alpha=0.7, label=f"{name} estimate",
            )

        ax.legend(loc="upper right", fontsize=9)
        self._save(fig, output_path)

    def plot_estimation_error(self, output_path: str = "estimation_error.png"):
        """
        Plot position error over time per element.

        Args:
            output_path: Path to save plot
        """
        if len(self.history["steps"]) == 0:
            logger.warning("No history recorded. Cannot plot estimation error.")
            return

        fig, ax = plt.subplots(figsize=(self.figsize[0], self.figsize[1] // 2))
        steps = np.array(self.history["steps"])

        for name in self._element_names():
            error = np.linalg.norm(
                self._trajectory("estimates", name) - self._trajectory("true_positions", name),
                axis=1,
            )
            ax.plot(steps, error, linewidth=1.5, label=name)

        ax.set_xlabel("Step")
        ax.set_ylabel("Position Error (m)")
        ax.set_yscale("log")
        ax.grid(True, alpha=0.3)
        ax.legend(loc="upper right")
        self._save(fig, output_path)

    @staticmethod
    def _save(fig: plt.Figure, output_path: str):
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.tight_layout()
        fig.savefig(path, dpi=150, bbox_inches="tight")
        plt.close(fig)
        logger.info("Plot saved to %s", path)


_STOP = object()


class BackgroundPublisher(Visualizer):
    """
    Forwards frames to another visualizer on a worker thread.

    ``publish`` never blocks: a full queue or a closed publisher raises
    PublishError and the frame is dropped. Failures inside the wrapped
    visualizer are logged and counted on the worker thread.
    """

    def __init__(self, inner: Visualizer, max_queue: int = 100):
        """
        Initialize publisher.

        Args:
            inner: Visualizer that receives frames on the worker thread
            max_queue: Frames buffered before publish starts failing
        """
        self.inner = inner
        self.max_queue = max_queue
        self.delivered = 0
        self.failed = 0

        self._queue: "queue.Queue" = queue.Queue(maxsize=max_queue)
        self._closed = False
        self._lock = threading.Lock()
        self._worker = threading.Thread(
            target=self._run, name="visualizer-publisher", daemon=True
        )
        self._worker.start()

    def publish(self, frame: SimulationFrame) -> None:
        with self._lock:
            if self._closed:
                raise PublishError("publisher is closed")
            if not self._worker.is_alive():
                raise PublishError("publisher worker is not running")
            try:
                self._queue.put_nowait(frame)
            except queue.Full as e:
                raise PublishError(
                    f"visualizer queue full ({self.max_queue}); "
                    f"dropped frame {frame.step_index}"
                ) from e

    def _run(self):
        while True:
            frame = self._queue.get()
            try:
                if frame is _STOP:
                    return
                try:
                    self.inner.publish(frame)
                    self.delivered += 1
                except Exception as e:
                    self.failed += 1
                    logger.warning("Visualizer failed on frame %d: %s", frame.step_index, e)
            finally:
                self._queue.task_done()

    def flush(self):
        """Block until every queued frame has been handled."""
        self._queue.join()

    def close(self, timeout: Optional[float] = None):
        """
        Deliver queued frames, then stop the worker.

        The wrapped visualizer is closed only once the worker has exited;
        on timeout it is left open and a warning is logged.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_STOP)
        self._worker.join(timeout)

        if self._worker.is_alive():
            logger.warning(
                "Visualizer worker still running after %s s; inner visualizer left open",
                timeout,
            )
            return
        self.inner.close()

    def __enter__(self) -> "BackgroundPublisher":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
