"""
Simulation orchestrator for ToA swarm localization.

Each step advances every element's true state, synthesizes anchor and
peer range measurements, runs every element's particle filter and
publishes a frame to the visualizer. Steps run strictly in order; a stop
request takes effect after the current step completes.
"""

import logging
import numbers
import threading
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..errors import ConstructionError, PublishError
from ..evaluation.metrics import EstimationMetrics
from .agents import Anchor, RangeMeasurement, SwarmElement
from .visualization import NullVisualizer, SimulationFrame, Visualizer

logger = logging.getLogger(__name__)

PEER_REFERENCE_ESTIMATE = "estimate"
PEER_REFERENCE_TRUE = "true_position"
PEER_REFERENCES = (PEER_REFERENCE_ESTIMATE, PEER_REFERENCE_TRUE)


@dataclass
class SimulationResult:
    """Outcome of Simulation.run."""
    steps_completed: int
    stopped_early: bool
    final_estimates: Dict[str, np.ndarray]
    final_true_positions: Dict[str, np.ndarray]
    metrics: EstimationMetrics
    summary: Dict = field(default_factory=dict)


class Simulation:
    """Steps a swarm of elements against a fixed set of anchors."""

    def __init__(
        self,
        swarm_elements: Sequence[SwarmElement],
        anchors: Sequence[Anchor],
        step_size: float,
        visualizer: Optional[Visualizer] = None,
        peer_reference: str = PEER_REFERENCE_ESTIMATE,
        max_workers: Optional[int] = None,
        metrics: Optional[EstimationMetrics] = None,
    ):
        """
        Initialize simulation. Use create_simulation to validate inputs.

        Args:
            swarm_elements: Elements to track
            anchors: Fixed range references
            step_size: Default time step (seconds)
            visualizer: Frame consumer; NullVisualizer when None
            peer_reference: Reference point for peer links, the peer's
                previous estimate ("estimate") or its true position
            max_workers: Threads for per-element filter updates (None or 1
                runs sequentially)
            metrics: Metrics tracker to record into
        """
        self.swarm_elements: List[SwarmElement] = list(swarm_elements)
        self.anchors: List[Anchor] = list(anchors)
        self.step_size = float(step_size)
        self.visualizer = visualizer if visualizer is not None else NullVisualizer()
        self.peer_reference = peer_reference
        self.max_workers = max_workers
        self.metrics = metrics if metrics is not None else EstimationMetrics()

        self.step_index = 0
        self.elapsed_time = 0.0
        self._stop_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self):
        """Stop the running simulation after the current step."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run(self, time_steps: int, step_size: Optional[float] = None) -> SimulationResult:
        """
        Run the simulation for a number of steps.

        Args:
            time_steps: Number of steps (positive integer)
            step_size: Time step override (seconds)

        Returns:
            SimulationResult with final estimates and metrics
        """
        if isinstance(time_steps, bool) or not isinstance(time_steps, numbers.Integral):
            raise ValueError(f"time_steps must be an integer, got {time_steps!r}")
        if time_steps < 1:
            raise ValueError(f"time_steps must be >= 1, got {time_steps}")
        dt = self._resolve_step_size(step_size)

        self._stop_event.clear()
        logger.info(
            "Starting simulation: %d elements, %d anchors, %d steps of %.3f s",
            len(self.swarm_elements),
            len(self.anchors),
            time_steps,
            dt,
        )

        steps_completed = 0
        stopped_early = False
        use_pool = self.max_workers is not None and self.max_workers > 1

        try:
            if use_pool:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="filter"
                )
            for _ in range(time_steps):
                self.step(dt)
                steps_completed += 1
                if self._stop_event.is_set():
                    stopped_early = steps_completed < time_steps
                    logger.info("Stop requested; halted after step %d", self.step_index)
                    break
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

        summary = self.metrics.get_summary_statistics()
        if summary:
            logger.info(
                "Simulation finished after %d steps: mean error %.3f m, final %.3f m",
                steps_completed,
                summary["mean_error"],
                summary["mean_final_error"],
            )

        return SimulationResult(
            steps_completed=steps_completed,
            stopped_early=stopped_early,
            final_estimates=self.estimates(),
            final_true_positions=self.true_positions(),
            metrics=self.metrics,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, step_size: Optional[float] = None) -> Dict[str, np.ndarray]:
        """
        Run one time step.

        Args:
            step_size: Time step override (seconds)

        Returns:
            Element name -> position estimate
        """
        dt = self._resolve_step_size(step_size)
        self.step_index += 1
        self.elapsed_time += dt

        # Reference points are fixed before any filter runs this step
        previous_estimates = self.estimates()
        previous_variances = (
            self.estimate_variances()
            if self.peer_reference == PEER_REFERENCE_ESTIMATE and len(self.swarm_elements) > 1
            else None
        )

        for element in self.swarm_elements:
            element.advance(dt)

        if self.peer_reference == PEER_REFERENCE_TRUE:
            peer_references = self.true_positions()
            peer_variances = None
        else:
            peer_references = previous_estimates
            peer_variances = previous_variances

        measurements = {
            element.name: element.generate_measurements(
                self.anchors,
                self.swarm_elements,
                self.step_index,
                peer_references,
                peer_variances,
            )
            for element in self.swarm_elements
        }

        estimates = self._run_filters(dt, measurements)

        self.metrics.record_step(
            self.step_index,
            self.true_positions(),
            estimates,
            diagnostics={
                e.name: e.particle_filter.diagnostics.to_dict() for e in self.swarm_elements
            },
        )
        self._publish(estimates)

        return estimates

    def _run_filters(
        self, dt: float, measurements: Dict[str, List[RangeMeasurement]]
    ) -> Dict[str, np.ndarray]:
        if self._executor is None:
            return {e.name: e.step(dt, measurements[e.name]) for e in self.swarm_elements}

        futures = {
            e.name: self._executor.submit(e.step, dt, measurements[e.name])
            for e in self.swarm_elements
        }
        return {name: future.result() for name, future in futures.items()}

    def _publish(self, estimates: Dict[str, np.ndarray]):
        if not self.visualizer.enabled:
            return

        frame = SimulationFrame(
            step_index=self.step_index,
            true_positions=self.true_positions(),
            estimates={name: p.copy() for name, p in estimates.items()},
            particle_clouds={
                e.name: e.particle_filter.positions.copy() for e in self.swarm_elements
            },
            anchor_positions={a.anchor_id: a.position for a in self.anchors},
        )

        try:
            self.visualizer.publish(frame)
        except PublishError as e:
            self.metrics.record_publish_failure()
            logger.warning("Publish failed at step %d: %s", self.step_index, e)
        except Exception as e:
            self.metrics.record_publish_failure()
            logger.warning(
                "Visualizer raised at step %d: %s: %s", self.step_index, type(e).__name__, e
            )

    def _resolve_step_size(self, step_size: Optional[float]) -> float:
        dt = self.step_size if step_size is None else float(step_size)
        if not np.isfinite(dt) or dt <= 0:
            raise ValueError(f"step_size must be > 0, got {dt}")
        return dt

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def estimates(self) -> Dict[str, np.ndarray]:
        return {e.name: e.estimate for e in self.swarm_elements}

    def true_positions(self) -> Dict[str, np.ndarray]:
        return {e.name: e.true_position for e in self.swarm_elements}

    def estimate_variances(self) -> Dict[str, float]:
        return {e.name: e.estimate_variance() for e in self.swarm_elements}

    def get_element(self, name: str) -> SwarmElement:
        for element in self.swarm_elements:
            if element.name == name:
                return element
        raise KeyError(name)


def create_simulation(
    swarm_elements: Sequence[SwarmElement],
    anchors: Sequence[Anchor],
    step_size: float = 0.1,
    visualizer: Optional[Visualizer] = None,
    peer_reference: str = PEER_REFERENCE_ESTIMATE,
    max_workers: Optional[int] = None,
) -> Simulation:
    """
    Validate inputs and build a Simulation.

    Args:
        swarm_elements: Non-empty elements with unique names
        anchors: Non-empty anchors with unique ids
        step_size: Default time step (seconds, > 0)
        visualizer: Optional frame consumer
        peer_reference: "estimate" or "true_position"
        max_workers: Threads for per-element filter updates

    Returns:
        Ready-to-run simulation

    Raises:
        ConstructionError: On any structural misconfiguration
    """
    swarm_elements = list(swarm_elements or [])
    anchors = list(anchors or [])

    if not swarm_elements:
        raise ConstructionError("expected at least one swarm element")
    if not anchors:
        raise ConstructionError("expected at least one anchor")

    names = [e.name for e in swarm_elements]
    if len(set(names)) != len(names):
        raise ConstructionError(f"swarm element names must be unique, got {names}")
    anchor_ids = [a.anchor_id for a in anchors]
    if len(set(anchor_ids)) != len(anchor_ids):
        raise ConstructionError(f"anchor ids must be unique, got {anchor_ids}")

    try:
        step_size = float(step_size)
    except (TypeError, ValueError) as e:
        raise ConstructionError(f"step_size must be a number, got {step_size!r}") from e
    if not np.isfinite(step_size) or step_size <= 0:
        raise ConstructionError(f"step_size must be > 0, got {step_size}")

    if peer_reference not in PEER_REFERENCES:
        raise ConstructionError(
            f"peer_reference must be one of {PEER_REFERENCES}, got {peer_reference!r}"
        )
    if max_workers is not None and max_workers < 1:
        raise ConstructionError(f"max_workers must be >= 1, got {max_workers}")

    # Likelihood weighting needs a positive stddev on every link
    for element in swarm_elements:
        for anchor in anchors:
            if element.anchor_link_stddev(anchor) <= 0:
                raise ConstructionError(
                    f"{element.name} <-> {anchor.anchor_id}: anchor link stddev is 0"
                )
        if len(swarm_elements) > 1 and element.transmission_noise <= 0:
            raise ConstructionError(
                f"{element.name}: transmission_noise must be > 0 for peer links"
            )

    filters = [id(e.particle_filter) for e in swarm_elements]
    if len(set(filters)) != len(filters):
        raise ConstructionError("swarm elements must not share a particle filter")

    return Simulation(
        swarm_elements=swarm_elements,
        anchors=anchors,
        step_size=step_size,
        visualizer=visualizer,
        peer_reference=peer_reference,
        max_workers=max_workers,
    )
