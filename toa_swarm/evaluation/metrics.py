"""
Evaluation metrics for swarm localization runs.

Tracks per-element position error over time, filter resampling and
degeneracy counts, and visualizer publish failures.
"""

import json
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional


@dataclass
class ElementTrack:
    """Ground truth and estimate history for one swarm element."""

    name: str
    steps: List[int] = field(default_factory=list)
    true_positions: List[np.ndarray] = field(default_factory=list)
    estimates: List[np.ndarray] = field(default_factory=list)
    errors: List[float] = field(default_factory=list)
    resample_count: int = 0
    degenerate_count: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        errors = np.asarray(self.errors, dtype=float)
        return {
            "name": self.name,
            "steps": len(self.steps),
            "mean_error": float(np.mean(errors)) if errors.size else None,
            "final_error": float(errors[-1]) if errors.size else None,
            "rmse": float(np.sqrt(np.mean(errors**2))) if errors.size else None,
            "resample_count": self.resample_count,
            "degenerate_count": self.degenerate_count,
            "final_true_position": self.true_positions[-1] if self.true_positions else None,
            "final_estimate": self.estimates[-1] if self.estimates else None,
        }


class EstimationMetrics:
    """
    Tracks estimation quality across the steps of a simulation run.
    """

    def __init__(self):
        """Initialize metrics tracker."""
        self.tracks: Dict[str, ElementTrack] = {}
        self.steps_recorded = 0
        self.publish_failures = 0

    def record_step(
        self,
        step: int,
        true_positions: Mapping[str, np.ndarray],
        estimates: Mapping[str, np.ndarray],
        diagnostics: Optional[Mapping[str, Dict]] = None,
    ):
        """
        Record one simulation step.

        Args:
            step: Step index
            true_positions: Element name -> true position
            estimates: Element name -> position estimate
            diagnostics: Element name -> filter diagnostics dict
        """
        for name, true_position in true_positions.items():
            track = self.tracks.setdefault(name, ElementTrack(name=name))
            estimate = np.asarray(estimates[name], dtype=float)
            true_position = np.asarray(true_position, dtype=float)

            track.steps.append(step)
            track.true_positions.append(true_position.copy())
            track.estimates.append(estimate.copy())
            track.errors.append(float(np.linalg.norm(estimate - true_position)))

            if diagnostics and name in diagnostics:
                track.resample_count = diagnostics[name].get("resample_count", 0)
                track.degenerate_count = diagnostics[name].get("degenerate_count", 0)

        self.steps_recorded += 1

    def record_publish_failure(self):
        self.publish_failures += 1

    def get_error_history(self, name: str) -> np.ndarray:
        """Position error per recorded step for one element."""
        return np.asarray(self.tracks[name].errors, dtype=float)

    def get_trajectory(self, name: str, estimated: bool = True) -> np.ndarray:
        """Estimated (or true) positions for one element, shape (T, 3)."""
        track = self.tracks[name]
        positions = track.estimates if estimated else track.true_positions
        if not positions:
            return np.zeros((0, 3))
        return np.vstack(positions)

    def get_summary_statistics(self) -> Dict:
        """
        Compute summary statistics across all elements.

        Returns:
            Dictionary of summary metrics
        """
        if not self.tracks or self.steps_recorded == 0:
            return {}

        all_errors = np.concatenate(
            [np.asarray(t.errors, dtype=float) for t in self.tracks.values()]
        )
        final_errors = [t.errors[-1] for t in self.tracks.values() if t.errors]

        summary = {
            "num_elements": len(self.tracks),
            "steps": self.steps_recorded,
            # Error metrics
            "mean_error": np.mean(all_errors),
            "std_error": np.std(all_errors),
            "rmse": np.sqrt(np.mean(all_errors**2)),
            "max_error": np.max(all_errors),
            "mean_final_error": np.mean(final_errors),
            # Filter health
            "total_resamples": sum(t.resample_count for t in self.tracks.values()),
            "total_degenerate_events": sum(
                t.degenerate_count for t in self.tracks.values()
            ),
            "publish_failures": self.publish_failures,
        }

        return summary

    def print_summary(self):
        """Print formatted summary statistics."""
        summary = self.get_summary_statistics()

        if not summary:
            print("No steps recorded yet.")
            return

        print("\n" + "=" * 60)
        print("ToA Swarm Localization Summary")
        print("=" * 60)

        print(f"\nElements: {summary['num_elements']}  Steps: {summary['steps']}")

        print("\n--- Position Error ---")
        print(f"Mean Error: {summary['mean_error']:.3f} m")
        print(f"RMSE: {summary['rmse']:.3f} m")
        print(f"Max Error: {summary['max_error']:.3f} m")
        print(f"Mean Final Error: {summary['mean_final_error']:.3f} m")

        print("\n--- Per Element ---")
        for track in self.tracks.values():
            info = track.to_dict()
            print(
                f"{track.name}: final {info['final_error']:.3f} m, "
                f"rmse {info['rmse']:.3f} m, resamples {track.resample_count}, "
                f"degenerate {track.degenerate_count}"
            )

        print("\n--- Filter Health ---")
        print(f"Total Resamples: {summary['total_resamples']}")
        print(f"Degenerate Events: {summary['total_degenerate_events']}")
        print(f"Publish Failures: {summary['publish_failures']}")

        print("=" * 60 + "\n")

    def save_results(self, filepath: str):
        """
        Save results to JSON file.

        Args:
            filepath: Path to save results
        """

        def convert_to_native(obj):
            """Convert numpy types to native Python types."""
            if isinstance(obj, np.integer):
                return int(obj)
            elif isinstance(obj, np.floating):
                return float(obj)
            elif isinstance(obj, np.ndarray):
                return obj.tolist()
            elif isinstance(obj, dict):
                return {key: convert_to_native(value) for key, value in obj.items()}
            elif isinstance(obj, list):
                return [convert_to_native(item) for item in obj]
            else:
                return obj

        results = {
            "summary": convert_to_native(self.get_summary_statistics()),
            "elements": [convert_to_native(t.to_dict()) for t in self.tracks.values()],
            "error_history": {
                name: convert_to_native(t.errors) for name, t in self.tracks.items()
            },
        }

        output_path = Path(filepath)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            json.dump(results, f, indent=2)

    def reset(self):
        """Reset all metrics."""
        self.tracks = {}
        self.steps_recorded = 0
        self.publish_failures = 0
