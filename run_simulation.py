"""
Run a ToA swarm localization simulation from a YAML config.

Usage:
    python run_simulation.py --config configs/default.yaml \
        --time-steps 300 --seed 42 \
        --output ./outputs/results.json --plot ./outputs/trajectories.png
"""

import os
import sys
import argparse

from toa_swarm.env import BackgroundPublisher, SwarmVisualizer, build_simulation
from toa_swarm.errors import ConstructionError
from toa_swarm.utils import get_simulation_config, load_config, setup_logger


logger = setup_logger("toa_swarm")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Simulate particle-filter localization of a swarm from ToA ranges"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to scenario YAML (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--time-steps",
        type=int,
        default=None,
        help="Number of steps (default: simulation.time_steps from config)",
    )
    parser.add_argument(
        "--step-size",
        type=float,
        default=None,
        help="Step size in seconds (default: simulation.step_size from config)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed (default: simulation.seed from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output path for results JSON",
    )
    parser.add_argument(
        "--plot",
        type=str,
        default=None,
        help="Output path for the trajectory plot",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument(
        "--filter-log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Level for per-step particle filter messages (default: INFO)",
    )

    args = parser.parse_args()
    setup_logger(
        "toa_swarm", log_level=args.log_level, filter_log_level=args.filter_log_level
    )

    if not os.path.exists(args.config):
        logger.error(f"Config not found: {args.config}")
        sys.exit(1)

    config = load_config(args.config)
    sim_cfg = get_simulation_config(config)
    time_steps = args.time_steps or sim_cfg.get("time_steps", 100)

    visualizer = SwarmVisualizer() if args.plot else None
    publisher = BackgroundPublisher(visualizer) if visualizer else None

    try:
        simulation = build_simulation(config, seed=args.seed, visualizer=publisher)
    except ConstructionError as e:
        logger.error(f"Invalid scenario: {e}")
        sys.exit(1)

    try:
        result = simulation.run(time_steps, step_size=args.step_size)
    except KeyboardInterrupt:
        simulation.request_stop()
        logger.info("Interrupted")
        result = None
    finally:
        if publisher is not None:
            publisher.close()

    simulation.metrics.print_summary()

    if args.output:
        simulation.metrics.save_results(args.output)
        logger.info(f"Results saved to {args.output}")

    if visualizer is not None:
        visualizer.plot_trajectory_history(args.plot)
        root, ext = os.path.splitext(args.plot)
        visualizer.plot_estimation_error(f"{root}_error{ext or '.png'}")

    return result


if __name__ == "__main__":
    main()
