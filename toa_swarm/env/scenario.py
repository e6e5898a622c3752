"""
Scenario factory: builds a ready-to-run Simulation from a config dict.

Expected layout (see configs/default.yaml)::

    simulation: {step_size, time_steps, peer_reference, max_workers, seed}
    filter:     {num_particles, tau, initial_velocity_std, jitter_std,
                 velocity_jitter_std, domain: {...}}
    swarm:      [{name, position, velocity, transmission_noise,
                  ranging_noise, dynamics: {...}, filter: {...}}]
    anchors:    [{id, position, stddev}]
"""

from typing import Any, Dict, Optional

from ..errors import ConstructionError
from ..models.particle_filter import ParticleFilter
from ..utils.config_loader import (
    get_anchor_config,
    get_filter_config,
    get_simulation_config,
    get_swarm_config,
)
from .agents import Anchor, SwarmElement
from .noise import NoiseSource
from .physics_models import KinematicState, build_dynamics_model
from .sampling import build_domain
from .simulation import PEER_REFERENCE_ESTIMATE, Simulation, create_simulation
from .visualization import Visualizer


def _require(section: Dict[str, Any], key: str, where: str):
    if key not in section:
        raise ConstructionError(f"{where}: missing required key '{key}'")
    return section[key]


def build_anchors(config: Dict[str, Any]):
    anchors = []
    for i, anchor_cfg in enumerate(get_anchor_config(config)):
        anchors.append(
            Anchor(
                anchor_id=str(anchor_cfg.get("id", f"anchor_{i}")),
                position=_require(anchor_cfg, "position", f"anchors[{i}]"),
                stddev=float(anchor_cfg.get("stddev", 0.0)),
            )
        )
    return anchors


def build_swarm(config: Dict[str, Any], noise: NoiseSource):
    """
    Build swarm elements, each with its own truth and filter streams.

    Args:
        config: Full configuration dictionary
        noise: Root noise source; one child stream pair per element

    Returns:
        List of SwarmElement
    """
    filter_defaults = get_filter_config(config)
    swarm_cfg = get_swarm_config(config)
    streams = noise.spawn(len(swarm_cfg))

    elements = []
    for i, (element_cfg, stream) in enumerate(zip(swarm_cfg, streams)):
        where = f"swarm[{i}]"
        name = str(element_cfg.get("name", f"element_{i}"))

        filter_cfg = {**filter_defaults, **element_cfg.get("filter", {})}
        domain = build_domain(_require(filter_cfg, "domain", f"{where}.filter"))
        dynamics_model = build_dynamics_model(element_cfg.get("dynamics", {}))

        element_noise, filter_noise = stream.spawn(2)
        particle_filter = ParticleFilter(
            domain=domain,
            num_particles=_require(filter_cfg, "num_particles", f"{where}.filter"),
            tau=_require(filter_cfg, "tau", f"{where}.filter"),
            dynamics_model=dynamics_model,
            noise=filter_noise,
            initial_velocity_std=float(filter_cfg.get("initial_velocity_std", 0.0)),
            jitter_std=filter_cfg.get("jitter_std", 0.0),
            velocity_jitter_std=filter_cfg.get("velocity_jitter_std", 0.0),
        )

        elements.append(
            SwarmElement(
                name=name,
                initial_state=KinematicState(
                    position=_require(element_cfg, "position", where),
                    velocity=element_cfg.get("velocity", (0.0, 0.0, 0.0)),
                ),
                dynamics_model=dynamics_model,
                particle_filter=particle_filter,
                transmission_noise=float(element_cfg.get("transmission_noise", 0.1)),
                ranging_noise=float(element_cfg.get("ranging_noise", 0.1)),
                noise=element_noise,
            )
        )

    return elements


def build_simulation(
    config: Dict[str, Any],
    seed: Optional[int] = None,
    visualizer: Optional[Visualizer] = None,
) -> Simulation:
    """
    Build a validated Simulation from configuration.

    Args:
        config: Full configuration dictionary
        seed: Overrides ``simulation.seed`` when given
        visualizer: Optional frame consumer

    Returns:
        Simulation ready to run
    """
    sim_cfg = get_simulation_config(config)
    if seed is None:
        seed = sim_cfg.get("seed")

    noise = NoiseSource(seed)

    return create_simulation(
        swarm_elements=build_swarm(config, noise),
        anchors=build_anchors(config),
        step_size=sim_cfg.get("step_size", 0.1),
        visualizer=visualizer,
        peer_reference=sim_cfg.get("peer_reference", PEER_REFERENCE_ESTIMATE),
        max_workers=sim_cfg.get("max_workers"),
    )
