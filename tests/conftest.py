"""Shared fixtures for toa_swarm tests."""

import copy

import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402


SMALL_SCENARIO = {
    "simulation": {"step_size": 0.1, "time_steps": 5, "seed": 7},
    "filter": {
        "num_particles": 300,
        "tau": 0.5,
        "domain": {"type": "sphere", "radius": 15.0, "origin": [10.0, 10.0, 5.0]},
    },
    "swarm": [
        {
            "name": "alpha",
            "position": [12.0, 8.0, 5.0],
            "velocity": [0.2, 0.0, 0.0],
            "transmission_noise": 0.2,
            "ranging_noise": 0.3,
            "dynamics": {"type": "white_noise_acceleration", "sigma_acceleration": [0.2, 0.2, 0.2]},
        },
        {
            "name": "beta",
            "position": [5.0, 15.0, 3.0],
            "transmission_noise": 0.2,
            "ranging_noise": 0.3,
            "dynamics": {"type": "random_walk", "sigma_position": 0.1},
            "filter": {"num_particles": 200},
        },
    ],
    "anchors": [
        {"id": "A1", "position": [0.0, 0.0, 0.0], "stddev": 0.2},
        {"id": "A2", "position": [30.0, 0.0, 0.0], "stddev": 0.2},
        {"id": "A3", "position": [0.0, 30.0, 0.0], "stddev": 0.2},
        {"id": "A4", "position": [15.0, 15.0, 20.0], "stddev": 0.2},
    ],
}


@pytest.fixture
def small_config():
    """Two-element, four-anchor scenario small enough for fast tests."""
    return copy.deepcopy(SMALL_SCENARIO)
