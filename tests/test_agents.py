"""Tests for anchors and swarm elements."""

import numpy as np
import pytest

from toa_swarm.env.agents import ANCHOR_LINK, PEER_LINK, Anchor, SwarmElement
from toa_swarm.env.noise import NoiseSource
from toa_swarm.env.physics_models import (
    KinematicState,
    RandomWalk,
    WhiteNoiseAcceleration,
)
from toa_swarm.env.sampling import Sphere
from toa_swarm.errors import ConstructionError
from toa_swarm.models.particle_filter import ParticleFilter


def make_element(name, position, seed, transmission_noise=0.1, ranging_noise=0.2, dynamics=None):
    dynamics = dynamics if dynamics is not None else RandomWalk(0.0)
    root = NoiseSource(seed)
    element_noise, filter_noise = root.spawn(2)
    return SwarmElement(
        name=name,
        initial_state=KinematicState(position=position, velocity=None),
        dynamics_model=dynamics,
        particle_filter=ParticleFilter(
            domain=Sphere(20.0, position),
            num_particles=100,
            tau=0.5,
            dynamics_model=dynamics,
            noise=filter_noise,
        ),
        transmission_noise=transmission_noise,
        ranging_noise=ranging_noise,
        noise=element_noise,
    )


class TestAnchor:
    """Tests for Anchor."""

    def test_position_is_read_only(self):
        anchor = Anchor("A1", [1.0, 2.0, 3.0], stddev=0.4)
        with pytest.raises(ValueError):
            anchor.position[0] = 5.0

    def test_frozen(self):
        anchor = Anchor("A1", [1.0, 2.0, 3.0])
        with pytest.raises(AttributeError):
            anchor.stddev = 1.0

    def test_invalid_anchor(self):
        with pytest.raises(ConstructionError):
            Anchor("A1", [1.0, 2.0])
        with pytest.raises(ConstructionError):
            Anchor("A1", [1.0, 2.0, 3.0], stddev=-0.1)


class TestSwarmElement:
    """Tests for SwarmElement."""

    def test_rejects_shared_noise(self):
        """Test the true state may not share the filter's stream."""
        shared = NoiseSource(0)
        dynamics = RandomWalk(0.1)
        pf = ParticleFilter(Sphere(5.0), 10, 0.5, dynamics, noise=shared)

        with pytest.raises(ConstructionError):
            SwarmElement(
                "e",
                KinematicState(position=[0.0, 0.0, 0.0], velocity=None),
                dynamics,
                pf,
                transmission_noise=0.1,
                ranging_noise=0.1,
                noise=shared,
            )

    def test_rejects_negative_noise(self):
        with pytest.raises(ConstructionError):
            make_element("e", [0.0, 0.0, 0.0], 0, ranging_noise=-1.0)

    def test_rejects_population_state(self):
        dynamics = RandomWalk(0.0)
        with pytest.raises(ConstructionError):
            SwarmElement(
                "e",
                KinematicState(position=np.zeros((2, 3)), velocity=None),
                dynamics,
                ParticleFilter(Sphere(5.0), 10, 0.5, dynamics, noise=NoiseSource(1)),
                transmission_noise=0.1,
                ranging_noise=0.1,
            )

    def test_advance_moves_truth(self):
        dynamics = WhiteNoiseAcceleration(sigma_acceleration=[0.0, 0.0, 0.0])
        element = make_element("e", [0.0, 0.0, 0.0], 1, dynamics=dynamics)
        element.state.velocity = np.array([1.0, 0.0, 0.0])

        element.advance(2.0)

        assert np.allclose(element.true_position, [2.0, 0.0, 0.0])
        assert np.allclose(element.true_velocity, [1.0, 0.0, 0.0])

    def test_anchor_link_stddev_combines_both_sides(self):
        element = make_element("e", [0.0, 0.0, 0.0], 2, ranging_noise=0.3)
        anchor = Anchor("A1", [1.0, 1.0, 1.0], stddev=0.4)
        assert np.isclose(element.anchor_link_stddev(anchor), 0.5)

    def test_generate_measurements(self):
        """Test one range per anchor and one per peer, self skipped."""
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.1), Anchor("A2", [10.0, 0.0, 0.0], 0.1)]
        a = make_element("a", [1.0, 2.0, 3.0], 3)
        b = make_element("b", [4.0, 5.0, 6.0], 4)

        measurements = a.generate_measurements(anchors, [a, b], step=7)

        assert [m.link for m in measurements] == [ANCHOR_LINK, ANCHOR_LINK, PEER_LINK]
        assert [m.target_id for m in measurements] == ["A1", "A2", "b"]
        assert all(m.source_id == "a" and m.step == 7 for m in measurements)

        peer = measurements[-1]
        assert np.isclose(peer.stddev, np.sqrt(a.transmission_noise**2 + b.estimate_variance()))
        assert np.array_equal(peer.reference_position, b.estimate)
        assert np.array_equal(measurements[0].reference_position, anchors[0].position)

    def test_noise_free_measurements_use_true_position(self):
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.0)]
        a = make_element("a", [3.0, 4.0, 0.0], 5, transmission_noise=0.0, ranging_noise=0.0)
        b = make_element("b", [3.0, 4.0, 12.0], 6)

        measurements = a.generate_measurements(anchors, [b])

        assert measurements[0].observed_range == 5.0
        assert measurements[1].observed_range == 12.0

    def test_peer_reference_override(self):
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.1)]
        a = make_element("a", [1.0, 1.0, 1.0], 7)
        b = make_element("b", [2.0, 2.0, 2.0], 8)
        reference = np.array([9.0, 9.0, 9.0])

        measurements = a.generate_measurements(anchors, [a, b], peer_references={"b": reference})

        assert np.array_equal(measurements[-1].reference_position, reference)

    def test_measurement_noise_statistics(self):
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.0)]
        element = make_element("e", [6.0, 8.0, 0.0], 9, ranging_noise=0.5)

        ranges = np.array(
            [element.generate_measurements(anchors, [])[0].observed_range for _ in range(5000)]
        )

        assert np.isclose(ranges.mean(), 10.0, atol=0.05)
        assert np.isclose(ranges.std(), 0.5, atol=0.03)

    def test_step_returns_filter_estimate(self):
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.1), Anchor("A2", [10.0, 10.0, 0.0], 0.1)]
        element = make_element("e", [5.0, 5.0, 5.0], 10)

        estimate = element.step(0.1, element.generate_measurements(anchors, []))

        assert np.array_equal(estimate, element.estimate)
        assert element.particle_filter.step_index == 1

    def test_truth_and_filter_streams_independent(self):
        """Test truth draws do not replay the filter's draws."""
        dynamics = RandomWalk(1.0)
        element = make_element("e", [0.0, 0.0, 0.0], 11, dynamics=dynamics)

        element.advance(1.0)
        element.particle_filter.predict(1.0)

        displacement = element.true_position
        assert not np.any(np.all(np.isclose(element.particle_filter.positions, displacement), axis=1))

    def test_uncertain_peer_widens_link(self):
        """Test the peer link stddev grows with the peer cloud's spread."""
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.1)]
        a = make_element("a", [1.0, 1.0, 1.0], 12, transmission_noise=0.1)
        b = make_element("b", [2.0, 2.0, 2.0], 13)

        peer = a.generate_measurements(anchors, [b])[-1]

        # Uniform ball of radius 20: per-axis variance r^2 / 5
        assert 40.0 < b.estimate_variance() < 120.0
        assert peer.stddev > 5.0

    def test_explicit_peer_variance(self):
        anchors = [Anchor("A1", [0.0, 0.0, 0.0], 0.1)]
        a = make_element("a", [1.0, 1.0, 1.0], 14, transmission_noise=0.3)
        b = make_element("b", [2.0, 2.0, 2.0], 15)
        reference = {"b": np.array([2.0, 2.0, 2.0])}

        exact = a.generate_measurements(anchors, [b], peer_references=reference)[-1]
        widened = a.generate_measurements(
            anchors, [b], peer_references=reference, peer_variances={"b": 0.16}
        )[-1]

        assert np.isclose(exact.stddev, 0.3)
        assert np.isclose(widened.stddev, 0.5)
