"""Tests for the simulation orchestrator."""

import numpy as np
import pytest

from toa_swarm.env.agents import PEER_LINK, Anchor, SwarmElement
from toa_swarm.env.noise import NoiseSource
from toa_swarm.env.physics_models import KinematicState, RandomWalk
from toa_swarm.env.sampling import Sphere
from toa_swarm.env.scenario import build_simulation
from toa_swarm.env.simulation import Simulation, SimulationResult, create_simulation
from toa_swarm.env.visualization import NullVisualizer, Visualizer
from toa_swarm.errors import ConstructionError, PublishError
from toa_swarm.models.particle_filter import ParticleFilter


def make_element(name, position=(10.0, 10.0, 5.0), seed=0, transmission_noise=0.1, ranging_noise=0.2):
    dynamics = RandomWalk(0.05)
    element_noise, filter_noise = NoiseSource(seed).spawn(2)
    return SwarmElement(
        name=name,
        initial_state=KinematicState(position=position, velocity=None),
        dynamics_model=dynamics,
        particle_filter=ParticleFilter(Sphere(20.0, (10.0, 10.0, 5.0)), 100, 0.5, dynamics, noise=filter_noise),
        transmission_noise=transmission_noise,
        ranging_noise=ranging_noise,
        noise=element_noise,
    )


def make_anchors(stddev=0.1):
    return [
        Anchor("A1", [0.0, 0.0, 0.0], stddev),
        Anchor("A2", [20.0, 20.0, 0.0], stddev),
        Anchor("A3", [0.0, 20.0, 10.0], stddev),
    ]


class RecordingVisualizer(Visualizer):
    """Keeps every published frame."""

    def __init__(self):
        self.frames = []

    def publish(self, frame):
        self.frames.append(frame)


class FailingVisualizer(Visualizer):
    """Raises on every publish."""

    def __init__(self, error):
        self.error = error
        self.calls = 0

    def publish(self, frame):
        self.calls += 1
        raise self.error


class StoppingVisualizer(Visualizer):
    """Requests a stop once a given step has been published."""

    def __init__(self, stop_at):
        self.stop_at = stop_at
        self.simulation = None

    def publish(self, frame):
        if frame.step_index == self.stop_at:
            self.simulation.request_stop()


class TestCreateSimulation:
    """Tests for the validating factory."""

    def test_valid(self):
        sim = create_simulation([make_element("a", seed=1)], make_anchors())
        assert isinstance(sim, Simulation)
        assert isinstance(sim.visualizer, NullVisualizer)
        assert sim.step_index == 0

    def test_empty_swarm(self):
        with pytest.raises(ConstructionError):
            create_simulation([], make_anchors())

    def test_empty_anchors(self):
        with pytest.raises(ConstructionError):
            create_simulation([make_element("a")], [])

    def test_duplicate_names(self):
        with pytest.raises(ConstructionError):
            create_simulation([make_element("a", seed=1), make_element("a", seed=2)], make_anchors())

    def test_duplicate_anchor_ids(self):
        anchors = make_anchors()
        anchors.append(Anchor("A1", [5.0, 5.0, 5.0], 0.1))
        with pytest.raises(ConstructionError):
            create_simulation([make_element("a")], anchors)

    @pytest.mark.parametrize("step_size", [0.0, -0.1, float("nan"), "fast"])
    def test_bad_step_size(self, step_size):
        with pytest.raises(ConstructionError):
            create_simulation([make_element("a")], make_anchors(), step_size=step_size)

    def test_bad_peer_reference(self):
        with pytest.raises(ConstructionError):
            create_simulation([make_element("a")], make_anchors(), peer_reference="oracle")

    def test_bad_max_workers(self):
        with pytest.raises(ConstructionError):
            create_simulation([make_element("a")], make_anchors(), max_workers=0)

    def test_zero_anchor_link_stddev(self):
        """Test a noiseless anchor link is rejected before running."""
        element = make_element("a", ranging_noise=0.0)
        with pytest.raises(ConstructionError):
            create_simulation([element], make_anchors(stddev=0.0))

    def test_zero_transmission_noise_with_peers(self):
        elements = [make_element("a", seed=1, transmission_noise=0.0), make_element("b", seed=2)]
        with pytest.raises(ConstructionError):
            create_simulation(elements, make_anchors())

    def test_zero_transmission_noise_alone(self):
        sim = create_simulation([make_element("a", transmission_noise=0.0)], make_anchors())
        assert len(sim.swarm_elements) == 1

    def test_shared_filter(self):
        a = make_element("a", seed=1)
        b = make_element("b", seed=2)
        b.particle_filter = a.particle_filter
        with pytest.raises(ConstructionError):
            create_simulation([a, b], make_anchors())


class TestRun:
    """Tests for running a simulation."""

    def test_run_completes(self):
        sim = create_simulation([make_element("a", seed=1), make_element("b", (5.0, 5.0, 5.0), seed=2)], make_anchors())

        result = sim.run(4)

        assert isinstance(result, SimulationResult)
        assert result.steps_completed == 4
        assert not result.stopped_early
        assert sim.step_index == 4
        assert np.isclose(sim.elapsed_time, 0.4)
        assert set(result.final_estimates) == {"a", "b"}
        assert len(result.metrics.get_error_history("a")) == 4
        assert result.summary["steps"] == 4
        for element in sim.swarm_elements:
            assert element.particle_filter.step_index == 4

    @pytest.mark.parametrize("time_steps", [0, -1, 2.5, True])
    def test_bad_time_steps(self, time_steps):
        sim = create_simulation([make_element("a")], make_anchors())
        with pytest.raises(ValueError):
            sim.run(time_steps)

    def test_bad_step_override(self):
        sim = create_simulation([make_element("a")], make_anchors())
        with pytest.raises(ValueError):
            sim.run(2, step_size=-1.0)

    def test_step_size_override(self):
        sim = create_simulation([make_element("a")], make_anchors(), step_size=0.1)
        sim.run(2, step_size=0.5)
        assert np.isclose(sim.elapsed_time, 1.0)

    def test_stop_after_current_step(self):
        """Test a stop request takes effect after the step completes."""
        visualizer = StoppingVisualizer(stop_at=3)
        sim = create_simulation([make_element("a")], make_anchors(), visualizer=visualizer)
        visualizer.simulation = sim

        result = sim.run(10)

        assert result.steps_completed == 3
        assert result.stopped_early
        assert sim.stop_requested
        assert sim.metrics.steps_recorded == 3

    def test_stop_on_final_step_is_not_early(self):
        visualizer = StoppingVisualizer(stop_at=2)
        sim = create_simulation([make_element("a")], make_anchors(), visualizer=visualizer)
        visualizer.simulation = sim

        result = sim.run(2)

        assert result.steps_completed == 2
        assert not result.stopped_early

    def test_frames_published(self):
        visualizer = RecordingVisualizer()
        sim = create_simulation(
            [make_element("a", seed=1), make_element("b", (5.0, 5.0, 5.0), seed=2)],
            make_anchors(),
            visualizer=visualizer,
        )

        sim.run(3)

        assert [f.step_index for f in visualizer.frames] == [1, 2, 3]
        frame = visualizer.frames[-1]
        assert set(frame.estimates) == {"a", "b"}
        assert frame.particle_clouds["a"].shape == (100, 3)
        assert set(frame.anchor_positions) == {"A1", "A2", "A3"}

    @pytest.mark.parametrize("error", [PublishError("queue full"), RuntimeError("boom")])
    def test_failing_visualizer_does_not_abort(self, error, caplog):
        """Test publish failures are reported and the run continues."""
        visualizer = FailingVisualizer(error)
        sim = create_simulation([make_element("a")], make_anchors(), visualizer=visualizer)

        result = sim.run(5)

        assert result.steps_completed == 5
        assert visualizer.calls == 5
        assert result.summary["publish_failures"] == 5
        assert "step 5" in caplog.text


class TestPeerReference:
    """Tests for the peer-link reference point."""

    def _spy(self, monkeypatch, element):
        received = []
        wrapped = element.step

        def step(dt, measurements):
            received.append(list(measurements))
            return wrapped(dt, measurements)

        monkeypatch.setattr(element, "step", step)
        return received

    def test_previous_estimate_is_default(self, monkeypatch):
        a = make_element("a", seed=1)
        b = make_element("b", (5.0, 5.0, 5.0), seed=2)
        sim = create_simulation([a, b], make_anchors())
        received = self._spy(monkeypatch, a)

        for _ in range(3):
            b_estimate = b.estimate
            b_variance = b.estimate_variance()
            sim.step()
            peer = [m for m in received[-1] if m.link == PEER_LINK][0]
            assert peer.target_id == "b"
            assert np.array_equal(peer.reference_position, b_estimate)
            assert np.isclose(peer.stddev, np.sqrt(a.transmission_noise**2 + b_variance))

    def test_true_position_reference(self, monkeypatch):
        a = make_element("a", seed=1)
        b = make_element("b", (5.0, 5.0, 5.0), seed=2)
        sim = create_simulation([a, b], make_anchors(), peer_reference="true_position")
        received = self._spy(monkeypatch, a)

        sim.step()

        peer = [m for m in received[-1] if m.link == PEER_LINK][0]
        assert np.array_equal(peer.reference_position, b.true_position)
        assert np.isclose(peer.stddev, a.transmission_noise)

    def test_every_element_sees_every_link(self, monkeypatch):
        elements = [make_element(name, seed=i) for i, name in enumerate("abc")]
        sim = create_simulation(elements, make_anchors())
        received = {e.name: self._spy(monkeypatch, e) for e in elements}

        sim.step()

        for name, calls in received.items():
            measurements = calls[-1]
            assert len(measurements) == 3 + 2
            assert {m.target_id for m in measurements if m.link == PEER_LINK} == set("abc") - {name}


class TestScenarioRuns:
    """Tests running simulations built from configuration."""

    def test_seeded_runs_reproducible(self, small_config):
        first = build_simulation(small_config).run(5)
        second = build_simulation(small_config).run(5)

        for name in ("alpha", "beta"):
            assert np.array_equal(first.final_estimates[name], second.final_estimates[name])
            assert np.array_equal(first.final_true_positions[name], second.final_true_positions[name])

    def test_different_seeds_differ(self, small_config):
        first = build_simulation(small_config, seed=1).run(3)
        second = build_simulation(small_config, seed=2).run(3)

        assert not np.array_equal(first.final_estimates["alpha"], second.final_estimates["alpha"])

    def test_thread_pool_matches_sequential(self, small_config):
        """Test per-element filters give identical results on a thread pool."""
        sequential = build_simulation(small_config).run(5)

        small_config["simulation"]["max_workers"] = 2
        pooled_sim = build_simulation(small_config)
        pooled = pooled_sim.run(5)

        assert pooled_sim.max_workers == 2
        for name in ("alpha", "beta"):
            assert np.array_equal(sequential.final_estimates[name], pooled.final_estimates[name])

    def test_tracks_elements(self, small_config):
        sim = build_simulation(small_config)
        result = sim.run(20)

        for name in ("alpha", "beta"):
            errors = result.metrics.get_error_history(name)
            assert len(errors) == 20
            assert np.all(np.isfinite(errors))
            assert errors[-1] < 10.0


class TestPeerUncertainty:
    """Tests for peers whose estimates start far from the truth."""

    def _element(self, name, position, domain, seed):
        dynamics = RandomWalk(0.0)
        element_noise, filter_noise = NoiseSource(seed).spawn(2)
        return SwarmElement(
            name=name,
            initial_state=KinematicState(position=position, velocity=None),
            dynamics_model=dynamics,
            particle_filter=ParticleFilter(
                domain, 1000, 0.5, dynamics, noise=filter_noise, jitter_std=0.5
            ),
            transmission_noise=0.1,
            ranging_noise=0.2,
            noise=element_noise,
        )

    def test_badly_estimated_peer_does_not_derail(self, monkeypatch):
        """Test a poorly localized peer neither collapses nor drags its neighbour."""
        anchors = [
            Anchor("A1", [0.0, 0.0, 0.0], 0.1),
            Anchor("A2", [40.0, 0.0, 0.0], 0.1),
            Anchor("A3", [0.0, 40.0, 0.0], 0.1),
            Anchor("A4", [20.0, 20.0, 30.0], 0.1),
        ]
        a = self._element("a", (20.0, 15.0, 8.0), Sphere(15.0, (20.0, 20.0, 10.0)), 21)
        b = self._element("b", (10.0, 25.0, 5.0), Sphere(80.0, (60.0, 60.0, 40.0)), 22)
        sim = create_simulation([a, b], anchors)

        received = []
        wrapped = a.step

        def step(dt, measurements):
            received.append(list(measurements))
            return wrapped(dt, measurements)

        monkeypatch.setattr(a, "step", step)

        assert np.linalg.norm(b.estimate - b.true_position) > 30.0
        sim.run(40)

        first_peer = [m for m in received[0] if m.link == PEER_LINK][0]
        assert first_peer.stddev > 20.0
        for element in (a, b):
            assert element.particle_filter.diagnostics.degenerate_count == 0
            assert np.linalg.norm(element.estimate - element.true_position) < 2.0
