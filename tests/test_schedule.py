"""Tests for the noise schedule."""
import numpy as np
import pytest

from photowright.config import DEFAULT_EPS, DEFAULT_MAX_SIGMA
from photowright.engine.schedule import (
    generate_schedule,
    get_schedule,
    timestep_for_step,
    timestep_sequence,
)
from photowright.exceptions import ConfigurationError


class TestGenerateSchedule:
    """Tests for generate_schedule."""

    def test_default_shapes_and_dtype(self):
        """Test every per-timestep array has T float32 entries."""
        schedule = generate_schedule()

        assert schedule.T == 100
        for name in ("thetas", "thetas_cumsum", "sigmas", "sigma_bars"):
            array = getattr(schedule, name)
            assert array.shape == (100,)
            assert array.dtype == np.float32

    def test_deterministic(self):
        """Test identical parameters give bit-identical schedules."""
        a = generate_schedule(100, DEFAULT_MAX_SIGMA, DEFAULT_EPS)
        b = generate_schedule(100, DEFAULT_MAX_SIGMA, DEFAULT_EPS)

        assert a.dt == b.dt
        np.testing.assert_array_equal(a.thetas, b.thetas)
        np.testing.assert_array_equal(a.sigma_bars, b.sigma_bars)

    def test_thetas_non_negative(self):
        schedule = generate_schedule()
        assert np.all(schedule.thetas >= 0)

    def test_dt_positive(self):
        schedule = generate_schedule()
        assert schedule.dt > 0
        assert isinstance(schedule.dt, float)

    def test_cumsum_starts_at_zero(self):
        schedule = generate_schedule()
        assert schedule.thetas_cumsum[0] == 0.0

    def test_sigma_bars_increase_from_zero(self):
        """Test the marginal std is zero at index 0 and strictly increasing."""
        schedule = generate_schedule()

        assert schedule.sigma_bars[0] == 0.0
        assert np.all(schedule.sigma_bars >= 0)
        assert np.all(np.diff(schedule.sigma_bars) > 0)

    def test_terminal_sigma_bar(self):
        """Test dt is chosen so the last marginal std is max_sigma * sqrt(1 - eps^2)."""
        schedule = generate_schedule(100, 0.2, 0.005)

        expected = 0.2 * np.sqrt(1.0 - 0.005 ** 2)
        np.testing.assert_allclose(schedule.sigma_bars[-1], expected, rtol=1e-4)

    def test_sigmas_follow_thetas(self):
        schedule = generate_schedule(50, 0.1, 0.01)

        expected = np.sqrt(2.0 * 0.1 ** 2 * schedule.thetas.astype(np.float64))
        np.testing.assert_allclose(schedule.sigmas, expected, rtol=1e-5)

    def test_arrays_read_only(self):
        schedule = generate_schedule()

        with pytest.raises(ValueError):
            schedule.sigma_bars[0] = 1.0

    def test_smallest_valid_schedule(self):
        schedule = generate_schedule(T=2)

        assert schedule.T == 2
        assert np.all(np.isfinite(schedule.sigma_bars))
        assert schedule.dt > 0

    def test_summary(self):
        summary = generate_schedule().summary()

        assert summary["T"] == 100
        assert summary["dt"] > 0
        assert summary["sigma_bar_max"] <= DEFAULT_MAX_SIGMA


class TestScheduleValidation:
    """Tests for rejected schedule parameters."""

    @pytest.mark.parametrize("T", [1, 0, -5])
    def test_too_few_timesteps(self, T):
        with pytest.raises(ConfigurationError):
            generate_schedule(T=T)

    @pytest.mark.parametrize("max_sigma", [0.0, -0.1])
    def test_non_positive_max_sigma(self, max_sigma):
        with pytest.raises(ConfigurationError):
            generate_schedule(max_sigma=max_sigma)

    @pytest.mark.parametrize("eps", [0.0, 1.0, 1.5, -0.1])
    def test_eps_out_of_range(self, eps):
        with pytest.raises(ConfigurationError) as exc_info:
            generate_schedule(eps=eps)
        assert exc_info.value.details["config_key"] == "eps"


class TestGetSchedule:
    """Tests for the memoised accessor."""

    def test_returns_cached_instance(self):
        a = get_schedule(100, DEFAULT_MAX_SIGMA, DEFAULT_EPS)
        b = get_schedule(100, DEFAULT_MAX_SIGMA, DEFAULT_EPS)
        assert a is b

    def test_different_parameters_not_shared(self):
        assert get_schedule(100) is not get_schedule(50)


class TestTimestepMapping:
    """Tests for the step to schedule-index mapping."""

    def test_single_step_uses_last_index(self):
        assert timestep_sequence(1, 100) == [99]

    def test_full_length_sequence(self):
        """Test num_steps == T visits T-1 twice, then T-2 down to 1."""
        sequence = timestep_sequence(100, 100)

        assert len(sequence) == 100
        assert sequence[:3] == [99, 99, 98]
        assert sequence[-1] == 1
        assert sequence[1:] == list(range(99, 0, -1))

    def test_subsampled_sequence(self):
        sequence = timestep_sequence(50, 100)

        assert sequence[0] == 99
        assert sequence[1] == 98
        assert sequence[-1] == 2

    def test_halves_round_up(self):
        """Test 12.5 maps to 13, not to the even neighbour."""
        assert timestep_for_step(1, 8, 100) == 13
        assert timestep_for_step(3, 8, 100) == 38

    @pytest.mark.parametrize("num_steps", [1, 7, 100, 250])
    def test_indices_in_range(self, num_steps):
        sequence = timestep_sequence(num_steps, 100)

        assert len(sequence) == num_steps
        assert all(0 <= t <= 99 for t in sequence)

    def test_sequence_non_increasing(self):
        sequence = timestep_sequence(37, 100)
        assert all(a >= b for a, b in zip(sequence, sequence[1:]))
