import math

import pytest

from growth import (
    UNREACHABLE,
    Simulation,
    active_fraction,
    default_adoption_prob,
    min_bonus_for_target,
)
from settings import GrowthSettings


@pytest.fixture
def sim():
    return Simulation(GrowthSettings())


def binomial_cdf(t, p, upto):
    return sum(math.comb(t, k) * p ** k * (1 - p) ** (t - k) for k in range(upto + 1))


class TestActiveFraction:
    """Tests for active_fraction, incl. the p / capacity edge cases."""

    def test_no_days_elapsed(self):
        assert active_fraction(0, 0.3, 10) == 1.0

    def test_matches_binomial_cdf(self):
        assert active_fraction(2, 0.5, 2) == pytest.approx(0.75)
        assert active_fraction(20, 0.3, 10) == pytest.approx(binomial_cdf(20, 0.3, 9))
        assert active_fraction(200, 0.05, 10) == pytest.approx(binomial_cdf(200, 0.05, 9))

    def test_fewer_days_than_capacity(self):
        assert active_fraction(5, 0.4, 10) == pytest.approx(1.0)

    def test_zero_probability_never_exhausts(self):
        assert active_fraction(1000, 0.0, 1) == 1.0

    def test_certain_success(self):
        assert active_fraction(9, 1.0, 10) == 1.0
        assert active_fraction(10, 1.0, 10) == 0.0

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_no_capacity(self, capacity):
        assert active_fraction(0, 0.5, capacity) == 0.0
        assert active_fraction(3, 0.5, capacity) == 0.0

    def test_bounded(self):
        for t in range(0, 60, 7):
            assert 0.0 <= active_fraction(t, 0.9, 3) <= 1.0


class TestSimulate:
    """Tests for Simulation.simulate."""

    @pytest.mark.parametrize("days", [0, -5])
    def test_non_positive_days(self, sim, days):
        assert sim.simulate(0.1, days) == []

    def test_length_and_monotonic(self, sim):
        totals = sim.simulate(0.1, 30)
        assert len(totals) == 30
        for prev, cur in zip(totals, totals[1:]):
            assert cur >= prev

    def test_certain_success_doubles_cohorts(self, sim):
        assert sim.simulate(1.0, 3) == [100.0, 300.0, 700.0]

    def test_capacity_one_is_linear(self):
        sim = Simulation(GrowthSettings(capacity=1))
        assert sim.simulate(1.0, 4) == [100.0, 200.0, 300.0, 400.0]

    def test_zero_probability_backfills(self, sim):
        assert sim.simulate(0.0, 5) == [0.0] * 5

    def test_no_capacity_backfills(self):
        sim = Simulation(GrowthSettings(capacity=0))
        assert sim.simulate(0.5, 4) == [0.0] * 4

    def test_first_day_is_initial_times_p(self, sim):
        assert sim.simulate(0.2, 1) == [pytest.approx(20.0)]

    def test_probability_clamped(self, sim):
        assert sim.simulate(1.7, 3) == sim.simulate(1.0, 3)
        assert sim.simulate(-0.2, 3) == [0.0] * 3

    def test_rounded_to_precision(self):
        sim = Simulation(GrowthSettings(precision=2))
        for value in sim.simulate(0.3333, 10):
            assert value == round(value, 2)

    def test_idempotent(self, sim):
        assert sim.simulate(0.07, 20) == sim.simulate(0.07, 20)


class TestDaysToTarget:
    """Tests for Simulation.days_to_target."""

    def test_certain_success(self, sim):
        assert sim.days_to_target(1.0, 100) == 1
        assert sim.days_to_target(1.0, 300) == 2
        assert sim.days_to_target(1.0, 301) == 3

    @pytest.mark.parametrize("p,target", [(0.1, 500), (0.05, 1000), (0.3, 12345)])
    def test_consistent_with_simulate(self, sim, p, target):
        day = sim.days_to_target(p, target)
        assert day != UNREACHABLE
        totals = sim.simulate(p, day)
        assert totals[day - 1] >= target
        if day > 1:
            assert totals[day - 2] < target

    def test_growth_ceased(self, sim):
        assert sim.days_to_target(0.0, 10) == UNREACHABLE

    def test_day_cap(self, sim):
        assert sim.days_to_target(0.01, 1e9, max_days=5) == UNREACHABLE

    def test_zero_day_cap(self, sim):
        assert sim.days_to_target(1.0, 100, max_days=0) == UNREACHABLE

    def test_rounding_matches_simulate(self):
        sim = Simulation(GrowthSettings(precision=0))
        # 0.6 referrals on day 1, recorded as 1.0
        assert sim.simulate(0.006, 1) == [1.0]
        assert sim.days_to_target(0.006, 1) == 1

    def test_cap_from_settings(self):
        sim = Simulation(GrowthSettings(max_days=3))
        assert sim.days_to_target(1.0, 700) == 3
        assert sim.days_to_target(1.0, 701) == UNREACHABLE


class TestMinBonusForTarget:
    """Tests for min_bonus_for_target."""

    def test_zero_adoption_has_no_solution(self, sim):
        assert min_bonus_for_target(30, 1000, lambda bonus: 0.0, simulation=sim) is None

    def test_saturated_adoption_stops_early(self, sim):
        calls = []

        def adoption(bonus):
            calls.append(bonus)
            return 1.0

        # best case is 100 referrals on day 1
        assert min_bonus_for_target(1, 1000, adoption, simulation=sim) is None
        assert calls == [10]

    def test_keeps_searching_below_full_adoption(self, sim):
        """0.9995 falls just short of 700 in 3 days; 1.0 makes it."""
        adoption = lambda bonus: 1.0 if bonus >= 20 else 0.9995
        assert sim.days_to_target(0.9995, 700) > 3
        assert min_bonus_for_target(3, 700, adoption, simulation=sim) == 20

    def test_step_function(self, sim):
        result = min_bonus_for_target(
            5, 100, lambda bonus: 1.0 if bonus >= 370 else 0.0, simulation=sim
        )
        assert result == 370

    def test_free_when_target_trivial(self, sim):
        assert min_bonus_for_target(5, 0, lambda bonus: 0.0, simulation=sim) == 0

    def test_default_curve_meets_budget(self, sim):
        days, target = 30, 1000
        result = min_bonus_for_target(days, target, default_adoption_prob, simulation=sim)

        assert result is not None
        assert result >= 0 and result % 10 == 0
        assert sim.days_to_target(default_adoption_prob(result), target) <= days
        if result >= 10:
            assert sim.days_to_target(default_adoption_prob(result - 10), target) > days

    def test_fast_saturating_curve(self, sim):
        result = min_bonus_for_target(10, 500, lambda bonus: min(1.0, bonus / 100), simulation=sim)
        assert result is not None and result % 10 == 0
        assert sim.days_to_target(min(1.0, result / 100), 500) <= 10

    def test_respects_custom_increment(self):
        sim = Simulation(GrowthSettings(bonus_increment=25, initial_bonus=25))
        result = min_bonus_for_target(5, 100, lambda bonus: 1.0 if bonus >= 60 else 0.0, simulation=sim)
        assert result == 75


class TestDefaultAdoptionProb:

    def test_clamped(self):
        assert default_adoption_prob(0) == 0.01
        assert default_adoption_prob(10_000) == 0.95

    def test_monotonic(self):
        values = [default_adoption_prob(b) for b in range(0, 1000, 10)]
        assert values == sorted(values)
