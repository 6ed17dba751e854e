import logging
import math
from typing import Callable, Iterator, NamedTuple, Optional, Union

from settings import GrowthSettings, load_settings

logger = logging.getLogger(__name__)

UNREACHABLE = math.inf  # days_to_target result when growth dies out or hits the day cap


class Cohort(NamedTuple):
    birth_day: int
    size: float  # expected number of participants, not a head count


# =============================================================================
# Growth: expected-value cohort model
# =============================================================================

def active_fraction(days_since_birth: int, p: float, capacity: int) -> float:
    """
    P[Binomial(days_since_birth, p) <= capacity - 1]: share of a cohort that has
    not used up its capacity by the start of the current day.

    Uses the pmf recurrence instead of factorials so large day counts don't overflow.
    """
    if capacity <= 0:
        return 0.0
    if days_since_birth <= 0:
        return 1.0  # no trials yet
    if p <= 0.0:
        return 1.0
    if p >= 1.0:
        # one success every day, exhausted after exactly `capacity` days
        return 1.0 if days_since_birth <= capacity - 1 else 0.0

    t = days_since_birth
    q = 1.0 - p
    pmf = q ** t
    total = pmf
    for k in range(1, min(t, capacity - 1) + 1):
        pmf *= (t - k + 1) / k * (p / q)
        total += pmf
    return min(1.0, max(0.0, total))


class Simulation:
    """
    Rules:
    - settings.initial_participants referrers start on day 0
    - Each day, an active referrer succeeds with prob p (max 1/day)
    - After settings.capacity successes a referrer is inactive for good
    - The day's expected referrals become a new cohort, active from the next day

    Everything is in expectation, no sampling.
    """

    def __init__(self, settings: Optional[GrowthSettings] = None):
        self.settings = settings or load_settings()

    def _daily_referrals(self, p: float) -> Iterator[float]:
        """Yield expected new referrals for day 1, 2, ... (endless; caller stops)."""
        p = min(max(float(p), 0.0), 1.0)
        capacity = self.settings.capacity
        cohorts = [Cohort(0, float(self.settings.initial_participants))]
        day = 0
        while True:
            day += 1
            new_refs = 0.0
            for cohort in cohorts:
                # days the cohort was active before today; born today -> not yet
                elapsed = day - cohort.birth_day - 1
                if elapsed < 0:
                    continue
                new_refs += cohort.size * active_fraction(elapsed, p, capacity) * p
            yield new_refs
            # today's output is tomorrow's input
            cohorts.append(Cohort(day, new_refs))

    def simulate(self, p: float, days: int) -> list[float]:
        """
        Cumulative expected referrals at the end of days 1..days.
        Once daily growth is negligible the last total is repeated to the end.
        """
        days = int(days)
        if days <= 0:
            return []
        precision = self.settings.precision
        cumulative = 0.0
        totals: list[float] = []
        for day, new_refs in zip(range(1, days + 1), self._daily_referrals(p)):
            cumulative += new_refs
            # rounding keeps float noise from looking like growth
            totals.append(round(cumulative, precision))
            if new_refs < self.settings.negligible_growth:
                logger.debug("growth ceased on day %d at p=%s", day, p)
                totals.extend([totals[-1]] * (days - day))
                break
        return totals

    def days_to_target(
        self, p: float, target: float, max_days: Optional[int] = None
    ) -> Union[int, float]:
        """First day the cumulative total reaches target, or UNREACHABLE."""
        if max_days is None:
            max_days = self.settings.max_days
        precision = self.settings.precision
        threshold = float(target) - self.settings.target_epsilon
        cumulative = 0.0
        for day, new_refs in zip(range(1, max_days + 1), self._daily_referrals(p)):
            cumulative += new_refs
            # same rounding as simulate() so both agree on the hit day
            if round(cumulative, precision) >= threshold:
                return day
            if new_refs < self.settings.negligible_growth:
                return UNREACHABLE
        return UNREACHABLE


# sanity check (100 initial, capacity 10):
# p=0, days=3: [0.0, 0.0, 0.0]
# p=1, days=3: [100.0, 300.0, 700.0]  everyone refers every day, cohorts double


# =============================================================================
# Incentive Optimization
# =============================================================================

def default_adoption_prob(bonus: float) -> float:
    """Stock bonus -> adoption curve, saturating and clamped to [0.01, 0.95]."""
    p = 1.0 - math.exp(-bonus / 250.0)
    return max(0.01, min(0.95, p))


def min_bonus_for_target(
    days: int,
    target: float,
    adoption_prob: Callable[[int], float],
    eps: float = 1e-3,
    *,
    simulation: Optional[Simulation] = None,
) -> Optional[int]:
    """
    Find minimum bonus (settings.bonus_increment steps) to reach target within days.

    Args:
        days: day budget
        target: cumulative referrals to reach
        adoption_prob: black-box function mapping bonus -> probability (monotonic non-decreasing, expensive)
        eps: unused, accepted to match the serving layer's call signature

    Returns:
        Smallest bonus achieving target, or None if impossible under settings.max_bonus.
    """
    sim = simulation or Simulation()
    step = sim.settings.bonus_increment

    def probe(bonus: int) -> tuple[bool, float]:
        p = adoption_prob(bonus)
        needed = sim.days_to_target(p, target)
        logger.debug("bonus %d -> p=%.6f, days needed %s", bonus, p, needed)
        return needed <= days, p

    # Phase 1: double until the budget is met. high is always known good afterwards
    low = 0
    high = -(-sim.settings.initial_bonus // step) * step  # round up to a step multiple
    while True:
        ok, p = probe(high)
        if ok:
            break
        if p >= 1.0:  # best possible probability and still short
            logger.warning("adoption saturated at bonus %d, target %s not reachable in %d days",
                           high, target, days)
            return None
        low = high + step
        high *= 2
        if high > sim.settings.max_bonus:
            logger.warning("no bonus up to %d reaches target %s in %d days",
                           sim.settings.max_bonus, target, days)
            return None

    # Phase 2: binary search over step multiples in [low, high]
    while low < high:
        mid = (low + high) // (2 * step) * step  # low <= mid < high, still a multiple
        if probe(mid)[0]:
            high = mid
        else:
            low = mid + step

    logger.info("min bonus for target %s within %d days: %d", target, days, high)
    return high
