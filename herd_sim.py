"""
Herd structure simulation for dairy herds.

This module provides:
- A validated herd configuration (`HerdConfig`)
- A cohort-based, monthly time-stepping population model that runs until
  the distribution of cows across lactation numbers stops changing
- A sampler that expands the converged distribution into individual cow
  records (`CowSnapshot`) evenly spread over the calving interval

The model works in expected (fractional) animal counts. Young stock are
tracked per age month since birth, cows per month since entering the herd.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field, fields, asdict
from typing import Deque, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# ----------------------------
# Configuration / constants
# ----------------------------

IT_MIN = 100  # min. iterations before convergence is tested
IT_MAX = 10_000  # hard ceiling on simulated months
DAYS_IN_MONTH = 30.5
WEEKS_IN_MONTH = DAYS_IN_MONTH / 7
MAX_LACTATION_TRACKED = 20  # width of the lactation history table
NEGLIGIBLE_COUNT = 1e-9  # cohorts below this are dropped from the herd

AGE_FIRST_CALVING = 24.0  # month
FEMALE_CALF_RATE = 0.47  # fraction of female calves of all calves born
STILL_BIRTH_RATE = 0.07  # fraction of dead born calves
YOUNG_STOCK_CULL_RATE = 0.155  # fraction of young stock not reaching 1st lactation
REPLACEMENT_RATE = 0.30  # fraction of cows replaced each year
CALVING_INTERVAL = 12.0  # month
HERD_SIZE = 100  # no. of cows
GESTATION_PERIOD = 9.0  # month
DRY_PERIOD = 2.0  # month

# option names used by the dairy.js herd model
_OPTION_ALIASES = {
    "ageFirstCalving": "age_first_calving",
    "femaleCalfRate": "female_calf_rate",
    "stillBirthRate": "still_birth_rate",
    "youngStockCullRate": "young_stock_cull_rate",
    "replacementRate": "replacement_rate",
    "calvingInterval": "calving_interval",
    "herdSize": "herd_size",
    "gestationPeriod": "gestation_period",
    "dryPeriode": "dry_period",
    "dryPeriod": "dry_period",
}

_POSITIVE_FIELDS = {"age_first_calving", "calving_interval", "herd_size"}


def _is_finite_number(value) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float, np.integer, np.floating)):
        return False
    return math.isfinite(value)


def _round(value: float) -> int:
    """Round half up, the way the herd tables have always been rounded."""
    return int(math.floor(value + 0.5))


@dataclass
class HerdConfig:
    """
    Herd parameters.

    Attributes
    ----------
    age_first_calving : float
        Age at first calving (month).
    female_calf_rate : float
        Fraction of female calves of all calves born (0-1).
    still_birth_rate : float
        Fraction of dead born calves (0-1).
    young_stock_cull_rate : float
        Fraction of young stock that does not make it to the first
        lactation, over the whole rearing period (0-1).
    replacement_rate : float
        Fraction of cows replaced each year (0-1).
    calving_interval : float
        Months in between calvings.
    herd_size : float
        No. of cows in the herd.
    gestation_period : float
        Length of gestation (month).
    dry_period : float
        Length of the dry period (month).

    Invalid values (not a finite number, or not positive for the age at
    first calving, calving interval and herd size) are replaced by their
    default.
    """

    age_first_calving: float = AGE_FIRST_CALVING
    female_calf_rate: float = FEMALE_CALF_RATE
    still_birth_rate: float = STILL_BIRTH_RATE
    young_stock_cull_rate: float = YOUNG_STOCK_CULL_RATE
    replacement_rate: float = REPLACEMENT_RATE
    calving_interval: float = CALVING_INTERVAL
    herd_size: float = HERD_SIZE
    gestation_period: float = GESTATION_PERIOD
    dry_period: float = DRY_PERIOD

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not _is_finite_number(value) or (f.name in _POSITIVE_FIELDS and value <= 0):
                logger.warning("Ignoring invalid %s=%r, using default %r.", f.name, value, f.default)
                setattr(self, f.name, f.default)

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, object]] = None) -> "HerdConfig":
        """
        Build a config from a mapping of options.

        Keys may be the field names above or the camelCase names of the
        dairy.js herd model (e.g. 'ageFirstCalving', 'dryPeriode').
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, object] = {}
        for key, value in (options or {}).items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                logger.debug("Ignoring unknown herd option %r.", key)
                continue
            kwargs[name] = value
        return cls(**kwargs)

    @property
    def monthly_young_stock_survival(self) -> float:
        """Survival per month r with r ** age_first_calving == 1 - cull rate."""
        return math.pow(1.0 - self.young_stock_cull_rate, 1.0 / self.age_first_calving)

    @property
    def monthly_cow_survival(self) -> float:
        return 1.0 - self.replacement_rate / 12.0

    @property
    def female_calves_per_calving(self) -> float:
        return (1.0 - self.still_birth_rate) * self.female_calf_rate

    @property
    def calving_interval_days(self) -> float:
        return self.calving_interval * DAYS_IN_MONTH


# ----------------------------
# Cohort model
# ----------------------------

@dataclass
class Cohort:
    """Cows that entered the herd in the same month."""

    count: float
    lactation: int = 1
    dry: bool = False
    week_of_gestation: float = 0.0  # 0: not pregnant
    week_of_lactation: float = 0.0
    age: float = 0.0  # month

    @property
    def pregnant(self) -> bool:
        return self.week_of_gestation > 0


@dataclass
class Population:
    """
    State of one simulation run.

    `cows[0]` is the cohort that entered last; `young[i]` holds the young
    stock of age month i since birth (len(young) == age at first calving).
    """

    cows: Deque[Cohort] = field(default_factory=deque)
    young: Deque[float] = field(default_factory=deque)

    @property
    def total_cows(self) -> float:
        return sum(c.count for c in self.cows)

    def cows_per_lactation(self) -> List[float]:
        """Total count per lactation number (index 0 = 1st lactation)."""
        per_lac: List[float] = []
        for cohort in self.cows:
            while len(per_lac) < cohort.lactation:
                per_lac.append(0.0)
            per_lac[cohort.lactation - 1] += cohort.count
        return per_lac


@dataclass(frozen=True)
class CowSnapshot:
    """One cow of the static herd snapshot."""

    days_post_partum: int
    is_dry: bool
    days_in_milk: int
    days_in_gestation: int
    age_months: int
    age_days: int
    parity: int  # 1, 2 or 3 (>2)


@dataclass
class HerdResult:
    """Outcome of a herd simulation."""

    config: HerdConfig
    cows_per_lactation: List[float]
    parity_counts: Tuple[int, int, int]
    cows: List[CowSnapshot]
    heifers_bought: int
    heifers_sold: int
    young_stock: List[float]
    average_lactation_history: List[float]
    lactation_history: pd.DataFrame
    iterations: int
    converged: bool
    degenerate: bool

    @property
    def total_cows(self) -> float:
        return float(sum(self.cows_per_lactation))

    @property
    def average_lactation(self) -> float:
        return self.average_lactation_history[-1] if self.average_lactation_history else float("nan")

    def young_stock_table(self) -> pd.DataFrame:
        """Young stock per age month (1-based) with rounded counts."""
        return pd.DataFrame(
            {
                "age": np.arange(1, len(self.young_stock) + 1),
                "count": [_round(n) for n in self.young_stock],
            }
        )

    def structure_summary(self) -> pd.DataFrame:
        """Herd structure as percent of herd size."""
        hs = self.config.herd_size
        rows = [
            ("parity 1", self.parity_counts[0]),
            ("parity 2", self.parity_counts[1]),
            ("parity >2", self.parity_counts[2]),
            ("heifers bought, monthly", self.heifers_bought),
            ("heifers sold, monthly", self.heifers_sold),
        ]
        return pd.DataFrame(
            [(label, _round(n / hs * 100)) for label, n in rows],
            columns=["Variable", "Percent"],
        )


# ----------------------------
# Simulation
# ----------------------------

class HerdSimulator:
    """
    Deterministic monthly herd structure model.

    Each call to `run` builds a fresh `Population`, steps it one month at a
    time until the herd size is reached and the average lactation no. is
    stable, and samples a cow snapshot from the result.
    """

    def __init__(
        self,
        config: Optional[HerdConfig] = None,
        min_iterations: int = IT_MIN,
        max_iterations: int = IT_MAX,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config if config is not None else HerdConfig()
        self.min_iterations = min_iterations
        self.max_iterations = max_iterations
        self.rng = np.random.default_rng() if rng is None else rng

    def initial_population(self) -> Population:
        """
        Cows of lactation 1-4 spread evenly over the calving interval and
        young stock decaying at the compounded monthly cull rate.
        """
        cfg = self.config
        ci, hs = cfg.calving_interval, cfg.herd_size
        dp, gp = cfg.dry_period, cfg.gestation_period
        r = cfg.monthly_young_stock_survival
        pop = Population()

        months = int(math.ceil(ci))
        count = (hs / months) / 4
        for lac in range(1, 5):
            for m in range(months):
                dry = m >= ci - dp
                pop.cows.append(
                    Cohort(
                        count=count,
                        lactation=lac,
                        dry=dry,
                        week_of_gestation=(m - (ci - gp) + 1) * WEEKS_IN_MONTH if m >= ci - gp else 0.0,
                        week_of_lactation=0.0 if dry else m * WEEKS_IN_MONTH,
                        age=cfg.age_first_calving + ci * (lac - 1) + m,
                    )
                )

        calves = (hs / ci) * cfg.female_calves_per_calving * r
        for _ in range(int(math.ceil(cfg.age_first_calving))):
            pop.young.append(calves)
            calves *= r

        return pop

    def step(self, pop: Population) -> Tuple[float, float]:
        """
        Advance the population by one month.

        Returns
        -------
        (heifers_bought, heifers_sold) for this month.
        """
        cfg = self.config
        ci, hs = cfg.calving_interval, cfg.herd_size
        dp, gp = cfg.dry_period, cfg.gestation_period
        r = cfg.monthly_young_stock_survival
        calves_per_calving = cfg.female_calves_per_calving

        # cull young stock
        for i in range(len(pop.young)):
            pop.young[i] *= r

        new_female_calves = 0.0
        if pop.young[-1] > 0:
            # calves from heifers calving for the first time
            new_female_calves += pop.young[-1] * calves_per_calving

        survival = cfg.monthly_cow_survival
        gestation_trigger = (ci - gp) * WEEKS_IN_MONTH
        dry_off = (ci - dp) * WEEKS_IN_MONTH
        calving = gp * WEEKS_IN_MONTH
        no_cows = 0.0

        for cow in pop.cows:
            if cow.count > 0:
                cow.count *= survival  # avg. monthly replacement
                cow.age += 1
                if not cow.dry:
                    cow.week_of_lactation += WEEKS_IN_MONTH
                    if cow.pregnant:
                        cow.week_of_gestation += WEEKS_IN_MONTH
                    elif cow.week_of_lactation > gestation_trigger:
                        cow.week_of_gestation = WEEKS_IN_MONTH
                    if cow.week_of_lactation > dry_off:
                        cow.week_of_lactation = 0.0
                        cow.dry = True
                else:
                    cow.week_of_gestation += WEEKS_IN_MONTH
                    if cow.week_of_gestation > calving:
                        new_female_calves += cow.count * calves_per_calving
                        cow.lactation += 1
                        cow.dry = False
                        cow.week_of_gestation = 0.0
                        cow.week_of_lactation = 0.0
            no_cows += cow.count

        if any(c.count < NEGLIGIBLE_COUNT for c in pop.cows):
            pop.cows = deque(c for c in pop.cows if c.count >= NEGLIGIBLE_COUNT)

        # move only as many heifers as needed to keep/reach herd size
        heifers = pop.young.pop()
        shortfall = hs - no_cows
        if no_cows < hs:
            heifers_to_herd = shortfall if shortfall < heifers else heifers
        else:
            heifers_to_herd = 0.0
        heifers_sold = heifers - heifers_to_herd

        heifers_bought = 0.0
        if heifers_to_herd < shortfall:
            heifers_to_herd = shortfall
            heifers_bought = shortfall + heifers_to_herd

        pop.cows.appendleft(Cohort(count=heifers_to_herd, age=cfg.age_first_calving))
        pop.young.appendleft(new_female_calves * r)

        return heifers_bought, heifers_sold

    def run(self) -> HerdResult:
        """Simulate until the herd structure no longer changes."""
        cfg = self.config
        pop = self.initial_population()
        hs_rounded = _round(cfg.herd_size)

        history: List[List[float]] = []
        avg_history: List[float] = []
        prev_avg: Optional[float] = None
        bought = sold = 0.0
        its = 0
        converged = degenerate = False

        while True:
            bought, sold = self.step(pop)
            per_lac = pop.cows_per_lactation()
            no_cows = sum(per_lac)
            lac_sum = sum(n * (i + 1) for i, n in enumerate(per_lac))

            row = per_lac[:MAX_LACTATION_TRACKED]
            history.append(row + [0.0] * (MAX_LACTATION_TRACKED - len(row)))

            avg_lac = lac_sum / no_cows if no_cows > 0 else float("nan")
            avg_history.append(avg_lac)

            if math.isnan(no_cows) or _round(no_cows) == 0:
                degenerate = True
                break
            if (
                its > self.min_iterations
                and _round(no_cows) == hs_rounded
                and prev_avg is not None
                and not math.isnan(prev_avg)
                and _round(prev_avg * 1e6) == _round(avg_lac * 1e6)
            ):
                converged = True
                break
            if its > self.max_iterations:
                break

            prev_avg = avg_lac
            its += 1

        if degenerate:
            logger.warning(
                "Herd population collapsed after %d months (no. cows %.3f); check replacement vs. recruitment.",
                its, pop.total_cows,
            )
        elif not converged:
            logger.warning(
                "Herd structure did not converge within %d months (no. cows %.3f, herd size %s).",
                its, pop.total_cows, cfg.herd_size,
            )

        per_lac = pop.cows_per_lactation()
        parity_counts, cows = sample_snapshot(per_lac, cfg, rng=self.rng)

        lactation_history = pd.DataFrame(
            history, columns=[f"lac_{i}" for i in range(1, MAX_LACTATION_TRACKED + 1)]
        )
        lactation_history.index.name = "month"

        return HerdResult(
            config=cfg,
            cows_per_lactation=per_lac,
            parity_counts=parity_counts,
            cows=cows,
            heifers_bought=_round(bought),
            heifers_sold=_round(sold),
            young_stock=list(pop.young),
            average_lactation_history=avg_history,
            lactation_history=lactation_history,
            iterations=its,
            converged=converged,
            degenerate=degenerate,
        )


def simulate_herd(
    config: Optional[HerdConfig] = None,
    rng: Optional[np.random.Generator] = None,
    **kwargs,
) -> HerdResult:
    """Convenience wrapper: `HerdSimulator(config, rng=rng, **kwargs).run()`."""
    return HerdSimulator(config, rng=rng, **kwargs).run()


# ----------------------------
# Snapshot sampler
# ----------------------------

def _parity_buckets(cows_per_lactation: List[float], herd_size: int) -> Tuple[int, int, int]:
    def _count(i: int) -> int:
        n = cows_per_lactation[i] if i < len(cows_per_lactation) else 0.0
        return _round(n) if math.isfinite(n) else 0

    p1, p2 = _count(0), _count(1)
    p1 = min(p1, herd_size)
    p2 = min(p2, herd_size - p1)
    return p1, p2, herd_size - p1 - p2


def sample_snapshot(
    cows_per_lactation: List[float],
    config: HerdConfig,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[Tuple[int, int, int], List[CowSnapshot]]:
    """
    Expand a lactation distribution into `herd_size` individual cows.

    Cows are bucketed into parity 1, 2 and >2; the third bucket takes
    whatever is left so the buckets always sum to the herd size. Within a
    bucket cows are spaced evenly in days post partum over the calving
    interval, the first one at half the spacing.

    Parameters
    ----------
    cows_per_lactation
        Count per lactation number (index 0 = first lactation).
    config
        Herd parameters.
    rng
        Generator used to place a cow that is alone in its bucket.

    Returns
    -------
    (parity_counts, cows)
    """
    rng = np.random.default_rng() if rng is None else rng
    herd_size = _round(config.herd_size)
    ac = config.age_first_calving
    ci = config.calving_interval
    ci_days = config.calving_interval_days
    dry_off_days = DAYS_IN_MONTH * (ci - config.dry_period)
    conception_days = DAYS_IN_MONTH * (ci - config.gestation_period)

    parity_counts = _parity_buckets(cows_per_lactation, herd_size)
    cows: List[CowSnapshot] = []

    for i, size in enumerate(parity_counts):
        if size <= 0:
            continue
        if size == 1:
            increment = 0.0
            dpp = float(rng.uniform(0.0, ci_days))
        else:
            increment = ci_days / size
            dpp = increment * 0.5

        for _ in range(size):
            is_dry = dpp > dry_off_days
            cows.append(
                CowSnapshot(
                    days_post_partum=_round(dpp),
                    is_dry=is_dry,
                    days_in_milk=0 if is_dry else _round(dpp),
                    days_in_gestation=_round(dpp - conception_days) if dpp > conception_days else 0,
                    age_months=_round(ac + i * ci + dpp / DAYS_IN_MONTH),
                    age_days=_round((ac + i * ci) * DAYS_IN_MONTH + dpp),
                    parity=i + 1,
                )
            )
            dpp += increment

    return parity_counts, cows


def snapshot_frame(cows: List[CowSnapshot]) -> pd.DataFrame:
    """Cow snapshot as a table, one row per cow."""
    columns = [f.name for f in fields(CowSnapshot)]
    return pd.DataFrame([asdict(c) for c in cows], columns=columns)
