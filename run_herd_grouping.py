"""
Herd structure and grouping CLI

This script:
1) Simulates the herd structure for the given herd parameters until it is stable.
2) Samples a static snapshot of individual cows from the stable herd.
3) Optionally groups the lactating cows (k-means on two snapshot columns,
   or equal-size groups by one column); dry cows form their own group.
4) Prints the herd structure and per-group statistics.

Energy and protein densities come from a requirement model outside this
repository; without them, group on snapshot columns such as
'days_in_milk' and 'age_days'.
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional

import numpy as np

from herd_sim import HerdConfig, HerdResult, HerdSimulator, snapshot_frame
from grouping import group_herd
from util import Utility as util


# ----------------------------
# Configuration / constants
# ----------------------------

SNAPSHOT_COLUMNS = ["days_post_partum", "days_in_milk", "days_in_gestation", "age_months", "age_days", "parity"]


# ----------------------------
# Reporting
# ----------------------------

def print_herd(result: HerdResult) -> None:
    status = "converged" if result.converged else ("collapsed" if result.degenerate else "NOT converged")
    print(f">>> Herd simulation {status} after {result.iterations} months.")
    print(f"Total no. of cows: {result.total_cows:.2f}, avg. lactation: {result.average_lactation:.3f}")
    print("Cows per parity (1, 2, >2):", result.parity_counts)
    print(f"Heifers bought / sold per month: {result.heifers_bought} / {result.heifers_sold}")
    print(">>> Herd structure (% of herd size):")
    print(result.structure_summary())
    print(">>> Young stock per age month:")
    print(result.young_stock_table().T)


def group_and_report(
    result: HerdResult,
    group_num: int,
    criteria: str,
    x_attr: str,
    y_attr: str,
    runs: int,
    rng: np.random.Generator,
    verbose: bool = True,
) -> None:
    """
    Group the snapshot cows and print per-group statistics.

    Parameters
    ----------
    group_num
        No. of groups for lactating cows (dry cows are added as one more group).
    criteria
        'kmeans' (on x_attr, y_attr) or a snapshot column to split by.
    """
    criteria = criteria.strip().lower()
    cow_df = snapshot_frame(result.cows)

    if criteria == "kmeans":
        if verbose:
            print(f">>> Grouping lactating cows into {group_num} groups by k-means on '{x_attr}', '{y_attr}'.")
        grouping = group_herd(cow_df, group_num, x_attribute=x_attr, y_attribute=y_attr, runs=runs, rng=rng)
        if verbose:
            print(f"Total squared deviation: {grouping.distortion:.4f} (best of {runs} runs)")
    elif criteria in SNAPSHOT_COLUMNS:
        if verbose:
            print(f">>> Grouping lactating cows into {group_num} equal-size groups by '{criteria}'.")
        lactating = cow_df.loc[~cow_df["is_dry"]].copy()
        util.split_by_column(lactating, criteria, group_num)
        cow_df[util.group_column] = group_num
        cow_df.loc[lactating.index, util.group_column] = lactating[util.group_column]
    else:
        raise ValueError(f"criteria must be 'kmeans' or one of: {', '.join(SNAPSHOT_COLUMNS)}.")

    if verbose:
        print(">>> Average cow per group (last group: dry cows):")
        print(util.get_group_means(cow_df).round(2))
        for g, gdf in cow_df.groupby(util.group_column):
            print(f"\n=== Group {g + 1} ===")
            print("Stats:", util.get_descriptive_stats(gdf))


# ----------------------------
# CLI
# ----------------------------

def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Simulate a stable dairy herd structure and group its cows.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    defaults = HerdConfig()
    p.add_argument("--age-first-calving", type=float, default=defaults.age_first_calving, help="Age at first calving [month]")
    p.add_argument("--female-calf-rate", type=float, default=defaults.female_calf_rate, help="Fraction of female calves")
    p.add_argument("--still-birth-rate", type=float, default=defaults.still_birth_rate, help="Fraction of dead born calves")
    p.add_argument("--young-stock-cull-rate", type=float, default=defaults.young_stock_cull_rate, help="Fraction of young stock not reaching 1st calving")
    p.add_argument("--replacement-rate", type=float, default=defaults.replacement_rate, help="Fraction of cows replaced per year")
    p.add_argument("--calving-interval", type=float, default=defaults.calving_interval, help="Calving interval [month]")
    p.add_argument("--herd-size", type=float, default=defaults.herd_size, help="No. of cows")
    p.add_argument("--gestation-period", type=float, default=defaults.gestation_period, help="Gestation period [month]")
    p.add_argument("--dry-period", type=float, default=defaults.dry_period, help="Dry period [month]")

    p.add_argument("--group-num", type=int, default=0, help="No. of groups for lactating cows (0: no grouping)")
    p.add_argument("--criteria", type=str, default="kmeans", choices=["kmeans"] + SNAPSHOT_COLUMNS, help="Grouping criterion")
    p.add_argument("--x-attr", type=str, default="days_in_milk", choices=SNAPSHOT_COLUMNS, help="First k-means coordinate")
    p.add_argument("--y-attr", type=str, default="age_days", choices=SNAPSHOT_COLUMNS, help="Second k-means coordinate")
    p.add_argument("--runs", type=int, default=15, help="No. of k-means restarts")
    p.add_argument("--seed", type=int, default=None, help="Random seed")

    p.add_argument("--quiet", action="store_true", help="Suppress progress prints")

    return p.parse_args(argv)


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s | %(name)s | %(message)s")

    if args.group_num < 0:
        raise ValueError(f"group-num must be >= 0, got {args.group_num}.")
    if args.runs <= 0:
        raise ValueError(f"runs must be positive, got {args.runs}.")

    rng = np.random.default_rng(args.seed)
    config = HerdConfig(
        age_first_calving=args.age_first_calving,
        female_calf_rate=args.female_calf_rate,
        still_birth_rate=args.still_birth_rate,
        young_stock_cull_rate=args.young_stock_cull_rate,
        replacement_rate=args.replacement_rate,
        calving_interval=args.calving_interval,
        herd_size=args.herd_size,
        gestation_period=args.gestation_period,
        dry_period=args.dry_period,
    )

    result = HerdSimulator(config, rng=rng).run()
    if not args.quiet:
        print_herd(result)

    if args.group_num > 0:
        group_and_report(
            result,
            group_num=args.group_num,
            criteria=args.criteria,
            x_attr=args.x_attr,
            y_attr=args.y_attr,
            runs=args.runs,
            rng=rng,
            verbose=not args.quiet,
        )


if __name__ == "__main__":
    main()
