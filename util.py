"""
Utility functions for herd grouping.

This module provides helper functions for:
- Summarizing cow tables (descriptive statistics)
- Equal-size grouping of cows by a single criterion
- Averaging cows per feeding group (the "average cow" each group's diet
  is formulated for)

Cow tables are pandas DataFrames with one row per cow, e.g. the output of
`herd_sim.snapshot_frame` with requirement columns attached.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


class Utility:
    """
    Collection of static helper functions used around the herd model.

    Notes
    -----
    - Days columns (days_post_partum, days_in_milk, ...) are in days,
      age_months in months.
    - Densities are requirements divided by intake capacity; check the
      unit system of the requirement model that produced them.
    """

    #: Column holding the group id written by the grouping functions
    group_column: str = "group"

    # ------------------------------------------------------------------
    # Grouping utilities
    # ------------------------------------------------------------------

    @staticmethod
    def split_by_column(
        cow_df: pd.DataFrame,
        column: str,
        n: int,
        ascending: bool = True,
    ) -> pd.DataFrame:
        """
        Split cows into `n` groups of (near) equal size after sorting by `column`.

        Parameters
        ----------
        cow_df
            Cow table; a group id column is written to it.
        column
            Sort criterion, e.g. 'days_in_milk'.
        n
            No. of groups.
        ascending
            Group 0 holds the lowest values if True.

        Returns
        -------
        pandas.DataFrame
            `cow_df` with its group column set.
        """
        if n <= 0:
            raise ValueError(f"n must be positive, got {n}.")
        if column not in cow_df.columns:
            raise ValueError(f"cow_df missing column '{column}'.")

        order = cow_df.sort_values(column, ascending=ascending, kind="stable").index
        size = len(order)
        # sorted row r goes to the last group i with floor(i * size / n) <= r
        groups = ((np.arange(size) + 1) * n - 1) // max(size, 1)
        cow_df[Utility.group_column] = pd.Series(groups, index=order, dtype=int)
        return cow_df

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @staticmethod
    def get_descriptive_stats(cow_df: pd.DataFrame) -> pd.DataFrame:
        """
        Compute simple descriptive statistics for a cow group.
        """

        stats = {}
        for col in cow_df.select_dtypes(include=[np.number]).columns:
            if col != Utility.group_column:
                stats[f"{col}_mean"] = cow_df[col].mean()
                stats[f"{col}_std"] = cow_df[col].std()

        return pd.DataFrame.from_dict(stats, orient="index", columns=["value"])

    @staticmethod
    def get_group_means(cow_df: pd.DataFrame) -> pd.DataFrame:
        """
        Average cow per group.

        Returns
        -------
        pandas.DataFrame
            Indexed by group id, one column per numeric column of `cow_df`
            plus 'count' (no. of cows in the group).
        """
        if Utility.group_column not in cow_df.columns:
            raise ValueError(f"cow_df missing column '{Utility.group_column}'; group the cows first.")

        numeric = cow_df.select_dtypes(include=[np.number, "bool"]).astype(float)
        grouped = numeric.groupby(cow_df[Utility.group_column])
        means = grouped.mean().drop(columns=[Utility.group_column], errors="ignore")
        means.insert(0, "count", grouped.size())
        return means
