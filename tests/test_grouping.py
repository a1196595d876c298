"""Tests for k-means grouping of cows."""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from grouping import (
    group_cows,
    group_herd,
    kmeans_groups,
    kmeans_plus_plus,
    lloyd,
    normalize,
    sum_squared_differences,
)


class TestNormalize:
    def test_scales_each_axis_to_unit_range(self):
        xy = np.array([[1.0, 10.0], [3.0, 20.0], [2.0, 15.0]])
        out = normalize(xy)
        assert out[:, 0].tolist() == [0.0, 1.0, 0.5]
        assert out[:, 1].tolist() == [0.0, 1.0, 0.5]

    def test_does_not_touch_input(self):
        xy = np.array([[1.0, 10.0], [3.0, 20.0]])
        normalize(xy)
        assert xy.tolist() == [[1.0, 10.0], [3.0, 20.0]]

    def test_constant_axis_maps_to_zero(self):
        out = normalize([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]])
        assert out[:, 1].tolist() == [0.0, 0.0, 0.0]
        assert out[:, 0].tolist() == [0.0, 0.5, 1.0]


class TestKMeansPlusPlus:
    def test_centroids_sorted_by_descending_x(self, blobs):
        for seed in range(20):
            centroids = kmeans_plus_plus(blobs, 5, np.random.default_rng(seed))
            assert centroids.shape == (5, 2)
            assert np.all(np.diff(centroids[:, 0]) <= 0)

    def test_centroids_are_data_points(self, blobs, rng):
        centroids = kmeans_plus_plus(blobs, 3, rng)
        for c in centroids:
            assert np.any(np.all(blobs == c, axis=1))

    def test_reproducible_with_same_seed(self, blobs):
        a = kmeans_plus_plus(blobs, 4, np.random.default_rng(42))
        b = kmeans_plus_plus(blobs, 4, np.random.default_rng(42))
        assert np.array_equal(a, b)

    def test_identical_points(self, rng):
        xy = np.zeros((4, 2))
        centroids = kmeans_plus_plus(xy, 3, rng)
        assert centroids.tolist() == [[0.0, 0.0]] * 3


class TestLloyd:
    def test_fixed_point_is_idempotent(self, blobs, rng):
        seed = kmeans_plus_plus(blobs, 5, rng)
        labels, centroids, items = lloyd(blobs, seed)
        labels2, centroids2, items2 = lloyd(blobs, centroids)
        assert np.array_equal(labels, labels2)
        assert np.allclose(centroids, centroids2)
        assert np.array_equal(items, items2)

    def test_does_not_modify_seed(self, blobs, rng):
        seed = kmeans_plus_plus(blobs, 5, rng)
        before = seed.copy()
        lloyd(blobs, seed)
        assert np.array_equal(seed, before)

    def test_tie_goes_to_lower_id(self):
        xy = np.array([[0.0, 0.0]])
        labels, _, _ = lloyd(xy, np.array([[1.0, 0.0], [-1.0, 0.0]]))
        assert labels.tolist() == [0]

    def test_empty_group_keeps_centroid(self):
        xy = np.array([[0.0, 0.0], [0.0, 0.2]])
        labels, centroids, items = lloyd(xy, np.array([[0.0, 0.0], [100.0, 100.0]]))
        assert labels.tolist() == [0, 0]
        assert items.tolist() == [2, 0]
        assert centroids[1].tolist() == [100.0, 100.0]
        assert centroids[0].tolist() == pytest.approx([0.0, 0.1])

    def test_two_obvious_groups(self):
        xy = np.array([[0.0, 0.0], [0.0, 1.0], [10.0, 0.0], [10.0, 1.0]])
        labels, centroids, items = lloyd(xy, np.array([[10.0, 0.0], [0.0, 0.0]]))
        assert labels.tolist() == [1, 1, 0, 0]
        assert sum_squared_differences(xy, labels, centroids) == pytest.approx(1.0)


class TestKMeansGroups:
    def test_five_groups_of_hundred_points(self, blobs):
        result = kmeans_groups(blobs, 5, runs=15, normalize_data=True, rng=np.random.default_rng(7))
        assert result.k == 5
        assert len(result.labels) == 100
        assert set(result.labels.tolist()) == {0, 1, 2, 3, 4}
        assert result.items.sum() == 100
        assert len(result.runs) == 15

    def test_best_run_is_selected(self, blobs):
        result = kmeans_groups(blobs, 5, runs=15, rng=np.random.default_rng(11))
        assert all(result.distortion <= run.distortion + 1e-12 for run in result.runs)
        assert result.distortion == pytest.approx(min(run.distortion for run in result.runs))

    def test_seeds_are_sorted_in_every_run(self, blobs, rng):
        result = kmeans_groups(blobs, 5, runs=10, rng=rng)
        for run in result.runs:
            assert np.all(np.diff(run.seed_centroids[:, 0]) <= 0)

    def test_same_seed_same_grouping(self, blobs):
        a = kmeans_groups(blobs, 4, runs=5, rng=np.random.default_rng(3))
        b = kmeans_groups(blobs, 4, runs=5, rng=np.random.default_rng(3))
        assert np.array_equal(a.labels, b.labels)
        assert a.distortion == b.distortion

    def test_caller_points_are_not_modified(self, blobs, rng):
        before = blobs.copy()
        kmeans_groups(blobs, 3, runs=3, normalize_data=True, rng=rng)
        assert np.array_equal(blobs, before)

    def test_more_groups_than_distinct_points(self, rng):
        xy = np.array([[1.0, 1.0], [1.0, 1.0], [2.0, 2.0]])
        result = kmeans_groups(xy, 4, runs=3, rng=rng)
        assert result.items.sum() == 3
        assert (result.items == 0).sum() >= 2
        assert result.distortion == pytest.approx(0.0)

    @pytest.mark.parametrize("k, runs", [(0, 5), (-1, 5), (3, 0), (3, -2)])
    def test_contract_violations(self, blobs, k, runs):
        with pytest.raises(ValueError):
            kmeans_groups(blobs, k, runs=runs)

    def test_empty_and_malformed_points(self):
        with pytest.raises(ValueError):
            kmeans_groups(np.zeros((0, 2)), 2)
        with pytest.raises(ValueError):
            kmeans_groups(np.zeros((5, 3)), 2)


class TestGroupCows:
    def test_dataframe_gets_group_column(self, blobs, rng):
        df = pd.DataFrame(blobs, columns=["E_density", "P_density"])
        result = group_cows(df, 5, runs=5, x_attribute="E_density", y_attribute="P_density", rng=rng)
        assert "group" in df.columns
        assert df["group"].tolist() == result.labels.tolist()

    def test_dataframe_missing_column(self, blobs):
        df = pd.DataFrame(blobs, columns=["E_density", "P_density"])
        with pytest.raises(ValueError):
            group_cows(df, 2, x_attribute="E_density", y_attribute="missing")

    def test_dicts_and_objects_get_label(self, rng):
        dicts = [{"E": x, "P": y} for x, y in [(0, 0), (0, 1), (9, 0), (9, 1)]]
        group_cows(dicts, 2, runs=3, normalize_data=False, x_attribute="E", y_attribute="P", rng=rng)
        assert [d["group"] for d in dicts] == [1, 1, 0, 0]

        cows = [SimpleNamespace(E=x, P=y) for x, y in [(0, 0), (0, 1), (9, 0), (9, 1)]]
        group_cows(cows, 2, runs=3, normalize_data=False, x_attribute="E", y_attribute="P", label_attribute="k", rng=rng)
        assert [c.k for c in cows] == [1, 1, 0, 0]

    def test_raw_pairs(self, rng):
        result = group_cows([(0, 0), (0, 1), (9, 0), (9, 1)], 2, runs=3, normalize_data=False, rng=rng)
        assert result.labels.tolist() == [1, 1, 0, 0]

    def test_group_herd_puts_dry_cows_in_last_group(self, blobs, rng):
        df = pd.DataFrame(blobs, columns=["E_density", "P_density"])
        df["is_dry"] = [i % 10 == 0 for i in range(len(df))]
        group_herd(df, 3, runs=5, rng=rng)
        assert (df.loc[df["is_dry"], "group"] == 3).all()
        assert df.loc[~df["is_dry"], "group"].between(0, 2).all()
        assert df["group"].dtype.kind == "i"

    def test_group_herd_all_dry_cows(self):
        df = pd.DataFrame({"E_density": [1.0, 2.0], "P_density": [3.0, 4.0], "is_dry": [True, True]})
        result = group_herd(df, 2, runs=2)
        assert df["group"].tolist() == [2, 2]
        assert result.k == 2
        assert result.labels.size == 0
        assert result.items.tolist() == [0, 0]
        assert result.distortion == 0.0
        assert result.runs == []

    def test_group_herd_contract_violations(self):
        df = pd.DataFrame({"E_density": [1.0], "P_density": [3.0], "is_dry": [True]})
        with pytest.raises(ValueError):
            group_herd(df, 0)
        with pytest.raises(ValueError):
            group_herd(df, 2, runs=0)
