"""Tests for the command line entry point."""

from __future__ import annotations

import pytest

import run_herd_grouping


class TestCli:
    def test_parse_defaults(self):
        args = run_herd_grouping.parse_args([])
        assert args.herd_size == 100
        assert args.group_num == 0
        assert args.criteria == "kmeans"

    def test_quiet_run_prints_nothing(self, capsys):
        run_herd_grouping.main(["--quiet", "--herd-size", "60"])
        assert capsys.readouterr().out == ""

    def test_kmeans_grouping(self, capsys):
        run_herd_grouping.main(["--group-num", "3", "--runs", "5", "--seed", "1"])
        out = capsys.readouterr().out
        assert "converged" in out
        assert "k-means" in out
        assert "=== Group 4 ===" in out

    def test_split_grouping(self, capsys):
        run_herd_grouping.main(["--group-num", "2", "--criteria", "days_in_milk", "--seed", "1"])
        out = capsys.readouterr().out
        assert "equal-size groups by 'days_in_milk'" in out
        assert "=== Group 3 ===" in out

    def test_invalid_runs(self):
        with pytest.raises(ValueError):
            run_herd_grouping.main(["--quiet", "--runs", "0"])
