"""
CLI Tests: python -m rankmesh
"""

import pytest

import rankmesh.__main__ as cli


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep RANKMESH_* variables and global logging setup out of the tests."""
    for name in ("BACKEND", "MIN_SCORE", "MAX_SCORE", "BRANCH_FACTOR", "COLLECTION"):
        monkeypatch.delenv(f"RANKMESH_{name}", raising=False)
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)


RANGE = ["--min-score", "1", "--max-score", "100", "--branch-factor", "8"]


class TestCommands:

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "usage: rankmesh" in capsys.readouterr().out

    def test_demo(self, capsys):
        assert cli.main(RANGE + ["demo"]) == 0

        out = capsys.readouterr().out
        assert "tracked: 100, 100, 97, 50, 8" in out
        assert "count:   5" in out

    def test_add_then_count_in_one_process(self, capsys):
        assert cli.main(RANGE + ["add", "5", "6", "7"]) == 0
        assert "added 3 score(s)" in capsys.readouterr().out

    def test_rank_on_empty_store(self, capsys):
        assert cli.main(RANGE + ["rank", "42"]) == 0
        assert capsys.readouterr().out.strip() == "1"

    def test_score_highest_on_empty_store(self, capsys):
        assert cli.main(RANGE + ["score", "3", "--highest"]) == 0
        assert capsys.readouterr().out.strip() == "100"

    def test_topology(self, capsys):
        assert cli.main(["--min-score", "1", "--max-score", "11", "--branch-factor", "10", "topology"]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("rank_0_1_11: range_1_2 ")
        assert lines[-1] == "  rank_1_9_10: range_9_9 range_10_10"

    def test_topology_limit(self, capsys):
        assert cli.main(RANGE + ["topology", "--limit", "2"]) == 0
        assert capsys.readouterr().out.splitlines()[-1] == "..."


class TestErrors:

    def test_invalid_rank(self, capsys):
        assert cli.main(RANGE + ["score", "0"]) == 1
        assert "Rank must be >= 1" in capsys.readouterr().err

    def test_remove_untracked(self, capsys):
        assert cli.main(RANGE + ["remove", "13"]) == 1
        assert "No such score: 13" in capsys.readouterr().err

    def test_invalid_configuration(self, capsys):
        assert cli.main(["--min-score", "10", "--max-score", "1", "count"]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_environment_configuration(self, monkeypatch, capsys):
        monkeypatch.setenv("RANKMESH_MIN_SCORE", "1")
        monkeypatch.setenv("RANKMESH_MAX_SCORE", "5")
        monkeypatch.setenv("RANKMESH_BRANCH_FACTOR", "2")

        assert cli.main(["score", "1", "--highest"]) == 0
        assert capsys.readouterr().out.strip() == "5"

    def test_incomplete_environment(self, monkeypatch, capsys):
        monkeypatch.setenv("RANKMESH_MIN_SCORE", "1")

        assert cli.main(["count"]) == 1
        assert "RANKMESH_MAX_SCORE" in capsys.readouterr().err
