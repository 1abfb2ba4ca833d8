"""Tests for the command-line entry point."""

import pytest
from pathlib import Path

from aipm.__main__ import main

from conftest import entity_line, read_lines, write_store


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in ["AIPM_ENTITY_PREFIX", "AIPM_CONFLICT_POLICY", "AIPM_MAX_SIZE", "AIPM_LOG_LEVEL"]:
        monkeypatch.delenv(key, raising=False)


class TestMain:
    def test_no_args(self, capsys):
        assert main([]) == 1
        assert "Usage" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert main(["sync"]) == 1
        assert "Usage" in capsys.readouterr().out

    def test_validate_ok(self, tmp_path: Path, capsys):
        store = write_store(tmp_path / "store.json", [entity_line("AIPM_DECISION_A")])
        assert main(["validate", str(store)]) == 0
        assert "valid (1 entities, 0 relations)" in capsys.readouterr().out

    def test_validate_bad_prefix(self, tmp_path: Path, capsys):
        store = write_store(tmp_path / "store.json", [entity_line("OTHER_A")])
        assert main(["validate", str(store)]) == 1
        assert "bad_prefix" in capsys.readouterr().out

    def test_validate_missing_file(self, tmp_path: Path, capsys):
        assert main(["validate", str(tmp_path / "missing.json")]) == 1
        assert "Error" in capsys.readouterr().err

    def test_stats(self, tmp_path: Path, capsys):
        store = write_store(tmp_path / "store.json", [entity_line("AIPM_A"), entity_line("AIPM_B")])
        assert main(["stats", str(store)]) == 0
        assert "2 entities, 0 relations" in capsys.readouterr().out

    def test_merge(self, tmp_path: Path, capsys):
        local = write_store(tmp_path / "local.json", [entity_line("AIPM_TASK_A")])
        remote = write_store(tmp_path / "remote.json", [entity_line("AIPM_TASK_B")])
        out = tmp_path / "out.json"
        assert main(["merge", str(local), str(remote), str(out), "local-wins"]) == 0
        assert len(read_lines(out)) == 2
        assert "2 entities" in capsys.readouterr().out

    def test_merge_bad_policy(self, tmp_path: Path, capsys):
        local = write_store(tmp_path / "local.json", [])
        assert main(["merge", str(local), str(local), str(tmp_path / "o.json"), "nope"]) == 1
        assert "Error" in capsys.readouterr().err

    def test_bad_env_config_is_reported(self, tmp_path: Path, monkeypatch, capsys):
        store = write_store(tmp_path / "store.json", [entity_line("AIPM_A")])
        monkeypatch.setenv("AIPM_CONFLICT_POLICY", "coin-flip")
        assert main(["stats", str(store)]) == 1
        assert "Error" in capsys.readouterr().err

    def test_bad_env_size_is_reported(self, tmp_path: Path, monkeypatch, capsys):
        store = write_store(tmp_path / "store.json", [entity_line("AIPM_A")])
        monkeypatch.setenv("AIPM_MAX_SIZE", "lots")
        assert main(["validate", str(store)]) == 1
        assert "Invalid size" in capsys.readouterr().err
