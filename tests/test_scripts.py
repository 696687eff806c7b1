"""Tests for the command line entry points."""

import json
import os

import pytest

from drift_monitor.scripts.compute_baseline import build_parser, load_values, main
from serving.run_server import build_parser as build_server_parser, export_settings


@pytest.fixture
def memory_config(tmp_path):
    path = tmp_path / "monitoring.yaml"
    path.write_text("store:\n  backend: memory\n")
    return path


class TestLoadValues:
    def test_csv_column(self, tmp_path):
        path = tmp_path / "reference.csv"
        path.write_text("conversation_id,message_length\nc-1,12\nc-2,40\nc-3,\n")
        assert load_values(path, "message_length") == [12.0, 40.0]

    def test_csv_needs_column_when_ambiguous(self, tmp_path):
        path = tmp_path / "reference.csv"
        path.write_text("a,b\n1,2\n")
        with pytest.raises(ValueError):
            load_values(path)

    def test_json_list(self, tmp_path):
        path = tmp_path / "reference.json"
        path.write_text(json.dumps([1.5, 2.5, 3.5]))
        assert load_values(path) == [1.5, 2.5, 3.5]

    def test_one_value_per_line(self, tmp_path):
        path = tmp_path / "reference.txt"
        path.write_text("480\n510\nnot-a-number\n495\n")
        assert load_values(path) == [480.0, 510.0, 495.0]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_values(tmp_path / "nope.csv")


def test_source_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--tenant", "t", "--category", "performance", "--name", "x"])


def test_main_from_values_file(tmp_path, memory_config):
    values = tmp_path / "latency.txt"
    values.write_text("\n".join(str(v) for v in [450, 550] * 20))

    exit_code = main([
        "--tenant", "tenant-a",
        "--category", "performance",
        "--name", "response_latency_ms",
        "--values-file", str(values),
        "--config", str(memory_config),
        "--verify",
    ])

    assert exit_code == 0


def test_main_from_history_without_data(memory_config):
    exit_code = main([
        "--tenant", "tenant-a",
        "--category", "performance",
        "--name", "response_latency_ms",
        "--from-history",
        "--config", str(memory_config),
    ])
    assert exit_code == 1


def test_main_missing_values_file(tmp_path, memory_config):
    exit_code = main([
        "--tenant", "tenant-a",
        "--category", "performance",
        "--name", "response_latency_ms",
        "--values-file", str(tmp_path / "missing.csv"),
        "--config", str(memory_config),
    ])
    assert exit_code == 1


def test_server_settings_are_exported(monkeypatch, tmp_path):
    # restored after the test
    monkeypatch.setenv("DRIFT_CONFIG", "")
    monkeypatch.setenv("METRIC_STORE_MODE", "")
    monkeypatch.chdir(tmp_path)

    args = build_server_parser().parse_args(["--store", "redis", "--config", "monitoring.yaml"])
    export_settings(args)

    assert os.environ["METRIC_STORE_MODE"] == "redis"
    assert os.environ["DRIFT_CONFIG"] == str(tmp_path / "monitoring.yaml")
