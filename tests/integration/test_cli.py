"""
Integration tests for the cfmm-arb command line interface
"""

import json
from pathlib import Path

import pytest
import yaml

from cfmm_arbitrage.cli import EXIT_CONFIG_ERROR, EXIT_OK, main
from cfmm_arbitrage.version import __version__

pytestmark = pytest.mark.integration


@pytest.fixture
def valid_config():
    return {
        "search": {"start_token": "A", "budget": 10, "formulation": "linear"},
        "solver": {"time_limit_sec": 5},
        "pools": [
            {"id": "p1", "tokens": ["A", "B"], "reserves": [100, 10], "fee_bps": 30},
            {"id": "p2", "tokens": ["A", "B"], "reserves": [90, 20], "fee_bps": 30},
        ],
    }


@pytest.fixture
def config_path(tmp_path, valid_config):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(valid_config))
    return str(path)


def test_validate(config_path, capsys):
    assert main(["validate", config_path]) == EXIT_OK
    out = capsys.readouterr().out
    assert "✓ VALID" in out
    assert "Pools: 2" in out


def test_validate_invalid_config(tmp_path, valid_config, capsys):
    valid_config["search"]["budget"] = 0
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump(valid_config))

    assert main(["validate", str(path)]) == EXIT_CONFIG_ERROR
    assert "search.budget" in capsys.readouterr().err


def test_validate_invalid_pool(tmp_path, valid_config, capsys):
    valid_config["pools"][0]["tokens"] = ["A", "A"]
    path = tmp_path / "bad_pool.yaml"
    path.write_text(yaml.safe_dump(valid_config))

    assert main(["validate", str(path)]) == EXIT_CONFIG_ERROR
    assert "Invalid pool p1" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    assert main(["scan", str(tmp_path / "missing.yaml")]) == EXIT_CONFIG_ERROR
    assert "Configuration file not found" in capsys.readouterr().err


def test_scan(config_path, capsys):
    assert main(["scan", config_path]) == EXIT_OK
    out = capsys.readouterr().out
    assert "=== Cycle search from A ===" in out
    assert "Cycles considered: 2" in out
    assert "p2" in out


def test_scan_json(config_path, capsys):
    assert main(["scan", config_path, "--json", "--formulation", "conic"]) == EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["cycles_considered"] == 2
    assert data["best_cycle"] == "A -> B -> A"
    assert data["results"][0]["pools"] == ["p2", "p1"]
    assert data["selection"][0]["amount_in"] <= 10 + 1e-6


def test_scan_budget_override(config_path, capsys):
    assert main(["scan", config_path, "--json", "--budget", "2"]) == EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert data["results"][0]["amount_in"] == pytest.approx(2.0)


def test_scan_rejects_negative_budget(config_path, capsys):
    assert main(["scan", config_path, "--budget", "-1"]) == EXIT_CONFIG_ERROR
    assert "--budget must be positive" in capsys.readouterr().err


def test_cycles(config_path, capsys):
    assert main(["cycles", config_path, "--max-length", "2"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "2 cycles from A (max length 2)" in out
    assert "p1, p2" in out


def test_unknown_formulation_is_rejected(config_path):
    with pytest.raises(SystemExit):
        main(["scan", config_path, "--formulation", "quadratic"])


def test_example_config_is_valid(capsys):
    example = Path(__file__).resolve().parents[2] / "examples" / "config.yaml"
    assert main(["validate", str(example)]) == EXIT_OK
    assert "Start token: WETH" in capsys.readouterr().out


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert f"cfmm-arb {__version__}" in capsys.readouterr().out
