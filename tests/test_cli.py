"""Tests for the command-line interface."""

import argparse
from pathlib import Path

import pytest

from src.intake.cli import main, parse_corrections, parse_layer_args
from src.intake.schema import JobStage
from src.storage.job_store import JobStore

ROOT = Path(__file__).resolve().parent.parent
VILLAGES = str(ROOT / "data" / "reference" / "villages.geojson")
PAYLOAD = str(ROOT / "data" / "examples" / "payload_complete.json")


@pytest.fixture
def cli(db_path):
    def run(*args: str) -> int:
        return main(["--db", str(db_path), "--gazetteer", VILLAGES, *args])
    return run


def test_ingest_and_run(cli, db_path):
    assert cli("ingest", PAYLOAD, "--job-id", "JOB-CLI") == 0
    assert JobStore(db_path).get("JOB-CLI").stage == JobStage.QUEUED

    assert cli("run") == 0
    assert JobStore(db_path).get("JOB-CLI").stage == JobStage.COMMITTED
    assert cli("show", "JOB-CLI") == 0


def test_unknown_job_exits_nonzero(cli):
    assert cli("show", "JOB-404") == 1


def test_missing_file_exits_nonzero(cli):
    assert cli("ingest", "no-such-payload.json") == 1


def test_parse_layer_args():
    assert parse_layer_args(["protected=pa.geojson"]) == {"protected_layer_path": Path("pa.geojson")}
    with pytest.raises(argparse.ArgumentTypeError):
        parse_layer_args(["wetlands=w.geojson"])


def test_parse_corrections():
    assert parse_corrections(["village=Khairwada", "land_extent=2 ha"]) == {
        "village": "Khairwada",
        "land_extent": "2 ha",
    }
    with pytest.raises(ValueError):
        parse_corrections(["village"])
