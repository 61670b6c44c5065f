"""Tests for the pindeploy command line."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from pindeploy.cli import main

HELPER_OK = """#!/bin/sh
echo "uploading $1" >&2
echo '{"IpfsHash": "bafycli", "PinSize": 3}'
"""

HELPER_FORBIDDEN = """#!/bin/sh
echo "403 Forbidden" >&2
exit 1
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    """Isolated environment for CLI runs; returns the deployments dir."""
    monkeypatch.chdir(tmp_path)
    deployments = tmp_path / "deployments"
    monkeypatch.setenv("PINATA_JWT", "cli-secret-jwt")
    monkeypatch.setenv("DEPLOYMENTS_DIR", str(deployments))
    # Unroutable gateway: verification fails fast and only warns
    monkeypatch.setenv("PINATA_GATEWAY_URL", "http://127.0.0.1:9")
    monkeypatch.delenv("IPNS_ENABLED", raising=False)
    monkeypatch.delenv("UPLOAD_SCRIPT_PATH", raising=False)
    return deployments


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "pindeploy" in result.output


def test_rejects_unknown_environment(runner, cli_env, build_dir):
    result = runner.invoke(main, ["deploy", "staging", str(build_dir), "site", "20240101T000000Z"])
    assert result.exit_code == 2


def test_rejects_missing_arguments(runner, cli_env, build_dir):
    result = runner.invoke(main, ["deploy", "dev", str(build_dir)])
    assert result.exit_code == 2


def test_rejects_unsafe_timestamp(runner, cli_env, build_dir):
    result = runner.invoke(main, ["deploy", "dev", str(build_dir), "site", "../../x"])
    assert result.exit_code == 2


def test_missing_credential(runner, cli_env, build_dir, monkeypatch):
    monkeypatch.setenv("PINATA_JWT", "")
    result = runner.invoke(main, ["deploy", "dev", str(build_dir), "site", "20240101T000000Z"])
    assert result.exit_code == 1
    assert "PINATA_JWT" in result.stderr


def test_missing_build_dir(runner, cli_env, tmp_path):
    result = runner.invoke(main, ["deploy", "dev", str(tmp_path / "nope"), "site", "20240101T000000Z"])
    assert result.exit_code == 1
    assert not cli_env.exists()


def test_deploy_with_helper(runner, cli_env, build_dir, tmp_path, make_executable, monkeypatch):
    helper = make_executable(tmp_path / "upload.sh", HELPER_OK)
    monkeypatch.setenv("UPLOAD_SCRIPT_PATH", str(helper))

    result = runner.invoke(
        main,
        ["deploy", "dev", str(build_dir), "site", "20240101T000000Z", "main", "abc123"],
    )

    assert result.exit_code == 0, result.stderr
    record = json.loads(result.stdout.strip().splitlines()[-1])
    assert record["ipfs_hash"] == "bafycli"
    assert record["branch"] == "main"
    assert (cli_env / "dev" / "deployment-20240101T000000Z.json").exists()
    assert "cli-secret-jwt" not in result.stderr


def test_deploy_helper_failure(runner, cli_env, build_dir, tmp_path, make_executable, monkeypatch):
    helper = make_executable(tmp_path / "upload.sh", HELPER_FORBIDDEN)
    monkeypatch.setenv("UPLOAD_SCRIPT_PATH", str(helper))

    result = runner.invoke(main, ["deploy", "dev", str(build_dir), "site", "20240101T000000Z"])

    assert result.exit_code == 1
    assert not (cli_env / "dev").exists()


def test_upload_rejects_empty_directory(runner, cli_env, tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()

    result = runner.invoke(main, ["upload", str(empty), "site-dev-1"])

    assert result.exit_code == 1
    assert result.stdout == ""
