import subprocess
import sys

import pytest
import yaml
from typer.testing import CliRunner

from k3sctl.cli import app

runner = CliRunner()


def run_cli_command(cmd):
    return subprocess.run([sys.executable, "-m", "k3sctl.cli"] + cmd.split(), capture_output=True, text=True)


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for var in ("K3SCTL_SSH_USER", "K3SCTL_SSH_KEY_PATH", "K3SCTL_SSH_PORT"):
        monkeypatch.delenv(var, raising=False)
    data = {
        "sizing": {
            "master_count": 1,
            "worker_count": 2,
            "master_vmid_start": 100,
            "worker_vmid_start": 110,
            "network": {"net4_prefix": "10.10.0.", "ip_host_base": 20},
        },
        "kubeconfig_out": str(tmp_path / "kube" / "config"),
        "orchestrator": {"retry": {"initial_delay_ms": 0}},
    }
    path = tmp_path / "k3sctl.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def test_help():
    result = run_cli_command("--help")
    assert "Usage" in result.stdout
    for command in ("create", "delete", "status", "plan", "validate"):
        assert command in result.stdout


def test_create_help():
    result = run_cli_command("create cluster --help")
    assert "--dry-run" in result.stdout
    assert "--kubeconfig-out" in result.stdout


def test_validate(config_file):
    result = runner.invoke(app, ["validate", "--config", str(config_file)])
    assert result.exit_code == 0
    assert "YAML schema validated" in result.stdout
    assert "Allocation valid" in result.stdout


def test_validate_rejects_bad_schema(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"sizing": {"master_count": 0, "network": {"net4_prefix": "10.0.0."}}}))

    result = runner.invoke(app, ["validate", "--config", str(path)])

    assert result.exit_code == 1
    assert "YAML validation error" in result.stdout


def test_validate_missing_file(tmp_path):
    result = runner.invoke(app, ["validate", "--config", str(tmp_path / "missing.yaml")])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_plan(config_file):
    result = runner.invoke(app, ["plan", "--config", str(config_file)])
    assert result.exit_code == 0
    assert "Bootstrap plan" in result.stdout


def test_create_dry_run(config_file, tmp_path):
    result = runner.invoke(app, ["create", "cluster", "--config", str(config_file), "--dry-run"])

    assert result.exit_code == 0
    assert "Cluster bootstrap complete" in result.stdout
    assert not (tmp_path / "kube" / "config").exists()


def test_delete_dry_run(config_file, tmp_path):
    kubeconfig = tmp_path / "kube" / "config"
    kubeconfig.parent.mkdir()
    kubeconfig.write_text("apiVersion: v1\n")

    result = runner.invoke(app, ["delete", "cluster", "--config", str(config_file), "--dry-run"])

    assert result.exit_code == 0
    assert "Would delete" in result.stdout
    assert "Cluster deletion complete" in result.stdout
    assert kubeconfig.exists()


def test_delete_cancelled_without_confirmation(config_file):
    result = runner.invoke(app, ["delete", "cluster", "--config", str(config_file)], input="n\n")
    assert result.exit_code == 0
    assert "Deletion cancelled" in result.stdout


def test_status_without_kubeconfig(config_file):
    result = runner.invoke(app, ["status", "cluster", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "Kubeconfig not found" in result.stdout
