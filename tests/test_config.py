"""Tests for configuration management."""

from pathlib import Path

import pytest

from cluster_healer.config import Settings
from cluster_healer.config.settings import DEFAULT_CNI_MANIFEST

IN_CLUSTER = Path("/var/run/secrets/kubernetes.io/serviceaccount/token").exists()


class TestSettings:
    """Tests for Settings class."""

    def test_settings_defaults(self):
        settings = Settings()

        assert settings.control_plane_ip == "10.10.0.30"
        assert settings.auto_fix is True
        assert settings.max_retries == 3
        assert settings.convergence_timeout_seconds == 300
        assert settings.convergence_interval_seconds == 10
        assert settings.cni_patterns == ["calico", "flannel", "weave", "cilium"]
        assert settings.cni_rescue_manifest == DEFAULT_CNI_MANIFEST
        assert settings.log_level == "INFO"

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("CONTROL_PLANE_IP", "192.168.1.10")
        monkeypatch.setenv("AUTO_FIX", "false")
        monkeypatch.setenv("MAX_RETRIES", "5")
        monkeypatch.setenv("CNI_RESCUE_MANIFEST", "")

        settings = Settings()

        assert settings.control_plane_ip == "192.168.1.10"
        assert settings.auto_fix is False
        assert settings.max_retries == 5
        assert not settings.cni_rescue_manifest

    def test_invalid_retry_count(self):
        with pytest.raises(Exception):  # pydantic ValidationError
            Settings(max_retries=0)

    def test_policies(self):
        settings = Settings(max_retries=4, retry_delay_seconds=2)

        assert settings.step_policy.max_attempts == 4
        assert settings.step_policy.delay_seconds == 2
        assert settings.convergence_policy.deadline_seconds == 300
        assert settings.convergence_policy.max_attempts == 31
        assert settings.reboot_policy.deadline_seconds == settings.reboot_timeout_seconds
        assert settings.settle_policy.deadline_seconds == settings.settle_seconds


class TestValidation:
    """Tests for credential path validation."""

    def test_missing_talosconfig(self, tmp_path):
        settings = Settings(talosconfig=tmp_path / "missing")

        with pytest.raises(FileNotFoundError):
            settings.validate_paths()

    @pytest.mark.skipif(IN_CLUSTER, reason="in-cluster credentials take precedence")
    def test_configured_kubeconfig(self, tmp_path):
        talosconfig = tmp_path / "talosconfig"
        talosconfig.write_text("context: test\n")
        kubeconfig = tmp_path / "kubeconfig"
        kubeconfig.write_text("apiVersion: v1\n")

        settings = Settings(talosconfig=talosconfig, kubeconfig=str(kubeconfig))
        settings.validate_all()

        assert settings.kubeconfig == str(kubeconfig)

    @pytest.mark.skipif(IN_CLUSTER, reason="in-cluster credentials take precedence")
    def test_no_kubeconfig_anywhere(self, tmp_path, monkeypatch):
        talosconfig = tmp_path / "talosconfig"
        talosconfig.write_text("context: test\n")
        monkeypatch.setattr(Path, "home", lambda: tmp_path)

        settings = Settings(talosconfig=talosconfig, kubeconfig=str(tmp_path / "nope"))

        with pytest.raises(FileNotFoundError):
            settings.validate_paths()

    def test_empty_control_plane_ip(self):
        with pytest.raises(ValueError):
            Settings(control_plane_ip="").validate_all()
