"""Unit tests for the VMManager client."""

from unittest.mock import MagicMock, patch

import pytest
import yaml

from vm_manager.client import AD_HOC_OPTIONS, DEFAULT_HTTPS_PORT, DEFAULT_SSH_PORT, VMManager
from vm_manager.exceptions import (
    ConfigurationError,
    ConfigValidationError,
    ImageNotFoundError,
    MissingNicModelError,
    PortConflictError,
)
from vm_manager.models import PortMapping, QemuOption


def host_ports(plan):
    return {mapping.host_port_actual for mapping in plan.resolved_port_mappings}


@pytest.fixture
def manager(sample_config_file, fake_probe):
    return VMManager(config_path=str(sample_config_file), probe=fake_probe)


class TestVMManagerConfig:
    """Test configuration loading through the client."""

    def test_run_config_loaded_once(self, manager):
        """Test the configuration is loaded lazily and cached."""
        assert manager.run_config is manager.run_config
        assert [vm.image_name for vm in manager.run_config.vms] == ["debian-12", "alpine"]

    def test_missing_config(self, tmp_path):
        """Test a missing file surfaces as ConfigurationError on first use."""
        manager = VMManager(config_path=str(tmp_path / "missing.yml"))
        with pytest.raises(ConfigurationError):
            manager.list_images()

    def test_list_images(self, manager):
        """Test images come from the configured directory."""
        assert manager.list_images() == ["alpine", "debian-12", "debian-12-dev"]
        assert manager.list_backup_images() == ["alpine-2024"]


class TestVMManagerPlan:
    """Test VMManager.plan."""

    def test_plan_all(self, manager):
        """Test both configured VMs resolve with disjoint ports."""
        report = manager.plan()

        assert report.success
        assert host_ports(report.plan_for("debian-12")) == {5555, 8081}
        assert host_ports(report.plan_for("alpine")) == {5556, 8082}

    def test_plan_filtered(self, manager):
        """Test a filter only resolves matching VMs."""
        report = manager.plan(image_filter="alp")

        assert [plan.image_name for plan in report.plans] == ["alpine"]
        assert host_ports(report.plans[0]) == {5555, 8081}

    def test_plan_uses_merged_options(self, manager):
        """Test global options are merged and the global NIC extended."""
        plan = manager.plan().plan_for("debian-12")

        assert plan.option_strings() == [
            "-enable-kvm",
            "-nic user,model=virtio-net-pci,hostfwd=tcp::5555-:22,hostfwd=tcp::8081-:443",
            "-m 4G",
        ]

    def test_plan_reports_rejected(self, tmp_path, sample_config_data, fake_probe):
        """Test VMs rejected at load time are listed as failures."""
        sample_config_data["vms"].append({"image_name": "broken", "daemonize": True})
        path = tmp_path / "broken.yml"
        path.write_text(yaml.safe_dump(sample_config_data))

        report = VMManager(config_path=str(path), probe=fake_probe).plan()

        assert len(report.plans) == 2
        assert [failure.image_name for failure in report.failures] == ["broken"]


class TestVMManagerProfile:
    """Test VMManager.profile_for."""

    def test_configured_profile(self, manager):
        """Test a configured VM is found by substring."""
        vm = manager.profile_for("alp")
        assert vm.image_name == "alpine"
        assert vm.daemonize is False

    def test_foreground_overrides_configured(self, manager):
        """Test --foreground turns off daemonizing."""
        assert manager.profile_for("debian-12", foreground=True).daemonize is False

    def test_ad_hoc_profile(self, manager):
        """Test an unconfigured image gets lenient SSH and HTTPS forwards."""
        vm = manager.profile_for("debian-12-dev")

        assert vm.port_mappings == (
            PortMapping(DEFAULT_SSH_PORT, 22, False),
            PortMapping(DEFAULT_HTTPS_PORT, 443, False),
        )
        assert vm.use_global_options is True
        assert vm.daemonize is True
        assert [o.text for o in vm.options] == [
            "-smp 4", "-accel kvm", "-accel tcg", "-cpu host", "-vnc none"
        ]

    def test_ad_hoc_options_without_globals(self, tmp_path, images_dir):
        """Test every ad-hoc default applies when no global options exist."""
        path = tmp_path / "bare.yml"
        path.write_text(yaml.safe_dump({"base_images_directory": str(images_dir)}))

        vm = VMManager(config_path=str(path)).profile_for("alpine")

        assert vm.options == AD_HOC_OPTIONS
        assert QemuOption("-nic", "user,model=virtio") in vm.options

    def test_ad_hoc_explicit_ports(self, manager):
        """Test ports given by the operator become explicit."""
        vm = manager.profile_for("debian-12-dev", ssh_port=2222, foreground=True)

        assert vm.port_mappings[0] == PortMapping(2222, 22, True)
        assert vm.port_mappings[1] == PortMapping(DEFAULT_HTTPS_PORT, 443, False)
        assert vm.daemonize is False

    def test_rejected_profile_raises(self, tmp_path, sample_config_data):
        """Test starting a VM whose entry was rejected reports why."""
        sample_config_data["vms"].append({"image_name": "fedora", "daemonize": True})
        path = tmp_path / "broken.yml"
        path.write_text(yaml.safe_dump(sample_config_data))

        with pytest.raises(ConfigValidationError, match="VM 'fedora'"):
            VMManager(config_path=str(path)).profile_for("fedora")


class TestVMManagerStart:
    """Test VMManager.start."""

    def test_dry_run(self, manager, images_dir):
        """Test a dry run resolves the plan and builds the command."""
        with patch("vm_manager.runner.subprocess.run") as mock_run:
            result = manager.start("alpine", dry_run=True)

        mock_run.assert_not_called()
        assert result.dry_run is True
        assert result.image_path == images_dir / "alpine.img"
        assert result.command[:4] == [
            "qemu-system-x86_64",
            "-nographic",
            "-drive",
            f"file={images_dir / 'alpine.img'}",
        ]

    def test_launch(self, manager):
        """Test a launch runs QEMU once."""
        with patch("vm_manager.runner.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
            result = manager.start("debian-12")

        mock_run.assert_called_once()
        assert result.command[0] == "nohup"
        assert host_ports(result.plan) == {5555, 8081}

    def test_unknown_image(self, manager):
        """Test an image that does not exist is reported."""
        with pytest.raises(ImageNotFoundError):
            manager.start("fedora", dry_run=True)

    def test_ambiguous_image(self, manager):
        """Test an ambiguous name is reported with candidates."""
        with pytest.raises(ImageNotFoundError) as exc_info:
            manager.start("debian", dry_run=True)
        assert exc_info.value.candidates == ["debian-12", "debian-12-dev"]

    def test_explicit_port_conflict(self, manager, fake_probe):
        """Test a busy explicit port aborts the start."""
        fake_probe.busy.add(2222)
        with pytest.raises(PortConflictError) as exc_info:
            manager.start("debian-12-dev", ssh_port=2222, dry_run=True)
        assert exc_info.value.image_name == "debian-12-dev"

    def test_strict_nic(self, tmp_path, images_dir, fake_probe):
        """Test strict mode refuses to invent a NIC."""
        path = tmp_path / "strict.yml"
        config = {
            "base_images_directory": str(images_dir),
            "vms": [
                {
                    "image_name": "alpine",
                    "port_mappings": [{"host_port": 2222, "vm_port": 22, "explicit": True}],
                    "options": [],
                    "use_global_options": False,
                    "daemonize": True,
                }
            ],
        }
        path.write_text(yaml.safe_dump(config))
        manager = VMManager(config_path=str(path), probe=fake_probe, fallback_nic=None)

        with pytest.raises(MissingNicModelError):
            manager.start("alpine", dry_run=True)


class TestVMManagerAdHocCommand:
    """Test the command line of an image started without a VM entry."""

    def test_defaults_without_globals(self, tmp_path, images_dir, fake_probe):
        """Test the ad-hoc defaults and a virtio user NIC reach QEMU."""
        path = tmp_path / "bare.yml"
        path.write_text(yaml.safe_dump({"base_images_directory": str(images_dir)}))
        manager = VMManager(config_path=str(path), probe=fake_probe)

        result = manager.start("alpine", dry_run=True)

        assert result.command[5:] == [
            "-m", "8G",
            "-smp", "4",
            "-accel", "kvm",
            "-accel", "tcg",
            "-cpu", "host",
            "-vnc", "none",
            "-nic", "user,model=virtio,hostfwd=tcp::5555-:22,hostfwd=tcp::8081-:443",
        ]

    def test_global_kinds_override_defaults(self, manager, images_dir):
        """Test global -m and -nic replace the ad-hoc ones."""
        result = manager.start("debian-12-dev", dry_run=True)

        assert result.command[5:] == [
            "-m", "2G",
            "-enable-kvm",
            "-nic", "user,model=virtio-net-pci,hostfwd=tcp::5555-:22,hostfwd=tcp::8081-:443",
            "-smp", "4",
            "-accel", "kvm",
            "-accel", "tcg",
            "-cpu", "host",
            "-vnc", "none",
        ]
        assert "8G" not in result.command
