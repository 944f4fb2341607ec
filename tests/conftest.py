"""Test configuration and fixtures for vm-manager."""

import pytest
import sys
import yaml
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakePortProbe:
    """Port probe backed by a set of ports that are taken on the host."""

    def __init__(self, busy=()):
        self.busy = set(busy)
        self.calls = []

    def __call__(self, port):
        self.calls.append(port)
        return port not in self.busy


@pytest.fixture
def fake_probe():
    """Probe reporting every port as free until ports are added to ``busy``."""
    return FakePortProbe()


@pytest.fixture
def images_dir(tmp_path):
    """Images directory with a few disk images and a backup."""
    directory = tmp_path / "disk-images"
    directory.mkdir()
    for name in ("debian-12.qcow2", "debian-12-dev.qcow2", "alpine.img", "nohup.out"):
        (directory / name).write_bytes(b"")
    backups = directory / "backups"
    backups.mkdir()
    (backups / "alpine-2024.img").write_bytes(b"")
    return directory


@pytest.fixture
def sample_config_data(images_dir):
    """Configuration with two VMs asking for the same lenient host ports."""
    return {
        "base_images_directory": str(images_dir),
        "global_options": [
            {"option": "-m 2G"},
            {"option": "-enable-kvm"},
            {"option": "-nic user,model=virtio-net-pci"},
        ],
        "vms": [
            {
                "image_name": "debian-12",
                "port_mappings": [
                    {"host_port": 5555, "vm_port": 22, "explicit": False},
                    {"host_port": 8081, "vm_port": 443, "explicit": False},
                ],
                "options": [{"option": "-m 4G"}],
                "use_global_options": True,
                "daemonize": True,
            },
            {
                "image_name": "alpine",
                "port_mappings": [
                    {"host_port": 5555, "vm_port": 22, "explicit": False},
                    {"host_port": 8081, "vm_port": 443, "explicit": False},
                ],
                "options": [],
                "use_global_options": True,
                "daemonize": False,
            },
        ],
    }


@pytest.fixture
def sample_config_file(tmp_path, sample_config_data):
    """The sample configuration written to a YAML file."""
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(sample_config_data, sort_keys=False))
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's vm-manager environment out of the tests."""
    for name in ("VM_MANAGER_CONFIG", "VM_MANAGER_IMAGES_DIR", "VM_MANAGER_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
