"""
Data models for VM launch resolution.

This module defines the data structures passed between the configuration
loader, the resolution engine and the launcher.
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Tuple

from .exceptions import VMManagerError

NIC_KIND = "-nic"


@dataclass(frozen=True)
class QemuOption:
    """A hypervisor option split into its flag and the remaining text.

    ``-nic user,model=virtio`` has kind ``-nic`` and value
    ``user,model=virtio``; ``-daemonize`` has an empty value.
    """

    kind: str
    value: str = ""

    @classmethod
    def parse(cls, raw: str) -> "QemuOption":
        text = raw.replace("\t", " ").strip()
        kind, _, value = text.partition(" ")
        return cls(kind=kind, value=value.strip())

    @property
    def text(self) -> str:
        return f"{self.kind} {self.value}" if self.value else self.kind

    def with_value(self, value: str) -> "QemuOption":
        return QemuOption(kind=self.kind, value=value)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class PortMapping:
    """A requested host-to-guest port forward."""

    host_port: int
    vm_port: int
    explicit: bool


@dataclass(frozen=True)
class ResolvedPortMapping:
    """A port forward with the host port actually assigned."""

    host_port_actual: int
    vm_port: int
    requested_host_port: int
    explicit: bool = False

    @property
    def reassigned(self) -> bool:
        return self.host_port_actual != self.requested_host_port

    def hostfwd(self) -> str:
        return f"hostfwd=tcp::{self.host_port_actual}-:{self.vm_port}"

    def describe(self) -> str:
        line = f"host port {self.host_port_actual} -> guest port {self.vm_port}"
        if self.reassigned:
            line += f" ({self.requested_host_port} requested, was unavailable)"
        return line


@dataclass(frozen=True)
class GlobalConfig:
    """Process-wide settings shared read-only by every VM in a run."""

    base_images_directory: Path
    global_options: Tuple[QemuOption, ...] = ()

    @property
    def backup_images_directory(self) -> Path:
        return self.base_images_directory / "backups"


@dataclass(frozen=True)
class VmConfig:
    """Launch profile for a single VM."""

    image_name: str
    port_mappings: Tuple[PortMapping, ...] = ()
    options: Tuple[QemuOption, ...] = ()
    use_global_options: bool = True
    daemonize: bool = True


@dataclass(frozen=True)
class LaunchPlan:
    """Fully resolved launch parameters for one VM."""

    image_name: str
    options: Tuple[QemuOption, ...]
    resolved_port_mappings: Tuple[ResolvedPortMapping, ...]
    daemonize: bool

    def option_strings(self) -> List[str]:
        return [option.text for option in self.options]

    def nic(self) -> Optional[QemuOption]:
        for option in self.options:
            if option.kind == NIC_KIND:
                return option
        return None


@dataclass
class VmFailure:
    """A VM that could not be resolved, and why."""

    image_name: str
    error: VMManagerError

    @property
    def message(self) -> str:
        return self.error.message


@dataclass
class RunConfig:
    """Everything a resolution run needs, as produced by the config loader."""

    global_config: GlobalConfig
    vms: List[VmConfig] = field(default_factory=list)
    rejected: List[VmFailure] = field(default_factory=list)


@dataclass
class ResolutionReport:
    """Aggregate result of resolving every VM in a run."""

    plans: List[LaunchPlan] = field(default_factory=list)
    failures: List[VmFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def plan_for(self, image_name: str) -> Optional[LaunchPlan]:
        for plan in self.plans:
            if plan.image_name == image_name:
                return plan
        return None


@dataclass
class LaunchResult:
    """Outcome of starting one VM."""

    plan: LaunchPlan
    image_path: Path
    command: List[str]
    dry_run: bool = False


class ClaimedPorts:
    """Host ports handed out during one resolution run.

    ``claim`` probes and records a port under a lock, so builds running on
    several threads never receive the same port.
    """

    def __init__(self, ports: Optional[Iterable[int]] = None) -> None:
        self._ports: Set[int] = set(ports or ())
        self._lock = threading.Lock()

    def __contains__(self, port: object) -> bool:
        with self._lock:
            return port in self._ports

    def __len__(self) -> int:
        with self._lock:
            return len(self._ports)

    def snapshot(self) -> Set[int]:
        with self._lock:
            return set(self._ports)

    def claim(self, port: int, is_free: Callable[[int], bool]) -> bool:
        """Record ``port`` if it is unclaimed and ``is_free`` reports it unbound."""
        with self._lock:
            if port in self._ports or not is_free(port):
                return False
            self._ports.add(port)
            return True

    def release(self, ports: Iterable[int]) -> None:
        with self._lock:
            self._ports.difference_update(ports)
