"""
Main client class for vm-manager.

This module implements the primary interface used by the CLI: loading the
configuration, resolving launch plans and starting VMs.
"""

import dataclasses
from typing import List, Optional

from .config import ConfigLoader, config_loader
from .exceptions import VMManagerError
from .images import ImageCatalog
from .logging import logger
from .models import (
    ClaimedPorts,
    LaunchResult,
    PortMapping,
    QemuOption,
    ResolutionReport,
    RunConfig,
    VmConfig,
)
from .nic import FALLBACK_NIC
from .plan import LaunchPlanBuilder
from .ports import PortProbe
from .runner import DEFAULT_QEMU_BINARY, QemuRunner

DEFAULT_SSH_PORT = 5555
DEFAULT_HTTPS_PORT = 8081

# Options of an image started without a VM entry; global options of the
# same kind take precedence.
AD_HOC_OPTIONS = tuple(
    QemuOption.parse(text)
    for text in (
        "-m 8G",
        "-smp 4",
        "-accel kvm",
        "-accel tcg",
        "-cpu host",
        "-vnc none",
        f"-nic {FALLBACK_NIC}",
    )
)


class VMManager:
    """
    Main client for resolving and launching VMs.

    Args:
        config_path (Optional[str]): Configuration file, default location if None
        probe (Optional[PortProbe]): Host port availability check
        fallback_nic (Optional[str]): NIC used when none is configured; None
            makes a missing NIC an error
        qemu_binary (str): Hypervisor executable
        loader (Optional[ConfigLoader]): Configuration loader

    Raises:
        ConfigurationError: When the configuration is first accessed and
            cannot be loaded
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        probe: Optional[PortProbe] = None,
        fallback_nic: Optional[str] = FALLBACK_NIC,
        qemu_binary: str = DEFAULT_QEMU_BINARY,
        loader: Optional[ConfigLoader] = None,
    ) -> None:
        self.config_path = config_path
        self.loader = loader or config_loader
        self.builder = LaunchPlanBuilder(probe=probe, fallback_nic=fallback_nic)
        self.runner = QemuRunner(qemu_binary)
        self._run_config: Optional[RunConfig] = None

    @property
    def run_config(self) -> RunConfig:
        if self._run_config is None:
            self._run_config = self.loader.load_run_config(self.config_path)
        return self._run_config

    @property
    def catalog(self) -> ImageCatalog:
        return ImageCatalog.from_config(self.run_config.global_config)

    def list_images(self) -> List[str]:
        return self.catalog.list_images()

    def list_backup_images(self) -> List[str]:
        return self.catalog.list_backup_images()

    def plan(
        self, image_filter: Optional[str] = None, max_workers: int = 1
    ) -> ResolutionReport:
        """
        Resolve launch plans for the configured VMs.

        Args:
            image_filter: Only resolve VMs whose image name contains this text
            max_workers: Number of VMs resolved concurrently

        Returns:
            ResolutionReport: Plans and per-VM failures
        """
        run_config = self.run_config
        if image_filter:
            run_config = RunConfig(
                global_config=run_config.global_config,
                vms=[vm for vm in run_config.vms if image_filter in vm.image_name],
                rejected=[f for f in run_config.rejected if image_filter in f.image_name],
            )
        return self.builder.build_all(run_config, max_workers=max_workers)

    def profile_for(
        self,
        image_name: str,
        ssh_port: Optional[int] = None,
        https_port: Optional[int] = None,
        foreground: bool = False,
    ) -> VmConfig:
        """
        Find the configured profile for an image, or build an ad-hoc one.

        Ports given on the command line only apply to ad-hoc profiles, where
        they become explicit mappings; otherwise the SSH and HTTPS defaults
        are mapped leniently. Ad-hoc profiles carry ``AD_HOC_OPTIONS`` minus
        any kind the global options already set.
        """
        for vm in self.run_config.vms:
            if image_name in vm.image_name:
                if foreground:
                    return dataclasses.replace(vm, daemonize=False)
                return vm

        for failure in self.run_config.rejected:
            if image_name in failure.image_name:
                raise failure.error

        global_kinds = {
            option.kind for option in self.run_config.global_config.global_options
        }
        logger.debug(
            f"No configuration for '{image_name}', using the default profile",
            image_name=image_name,
        )
        return VmConfig(
            image_name=image_name,
            port_mappings=(
                PortMapping(
                    host_port=ssh_port or DEFAULT_SSH_PORT,
                    vm_port=22,
                    explicit=ssh_port is not None,
                ),
                PortMapping(
                    host_port=https_port or DEFAULT_HTTPS_PORT,
                    vm_port=443,
                    explicit=https_port is not None,
                ),
            ),
            options=tuple(o for o in AD_HOC_OPTIONS if o.kind not in global_kinds),
            use_global_options=True,
            daemonize=not foreground,
        )

    def start(
        self,
        image_name: str,
        *,
        ssh_port: Optional[int] = None,
        https_port: Optional[int] = None,
        foreground: bool = False,
        dry_run: bool = False,
    ) -> LaunchResult:
        """
        Resolve and launch a single VM.

        Args:
            image_name: Image name or unique substring of one
            ssh_port: Explicit host port for guest port 22 (ad-hoc profile)
            https_port: Explicit host port for guest port 443 (ad-hoc profile)
            foreground: Run attached instead of daemonized
            dry_run: Resolve and build the command without running it

        Returns:
            LaunchResult: Plan, image and command

        Raises:
            ImageNotFoundError: If the image cannot be identified
            PortConflictError: If a host port cannot be assigned
            LaunchError: If QEMU fails to start
        """
        image_path = self.catalog.find_image(image_name)
        vm = self.profile_for(image_name, ssh_port, https_port, foreground)
        claimed = ClaimedPorts()
        try:
            plan = self.builder.build(self.run_config.global_config, vm, claimed)
        except VMManagerError as e:
            logger.error(
                f"Failed to resolve VM '{vm.image_name}': {e.message}",
                image_name=vm.image_name,
                error_code=e.error_code,
            )
            raise

        command = self.runner.launch(plan, image_path, dry_run=dry_run)
        return LaunchResult(plan=plan, image_path=image_path, command=command, dry_run=dry_run)
