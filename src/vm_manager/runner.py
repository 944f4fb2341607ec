"""
QEMU command construction and process launch.

This module turns a resolved launch plan into a ``qemu-system`` argument
vector and starts it.
"""

import shlex
import subprocess
from pathlib import Path
from typing import List

from .exceptions import LaunchError
from .logging import logger
from .models import LaunchPlan

DEFAULT_QEMU_BINARY = "qemu-system-x86_64"

# Controlled by the plan's daemonize flag rather than by free-form options
MODE_KINDS = {"-daemonize", "-nographic"}


class QemuRunner:
    """
    Builds and runs hypervisor command lines.

    Args:
        qemu_binary: Hypervisor executable to run
    """

    def __init__(self, qemu_binary: str = DEFAULT_QEMU_BINARY) -> None:
        self.qemu_binary = qemu_binary

    def build_command(self, plan: LaunchPlan, image_path: Path) -> List[str]:
        """
        Return the full argument vector for ``plan`` booting ``image_path``.

        Raises:
            LaunchError: If an option has unbalanced quotes
        """
        command: List[str] = []
        if plan.daemonize:
            command.append("nohup")
        command.extend(
            [
                self.qemu_binary,
                "-daemonize" if plan.daemonize else "-nographic",
                "-drive",
                f"file={image_path}",
            ]
        )

        for option in plan.options:
            if option.kind in MODE_KINDS:
                continue
            try:
                command.extend(shlex.split(option.text))
            except ValueError as e:
                raise LaunchError(f"cannot split option '{option.text}': {e}", plan.image_name)
        return command

    def launch(
        self, plan: LaunchPlan, image_path: Path, dry_run: bool = False
    ) -> List[str]:
        """
        Start the VM described by ``plan``.

        Args:
            plan: Resolved launch plan
            image_path: Disk image to boot
            dry_run: Only build and log the command

        Returns:
            List[str]: The command that was (or would have been) run

        Raises:
            LaunchError: If the process cannot be started or exits non-zero
        """
        command = self.build_command(plan, image_path)
        logger.info(
            f"{'Would launch' if dry_run else 'Launching'} VM '{plan.image_name}'",
            image_name=plan.image_name,
            command=command,
            dry_run=dry_run,
        )
        for mapping in plan.resolved_port_mappings:
            logger.info(
                f"VM '{plan.image_name}' forwarding {mapping.describe()}",
                image_name=plan.image_name,
                host_port=mapping.host_port_actual,
                vm_port=mapping.vm_port,
            )
        if dry_run:
            return command

        try:
            # A foreground VM keeps the terminal for its serial console.
            result = subprocess.run(command, capture_output=plan.daemonize, text=True)
        except OSError as e:
            raise LaunchError(str(e), plan.image_name)

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise LaunchError(
                f"{self.qemu_binary} exited with status {result.returncode}"
                + (f": {detail}" if detail else ""),
                plan.image_name,
                returncode=result.returncode,
            )

        return command


def format_command(command: List[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)
