"""
Merging of global and per-VM hypervisor options.

An option's kind is its leading flag (``-m``, ``-nic``, ...). When a VM uses
the global options, every kind the VM declares replaces all global options
of that kind. The merged list holds the global-only options first, in their
declared order, followed by the VM's options in their declared order.
"""

from typing import List, Sequence

from .exceptions import ConfigValidationError
from .models import NIC_KIND, QemuOption


class OptionMerger:
    """Combines global defaults with VM-specific options."""

    def merge(
        self,
        global_options: Sequence[QemuOption],
        vm_options: Sequence[QemuOption],
        use_global: bool,
    ) -> List[QemuOption]:
        """
        Merge global and VM options.

        Args:
            global_options: Options from the global configuration
            vm_options: Options declared by the VM
            use_global: Whether the VM opted into the global options

        Returns:
            List[QemuOption]: The merged option list

        Raises:
            ConfigValidationError: If the VM declares more than one ``-nic``
        """
        nic_count = sum(1 for option in vm_options if option.kind == NIC_KIND)
        if nic_count > 1:
            raise ConfigValidationError(
                f"only one '{NIC_KIND}' option may be declared per VM (found {nic_count})"
            )

        if not use_global:
            return list(vm_options)

        overridden = {option.kind for option in vm_options}
        merged = [option for option in global_options if option.kind not in overridden]

        merged.extend(vm_options)
        return merged
