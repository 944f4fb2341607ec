"""
Synthesis of the single ``-nic`` directive of a VM.

QEMU accepts one ``-nic`` directive per argument set in this tool's model, so
port forwards are folded into it as ``hostfwd`` clauses rather than emitted
as extra network options. A global ``-nic`` default reaches this module
through the merged options, so only the VM-less fallback is handled here.
"""

from typing import List, Optional, Sequence

from .exceptions import MissingNicModelError
from .logging import logger
from .models import NIC_KIND, QemuOption, ResolvedPortMapping

# User-mode networking with a virtio card
FALLBACK_NIC = "user,model=virtio"


def forwarding_clauses(resolved_ports: Sequence[ResolvedPortMapping]) -> str:
    return ",".join(mapping.hostfwd() for mapping in resolved_ports)


def append_clauses(value: str, clauses: str) -> str:
    if not value:
        return clauses
    return f"{value},{clauses}"


class NicSynthesizer:
    """Builds the final NIC directive from options and resolved ports.

    Args:
        fallback_nic: NIC value used when ports must be forwarded but no
            ``-nic`` option survived merging. ``None`` makes that situation
            an error.
    """

    def __init__(self, fallback_nic: Optional[str] = FALLBACK_NIC) -> None:
        self.fallback_nic = fallback_nic

    def synthesize(
        self,
        merged_options: Sequence[QemuOption],
        resolved_ports: Sequence[ResolvedPortMapping],
        image_name: str = "",
    ) -> List[QemuOption]:
        """
        Fold port forwards into the NIC directive.

        Args:
            merged_options: Output of the option merger
            resolved_ports: Resolved port mappings of the VM
            image_name: VM identifier for logs and errors

        Returns:
            List[QemuOption]: Options with at most one ``-nic``

        Raises:
            MissingNicModelError: If a NIC must be synthesized and no fallback
                is configured
        """
        options = list(merged_options)
        if not resolved_ports:
            return options

        clauses = forwarding_clauses(resolved_ports)
        for index, option in enumerate(options):
            if option.kind == NIC_KIND:
                options[index] = option.with_value(append_clauses(option.value, clauses))
                return options

        if self.fallback_nic is None:
            raise MissingNicModelError(image_name)

        logger.warning(
            f"No '-nic' option configured for '{image_name}', using '{self.fallback_nic}'",
            image_name=image_name,
            nic=self.fallback_nic,
        )
        options.append(
            QemuOption(kind=NIC_KIND, value=append_clauses(self.fallback_nic, clauses))
        )
        return options
