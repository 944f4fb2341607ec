"""
Host port resolution for VM port forwards.

Explicit mappings must get exactly the requested host port. Lenient mappings
take the lowest free port at or above the requested one. Every assigned port
is recorded in the run's ``ClaimedPorts`` so later mappings, including those
of other VMs resolved in the same run, never reuse it.
"""

import socket
from typing import Callable, List, Optional, Sequence, Tuple

from .exceptions import PortConflictError, PortConflictReason
from .logging import logger
from .models import ClaimedPorts, PortMapping, ResolvedPortMapping

MAX_PORT = 65535

PortProbe = Callable[[int], bool]


class HostPortProbe:
    """Checks whether a TCP port can currently be bound on this host.

    A port counts as free only if it binds on every probe address, which
    catches listeners on the wildcard address as well as on loopback.
    """

    DEFAULT_ADDRESSES: Tuple[str, ...] = ("0.0.0.0", "127.0.0.1")

    def __init__(self, addresses: Optional[Sequence[str]] = None) -> None:
        self.addresses = tuple(addresses or self.DEFAULT_ADDRESSES)

    def __call__(self, port: int) -> bool:
        return self.is_free(port)

    def is_free(self, port: int) -> bool:
        for address in self.addresses:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                try:
                    sock.bind((address, port))
                except OSError as e:
                    logger.debug(
                        f"Host port {port} unavailable on {address}: {e}",
                        host_port=port,
                        address=address,
                    )
                    return False
        return True


class PortResolver:
    """Assigns concrete host ports to declared port mappings."""

    def __init__(self, probe: Optional[PortProbe] = None) -> None:
        self.probe: PortProbe = probe or HostPortProbe()

    def resolve(
        self,
        mappings: Sequence[PortMapping],
        claimed: ClaimedPorts,
        image_name: Optional[str] = None,
    ) -> List[ResolvedPortMapping]:
        """
        Resolve mappings in declared order.

        Args:
            mappings: Port mappings of one VM
            claimed: Ports already handed out in this run; updated in place
            image_name: VM the mappings belong to, named in errors and logs

        Returns:
            List[ResolvedPortMapping]: One entry per mapping, same order

        Raises:
            PortConflictError: If an explicit port is taken or a lenient scan
                runs past the end of the port range
        """
        resolved: List[ResolvedPortMapping] = []
        for mapping in mappings:
            try:
                if mapping.explicit:
                    port = self._claim_exact(mapping, claimed, image_name)
                else:
                    port = self._claim_from(mapping, claimed, image_name)
            except PortConflictError:
                claimed.release(entry.host_port_actual for entry in resolved)
                raise

            entry = ResolvedPortMapping(
                host_port_actual=port,
                vm_port=mapping.vm_port,
                requested_host_port=mapping.host_port,
                explicit=mapping.explicit,
            )
            if entry.reassigned:
                logger.info(
                    f"Forwarding host port {port} to guest port {mapping.vm_port} "
                    f"because {mapping.host_port} was unavailable",
                    image_name=image_name,
                    host_port=port,
                    requested_host_port=mapping.host_port,
                    vm_port=mapping.vm_port,
                )
            resolved.append(entry)
        return resolved

    def _claim_exact(
        self, mapping: PortMapping, claimed: ClaimedPorts, image_name: Optional[str]
    ) -> int:
        if not claimed.claim(mapping.host_port, self.probe):
            raise PortConflictError(
                mapping.host_port,
                mapping.vm_port,
                PortConflictReason.EXPLICIT_UNAVAILABLE,
                image_name=image_name,
            )
        return mapping.host_port

    def _claim_from(
        self, mapping: PortMapping, claimed: ClaimedPorts, image_name: Optional[str]
    ) -> int:
        for port in range(mapping.host_port, MAX_PORT + 1):
            if claimed.claim(port, self.probe):
                return port
        raise PortConflictError(
            mapping.host_port,
            mapping.vm_port,
            PortConflictReason.RANGE_EXHAUSTED,
            image_name=image_name,
        )
