"""
Custom exceptions for VM launch resolution.

This module defines all custom exceptions used throughout vm-manager.
"""

from enum import Enum
from typing import List, Optional


class PortConflictReason(Enum):
    """Why a host port could not be assigned."""

    EXPLICIT_UNAVAILABLE = "explicit_unavailable"
    RANGE_EXHAUSTED = "range_exhausted"


class VMManagerError(Exception):
    """Base exception for vm-manager operations."""

    def __init__(self, message: str, error_code: int = 2000) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class ConfigurationError(VMManagerError):
    """Configuration file errors that abort the whole run."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code=2001)


class ConfigValidationError(VMManagerError):
    """Malformed VM, port mapping or option declaration."""

    def __init__(self, message: str, image_name: Optional[str] = None) -> None:
        prefix = f"VM '{image_name}': " if image_name else ""
        super().__init__(f"{prefix}{message}", error_code=2002)
        self.image_name = image_name


class PortConflictError(VMManagerError):
    """A host port could not be bound for a port mapping."""

    def __init__(
        self,
        requested: int,
        vm_port: int,
        reason: PortConflictReason,
        image_name: Optional[str] = None,
    ) -> None:
        if reason is PortConflictReason.EXPLICIT_UNAVAILABLE:
            detail = f"explicit host port {requested} is unavailable"
        else:
            detail = f"no free host port in range {requested}-65535"
        prefix = f"VM '{image_name}': " if image_name else ""
        super().__init__(
            f"{prefix}Port conflict for mapping host {requested} -> guest {vm_port}: {detail}",
            error_code=2003,
        )
        self.image_name = image_name
        self.requested = requested
        self.vm_port = vm_port
        self.reason = reason


class MissingNicModelError(VMManagerError):
    """No NIC model is available for a synthesized -nic directive."""

    def __init__(self, image_name: str) -> None:
        super().__init__(
            f"VM '{image_name}' has port mappings but no '-nic' option is available "
            "from the VM or global options",
            error_code=2004,
        )
        self.image_name = image_name


class ValidationError(VMManagerError):
    """Launch plan validation errors."""

    def __init__(self, message: str, validation_type: str = "general") -> None:
        super().__init__(
            f"Validation error ({validation_type}): {message}", error_code=2005
        )
        self.validation_type = validation_type


class ImageNotFoundError(VMManagerError):
    """Image name did not resolve to exactly one disk image."""

    def __init__(
        self, image_name: str, directory: str, candidates: Optional[List[str]] = None
    ) -> None:
        self.candidates = list(candidates or [])
        if self.candidates:
            message = (
                f"Image name '{image_name}' is ambiguous in '{directory}': "
                f"matches {', '.join(self.candidates)}"
            )
        else:
            message = f"Could not find an image matching '{image_name}' in '{directory}'"
        super().__init__(message, error_code=2006)
        self.image_name = image_name
        self.directory = directory


class LaunchError(VMManagerError):
    """The hypervisor process could not be started."""

    def __init__(self, message: str, image_name: str, returncode: Optional[int] = None) -> None:
        super().__init__(
            f"Failed to launch VM '{image_name}': {message}", error_code=2007
        )
        self.image_name = image_name
        self.returncode = returncode
