"""vm-manager - Launch QEMU virtual machines from declarative launch profiles."""

__version__ = "0.1.0"
__description__ = "QEMU launch profile resolver"

# Import main classes for easy access
from .client import VMManager
from .models import (
    ClaimedPorts,
    GlobalConfig,
    LaunchPlan,
    LaunchResult,
    PortMapping,
    QemuOption,
    ResolutionReport,
    ResolvedPortMapping,
    RunConfig,
    VmConfig,
    VmFailure,
)
from .exceptions import (
    VMManagerError,
    ConfigurationError,
    ConfigValidationError,
    PortConflictError,
    PortConflictReason,
    MissingNicModelError,
    ValidationError,
    ImageNotFoundError,
    LaunchError,
)
from .plan import LaunchPlanBuilder
from .ports import HostPortProbe, PortResolver
from .options import OptionMerger
from .nic import NicSynthesizer

__all__ = [
    "__version__",
    "__description__",
    "VMManager",
    "ClaimedPorts",
    "GlobalConfig",
    "LaunchPlan",
    "LaunchResult",
    "PortMapping",
    "QemuOption",
    "ResolutionReport",
    "ResolvedPortMapping",
    "RunConfig",
    "VmConfig",
    "VmFailure",
    "VMManagerError",
    "ConfigurationError",
    "ConfigValidationError",
    "PortConflictError",
    "PortConflictReason",
    "MissingNicModelError",
    "ValidationError",
    "ImageNotFoundError",
    "LaunchError",
    "LaunchPlanBuilder",
    "HostPortProbe",
    "PortResolver",
    "OptionMerger",
    "NicSynthesizer",
]
