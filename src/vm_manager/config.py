"""
Configuration management for vm-manager.

This module loads the YAML configuration file, validates it with Pydantic and
converts it into the run configuration consumed by the launch plan builder.
"""

import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)

from .exceptions import ConfigurationError, ConfigValidationError
from .logging import logger
from .models import (
    NIC_KIND,
    GlobalConfig,
    PortMapping,
    QemuOption,
    RunConfig,
    VmConfig,
    VmFailure,
)

DEFAULT_CONFIG_FILE = "~/.vm-manager/config.yml"
DEFAULT_IMAGES_DIRECTORY = "~/.vm-manager/disk-images"


class UniqueKeySafeLoader(yaml.SafeLoader):
    """SafeLoader that refuses mappings with repeated keys.

    Plain ``yaml.safe_load`` keeps the last value of a repeated key, which
    would silently drop half of a port mapping declared twice.
    """

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> Dict[Any, Any]:
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key '{key}'",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _empty_if_none(value: Any) -> Any:
    # "options:" with nothing under it loads as None
    return [] if value is None else value


class OptionEntry(BaseModel):
    """One ``- option: ...`` entry."""

    model_config = ConfigDict(extra="forbid")

    option: str

    @field_validator("option")
    @classmethod
    def validate_option(cls, v: str) -> str:
        v = v.replace("\t", " ").strip()
        if not v:
            raise ValueError("option must not be empty")
        if not v.startswith("-"):
            raise ValueError(f"option '{v}' must start with a '-' flag")
        try:
            shlex.split(v)
        except ValueError as e:
            raise ValueError(f"option '{v}' cannot be split into arguments: {e}")
        return v


class PortMappingEntry(BaseModel):
    """One host-to-guest port mapping; every field is required."""

    model_config = ConfigDict(extra="forbid")

    host_port: int = Field(ge=1, le=65535, description="Host port to forward from")
    vm_port: int = Field(ge=1, le=65535, description="Guest port to forward to")
    explicit: bool = Field(description="Fail instead of picking the next free port")


class VmEntry(BaseModel):
    """Launch profile of one VM as written in the configuration file."""

    model_config = ConfigDict(extra="forbid")

    image_name: str = Field(min_length=1)
    port_mappings: List[PortMappingEntry] = Field(default_factory=list)
    options: List[OptionEntry] = Field(default_factory=list)
    use_global_options: bool
    daemonize: bool

    @field_validator("port_mappings", "options", mode="before")
    @classmethod
    def allow_empty_list(cls, v: Any) -> Any:
        return _empty_if_none(v)

    @field_validator("image_name")
    @classmethod
    def validate_image_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("image_name must not be blank")
        return v


class ConfigFile(BaseModel):
    """Top-level structure of the configuration file.

    VM entries are kept raw here, mappings or not, and validated one by
    one so a single malformed VM does not prevent the others from being
    resolved.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    base_images_directory: str = DEFAULT_IMAGES_DIRECTORY
    global_options: List[OptionEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("global_options", "global_qemu_options"),
    )
    vms: List[Any] = Field(default_factory=list)

    @field_validator("global_options", "vms", mode="before")
    @classmethod
    def allow_empty_list(cls, v: Any) -> Any:
        return _empty_if_none(v)

    @field_validator("base_images_directory", mode="before")
    @classmethod
    def default_images_directory(cls, v: Any) -> Any:
        return DEFAULT_IMAGES_DIRECTORY if v is None else v

    @field_validator("global_options")
    @classmethod
    def single_global_nic(cls, v: List[OptionEntry]) -> List[OptionEntry]:
        nics = [entry for entry in v if QemuOption.parse(entry.option).kind == NIC_KIND]
        if len(nics) > 1:
            raise ValueError(f"at most one '{NIC_KIND}' option is allowed in global options")
        return v


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


class ConfigLoader:
    """Loads and validates configuration."""

    def __init__(self) -> None:
        self.logger = logger

    def default_config_path(self) -> str:
        return os.getenv("VM_MANAGER_CONFIG") or DEFAULT_CONFIG_FILE

    def load_config(self, config_path: Optional[str] = None) -> ConfigFile:
        """
        Load the configuration file and apply environment overrides.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file
        3. Default values

        Args:
            config_path: Path to configuration file. If None, uses
                ``VM_MANAGER_CONFIG`` or ``~/.vm-manager/config.yml``.

        Returns:
            ConfigFile: Validated top-level configuration

        Raises:
            ConfigurationError: If the file is missing, unparsable or has an
                invalid top-level structure
        """
        path = os.path.expanduser(config_path or self.default_config_path())
        self.logger.debug(f"Loading configuration from {path}", path=path)

        config_data = self._load_data_from_file(path)
        config_data = self._apply_env_overrides(config_data)

        try:
            return ConfigFile.model_validate(config_data)
        except PydanticValidationError as e:
            self.logger.error(f"Invalid configuration in {path}: {e}", path=path)
            raise ConfigurationError(f"Invalid configuration in {path}: {_format_errors(e)}")

    def load_run_config(self, config_path: Optional[str] = None) -> RunConfig:
        return self.to_run_config(self.load_config(config_path))

    def to_run_config(self, config: ConfigFile) -> RunConfig:
        """Convert a validated file into domain objects, rejecting bad VMs individually."""
        global_config = GlobalConfig(
            base_images_directory=Path(config.base_images_directory).expanduser(),
            global_options=tuple(QemuOption.parse(entry.option) for entry in config.global_options),
        )

        run_config = RunConfig(global_config=global_config)
        for index, raw_vm in enumerate(config.vms):
            try:
                run_config.vms.append(self.parse_vm(raw_vm))
            except ConfigValidationError as e:
                image_name = self._vm_label(raw_vm, index)
                self.logger.error(
                    f"Rejected VM configuration '{image_name}': {e.message}",
                    image_name=image_name,
                )
                run_config.rejected.append(VmFailure(image_name=image_name, error=e))
        return run_config

    def parse_vm(self, raw_vm: Any) -> VmConfig:
        """
        Validate a single VM entry.

        Raises:
            ConfigValidationError: If any field is missing, repeated, unknown
                or out of range
        """
        image_name = raw_vm.get("image_name") if isinstance(raw_vm, dict) else None
        try:
            entry = VmEntry.model_validate(raw_vm)
        except PydanticValidationError as e:
            raise ConfigValidationError(_format_errors(e), image_name=image_name)

        options = tuple(QemuOption.parse(option.option) for option in entry.options)
        return VmConfig(
            image_name=entry.image_name,
            port_mappings=tuple(
                PortMapping(
                    host_port=mapping.host_port,
                    vm_port=mapping.vm_port,
                    explicit=mapping.explicit,
                )
                for mapping in entry.port_mappings
            ),
            options=options,
            use_global_options=entry.use_global_options,
            daemonize=entry.daemonize,
        )

    @staticmethod
    def _vm_label(raw_vm: Any, index: int) -> str:
        if isinstance(raw_vm, dict) and raw_vm.get("image_name"):
            return str(raw_vm["image_name"])
        return f"vms[{index}]"

    def _apply_env_overrides(self, config_data: dict) -> dict:
        """Apply environment variable overrides to config data."""
        env_mappings = {
            "VM_MANAGER_IMAGES_DIR": "base_images_directory",
        }

        for env_var, config_key in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                config_data[config_key] = env_value
                self.logger.debug(f"Applied environment override: {env_var}={env_value}")

        return config_data

    def _load_data_from_file(self, path: str) -> dict:
        """Load configuration data from a specific file."""
        try:
            with open(path, "r") as f:
                data = yaml.load(f, Loader=UniqueKeySafeLoader)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            self.logger.error(
                f"Failed to parse configuration file {path}: {e}",
                path=path,
            )
            raise ConfigurationError(f"Failed to parse configuration file {path}: {e}")
        except OSError as e:
            self.logger.error(
                f"Failed to load configuration from {path}: {e}",
                path=path,
                exc_info=True,
            )
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}")

        if data is None:
            # Empty file, return empty dict
            return {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration format in {path}")

        return data


# Global config loader
config_loader = ConfigLoader()
