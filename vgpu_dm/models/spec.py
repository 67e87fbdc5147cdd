"""Versioned (v1) configuration file holding named sets of vGPU configs.

Example::

    version: v1
    vgpu-configs:
      A100-4C:
        - devices: all
          vgpu-devices:
            "A100-4C": 10
      mixed:
        - device-filter: ["0x20B010DE"]
          devices: [0, 1]
          vgpu-devices:
            "A100-1-5C": 7
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vgpu_dm.exceptions import VGPUConfigError
from vgpu_dm.models.vgpu_config import VGPUConfig
from vgpu_dm.pci import DeviceID

VERSION = "v1"


class VGPUConfigSpec(BaseModel):
    """Desired vGPU devices for a set of GPUs."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    device_filter: Optional[Union[str, List[str]]] = Field(default=None, alias="device-filter")
    devices: Union[Literal["all"], List[int]]
    vgpu_devices: VGPUConfig = Field(alias="vgpu-devices")

    @field_validator("vgpu_devices", mode="after")
    @classmethod
    def validate_vgpu_devices(cls, v: VGPUConfig) -> VGPUConfig:
        v.assert_valid()
        return v

    def matches_device_filter(self, device_id: DeviceID) -> bool:
        """True if no filter is set or any filter entry names ``device_id``."""
        if isinstance(self.device_filter, str):
            device_filter = [self.device_filter] if self.device_filter else []
        else:
            device_filter = self.device_filter or []

        if not device_filter:
            return True

        for entry in device_filter:
            try:
                if DeviceID.from_string(entry) == device_id:
                    return True
            except ValueError:
                logger.warning(f"Ignoring malformed device-filter entry '{entry}'")
        return False

    def matches_all_devices(self) -> bool:
        return self.devices == "all"

    def matches_devices(self, index: int) -> bool:
        if isinstance(self.devices, list):
            return index in self.devices
        return self.matches_all_devices()


class Spec(BaseModel):
    """Top-level document: a version and named lists of ``VGPUConfigSpec``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    version: Optional[str] = None
    vgpu_configs: Dict[str, List[VGPUConfigSpec]] = Field(
        default_factory=dict, alias="vgpu-configs"
    )

    @model_validator(mode="before")
    @classmethod
    def require_version(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, dict) and data and "version" not in data:
            raise ValueError("unable to parse with missing 'version' field")
        return data

    @field_validator("version", mode="after")
    @classmethod
    def validate_version(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v != VERSION:
            raise ValueError(f"unknown version: {v}")
        return v

    @field_validator("vgpu_configs", mode="after")
    @classmethod
    def validate_vgpu_configs(
        cls, v: Dict[str, List[VGPUConfigSpec]]
    ) -> Dict[str, List[VGPUConfigSpec]]:
        # Only reached when the key is present; the default skips validation
        if not v:
            raise ValueError("at least one entry in 'vgpu-configs' is required")
        for name, specs in v.items():
            if not specs:
                raise ValueError(f"at least one entry in '{name}' is required")
        return v


def load_spec(text: str) -> Spec:
    """Parse and validate a YAML (or JSON) configuration document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise VGPUConfigError(f"unmarshal error: {e}") from e
    return Spec.model_validate(data)


def parse_config_file(config_file: str) -> Spec:
    """Read the configuration file; '-' reads it from stdin."""
    if config_file == "-":
        text = sys.stdin.read()
    else:
        try:
            text = Path(config_file).read_text()
        except OSError as e:
            raise VGPUConfigError(f"read error: {e}") from e
    return load_spec(text)


def select_vgpu_config(spec: Spec, selected_config: Optional[str]) -> tuple[str, List[VGPUConfigSpec]]:
    """Pick the named config; a lone config is selected when no name is given."""
    if not selected_config:
        if len(spec.vgpu_configs) > 1:
            raise VGPUConfigError(
                "missing required flag 'selected-config' when more than one config available"
            )
        if len(spec.vgpu_configs) == 1:
            selected_config = next(iter(spec.vgpu_configs))

    if selected_config not in spec.vgpu_configs:
        raise VGPUConfigError(f"selected vgpu-config not present: {selected_config}")

    return selected_config, spec.vgpu_configs[selected_config]
