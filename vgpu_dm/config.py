"""
Configuration management for the vGPU device manager using Pydantic v2.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeviceManagerConfig(BaseSettings):
    """Runtime settings: where sysfs lives and how long to wait for VFs."""

    # Host sysfs mount, e.g. /host/sys when running in a container
    sysfs_root: Path = Field(default=Path("/sys"), alias="VGPU_DM_SYSFS_ROOT")

    # VFIO mode probe
    vfio_settle_timeout: float = Field(
        default=10.0, alias="VGPU_DM_VFIO_SETTLE_TIMEOUT", ge=0
    )
    vfio_settle_max_interval: float = Field(
        default=2.0, alias="VGPU_DM_VFIO_SETTLE_MAX_INTERVAL", gt=0
    )

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra='ignore'
    )

    @field_validator("sysfs_root", mode="after")
    @classmethod
    def validate_sysfs_root(cls, v: Path) -> Path:
        """Validate that the sysfs mount exists."""
        if not v.exists():
            raise ValueError(f"Path does not exist: {v}")
        return v

    @property
    def pci_devices_root(self) -> Path:
        return self.sysfs_root / "bus" / "pci" / "devices"

    @property
    def mdev_parents_root(self) -> Path:
        return self.sysfs_root / "class" / "mdev_bus"

    @property
    def mdev_devices_root(self) -> Path:
        return self.sysfs_root / "bus" / "mdev" / "devices"


def load_config(**kwargs) -> DeviceManagerConfig:
    """Load configuration with environment variables and optional overrides."""
    return DeviceManagerConfig(**kwargs)
