"""PCI device discovery for NVIDIA GPUs and their SR-IOV functions.

All functions are side-effect-free: they read sysfs and return device
snapshots without modifying system state. Nothing is cached; every call
re-reads the kernel's view so callers always see the current topology.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from vgpu_dm.config import DeviceManagerConfig
from vgpu_dm.exceptions import EnumerationError
from vgpu_dm.util import read_attribute, resolve_link_name

_NVIDIA_VENDOR = 0x10de

# PCI base class/subclass for display controllers
_PCI_CLASS_VGA = 0x0300
_PCI_CLASS_3D = 0x0302


class DeviceID(int):
    """PCI device/vendor pair packed as ``device << 16 | vendor``."""

    @classmethod
    def new(cls, device: int, vendor: int) -> "DeviceID":
        return cls((device << 16) | vendor)

    @classmethod
    def from_string(cls, value: str) -> "DeviceID":
        """Parse e.g. '0x20B010DE' (base is auto-detected)."""
        try:
            return cls(int(value.strip(), 0))
        except ValueError as e:
            raise ValueError(f"invalid device ID '{value}': {e}") from e

    @property
    def device(self) -> int:
        return int(self) >> 16

    @property
    def vendor(self) -> int:
        return int(self) & 0xFFFF

    def __str__(self) -> str:
        return f"0x{int(self):08X}"

    def __repr__(self) -> str:
        return f"DeviceID({self})"


@dataclass
class SriovInfo:
    """SR-IOV role of a device: PF (total/num VFs), VF (its PF), or neither."""

    physical_function: Optional["NvidiaPCIDevice"] = None
    total_vfs: int = 0
    num_vfs: int = 0

    def is_vf(self) -> bool:
        return self.physical_function is not None

    def is_pf(self) -> bool:
        return self.physical_function is None and self.total_vfs > 0


@dataclass
class NvidiaPCIDevice:
    """Snapshot of one NVIDIA PCI function as exposed under sysfs."""

    path: Path
    address: str
    vendor: int
    device: int
    class_code: int
    driver: Optional[str] = None
    sriov: SriovInfo = field(default_factory=SriovInfo)

    @property
    def device_id(self) -> DeviceID:
        return DeviceID.new(self.device, self.vendor)

    def is_gpu(self) -> bool:
        return (self.class_code >> 8) in (_PCI_CLASS_VGA, _PCI_CLASS_3D)

    def physical_function(self) -> "NvidiaPCIDevice":
        """Return the PF for a virtual function, otherwise the device itself."""
        if self.sriov.is_vf():
            return self.sriov.physical_function
        return self


def _read_hex(path: Path) -> int:
    return int(read_attribute(path), 16)


def _read_int(path: Path, default: int = 0) -> int:
    if not path.exists():
        return default
    return int(read_attribute(path))


def address_sort_key(address: str) -> int:
    """Numeric ordering for bus addresses, e.g. 0000:3b:00.4 -> 0x00003b0004."""
    return int(address.replace(':', '').replace('.', ''), 16)


class NvPci:
    """Enumerates NVIDIA PCI devices below ``<sysfs>/bus/pci/devices``."""

    def __init__(self, config: DeviceManagerConfig):
        self.config = config

    @property
    def devices_root(self) -> Path:
        return self.config.pci_devices_root

    def get_gpu_by_pci_bus_id(self, address: str) -> Optional[NvidiaPCIDevice]:
        """Return the NVIDIA device at ``address``, or None for other vendors."""
        device_path = self.devices_root / address
        try:
            vendor = _read_hex(device_path / 'vendor')
            if vendor != _NVIDIA_VENDOR:
                return None
            device = _read_hex(device_path / 'device')
            class_code = _read_hex(device_path / 'class')
        except (OSError, ValueError) as e:
            raise EnumerationError(f"unable to read PCI device {address}: {e}") from e

        driver = resolve_link_name(device_path / 'driver')

        return NvidiaPCIDevice(
            path=device_path,
            address=address,
            vendor=vendor,
            device=device,
            class_code=class_code,
            driver=driver,
            sriov=self._sriov_info(device_path),
        )

    def _sriov_info(self, device_path: Path) -> SriovInfo:
        physfn = device_path / 'physfn'
        if os.path.exists(physfn):
            pf_address = os.path.basename(os.path.realpath(physfn))
            pf = self.get_gpu_by_pci_bus_id(pf_address)
            if pf is None:
                raise EnumerationError(
                    f"physical function {pf_address} of {device_path.name} is not an NVIDIA device"
                )
            return SriovInfo(physical_function=pf)
        try:
            return SriovInfo(
                total_vfs=_read_int(device_path / 'sriov_totalvfs'),
                num_vfs=_read_int(device_path / 'sriov_numvfs'),
            )
        except (OSError, ValueError) as e:
            raise EnumerationError(f"unable to read SR-IOV info for {device_path.name}: {e}") from e

    def get_gpus(self) -> list[NvidiaPCIDevice]:
        """All NVIDIA GPUs that are not SR-IOV virtual functions, by bus address."""
        try:
            addresses = sorted(os.listdir(self.devices_root), key=address_sort_key)
        except (OSError, ValueError) as e:
            raise EnumerationError(f"unable to read PCI bus devices: {e}") from e

        gpus = []
        for address in addresses:
            device = self.get_gpu_by_pci_bus_id(address)
            if device is None or not device.is_gpu() or device.sriov.is_vf():
                continue
            gpus.append(device)
        logger.debug("Found {} NVIDIA GPU(s)", len(gpus))
        return gpus

    def get_gpu_by_index(self, index: int) -> NvidiaPCIDevice:
        gpus = self.get_gpus()
        if index < 0 or index >= len(gpus):
            raise EnumerationError(f"no GPU at index {index} ({len(gpus)} GPU(s) found)")
        return gpus[index]
