"""Mediated-device (mdev) backend.

Parents are the NVIDIA entries of ``<sysfs>/class/mdev_bus``; each offers the
vGPU types under ``mdev_supported_types/nvidia-*``. Devices live in
``<sysfs>/bus/mdev/devices/<uuid>``, a link into the parent's directory.
"""

import os
import uuid
from pathlib import Path
from typing import Optional

from loguru import logger

from vgpu_dm.backends.base import Backend, Device, ParentDevice
from vgpu_dm.config import DeviceManagerConfig
from vgpu_dm.exceptions import (
    CreateError,
    DeleteError,
    EnumerationError,
    MalformedVGPUTypeError,
    TypeUnsupportedError,
)
from vgpu_dm.models.vgpu_type import parse_type_name
from vgpu_dm.pci import NvidiaPCIDevice, NvPci, address_sort_key
from vgpu_dm.util import read_attribute, resolve_link_name, write_attribute

MODE = "mdev"


class MdevParentDevice(ParentDevice):

    def __init__(self, pci_device: NvidiaPCIDevice, type_dirs: dict[str, Path]):
        self.pci_device = pci_device
        # Normalized vGPU type name -> mdev_supported_types/<type> directory
        self.type_dirs = type_dirs

    def __repr__(self) -> str:
        return f"MdevParentDevice({self.address})"

    @property
    def address(self) -> str:
        return self.pci_device.address

    def physical_function(self) -> NvidiaPCIDevice:
        return self.pci_device.physical_function()

    def supports_type(self, vgpu_type: str) -> bool:
        return vgpu_type in self.type_dirs

    def available_instances(self, vgpu_type: str) -> int:
        type_dir = self.type_dirs.get(vgpu_type)
        if type_dir is None:
            raise TypeUnsupportedError(vgpu_type, self.address)
        try:
            available = int(read_attribute(type_dir / 'available_instances'))
        except (OSError, ValueError) as e:
            raise EnumerationError(
                f"unable to read available_instances for {vgpu_type} on {self.address}: {e}"
            ) from e
        return max(available, 0)

    def create_instance(self, vgpu_type: str, id_hint: str) -> None:
        type_dir = self.type_dirs.get(vgpu_type)
        if type_dir is None:
            raise TypeUnsupportedError(
                vgpu_type,
                self.address,
                f"unable to create mdev {vgpu_type}: not supported by parent device {self.address}",
            )
        try:
            write_attribute(type_dir / 'create', id_hint)
        except OSError as e:
            raise CreateError(
                f"unable to create {vgpu_type} vGPU device {id_hint} on {self.address}: {e}"
            ) from e
        logger.debug(f"Created {vgpu_type} mdev {id_hint} on {self.address}")

    def instance_id_hint(self, ordinal: int) -> str:
        return str(uuid.uuid4())


class MdevDevice(Device):

    def __init__(
        self,
        path: Path,
        uuid: str,
        mdev_type: str,
        driver: Optional[str],
        iommu_group: int,
        parent: MdevParentDevice,
    ):
        self.path = path
        self.uuid = uuid
        self.mdev_type = mdev_type
        self.driver = driver
        self.iommu_group = iommu_group
        self.parent = parent

    def __repr__(self) -> str:
        return f"MdevDevice({self.uuid}, {self.mdev_type})"

    @property
    def vgpu_type(self) -> str:
        return self.mdev_type

    def physical_function(self) -> NvidiaPCIDevice:
        return self.parent.physical_function()

    def delete(self) -> None:
        try:
            write_attribute(self.path / 'remove', '1')
        except OSError as e:
            raise DeleteError(f"unable to delete mdev {self.uuid}: {e}") from e
        logger.debug(f"Deleted {self.mdev_type} mdev {self.uuid}")


class MdevBackend(Backend):

    def __init__(self, config: DeviceManagerConfig, nvpci: Optional[NvPci] = None):
        self.config = config
        self.nvpci = nvpci or NvPci(config)

    @property
    def mode(self) -> str:
        return MODE

    @property
    def parents_root(self) -> Path:
        return self.config.mdev_parents_root

    @property
    def devices_root(self) -> Path:
        return self.config.mdev_devices_root

    def new_parent_device(self, address: str) -> Optional[MdevParentDevice]:
        """Build the parent at ``address``; None if it is not an NVIDIA device."""
        pci_device = self.nvpci.get_gpu_by_pci_bus_id(address)
        if pci_device is None:
            return None

        type_dirs: dict[str, Path] = {}
        for name_path in sorted(pci_device.path.glob('mdev_supported_types/nvidia-*/name')):
            try:
                type_name = parse_type_name(read_attribute(name_path))
            except OSError as e:
                raise EnumerationError(f"unable to read {name_path}: {e}") from e
            except MalformedVGPUTypeError as e:
                raise EnumerationError(f"unable to parse mdev_type name at {name_path}: {e}") from e
            type_dirs[type_name] = name_path.parent

        return MdevParentDevice(pci_device, type_dirs)

    def enumerate_parents(self) -> list[ParentDevice]:
        try:
            addresses = sorted(os.listdir(self.parents_root), key=address_sort_key)
        except OSError as e:
            raise EnumerationError(f"unable to read mdev parent devices: {e}") from e

        parents = []
        for address in addresses:
            parent = self.new_parent_device(address)
            if parent is None:
                continue
            parents.append(parent)

        # Grouped by physical function, then by the parent's own address (VFs)
        parents.sort(
            key=lambda p: (address_sort_key(p.physical_function().address), address_sort_key(p.address))
        )
        logger.debug(f"Found {len(parents)} mdev parent device(s)")
        return parents

    def new_device(self, device_uuid: str) -> Optional[MdevDevice]:
        """Build the device ``device_uuid``; None if its parent is not an NVIDIA device."""
        link = self.devices_root / device_uuid
        try:
            path = Path(os.path.realpath(link, strict=True))
        except OSError as e:
            raise EnumerationError(f"error resolving symlink for {link}: {e}") from e

        parent = self.new_parent_device(path.parent.name)
        if parent is None:
            return None

        try:
            type_dir = Path(os.path.realpath(path / 'mdev_type', strict=True))
            mdev_type = parse_type_name(read_attribute(type_dir / 'name'))
        except (OSError, MalformedVGPUTypeError) as e:
            raise EnumerationError(f"unable to read mdev_type name for mdev {device_uuid}: {e}") from e

        iommu_group_name = resolve_link_name(path / 'iommu_group')
        if iommu_group_name is None:
            raise EnumerationError(f"error resolving iommu_group for mdev {device_uuid}")
        try:
            iommu_group = int(iommu_group_name, 0)
        except ValueError as e:
            raise EnumerationError(
                f"unable to convert iommu_group to an int for mdev {device_uuid}: {iommu_group_name}"
            ) from e

        return MdevDevice(
            path=path,
            uuid=device_uuid,
            mdev_type=mdev_type,
            driver=resolve_link_name(path / 'driver'),
            iommu_group=iommu_group,
            parent=parent,
        )

    def enumerate_devices(self) -> list[Device]:
        try:
            uuids = sorted(os.listdir(self.devices_root))
        except OSError as e:
            raise EnumerationError(f"unable to read mdev devices directory: {e}") from e

        devices = []
        for device_uuid in uuids:
            device = self.new_device(device_uuid)
            if device is None:
                continue
            devices.append(device)
        return devices
