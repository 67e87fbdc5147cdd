"""Mode-selecting front end over the mdev and VFIO backends."""

from typing import Optional

from loguru import logger

from vgpu_dm.backends import mdev, vfio
from vgpu_dm.backends.base import Backend, Device, ParentDevice
from vgpu_dm.config import DeviceManagerConfig
from vgpu_dm.exceptions import NoParentDevicesError
from vgpu_dm.pci import NvPci


class CombinedManager:
    """Routes every call to the single backend picked at construction.

    The mode never changes for the lifetime of the manager; pass ``backend``
    to skip probing.
    """

    def __init__(
        self,
        config: DeviceManagerConfig,
        nvpci: Optional[NvPci] = None,
        backend: Optional[Backend] = None,
    ):
        self.config = config
        self.nvpci = nvpci or NvPci(config)
        if backend is None:
            mode = vfio.probe_mode(config, self.nvpci)
            if mode == vfio.MODE:
                backend = vfio.VfioBackend(config, self.nvpci)
            else:
                backend = mdev.MdevBackend(config, self.nvpci)
        self.backend = backend
        logger.debug(f"Using {self.backend.mode} backend")

    @property
    def mode(self) -> str:
        return self.backend.mode

    @property
    def is_vfio_mode(self) -> bool:
        return self.mode == vfio.MODE

    def enumerate_parents(self) -> list[ParentDevice]:
        return self.backend.enumerate_parents()

    def enumerate_devices(self) -> list[Device]:
        return self.backend.enumerate_devices()

    def parents_by_address(self, address: str) -> list[ParentDevice]:
        """Parents backed by the GPU at ``address``, in enumeration order."""
        parents = [
            p for p in self.enumerate_parents()
            if p.physical_function().address == address
        ]
        if not parents:
            raise NoParentDevicesError(address)
        return parents

    def devices_by_address(self, address: str) -> list[Device]:
        return [
            d for d in self.enumerate_devices()
            if d.physical_function().address == address
        ]
