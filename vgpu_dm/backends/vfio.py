"""NVIDIA VFIO (SR-IOV) backend.

Each SR-IOV virtual function of a GPU hosts at most one vGPU. The driver
exposes per-VF control files under ``<pf>/virtfn<N>/nvidia``:

    creatable_vgpu_types   listing of "<id> : <name>" lines
    current_vgpu_type      numeric id of the active type, 0 for none

A vGPU is created by writing a type id to ``current_vgpu_type`` and
destroyed by writing 0.
"""

import os
from pathlib import Path
from typing import Optional

import backoff
from loguru import logger

from vgpu_dm.backends import mdev
from vgpu_dm.backends.base import Backend, Device, ParentDevice
from vgpu_dm.config import DeviceManagerConfig
from vgpu_dm.exceptions import (
    CreateError,
    DeleteError,
    EnumerationError,
    TypeUnsupportedError,
    VFIOSettleTimeoutError,
)
from vgpu_dm.pci import NvidiaPCIDevice, NvPci
from vgpu_dm.util import read_attribute, resolve_link_name, write_attribute

MODE = "vfio"

CREATABLE_TYPES = 'creatable_vgpu_types'
SUPPORTED_TYPES = 'supported_vgpu_types'
CURRENT_TYPE = 'current_vgpu_type'


def parse_type_listing(text: str) -> dict[str, int]:
    """Map type name -> type id from a ``creatable_vgpu_types`` listing.

    The id is the first whitespace-separated field and the name the last.
    Lines with fewer than two fields or a non-numeric id (the header) are
    ignored.
    """
    types: dict[str, int] = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        try:
            type_id = int(fields[0])
        except ValueError:
            continue
        types[fields[-1]] = type_id
    return types


class VfioParentDevice(ParentDevice):

    def __init__(self, pci_device: NvidiaPCIDevice, vf_index: int, vf_path: Path):
        self.pci_device = pci_device
        self.vf_index = vf_index
        # <pf>/virtfn<N>/nvidia
        self.vf_path = vf_path

    def __repr__(self) -> str:
        return f"VfioParentDevice({self.address})"

    @property
    def address(self) -> str:
        return resolve_link_name(self.vf_path.parent) or f"{self.pci_device.address}/virtfn{self.vf_index}"

    def physical_function(self) -> NvidiaPCIDevice:
        return self.pci_device.physical_function()

    def _read_listing(self, filename: str = CREATABLE_TYPES) -> dict[str, int]:
        path = self.vf_path / filename
        try:
            return parse_type_listing(read_attribute(path))
        except OSError as e:
            raise EnumerationError(f"unable to read {path}: {e}") from e

    def creatable_types(self) -> dict[str, int]:
        return self._read_listing()

    def current_type_id(self) -> int:
        path = self.vf_path / CURRENT_TYPE
        try:
            return int(read_attribute(path))
        except (OSError, ValueError) as e:
            raise EnumerationError(f"unable to read current vGPU type from {path}: {e}") from e

    def type_name_for_id(self, type_id: int) -> str:
        """Resolve a numeric type id to its name through the VF's type listings."""
        for filename in (CREATABLE_TYPES, SUPPORTED_TYPES):
            if not (self.vf_path / filename).exists():
                continue
            for name, listed_id in self._read_listing(filename).items():
                if listed_id == type_id:
                    return name
        raise EnumerationError(f"vGPU type id {type_id} not listed for {self.vf_path}")

    def supports_type(self, vgpu_type: str) -> bool:
        return vgpu_type in self.creatable_types()

    def available_instances(self, vgpu_type: str) -> int:
        if not self.supports_type(vgpu_type):
            raise TypeUnsupportedError(vgpu_type, self.address)
        # One vGPU per virtual function
        return 1 if self.current_type_id() == 0 else 0

    def create_instance(self, vgpu_type: str, id_hint: str) -> None:
        type_id = self.creatable_types().get(vgpu_type)
        if type_id is None:
            raise TypeUnsupportedError(
                vgpu_type,
                self.address,
                f"vGPU type {vgpu_type} not found in {self.vf_path / CREATABLE_TYPES}",
            )
        try:
            write_attribute(self.vf_path / CURRENT_TYPE, str(type_id))
        except OSError as e:
            raise CreateError(
                f"unable to write current vGPU type {type_id} ({vgpu_type}) on {self.address}: {e}"
            ) from e
        logger.debug(f"Set {self.address} to vGPU type {vgpu_type} ({type_id}), slot {id_hint}")

    def instance_id_hint(self, ordinal: int) -> str:
        return str(ordinal)


class VfioDevice(Device):

    def __init__(self, parent: VfioParentDevice, type_id: int):
        self.parent = parent
        self.type_id = type_id
        self._vgpu_type: Optional[str] = None

    def __repr__(self) -> str:
        return f"VfioDevice({self.parent.address}, {self.type_id})"

    @property
    def path(self) -> Path:
        return self.parent.vf_path

    @property
    def vgpu_type(self) -> str:
        if self._vgpu_type is None:
            self._vgpu_type = self.parent.type_name_for_id(self.type_id)
        return self._vgpu_type

    def physical_function(self) -> NvidiaPCIDevice:
        return self.parent.physical_function()

    def delete(self) -> None:
        try:
            write_attribute(self.path / CURRENT_TYPE, '0')
        except OSError as e:
            raise DeleteError(f"unable to write to {self.path / CURRENT_TYPE}: {e}") from e
        logger.debug(f"Cleared vGPU type {self.type_id} on {self.parent.address}")


class VfioBackend(Backend):

    def __init__(self, config: DeviceManagerConfig, nvpci: Optional[NvPci] = None):
        self.config = config
        self.nvpci = nvpci or NvPci(config)

    @property
    def mode(self) -> str:
        return MODE

    def enumerate_parents(self) -> list[ParentDevice]:
        parents: list[ParentDevice] = []
        for gpu in self.nvpci.get_gpus():
            for vf_index in range(gpu.sriov.num_vfs):
                vf_path = gpu.path / f"virtfn{vf_index}" / "nvidia"
                if not os.path.exists(vf_path):
                    raise EnumerationError(
                        f"virtual function {vf_index} at address {vf_path} does not exist"
                    )
                parents.append(VfioParentDevice(gpu, vf_index, vf_path))
        logger.debug(f"Found {len(parents)} VFIO parent device(s)")
        return parents

    def enumerate_devices(self) -> list[Device]:
        devices: list[Device] = []
        for parent in self.enumerate_parents():
            type_id = parent.current_type_id()
            if type_id != 0:
                devices.append(VfioDevice(parent, type_id))
        return devices


def probe_mode(config: DeviceManagerConfig, nvpci: NvPci) -> str:
    """Decide once whether the host runs vGPU through VFIO or mdev.

    GPU 0 is inspected. Without SR-IOV virtual functions the host is in mdev
    mode. Otherwise the first VF is polled until the driver exposes either
    interface, since VFs appear some time after SR-IOV is enabled.
    """
    gpus = nvpci.get_gpus()
    if not gpus:
        raise EnumerationError("no NVIDIA GPUs found")
    gpu = gpus[0]

    if gpu.sriov.num_vfs == 0:
        logger.info(f"GPU {gpu.address} has no SR-IOV virtual functions, using {mdev.MODE} mode")
        return mdev.MODE

    vf_path = gpu.path / 'virtfn0'

    def _log_wait(details):
        logger.debug(
            f"Waiting {details['wait']:.1f}s for {vf_path} to expose a vGPU interface "
            f"(attempt {details['tries']})"
        )

    @backoff.on_predicate(
        backoff.expo,
        lambda mode: mode is None,
        max_time=config.vfio_settle_timeout,
        max_value=config.vfio_settle_max_interval,
        on_backoff=_log_wait,
    )
    def _poll() -> Optional[str]:
        if os.path.exists(vf_path / 'nvidia' / CREATABLE_TYPES):
            return MODE
        if os.path.exists(vf_path / 'mdev_supported_types'):
            return mdev.MODE
        return None

    mode = _poll()
    if mode is None:
        raise VFIOSettleTimeoutError(str(vf_path), config.vfio_settle_timeout)
    logger.info(f"Detected {mode} mode on GPU {gpu.address}")
    return mode
