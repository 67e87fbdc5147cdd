"""Apply, clear and read back the vGPU configuration of one physical GPU.

A ``set_vgpu_config`` pass is a destructive replace: every existing vGPU on
the GPU is deleted and the requested devices are created from scratch.
There is no rollback; a failed pass leaves whatever it reached, and the
next full pass converges because clearing always removes everything.
"""

import threading
from collections import Counter
from enum import Enum
from typing import Optional, Union

from loguru import logger

from vgpu_dm.backends.base import ParentDevice
from vgpu_dm.exceptions import CapacityExceededError, EnumerationError, TypeUnsupportedError
from vgpu_dm.manager import CombinedManager
from vgpu_dm.models.vgpu_config import VGPUConfig
from vgpu_dm.models.vgpu_type import strip_attribute_suffix
from vgpu_dm.pci import NvidiaPCIDevice, NvPci

GPUTarget = Union[int, str]


class ReconcileState(str, Enum):
    IDLE = "idle"
    SANITIZING = "sanitizing"
    CLEARING = "clearing"
    CREATING = "creating"
    DONE = "done"
    FAILED = "failed"


class VGPUConfigManager:
    """Reconciles a GPU's vGPU devices against a ``VGPUConfig``.

    ``gpu`` arguments are either a GPU index (as enumerated by ``NvPci``)
    or a PCI bus address.
    """

    def __init__(self, manager: CombinedManager, nvpci: Optional[NvPci] = None):
        self.manager = manager
        self.nvpci = nvpci or manager.nvpci
        self.state = ReconcileState.IDLE
        self._lock = threading.Lock()

    def _resolve_gpu(self, gpu: GPUTarget) -> NvidiaPCIDevice:
        if isinstance(gpu, int):
            return self.nvpci.get_gpu_by_index(gpu)
        device = self.nvpci.get_gpu_by_pci_bus_id(gpu)
        if device is None:
            raise EnumerationError(f"no NVIDIA GPU at address '{gpu}'")
        return device

    @staticmethod
    def _describe(gpu: GPUTarget, device: NvidiaPCIDevice) -> str:
        if isinstance(gpu, int):
            return f"index={gpu}, address={device.address}"
        return f"address={device.address}"

    def get_vgpu_config(self, gpu: GPUTarget) -> VGPUConfig:
        """Tally the vGPU devices currently present on the GPU by type name."""
        device = self._resolve_gpu(gpu)
        counts = Counter(d.vgpu_type for d in self.manager.devices_by_address(device.address))
        return VGPUConfig(dict(counts))

    def clear_vgpu_config(self, gpu: GPUTarget) -> None:
        """Delete every vGPU device on the GPU."""
        device = self._resolve_gpu(gpu)
        with self._lock:
            self._clear(device)

    def set_vgpu_config(self, gpu: GPUTarget, config: VGPUConfig) -> None:
        """Replace the GPU's vGPU devices with the ones described by ``config``."""
        config.assert_valid()
        device = self._resolve_gpu(gpu)

        with self._lock:
            try:
                self.state = ReconcileState.SANITIZING
                parents = self.manager.parents_by_address(device.address)
                sanitized = self._sanitize(config, parents[0], self._describe(gpu, device))

                self.state = ReconcileState.CLEARING
                self._clear(device)

                self.state = ReconcileState.CREATING
                for vgpu_type, count in sanitized.items():
                    self._create(device, vgpu_type, count)
            except Exception:
                self.state = ReconcileState.FAILED
                raise
            self.state = ReconcileState.DONE

        logger.info(f"Applied vGPU config {dict(sanitized)} to GPU {device.address}")

    def _sanitize(self, config: VGPUConfig, parent: ParentDevice, gpu_description: str) -> dict[str, int]:
        """Map requested names onto names the parent offers.

        MIG-backed names may carry an attribute suffix the driver does not
        use in its type names (e.g. DC-1-24QGFX is offered as DC-1-24Q), so
        the stripped name is tried when the exact one is not offered.
        """
        sanitized: dict[str, int] = {}
        for vgpu_type, count in config.items():
            if parent.supports_type(vgpu_type):
                name = vgpu_type
            else:
                name = strip_attribute_suffix(vgpu_type)
                if name == vgpu_type or not parent.supports_type(name):
                    raise TypeUnsupportedError(
                        vgpu_type,
                        gpu_description,
                        f"vGPU type {vgpu_type} is not supported on GPU ({gpu_description})",
                    )
                logger.debug(f"Using vGPU type {name} for {vgpu_type}")
            sanitized[name] = sanitized.get(name, 0) + count
        return sanitized

    def _clear(self, device: NvidiaPCIDevice) -> None:
        devices = self.manager.devices_by_address(device.address)
        logger.info(f"Clearing {len(devices)} vGPU device(s) on GPU {device.address}")
        for vgpu_device in devices:
            vgpu_device.delete()

    def _create(self, device: NvidiaPCIDevice, vgpu_type: str, count: int) -> None:
        logger.info(f"Creating {count} {vgpu_type} vGPU device(s) on GPU {device.address}")
        remaining = count
        for parent in self.manager.parents_by_address(device.address):
            if remaining == 0:
                break
            if not parent.supports_type(vgpu_type):
                continue
            available = parent.available_instances(vgpu_type)
            if available <= 0:
                continue

            to_create = min(remaining, available)
            for i in range(to_create):
                parent.create_instance(vgpu_type, parent.instance_id_hint(i))
            remaining -= to_create

        if remaining > 0:
            raise CapacityExceededError(vgpu_type, count, count - remaining)
