"""Backend-neutral view of vGPU parents and devices.

A parent device is where vGPU devices are created: a physical GPU exposing
mediated-device types (mdev mode), or one SR-IOV virtual function of a GPU
(VFIO mode). A device is one active vGPU instance. The reconciliation
engine only talks to these interfaces and never to a concrete backend.
"""

from abc import ABC, abstractmethod

from vgpu_dm.pci import NvidiaPCIDevice


class Device(ABC):
    """An active vGPU device."""

    @property
    @abstractmethod
    def vgpu_type(self) -> str:
        """Normalized vGPU type name (e.g. 'A100-4C')."""
        ...

    @abstractmethod
    def physical_function(self) -> NvidiaPCIDevice:
        """The physical GPU this device lives on."""
        ...

    @abstractmethod
    def delete(self) -> None:
        """Remove the device from the kernel. Raises DeleteError."""
        ...


class ParentDevice(ABC):
    """A device on which vGPU instances of some set of types can be created."""

    @property
    @abstractmethod
    def address(self) -> str:
        ...

    @abstractmethod
    def physical_function(self) -> NvidiaPCIDevice:
        ...

    @abstractmethod
    def supports_type(self, vgpu_type: str) -> bool:
        """Whether the type is offered by this parent at all, ignoring capacity."""
        ...

    @abstractmethod
    def available_instances(self, vgpu_type: str) -> int:
        """How many more instances of ``vgpu_type`` can be created right now.

        Always >= 0. Raises TypeUnsupportedError if the parent does not
        offer the type.
        """
        ...

    @abstractmethod
    def create_instance(self, vgpu_type: str, id_hint: str) -> None:
        """Instantiate one device of ``vgpu_type``. Raises CreateError."""
        ...

    @abstractmethod
    def instance_id_hint(self, ordinal: int) -> str:
        """Identifier to pass to create_instance for the ordinal-th device of a batch."""
        ...

    def is_type_available(self, vgpu_type: str) -> bool:
        """Whether the type is supported and at least one instance can be created."""
        if not self.supports_type(vgpu_type):
            return False
        return self.available_instances(vgpu_type) > 0


class Backend(ABC):
    """Enumerates parents and devices for one operating mode."""

    @property
    @abstractmethod
    def mode(self) -> str:
        ...

    @abstractmethod
    def enumerate_parents(self) -> list[ParentDevice]:
        """All parent devices, ordered by bus address. Raises EnumerationError."""
        ...

    @abstractmethod
    def enumerate_devices(self) -> list[Device]:
        """All active vGPU devices. Raises EnumerationError."""
        ...
