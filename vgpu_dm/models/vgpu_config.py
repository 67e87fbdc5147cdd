"""Desired vGPU devices for a GPU: vGPU type name -> number of devices."""

from typing import Dict, Iterator

from pydantic import Field, RootModel

from vgpu_dm.exceptions import (
    AllZeroCountsError,
    MixedBackingModeError,
    NonPositiveCountError,
)
from vgpu_dm.models.vgpu_type import VGPUType


class VGPUConfig(RootModel[Dict[str, int]]):
    """The set of vGPU types (and how many of each) to instantiate on a GPU."""

    root: Dict[str, int] = Field(default_factory=dict)

    def __iter__(self) -> Iterator[str]:
        return iter(self.root)

    def __getitem__(self, vgpu_type: str) -> int:
        return self.root[vgpu_type]

    def __len__(self) -> int:
        return len(self.root)

    def items(self):
        return self.root.items()

    def assert_valid(self) -> None:
        """Check that every type parses and counts are positive and of one backing mode.

        An empty config is valid and means no vGPU devices are desired. The
        outcome does not depend on iteration order.
        """
        if not self.root:
            return

        parsed: Dict[str, VGPUType] = {}
        for name in self.root:
            parsed[name] = VGPUType.parse(name)

        if all(count <= 0 for count in self.root.values()):
            raise AllZeroCountsError()

        for name, count in self.root.items():
            if count <= 0:
                raise NonPositiveCountError(name, count)

        mig_backed = sorted(name for name, t in parsed.items() if t.is_mig_backed)
        time_sliced = sorted(name for name, t in parsed.items() if not t.is_mig_backed)
        if mig_backed and time_sliced:
            raise MixedBackingModeError(mig_backed, time_sliced)

    def contains(self, vgpu_type: str) -> bool:
        """True if ``vgpu_type`` is part of the config with a non-zero count."""
        return self.root.get(vgpu_type, 0) > 0

    def equals(self, other: "VGPUConfig") -> bool:
        if len(self.root) != len(other.root):
            return False
        for name, count in self.root.items():
            if not other.contains(name):
                return False
            if count != other[name]:
                return False
        return True

    def is_mig_backed(self) -> bool:
        """True if the config is non-empty and only holds MIG-backed types."""
        if not self.root:
            return False
        return all(VGPUType.parse(name).is_mig_backed for name in self.root)
