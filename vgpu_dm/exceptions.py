"""Error taxonomy for vGPU device management.

Every error carries a ``kind`` naming the failure class so callers (and the
CLI) can tell input problems apart from kernel/driver problems without
matching on message text.
"""

from typing import Optional


class VGPUError(Exception):
    """Base class for all vGPU device manager errors."""

    kind = "VGPUError"


class VGPUConfigError(VGPUError, ValueError):
    """Invalid user input: a type name or a requested configuration."""

    kind = "InvalidConfig"


class MalformedVGPUTypeError(VGPUConfigError):
    kind = "Malformed"

    def __init__(self, value: str, reason: Optional[str] = None):
        self.value = value
        message = reason or f"malformed vGPU type string '{value}'"
        super().__init__(message)


class NonPositiveCountError(VGPUConfigError):
    kind = "NonPositiveCount"

    def __init__(self, vgpu_type: str, count: int, message: Optional[str] = None):
        self.vgpu_type = vgpu_type
        self.count = count
        super().__init__(message or f"invalid count for '{vgpu_type}': {count}")


class AllZeroCountsError(NonPositiveCountError):
    """No entry of a non-empty configuration asks for at least one device."""

    kind = "AllZero"

    def __init__(self):
        super().__init__("", 0, "all counts for all vGPU types are 0")


class MixedBackingModeError(VGPUConfigError):
    kind = "MixedBackingMode"

    def __init__(self, mig_backed: list[str], time_sliced: list[str]):
        self.mig_backed = mig_backed
        self.time_sliced = time_sliced
        super().__init__(
            "cannot mix time-sliced and MIG-backed vGPU devices on the same GPU "
            f"(MIG-backed: {mig_backed}, time-sliced: {time_sliced})"
        )


class EnumerationError(VGPUError):
    """The kernel device tree could not be read."""

    kind = "EnumerationFailed"


class NoParentDevicesError(EnumerationError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"no parent devices found for GPU at address '{address}'")


class TypeUnsupportedError(VGPUError):
    kind = "TypeUnsupported"

    def __init__(self, vgpu_type: str, gpu: str, message: Optional[str] = None):
        self.vgpu_type = vgpu_type
        self.gpu = gpu
        super().__init__(message or f"vGPU type {vgpu_type} is not supported on GPU ({gpu})")


class CapacityExceededError(VGPUError):
    kind = "CapacityExceeded"

    def __init__(self, vgpu_type: str, requested: int, created: int):
        self.vgpu_type = vgpu_type
        self.requested = requested
        self.created = created
        super().__init__(
            f"failed to create {requested} {vgpu_type} vGPU devices on the GPU. "
            f"ensure '{requested}' does not exceed the maximum supported instances for '{vgpu_type}'"
        )


class CreateError(VGPUError):
    kind = "CreateFailed"


class DeleteError(VGPUError):
    kind = "DeleteFailed"


class VFIOSettleTimeoutError(VGPUError):
    """SR-IOV virtual functions never exposed a vGPU interface in time."""

    kind = "SettleTimeout"

    def __init__(self, path: str, timeout: float):
        self.path = path
        self.timeout = timeout
        super().__init__(
            f"virtual function at {path} did not expose a vGPU interface within {timeout}s"
        )
