"""
Mediated-device backend against a fake sysfs tree
"""

import uuid

import pytest

from vgpu_dm.backends.mdev import MdevBackend
from vgpu_dm.exceptions import EnumerationError, TypeUnsupportedError

GPU0 = "0000:3b:00.0"
GPU1 = "0000:86:00.0"


@pytest.fixture
def backend(dm_config, nvpci):
    return MdevBackend(dm_config, nvpci)


@pytest.fixture
def two_gpus(sysfs):
    sysfs.add_pci_device(GPU1)
    sysfs.add_pci_device(GPU0)
    return {
        GPU0: sysfs.add_mdev_types(GPU0, {"A100-4C": 10, "A100-8C": 5}),
        GPU1: sysfs.add_mdev_types(GPU1, {"A100-4C": 10}),
    }


class TestParents:

    def test_enumerate_parents_ordered(self, backend, two_gpus):
        parents = backend.enumerate_parents()

        assert [p.address for p in parents] == [GPU0, GPU1]
        assert parents[0].physical_function().address == GPU0

    def test_virtual_function_parents_ordered(self, backend, sysfs):
        vfs = [f"0000:3b:{slot:02x}.{fn}" for slot in range(1, 4) for fn in range(4, 8)]
        sysfs.add_vfio_gpu(GPU0, vfs, vfio_interface=False)
        for vf in reversed(vfs):
            sysfs.add_mdev_types(vf, {"A40-8Q": 1})

        parents = backend.enumerate_parents()

        assert [p.address for p in parents] == vfs
        assert {p.physical_function().address for p in parents} == {GPU0}

    def test_supported_types_are_normalized(self, backend, two_gpus):
        parent = backend.enumerate_parents()[0]

        assert set(parent.type_dirs) == {"A100-4C", "A100-8C"}
        assert parent.supports_type("A100-4C")
        assert not parent.supports_type("NVIDIA A100-4C")

    def test_available_instances(self, backend, two_gpus):
        parent = backend.enumerate_parents()[0]

        assert parent.available_instances("A100-8C") == 5
        assert parent.is_type_available("A100-8C")

    def test_zero_available(self, backend, sysfs, two_gpus):
        (two_gpus[GPU0]["A100-8C"] / "available_instances").write_text("0\n")
        parent = backend.enumerate_parents()[0]

        assert parent.available_instances("A100-8C") == 0
        assert not parent.is_type_available("A100-8C")

    def test_unsupported_type(self, backend, two_gpus):
        parent = backend.enumerate_parents()[1]

        with pytest.raises(TypeUnsupportedError):
            parent.available_instances("A100-8C")
        assert not parent.is_type_available("A100-8C")

    def test_create_writes_uuid(self, backend, two_gpus):
        parent = backend.enumerate_parents()[0]
        hint = parent.instance_id_hint(0)

        parent.create_instance("A100-4C", hint)

        assert str(uuid.UUID(hint)) == hint
        assert (two_gpus[GPU0]["A100-4C"] / "create").read_text() == hint

    def test_id_hints_are_unique(self, backend, two_gpus):
        parent = backend.enumerate_parents()[0]

        assert parent.instance_id_hint(0) != parent.instance_id_hint(0)

    def test_non_nvidia_parent_skipped(self, backend, sysfs, two_gpus):
        sysfs.add_pci_device("0000:00:02.0", vendor=0x8086)
        sysfs.add_mdev_types("0000:00:02.0", {"i915-GVTg_V5_4": 1})

        assert [p.address for p in backend.enumerate_parents()] == [GPU0, GPU1]

    def test_missing_parents_root(self, backend, sysfs):
        sysfs.mdev_bus.rmdir()

        with pytest.raises(EnumerationError):
            backend.enumerate_parents()


class TestDevices:

    def test_enumerate_devices(self, backend, sysfs, two_gpus):
        device_uuid = str(uuid.uuid4())
        sysfs.add_mdev_device(GPU0, device_uuid, two_gpus[GPU0]["A100-8C"], iommu_group=17)

        devices = backend.enumerate_devices()

        assert len(devices) == 1
        device = devices[0]
        assert device.uuid == device_uuid
        assert device.vgpu_type == "A100-8C"
        assert device.iommu_group == 17
        assert device.driver == "nvidia-vgpu-vfio"
        assert device.physical_function().address == GPU0

    def test_delete_writes_remove(self, backend, sysfs, two_gpus):
        path = sysfs.add_mdev_device(GPU1, str(uuid.uuid4()), two_gpus[GPU1]["A100-4C"])

        backend.enumerate_devices()[0].delete()

        assert (path / "remove").read_text() == "1"

    def test_no_devices(self, backend, two_gpus):
        assert backend.enumerate_devices() == []

    def test_dangling_device_link(self, backend, sysfs, two_gpus):
        (sysfs.mdev_devices / "dangling").symlink_to(sysfs.root / "gone")

        with pytest.raises(EnumerationError):
            backend.enumerate_devices()
