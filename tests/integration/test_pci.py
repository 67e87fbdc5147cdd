import pytest

from fixtures.sysfs import A100_DEVICE, L40S_DEVICE
from vgpu_dm.exceptions import EnumerationError
from vgpu_dm.pci import DeviceID, address_sort_key


class TestDeviceID:

    def test_pack(self):
        device_id = DeviceID.new(0x20b0, 0x10de)

        assert device_id == 0x20B010DE
        assert device_id.device == 0x20b0
        assert device_id.vendor == 0x10de
        assert str(device_id) == "0x20B010DE"

    def test_from_string(self):
        assert DeviceID.from_string("0x20B010DE") == DeviceID.new(0x20b0, 0x10de)
        assert DeviceID.from_string("548409566") == 0x20B010DE

    def test_from_string_invalid(self):
        with pytest.raises(ValueError):
            DeviceID.from_string("not-an-id")


def test_address_sort_key():
    addresses = ["0000:86:00.0", "0000:3b:00.4", "0000:3b:00.0"]

    assert sorted(addresses, key=address_sort_key) == ["0000:3b:00.0", "0000:3b:00.4", "0000:86:00.0"]


class TestNvPci:

    def test_get_gpus_ordered_by_address(self, sysfs, nvpci):
        sysfs.add_pci_device("0000:86:00.0")
        sysfs.add_pci_device("0000:3b:00.0", device=L40S_DEVICE)

        gpus = nvpci.get_gpus()

        assert [g.address for g in gpus] == ["0000:3b:00.0", "0000:86:00.0"]
        assert gpus[0].device_id == DeviceID.new(L40S_DEVICE, 0x10de)
        assert gpus[1].driver == "nvidia"

    def test_skips_other_vendors_and_classes(self, sysfs, nvpci):
        sysfs.add_pci_device("0000:3b:00.0")
        sysfs.add_pci_device("0000:00:1f.0", vendor=0x8086, device=0xa1c1, class_code=0x060100)
        # NVIDIA audio function
        sysfs.add_pci_device("0000:3b:00.1", class_code=0x040300)

        assert [g.address for g in nvpci.get_gpus()] == ["0000:3b:00.0"]

    def test_skips_virtual_functions(self, sysfs, nvpci):
        sysfs.add_vfio_gpu("0000:3b:00.0", ["0000:3b:00.4", "0000:3b:00.5"])

        gpus = nvpci.get_gpus()

        assert [g.address for g in gpus] == ["0000:3b:00.0"]
        assert gpus[0].sriov.is_pf()
        assert gpus[0].sriov.num_vfs == 2
        assert gpus[0].sriov.total_vfs == 2

    def test_virtual_function_links_to_physical_function(self, sysfs, nvpci):
        sysfs.add_vfio_gpu("0000:3b:00.0", ["0000:3b:00.4"])

        vf = nvpci.get_gpu_by_pci_bus_id("0000:3b:00.4")

        assert vf.sriov.is_vf()
        assert vf.physical_function().address == "0000:3b:00.0"

    def test_non_nvidia_address(self, sysfs, nvpci):
        sysfs.add_pci_device("0000:00:1f.0", vendor=0x8086)

        assert nvpci.get_gpu_by_pci_bus_id("0000:00:1f.0") is None

    def test_get_gpu_by_index(self, sysfs, nvpci):
        sysfs.add_pci_device("0000:3b:00.0")
        sysfs.add_pci_device("0000:86:00.0", device=A100_DEVICE)

        assert nvpci.get_gpu_by_index(1).address == "0000:86:00.0"
        with pytest.raises(EnumerationError):
            nvpci.get_gpu_by_index(2)

    def test_unreadable_device(self, sysfs, nvpci):
        (sysfs.pci_devices / "0000:3b:00.0").mkdir()

        with pytest.raises(EnumerationError):
            nvpci.get_gpus()

    def test_rereads_on_every_call(self, sysfs, nvpci):
        assert nvpci.get_gpus() == []

        sysfs.add_pci_device("0000:3b:00.0")

        assert len(nvpci.get_gpus()) == 1
