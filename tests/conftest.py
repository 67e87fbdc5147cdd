import os

from fixtures.env import *  # noqa


def pytest_configure(config):
    """Keep host settings from leaking into the tests."""
    for var in (
        "VGPU_DM_SYSFS_ROOT",
        "VGPU_DM_VFIO_SETTLE_TIMEOUT",
        "VGPU_DM_VFIO_SETTLE_MAX_INTERVAL",
        "VGPU_DM_DEBUG",
        "VGPU_DM_CONFIG_FILE",
        "VGPU_DM_SELECTED_CONFIG",
        "VGPU_DM_VALID_CONFIG",
    ):
        os.environ.pop(var, None)


pytest_configure(None)

from fixtures.sysfs import *  # noqa
from fixtures.backends import *  # noqa
