import sys
from typing import Callable, List, Optional

import typer
from loguru import logger
from pydantic import ValidationError

from vgpu_dm.config import load_config
from vgpu_dm.exceptions import VGPUError
from vgpu_dm.manager import CombinedManager
from vgpu_dm.models.spec import VGPUConfigSpec, parse_config_file, select_vgpu_config
from vgpu_dm.pci import NvidiaPCIDevice, NvPci
from vgpu_dm.reconcile import VGPUConfigManager

app = typer.Typer(no_args_is_help=True)

ConfigFileOption = typer.Option(
    None, "--config-file", "-f",
    envvar="VGPU_DM_CONFIG_FILE",
    help="Path to the configuration file ('-' reads stdin)",
)
SelectedConfigOption = typer.Option(
    None, "--selected-config", "-c",
    envvar="VGPU_DM_SELECTED_CONFIG",
    help="The name of the vgpu-config from the config file",
)
ValidConfigOption = typer.Option(
    False, "--valid-config", "-a",
    envvar="VGPU_DM_VALID_CONFIG",
    help="Only check that the config file is valid and the selected config is present in it",
)


def configure_logging(
    debug: bool = typer.Option(False, "--debug", "-d", envvar="VGPU_DM_DEBUG", help="Enable debug-level logging"),
):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "INFO")


def build_config_manager() -> VGPUConfigManager:
    config = load_config()
    nvpci = NvPci(config)
    return VGPUConfigManager(CombinedManager(config, nvpci), nvpci)


def walk_gpus(
    vgpu_config: List[VGPUConfigSpec],
    nvpci: NvPci,
    fn: Callable[[VGPUConfigSpec, int, NvidiaPCIDevice], None],
) -> None:
    """Call ``fn`` for every (config entry, GPU) pair the entry selects."""
    for index, gpu in enumerate(nvpci.get_gpus()):
        for spec in vgpu_config:
            if not spec.matches_device_filter(gpu.device_id):
                continue
            if not spec.matches_devices(index):
                continue
            logger.debug(f"Walking vGPU config for GPU {index} ({gpu.address}, {gpu.device_id})")
            fn(spec, index, gpu)


def _load_selected_config(config_file: Optional[str], selected_config: Optional[str]) -> List[VGPUConfigSpec]:
    if not config_file:
        raise typer.BadParameter("missing required flags 'config-file'")
    logger.debug("Parsing config file...")
    spec = parse_config_file(config_file)
    logger.debug("Selecting specific vGPU config...")
    name, vgpu_config = select_vgpu_config(spec, selected_config)
    logger.debug(f"Selected vGPU config '{name}'")
    return vgpu_config


def _is_applied(config_manager: VGPUConfigManager, vgpu_config: List[VGPUConfigSpec]) -> bool:
    mismatches = []

    def check(spec: VGPUConfigSpec, index: int, gpu: NvidiaPCIDevice) -> None:
        current = config_manager.get_vgpu_config(index)
        if not current.equals(spec.vgpu_devices):
            logger.debug(f"GPU {index}: current {current.root} != desired {spec.vgpu_devices.root}")
            mismatches.append(index)

    walk_gpus(vgpu_config, config_manager.nvpci, check)
    return not mismatches


def assert_config(
    config_file: Optional[str] = ConfigFileOption,
    selected_config: Optional[str] = SelectedConfigOption,
    valid_config: bool = ValidConfigOption,
):
    try:
        vgpu_config = _load_selected_config(config_file, selected_config)
        if valid_config:
            logger.info("Selected vGPU device configuration is valid")
            sys.exit(0)

        config_manager = build_config_manager()
        logger.debug("Asserting vGPU device configuration...")
        if not _is_applied(config_manager, vgpu_config):
            logger.error("Assertion failure: selected configuration not currently applied")
            sys.exit(1)
    except (VGPUError, ValidationError, typer.BadParameter) as e:
        logger.error(f"Failed to assert vGPU device configuration:\n{e}")
        sys.exit(1)

    logger.info("Selected vGPU device configuration is currently applied")
    sys.exit(0)


def apply_config(
    config_file: Optional[str] = ConfigFileOption,
    selected_config: Optional[str] = SelectedConfigOption,
    valid_config: bool = ValidConfigOption,
):
    try:
        vgpu_config = _load_selected_config(config_file, selected_config)
        if valid_config:
            logger.info("Selected vGPU device configuration is valid")
            sys.exit(0)

        config_manager = build_config_manager()

        def apply(spec: VGPUConfigSpec, index: int, gpu: NvidiaPCIDevice) -> None:
            current = config_manager.get_vgpu_config(index)
            if current.equals(spec.vgpu_devices):
                logger.info(f"Skipping GPU {index} ({gpu.address}): already set to {current.root}")
                return
            logger.info(f"Applying vGPU device configuration to GPU {index} ({gpu.address})...")
            config_manager.set_vgpu_config(index, spec.vgpu_devices)

        walk_gpus(vgpu_config, config_manager.nvpci, apply)
    except (VGPUError, ValidationError, typer.BadParameter) as e:
        logger.error(f"Failed to apply vGPU device configuration:\n{e}")
        sys.exit(1)

    logger.info("Selected vGPU device configuration successfully applied")
    sys.exit(0)


app.callback()(configure_logging)
app.command(name="assert", help="Assert that a vGPU device configuration is currently applied.")(assert_config)
app.command(name="apply", help="Apply changes (if necessary) for a vGPU device configuration.")(apply_config)


def main():
    app()


if __name__ == "__main__":
    main()
