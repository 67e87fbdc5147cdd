import os
from pathlib import Path
from typing import Optional


def read_attribute(path: Path) -> str:
    """Read a sysfs attribute, stripped of surrounding whitespace."""
    with open(path, 'r') as f:
        return f.read().strip()


def write_attribute(path: Path, value: str) -> None:
    """Write one value to a sysfs attribute. The attribute must already exist."""
    fd = os.open(path, os.O_WRONLY | os.O_TRUNC | os.O_SYNC)
    with os.fdopen(fd, 'w') as f:
        f.write(value)


def resolve_link_name(path: Path) -> Optional[str]:
    """Basename of a symlink's target, or None if ``path`` is not a link."""
    if not os.path.islink(path):
        return None
    return os.path.basename(os.path.realpath(path))
