"""vGPU type names: parsing, formatting and name normalization.

Time-sliced vGPU types appear as ``<gpu>-<gb><series>``.
MIG-backed vGPU types appear as ``<gpu>-<g>-<gb><series>[ME|NOME|MEALL|GFX]``.
Examples include "A100-40C", "A100D-80C", "A100-1-5C", "A100-1-5CME" and
"DC-1-24CGFX".
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from vgpu_dm.exceptions import MalformedVGPUTypeError

# MIG profile attributes: +me, -me, +me.all and +gfx
ATTRIBUTE_MEDIA_EXTENSIONS = "ME"
ATTRIBUTE_NO_MEDIA_EXTENSIONS = "NOME"
ATTRIBUTE_MEDIA_EXTENSIONS_ALL = "MEALL"
ATTRIBUTE_GRAPHICS = "GFX"

# MEALL must be tried before ME, and NOME before ME
_ATTRIBUTE_SUFFIXES = (
    ATTRIBUTE_MEDIA_EXTENSIONS_ALL,
    ATTRIBUTE_NO_MEDIA_EXTENSIONS,
    ATTRIBUTE_MEDIA_EXTENSIONS,
    ATTRIBUTE_GRAPHICS,
)

# A framebuffer size of 0 means 512MB (i.e. M60-0Q)
_TIME_SLICED_RE = re.compile(
    r"(?P<GPU>[A-Z0-9]+(-([a-zA-Z]+))*)-(?P<GB>0|[1-9][0-9]*)(?P<S>A|B|C|Q)"
)
_MIG_BACKED_RE = re.compile(
    r"(?P<GPU>[A-Z0-9]+)-(?P<G>[1-9])-(?P<GB>0|[1-9][0-9]*)(?P<S>A|B|C|Q)"
    r"(?P<ATTR>ME|NOME|MEALL|GFX)?"
)


class Series(str, Enum):
    """Workload class of a vGPU type, the last letter of its name."""

    A = "A"
    B = "B"
    C = "C"
    Q = "Q"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in cls._value2member_map_


@dataclass(frozen=True)
class VGPUType:
    gpu: str
    g: int
    gb: int
    series: Series
    attr: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_mig_backed(self) -> bool:
        return self.g > 0

    @classmethod
    def parse(cls, s: str) -> "VGPUType":
        """Parse a vGPU type name. The whole string must match, nothing is trimmed."""
        if not s:
            raise MalformedVGPUTypeError(s, "empty vGPU type string")

        match = _TIME_SLICED_RE.fullmatch(s) or _MIG_BACKED_RE.fullmatch(s)
        if match is None:
            raise MalformedVGPUTypeError(s)
        groups = match.groupdict()

        series = groups["S"]
        if not Series.is_valid(series):
            raise MalformedVGPUTypeError(s, f"invalid series '{series}'")

        try:
            gb = int(groups["GB"])
        except ValueError as e:
            raise MalformedVGPUTypeError(
                s, f"malformed number for framebuffer size '{groups['GB']}'"
            ) from e

        g = 0
        attr: tuple[str, ...] = ()
        if groups.get("G") is not None:
            try:
                g = int(groups["G"])
            except ValueError as e:
                raise MalformedVGPUTypeError(
                    s, f"malformed number for GPU instances '{groups['G']}'"
                ) from e
            if groups.get("ATTR"):
                attr = (groups["ATTR"],)

        return cls(gpu=groups["GPU"], g=g, gb=gb, series=Series(series), attr=attr)

    def __str__(self) -> str:
        if self.g == 0:
            return f"{self.gpu}-{self.gb}{self.series.value}"
        return f"{self.gpu}-{self.g}-{self.gb}{self.series.value}{''.join(self.attr)}"


def parse_vgpu_type(s: str) -> VGPUType:
    return VGPUType.parse(s)


def format_vgpu_type(vgpu_type: VGPUType) -> str:
    return str(vgpu_type)


def parse_type_name(raw_name: str) -> str:
    """Extract the vGPU type name from a name that may carry a product prefix.

    Examples:
        "NVIDIA A100-4C" -> "A100-4C"
        "NVIDIA RTX Pro 6000 Blackwell DC-48C" -> "DC-48C"

    This assumes type names never contain a space themselves.
    """
    type_name = raw_name.strip().split(" ")[-1]
    if not type_name:
        raise MalformedVGPUTypeError(raw_name, f"unable to parse vGPU type name from: '{raw_name}'")
    return type_name


def strip_attribute_suffix(type_name: str) -> str:
    """Remove one trailing MIG attribute (MEALL, NOME, ME or GFX) from a type name.

    Only the outermost suffix is removed: "A100-1-5CNOMEME" -> "A100-1-5CNOME".
    """
    for suffix in _ATTRIBUTE_SUFFIXES:
        if type_name.endswith(suffix):
            return type_name[: -len(suffix)]
    return type_name
