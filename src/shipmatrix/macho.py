"""Mach-O thin header decoding and fat (universal) container encoding.

A fat file is a big-endian ``fat_header`` followed by one ``fat_arch`` record
per slice. Every slice is an unmodified thin Mach-O image stored at an offset
aligned to ``2 ** align``; the loader picks the slice whose ``cputype``
matches the running CPU.

Slices are laid out in the order they are given, so the same inputs in the
same order always produce the same bytes. Reordering inputs moves offsets and
therefore changes the bytes, but not which slice a loader selects.
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

MH_MAGIC = 0xFEEDFACE
MH_MAGIC_64 = 0xFEEDFACF
FAT_MAGIC = 0xCAFEBABE
FAT_MAGIC_64 = 0xCAFEBABF

MH_EXECUTE = 0x2

CPU_ARCH_ABI64 = 0x01000000
CPU_TYPE_X86 = 7
CPU_TYPE_ARM = 12
CPU_TYPE_X86_64 = CPU_TYPE_X86 | CPU_ARCH_ABI64
CPU_TYPE_ARM64 = CPU_TYPE_ARM | CPU_ARCH_ABI64

CPU_TYPES: dict[str, int] = {
    "x64": CPU_TYPE_X86_64,
    "arm64": CPU_TYPE_ARM64,
}
CPU_NAMES: dict[int, str] = {value: name for name, value in CPU_TYPES.items()}

# log2 of the slice alignment, matching the page size of each architecture.
SLICE_ALIGN: dict[int, int] = {
    CPU_TYPE_X86_64: 12,
    CPU_TYPE_ARM64: 14,
}
DEFAULT_SLICE_ALIGN = 12

_FAT_HEADER = struct.Struct(">II")
_FAT_ARCH = struct.Struct(">IIIII")
_FAT_ARCH_64 = struct.Struct(">IIQQII")
_MACH_HEADER = struct.Struct("IIIIIII")
_UINT32_MAX = 0xFFFFFFFF

ByteOrder = Literal["little", "big"]


class MachOFormatError(ValueError):
    """Bytes are not the Mach-O structure the caller expected."""


@dataclass(frozen=True, slots=True)
class ThinHeader:
    cputype: int
    cpusubtype: int
    filetype: int
    ncmds: int
    sizeofcmds: int
    is_64: bool
    byteorder: ByteOrder

    @property
    def architecture(self) -> str | None:
        return CPU_NAMES.get(self.cputype)

    @property
    def header_size(self) -> int:
        return 32 if self.is_64 else 28


@dataclass(frozen=True, slots=True)
class FatSlice:
    cputype: int
    cpusubtype: int
    offset: int
    size: int
    align: int

    @property
    def architecture(self) -> str | None:
        return CPU_NAMES.get(self.cputype)


def is_fat(data: bytes) -> bool:
    if len(data) < 4:
        return False
    (magic,) = struct.unpack_from(">I", data)
    return magic in (FAT_MAGIC, FAT_MAGIC_64)


def parse_thin(data: bytes) -> ThinHeader:
    """Decode a single-architecture Mach-O header."""
    if len(data) < 4:
        raise MachOFormatError("File is too short to hold a Mach-O header.")
    if is_fat(data):
        raise MachOFormatError("File is already a fat (universal) binary.")

    byteorder: ByteOrder
    (magic,) = struct.unpack_from("<I", data)
    if magic in (MH_MAGIC, MH_MAGIC_64):
        byteorder = "little"
    else:
        (magic,) = struct.unpack_from(">I", data)
        if magic not in (MH_MAGIC, MH_MAGIC_64):
            raise MachOFormatError(f"Unrecognized magic 0x{magic:08x}.")
        byteorder = "big"

    is_64 = magic == MH_MAGIC_64
    prefix = "<" if byteorder == "little" else ">"
    if len(data) < _MACH_HEADER.size:
        raise MachOFormatError("Truncated Mach-O header.")
    _, cputype, cpusubtype, filetype, ncmds, sizeofcmds, _flags = struct.unpack_from(
        prefix + "IIIIIII", data
    )
    header = ThinHeader(
        cputype=cputype,
        cpusubtype=cpusubtype,
        filetype=filetype,
        ncmds=ncmds,
        sizeofcmds=sizeofcmds,
        is_64=is_64,
        byteorder=byteorder,
    )
    if len(data) < header.header_size + sizeofcmds:
        raise MachOFormatError("Load commands extend past the end of the file.")
    return header


def thin_header_bytes(
    cputype: int,
    cpusubtype: int = 3,
    *,
    filetype: int = MH_EXECUTE,
    ncmds: int = 0,
    sizeofcmds: int = 0,
    flags: int = 0,
) -> bytes:
    """Encode a little-endian 64-bit ``mach_header_64``."""
    return struct.pack(
        "<IIIIIIII", MH_MAGIC_64, cputype, cpusubtype, filetype, ncmds, sizeofcmds, flags, 0
    )


def slice_align(cputype: int) -> int:
    return SLICE_ALIGN.get(cputype, DEFAULT_SLICE_ALIGN)


def layout(headers: Sequence[tuple[ThinHeader, int]]) -> tuple[tuple[FatSlice, ...], bool]:
    """Place slices after the fat header; returns the slices and whether fat64 is needed."""
    slices = _place(headers, record_size=_FAT_ARCH.size)
    if all(s.offset + s.size <= _UINT32_MAX for s in slices):
        return slices, False
    return _place(headers, record_size=_FAT_ARCH_64.size), True


def _place(headers: Sequence[tuple[ThinHeader, int]], *, record_size: int) -> tuple[FatSlice, ...]:
    cursor = _FAT_HEADER.size + record_size * len(headers)
    slices: list[FatSlice] = []
    for header, size in headers:
        align = slice_align(header.cputype)
        cursor = _align_up(cursor, 1 << align)
        slices.append(
            FatSlice(
                cputype=header.cputype,
                cpusubtype=header.cpusubtype,
                offset=cursor,
                size=size,
                align=align,
            )
        )
        cursor += size
    return tuple(slices)


def build_fat(images: Sequence[bytes]) -> bytes:
    """Wrap thin Mach-O images into one fat container, in the given order."""
    if not images:
        raise MachOFormatError("At least one slice is required.")
    headers = [(parse_thin(image), len(image)) for image in images]
    slices, fat64 = layout(headers)

    out = bytearray(_FAT_HEADER.pack(FAT_MAGIC_64 if fat64 else FAT_MAGIC, len(slices)))
    for fat_slice in slices:
        if fat64:
            out += _FAT_ARCH_64.pack(
                fat_slice.cputype,
                fat_slice.cpusubtype,
                fat_slice.offset,
                fat_slice.size,
                fat_slice.align,
                0,
            )
        else:
            out += _FAT_ARCH.pack(
                fat_slice.cputype,
                fat_slice.cpusubtype,
                fat_slice.offset,
                fat_slice.size,
                fat_slice.align,
            )
    for fat_slice, image in zip(slices, images, strict=True):
        out += bytes(fat_slice.offset - len(out))
        out += image
    return bytes(out)


def read_fat(data: bytes) -> tuple[FatSlice, ...]:
    """Decode the slice table of a fat container."""
    if len(data) < _FAT_HEADER.size or not is_fat(data):
        raise MachOFormatError("Not a fat Mach-O file.")
    magic, count = _FAT_HEADER.unpack_from(data)
    fat64 = magic == FAT_MAGIC_64
    record = _FAT_ARCH_64 if fat64 else _FAT_ARCH
    if len(data) < _FAT_HEADER.size + record.size * count:
        raise MachOFormatError("Truncated fat_arch table.")

    slices: list[FatSlice] = []
    for index in range(count):
        fields = record.unpack_from(data, _FAT_HEADER.size + record.size * index)
        cputype, cpusubtype, offset, size, align = fields[:5]
        if offset + size > len(data):
            raise MachOFormatError(f"Slice {index} extends past the end of the file.")
        if offset % (1 << align):
            raise MachOFormatError(f"Slice {index} is not aligned to 2**{align}.")
        slices.append(
            FatSlice(cputype=cputype, cpusubtype=cpusubtype, offset=offset, size=size, align=align)
        )
    return tuple(slices)


def slice_bytes(data: bytes, fat_slice: FatSlice) -> bytes:
    return data[fat_slice.offset : fat_slice.offset + fat_slice.size]


def describe(data: bytes) -> list[dict[str, object]]:
    """Summarize every architecture slice in a thin or fat file."""
    if is_fat(data):
        return [
            {
                "architecture": s.architecture or f"cpu-0x{s.cputype:08x}",
                "cputype": s.cputype,
                "offset": s.offset,
                "size": s.size,
                "align": 1 << s.align,
            }
            for s in read_fat(data)
        ]
    header = parse_thin(data)
    return [
        {
            "architecture": header.architecture or f"cpu-0x{header.cputype:08x}",
            "cputype": header.cputype,
            "offset": 0,
            "size": len(data),
            "align": 1,
        }
    ]


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)
