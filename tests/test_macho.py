import struct

import pytest

from shipmatrix.macho import (
    CPU_TYPE_ARM64,
    CPU_TYPE_X86_64,
    FAT_MAGIC,
    FAT_MAGIC_64,
    MH_MAGIC,
    MachOFormatError,
    ThinHeader,
    build_fat,
    describe,
    is_fat,
    layout,
    parse_thin,
    read_fat,
    slice_bytes,
    thin_header_bytes,
)

X64 = thin_header_bytes(CPU_TYPE_X86_64) + b"x64 body"
ARM64 = thin_header_bytes(CPU_TYPE_ARM64) + b"arm64 body"


def test_parse_thin_little_endian_64() -> None:
    header = parse_thin(X64)
    assert header.cputype == CPU_TYPE_X86_64
    assert header.is_64
    assert header.byteorder == "little"
    assert header.architecture == "x64"


def test_parse_thin_big_endian_32() -> None:
    data = struct.pack(">IIIIIII", MH_MAGIC, 18, 0, 2, 0, 0, 0)
    header = parse_thin(data)
    assert header.byteorder == "big"
    assert not header.is_64
    assert header.architecture is None


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\x7fELF" + bytes(60),
        X64[:20],
        thin_header_bytes(CPU_TYPE_X86_64, ncmds=1, sizeofcmds=64),
    ],
)
def test_parse_thin_rejects_malformed_input(data: bytes) -> None:
    with pytest.raises(MachOFormatError):
        parse_thin(data)


def test_fat_layout_aligns_each_slice_to_its_page_size() -> None:
    data = build_fat([X64, ARM64])
    magic, count = struct.unpack_from(">II", data)
    slices = read_fat(data)

    assert magic == FAT_MAGIC
    assert count == 2
    assert [s.align for s in slices] == [12, 14]
    assert slices[0].offset == 4096
    assert slices[1].offset % (1 << 14) == 0
    assert slice_bytes(data, slices[0]) == X64
    assert slice_bytes(data, slices[1]) == ARM64
    assert is_fat(data)


def test_fat_output_is_byte_identical_for_identical_inputs() -> None:
    assert build_fat([X64, ARM64]) == build_fat([X64, ARM64])


def test_input_order_changes_bytes_but_not_slice_contents() -> None:
    forward = build_fat([X64, ARM64])
    reverse = build_fat([ARM64, X64])
    assert forward != reverse
    by_arch = {s.architecture: slice_bytes(reverse, s) for s in read_fat(reverse)}
    assert by_arch == {"x64": X64, "arm64": ARM64}


def test_parse_thin_rejects_fat_input() -> None:
    with pytest.raises(MachOFormatError, match="already a fat"):
        parse_thin(build_fat([X64, ARM64]))


def test_layout_switches_to_fat64_past_four_gigabytes() -> None:
    big = ThinHeader(
        cputype=CPU_TYPE_X86_64,
        cpusubtype=3,
        filetype=2,
        ncmds=0,
        sizeofcmds=0,
        is_64=True,
        byteorder="little",
    )
    arm = ThinHeader(
        cputype=CPU_TYPE_ARM64,
        cpusubtype=0,
        filetype=2,
        ncmds=0,
        sizeofcmds=0,
        is_64=True,
        byteorder="little",
    )
    slices, fat64 = layout([(big, 3 << 30), (arm, 2 << 30)])
    assert fat64
    assert slices[1].offset > 0xFFFFFFFF - (2 << 30)

    _, small = layout([(big, 100), (arm, 100)])
    assert not small


def test_read_fat_rejects_truncated_slice() -> None:
    data = build_fat([X64, ARM64])
    with pytest.raises(MachOFormatError, match="past the end"):
        read_fat(data[:-4])


def test_read_fat_decodes_fat64_header() -> None:
    record = struct.pack(">IIQQII", CPU_TYPE_X86_64, 3, 4096, len(X64), 12, 0)
    data = struct.pack(">II", FAT_MAGIC_64, 1) + record
    data += bytes(4096 - len(data)) + X64
    (fat_slice,) = read_fat(data)
    assert fat_slice.offset == 4096
    assert slice_bytes(data, fat_slice) == X64


def test_describe_thin_and_fat() -> None:
    assert describe(X64) == [
        {"architecture": "x64", "cputype": CPU_TYPE_X86_64, "offset": 0, "size": len(X64), "align": 1}
    ]
    assert [entry["architecture"] for entry in describe(build_fat([X64, ARM64]))] == ["x64", "arm64"]
