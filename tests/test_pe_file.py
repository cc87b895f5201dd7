"""Tests for PE header parsing and section-mapped import walking."""

import pytest

from impscope.core.errors import ImportParseError
from impscope.core.models import BinaryFormat
from impscope.parsers.pe_file import PEFile
from impscope.parsers.resolver import AddressResolutionError, AddressResolver
from image_builder import (
    SECTION_FILE_OFFSET,
    SECTION_RVA,
    ModuleSpec,
    build_pe,
    sample_modules,
)


class TestHeaders:
    """Header parsing for PE32 and PE32+."""

    def test_pe32(self):
        pe = PEFile(build_pe(sample_modules(), image_base=0x10000000, entry_point=0x1234))
        assert pe.parse()
        assert pe.parsed
        assert not pe.is_64bit
        assert pe.image_base == 0x10000000
        assert not pe.is_dll
        assert pe.section_names == [".idata"]

        info = pe.get_binary_info()
        assert info.format is BinaryFormat.PE
        assert info.arch == "x86"
        assert info.bits == 32
        assert info.entry_point == 0x1234
        assert info.import_directory_rva == pe.import_directory[0]
        assert info.import_directory_rva >= SECTION_RVA

    def test_pe32plus(self):
        pe = PEFile(build_pe(sample_modules(), is_64bit=True, dll=True))
        assert pe.parse()
        assert pe.is_64bit
        assert pe.is_dll
        assert pe.image_base == 0x140000000
        info = pe.get_binary_info()
        assert info.arch == "x86_64"
        assert info.bits == 64

    def test_satisfies_resolver_protocol(self):
        assert isinstance(PEFile(b""), AddressResolver)

    @pytest.mark.parametrize("data", [
        b"",
        b"MZ",
        b"ELF" + b"\x00" * 100,
        b"MZ" + b"\x00" * 62,
    ])
    def test_rejects_non_pe(self, data):
        assert not PEFile(data).parse()

    def test_rejects_bad_optional_magic(self):
        assert not PEFile(build_pe(sample_modules(), optional_magic=0x107)).parse()

    def test_rejects_truncated_headers(self):
        data = build_pe(sample_modules())
        assert not PEFile(data[:0x90]).parse()


class TestAddressMapping:
    """RVA translation through the section table."""

    def test_section_rva_maps_to_raw_offset(self):
        pe = PEFile(build_pe(sample_modules()))
        assert pe.parse()
        assert pe.offset_of(SECTION_RVA) == SECTION_FILE_OFFSET
        assert pe.offset_of(SECTION_RVA + 0x10) == SECTION_FILE_OFFSET + 0x10

    def test_header_rva_is_identity(self):
        pe = PEFile(build_pe(sample_modules()))
        assert pe.parse()
        assert pe.offset_of(0x3C) == 0x3C

    def test_unmapped_rva(self):
        pe = PEFile(build_pe(sample_modules()))
        assert pe.parse()
        with pytest.raises(AddressResolutionError):
            pe.offset_of(0x100000)

    def test_read_c_string_at_rva(self):
        pe = PEFile(build_pe(sample_modules()))
        assert pe.parse()
        imports = pe.parse_imports()
        name_rva = imports[0].descriptor.name_rva
        assert pe.read_c_string_at_rva(name_rva) == "KERNEL32.dll"


class TestParseImports:
    """Import walking over a real section mapping."""

    def test_imports_pe32(self):
        pe = PEFile(build_pe(sample_modules()))
        assert pe.parse()
        imports = pe.parse_imports()
        assert [imp.module_name for imp in imports] == ["KERNEL32.dll", "USER32.dll"]
        assert [fn.display_name for fn in imports[0].functions] == [
            "CreateFileA", "ReadFile", "ordinal_42", "CloseHandle",
        ]
        # Descriptor offsets are file offsets, not RVAs
        assert SECTION_FILE_OFFSET <= imports[0].file_offset < SECTION_RVA

    def test_imports_pe32plus(self):
        pe = PEFile(build_pe(sample_modules(), is_64bit=True))
        assert pe.parse()
        imports = pe.parse_imports()
        iat = imports[1].descriptor.address_table_rva
        assert [fn.estimated_loaded_address for fn in imports[1].functions] == [
            0x140000000 + iat + i * 8 for i in range(4)
        ]

    def test_no_import_directory(self):
        pe = PEFile(build_pe(None))
        assert pe.parse()
        assert pe.import_directory == (0, 0)
        assert pe.parse_imports() == []

    def test_requires_parse(self):
        with pytest.raises(RuntimeError):
            PEFile(build_pe(sample_modules())).parse_imports()

    def test_malformed_imports_raise(self):
        modules = [ModuleSpec("a.dll", ["Fine", 0])]
        pe = PEFile(build_pe(modules))
        assert pe.parse()
        with pytest.raises(ImportParseError):
            pe.parse_imports()
