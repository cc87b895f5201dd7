"""Tests for address resolution helpers."""

import pytest

from impscope.parsers.resolver import (
    AddressResolutionError,
    AddressResolver,
    FlatImageResolver,
    read_c_string,
)


class TestReadCString:
    """Tests for read_c_string."""

    def test_reads_until_nul(self):
        assert read_c_string(b"\x00\x00KERNEL32.dll\x00junk", 2, 0x200) == "KERNEL32.dll"

    def test_empty_string(self):
        assert read_c_string(b"\x00abc", 0, 0x200) == ""

    def test_high_bytes_round_trip(self):
        assert read_c_string(b"caf\xe9\x00", 0, 16) == "caf\xe9"

    def test_string_of_exact_max_length(self):
        assert read_c_string(b"abcd\x00", 0, 4) == "abcd"

    def test_unterminated_within_limit(self):
        with pytest.raises(AddressResolutionError, match="Unterminated"):
            read_c_string(b"abcdef\x00", 0, 4)

    def test_offset_out_of_range(self):
        with pytest.raises(AddressResolutionError):
            read_c_string(b"abc\x00", 4, 16)
        with pytest.raises(AddressResolutionError):
            read_c_string(b"abc\x00", -1, 16)


class TestFlatImageResolver:
    """Tests for the identity-mapped resolver."""

    def test_satisfies_protocol(self):
        assert isinstance(FlatImageResolver(b""), AddressResolver)

    def test_identity_mapping(self):
        resolver = FlatImageResolver(b"\x00" * 0x100)
        assert resolver.size == 0x100
        assert resolver.offset_of(0x80) == 0x80

    def test_rva_outside_image(self):
        resolver = FlatImageResolver(b"\x00" * 0x100)
        with pytest.raises(AddressResolutionError):
            resolver.offset_of(0x100)

    def test_read_bytes_bounds(self):
        resolver = FlatImageResolver(bytes(range(16)))
        assert resolver.read_bytes(12, 4) == bytes([12, 13, 14, 15])
        with pytest.raises(AddressResolutionError):
            resolver.read_bytes(13, 4)
        with pytest.raises(AddressResolutionError):
            resolver.read_bytes(-1, 2)

    def test_read_c_string_at_rva(self):
        resolver = FlatImageResolver(b"\x00\x00GetDC\x00")
        assert resolver.read_c_string_at_rva(2) == "GetDC"

    def test_resolution_error_is_value_error(self):
        assert issubclass(AddressResolutionError, ValueError)
