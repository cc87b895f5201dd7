"""Tests for the thunk table reader and its anti-abuse checks."""

import pytest

from impscope.core.errors import (
    AddressSpreadTooLargeError,
    BogusDataError,
    BogusOrdinalError,
    ParseErrorKind,
    TruncatedReadError,
)
from impscope.parsers.thunks import (
    MAX_ADDRESS_SPREAD,
    PE32_WORD,
    PE32PLUS_WORD,
    ImportLimits,
    ThunkEntry,
    ThunkTableReader,
    WordWidth,
)
from image_builder import FlatImage

TABLE_RVA = 0x100
NAME_RVA = 0x800


def read_table(image: FlatImage, max_length: int = 0x10000, **kwargs):
    width = PE32PLUS_WORD if image.is_64bit else PE32_WORD
    reader = ThunkTableReader(image.resolver(), **kwargs)
    return reader.read(TABLE_RVA, max_length, width)


class TestWordWidth:
    """Tests for the width value object."""

    def test_for_image(self):
        assert WordWidth.for_image(False) is PE32_WORD
        assert WordWidth.for_image(True) is PE32PLUS_WORD

    def test_masks(self):
        assert PE32_WORD.size == 4
        assert PE32_WORD.ordinal_flag == 0x80000000
        assert PE32_WORD.address_mask == 0x7FFFFFFF
        assert PE32PLUS_WORD.size == 8
        assert PE32PLUS_WORD.ordinal_flag == 1 << 63
        assert PE32PLUS_WORD.address_mask == (1 << 63) - 1

    def test_ordinal_flag_is_width_specific(self):
        # Bit 31 is only an ordinal flag for 32-bit tables
        assert PE32_WORD.is_ordinal(0x80000007)
        assert not PE32PLUS_WORD.is_ordinal(0x80000007)

    def test_entry_decoding(self):
        entry = ThunkEntry(rva=0, value=0x8000FFFF, width=PE32_WORD)
        assert entry.is_ordinal
        assert entry.ordinal == 0xFFFF

        entry = ThunkEntry(rva=0, value=0x2040, width=PE32_WORD)
        assert not entry.is_ordinal
        assert entry.data_address == 0x2040


class TestThunkTableReader:
    """Tests for ThunkTableReader.read."""

    def test_reads_until_zero_terminator(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, NAME_RVA + 0x10, 0x80000003])
        entries = read_table(image)
        assert [e.value for e in entries] == [NAME_RVA, NAME_RVA + 0x10, 0x80000003]
        assert [e.rva for e in entries] == [TABLE_RVA, TABLE_RVA + 4, TABLE_RVA + 8]

    def test_reads_64bit_entries(self):
        image = FlatImage(is_64bit=True)
        image.put_words(TABLE_RVA, [NAME_RVA, 0x8000000000000009])
        entries = read_table(image)
        assert [e.rva for e in entries] == [TABLE_RVA, TABLE_RVA + 8]
        assert entries[1].is_ordinal
        assert entries[1].ordinal == 9

    def test_zero_rva_is_absent_table(self):
        image = FlatImage()
        reader = ThunkTableReader(image.resolver())
        assert reader.read(0, 0x100, PE32_WORD) == []

    def test_empty_table(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [])
        assert read_table(image) == []

    def test_length_bound_stops_without_error(self, recording_logger):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, NAME_RVA + 0x10, NAME_RVA + 0x20])
        entries = read_table(image, max_length=8, logger=recording_logger)
        assert len(entries) == 2
        assert any("bound" in m for m in recording_logger.messages("warning"))

    def test_unterminated_table_at_end_of_file(self):
        image = FlatImage(size=TABLE_RVA)
        image.put_words(TABLE_RVA, [NAME_RVA, NAME_RVA + 0x10], terminate=False)
        with pytest.raises(TruncatedReadError) as excinfo:
            read_table(image)
        assert excinfo.value.kind is ParseErrorKind.TRUNCATED_READ
        assert excinfo.value.rva == TABLE_RVA + 8

    def test_table_outside_file(self):
        image = FlatImage(size=0x80)
        with pytest.raises(TruncatedReadError):
            read_table(image)


class TestSelfOverlap:
    """Entries pointing back into their own table end it."""

    def test_pointer_into_table_ends_it(self, recording_logger):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, TABLE_RVA, NAME_RVA + 0x10])
        entries = read_table(image, logger=recording_logger)
        assert [e.value for e in entries] == [NAME_RVA]
        assert recording_logger.messages("warning")

    def test_pointer_to_current_entry_ends_it(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, TABLE_RVA + 4])
        assert len(read_table(image)) == 1

    def test_self_referential_table_terminates(self):
        # Every slot points at the table start
        image = FlatImage()
        image.put_words(TABLE_RVA, [TABLE_RVA] * 64, terminate=False)
        assert read_table(image) == []

    def test_pointer_past_current_entry_is_accepted(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [TABLE_RVA + 0x40])
        assert len(read_table(image)) == 1


class TestBogusOrdinal:
    """Ordinal entries must fit in 16 bits."""

    def test_max_ordinal_is_valid(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [0x8000FFFF])
        entries = read_table(image)
        assert entries[0].ordinal == 0xFFFF

    def test_ordinal_beyond_16_bits(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [0x80010000])
        with pytest.raises(BogusOrdinalError) as excinfo:
            read_table(image)
        assert excinfo.value.kind is ParseErrorKind.BOGUS_ORDINAL
        assert excinfo.value.rva == TABLE_RVA

    def test_ordinal_beyond_16_bits_64bit(self):
        image = FlatImage(is_64bit=True)
        image.put_words(TABLE_RVA, [0x8000000000010000])
        with pytest.raises(BogusOrdinalError):
            read_table(image)


class TestRepeatFlood:
    """The same hint/name RVA may only recur a bounded number of times."""

    def test_fifteen_repeats_accepted(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA] * 16)
        assert len(read_table(image)) == 16

    def test_sixteenth_repeat_rejected(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA] * 20)
        with pytest.raises(BogusDataError) as excinfo:
            read_table(image)
        assert excinfo.value.kind is ParseErrorKind.BOGUS_DATA
        # 17th entry carries the 16th repeat
        assert excinfo.value.rva == TABLE_RVA + 16 * 4

    def test_repeats_counted_across_addresses(self):
        values = [NAME_RVA, NAME_RVA + 0x10] + [NAME_RVA, NAME_RVA + 0x10] * 8
        image = FlatImage()
        image.put_words(TABLE_RVA, values)
        with pytest.raises(BogusDataError):
            read_table(image)

    def test_ordinals_are_not_counted(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [0x80000001] * 40)
        assert len(read_table(image)) == 40

    def test_custom_ceiling(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA] * 3)
        limits = ImportLimits(max_repeated_addresses=2)
        with pytest.raises(BogusDataError):
            read_table(image, limits=limits)


class TestAddressSpread:
    """Hint/name RVAs of one table must stay close together."""

    def test_spread_beyond_ceiling(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, NAME_RVA + MAX_ADDRESS_SPREAD + 1])
        with pytest.raises(AddressSpreadTooLargeError) as excinfo:
            read_table(image)
        assert excinfo.value.kind is ParseErrorKind.ADDRESS_SPREAD_TOO_LARGE

    def test_spread_at_ceiling_is_accepted(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, NAME_RVA + MAX_ADDRESS_SPREAD])
        assert len(read_table(image)) == 2

    def test_spread_measured_against_running_minimum(self):
        image = FlatImage()
        high = NAME_RVA + MAX_ADDRESS_SPREAD
        image.put_words(TABLE_RVA, [high, NAME_RVA + 0x10, NAME_RVA - 0x10])
        with pytest.raises(AddressSpreadTooLargeError):
            read_table(image)

    def test_ordinals_do_not_widen_spread(self):
        image = FlatImage()
        image.put_words(TABLE_RVA, [NAME_RVA, 0x8000FFFF, NAME_RVA + 0x20])
        assert len(read_table(image)) == 3
