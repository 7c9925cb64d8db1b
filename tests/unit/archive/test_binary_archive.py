"""Unit tests for the content-addressed binary archive."""

from __future__ import annotations

import json

import numpy
import pytest

from archive.binary_archive import BinaryArchive, compute_checksum
from core.constants import BINARY_ARCHIVE_VERSION
from core.errors import SerialboxModeError, SerialboxStructuralError
from core.types import FieldID, FileOffset, OpenMode


def test_write_then_read_returns_payload(tmp_path) -> None:
    """A written payload should be readable through its locator."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    data = numpy.arange(6, dtype=numpy.float64).reshape(2, 3)
    field_id = archive.write(data, "u")
    target = numpy.zeros((2, 3), dtype=numpy.float64)

    archive.read(target, field_id)

    assert numpy.array_equal(target, data)


def test_first_slot_starts_at_offset_zero(tmp_path) -> None:
    """The first payload of a field should start its data file."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")

    archive.write(numpy.ones(4, dtype=numpy.int32), "u")

    assert archive.field_table["u"][0].offset == 0


def test_identical_payload_is_deduplicated(tmp_path) -> None:
    """Writing byte-identical data twice should reuse the first slot."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    data = numpy.full((3, 3), 2.5)

    first = archive.write(data, "u")
    second = archive.write(data.copy(), "u")

    assert first == second and len(archive.field_table["u"]) == 1
    assert (tmp_path / "demo_u.dat").stat().st_size == data.nbytes


def test_changed_payload_appends_slot(tmp_path) -> None:
    """New content should append a slot at a non-zero offset."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(4), "u")

    field_id = archive.write(numpy.ones(4), "u")

    assert field_id == FieldID(name="u", slot=1)
    assert archive.field_table["u"][1] == FileOffset(
        offset=32, checksum=compute_checksum(numpy.ones(4).tobytes()), size=32
    )


def test_update_meta_data_persists_slot_table(tmp_path) -> None:
    """The index file should reload into the same slot tables."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(2), "u")
    archive.write(numpy.ones(2), "u")
    archive.update_meta_data()

    reopened = BinaryArchive(OpenMode.READ, tmp_path, "demo")

    assert reopened.field_table == archive.field_table


def test_read_rejects_unknown_locator(tmp_path) -> None:
    """Reading an unknown slot is a structural error."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(2), "u")

    with pytest.raises(SerialboxStructuralError):
        archive.read(numpy.zeros(2), FieldID(name="u", slot=5))


def test_read_rejects_larger_destination(tmp_path) -> None:
    """A larger destination must not read on into the next slot."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    first = archive.write(numpy.arange(8, dtype=numpy.float64), "u")
    archive.write(numpy.arange(8, dtype=numpy.float64) + 100, "u")

    with pytest.raises(SerialboxStructuralError):
        archive.read(numpy.zeros(12), first)


def test_read_rejects_smaller_destination(tmp_path) -> None:
    """A smaller destination must not receive a truncated payload."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    field_id = archive.write(numpy.arange(8, dtype=numpy.float64), "u")
    target = numpy.zeros(4)

    with pytest.raises(SerialboxStructuralError):
        archive.read(target, field_id)

    assert not target.any()


def test_read_rejects_truncated_data_file(tmp_path) -> None:
    """A data file ending inside the payload is a structural error."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    field_id = archive.write(numpy.zeros(8), "u")
    (tmp_path / "demo_u.dat").write_bytes(b"\0" * 16)

    with pytest.raises(SerialboxStructuralError):
        archive.read(numpy.zeros(8), field_id)


def test_index_file_records_payload_sizes(tmp_path) -> None:
    """Every slot in the index file should carry its payload size."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(3, dtype=numpy.int32), "u")
    archive.update_meta_data()

    index = json.loads((tmp_path / "ArchiveMetaData-demo.json").read_text(encoding="utf-8"))

    assert index["fields-table"]["u"] == [[0, compute_checksum(bytes(12)), 12]]


def test_discard_drops_latest_appended_slot(tmp_path) -> None:
    """Discarding the latest write should shrink the slot table again."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(4), "u")
    field_id = archive.write(numpy.ones(4), "u")

    archive.discard(field_id)

    assert len(archive.field_table["u"]) == 1
    assert archive.write(numpy.full(4, 2.0), "u") == FieldID(name="u", slot=1)


def test_discard_ignores_deduplicated_locator(tmp_path) -> None:
    """A locator reused through deduplication must stay in the table."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(4), "u")
    field_id = archive.write(numpy.zeros(4), "u")

    archive.discard(field_id)

    assert len(archive.field_table["u"]) == 1


def test_discard_of_first_slot_restarts_data_file(tmp_path) -> None:
    """After discarding a field's only slot the next write starts at byte 0."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.discard(archive.write(numpy.zeros(4), "u"))

    archive.write(numpy.ones(4), "u")

    assert archive.field_table["u"][0].offset == 0
    assert (tmp_path / "demo_u.dat").stat().st_size == 32


def test_write_rejected_in_read_mode(tmp_path) -> None:
    """A read-only archive must not accept writes."""
    archive = BinaryArchive(OpenMode.READ, tmp_path, "demo")

    with pytest.raises(SerialboxModeError):
        archive.write(numpy.zeros(2), "u")

    assert not (tmp_path / "demo_u.dat").exists()


def test_clear_removes_files(tmp_path) -> None:
    """Clearing should drop data files, index file and slot tables."""
    archive = BinaryArchive(OpenMode.WRITE, tmp_path, "demo")
    archive.write(numpy.zeros(2), "u")
    archive.update_meta_data()

    archive.clear()

    assert archive.field_table == {}
    assert not (tmp_path / "demo_u.dat").exists()
    assert not (tmp_path / "ArchiveMetaData-demo.json").exists()


def test_register_offset_deduplicates_by_checksum(tmp_path) -> None:
    """Known checksums should map onto their existing slot."""
    archive = BinaryArchive(OpenMode.READ, tmp_path, "demo", skip_metadata=True)
    archive.register_offset("p", FileOffset(0, "aa", 16))
    archive.register_offset("p", FileOffset(64, "bb", 16))

    field_id = archive.register_offset("p", FileOffset(128, "aa", 16))

    assert field_id.slot == 0 and len(archive.field_table["p"]) == 2


def test_register_offset_requires_zero_first_offset(tmp_path) -> None:
    """The first slot of a field must start at byte 0."""
    archive = BinaryArchive(OpenMode.READ, tmp_path, "demo", skip_metadata=True)

    with pytest.raises(SerialboxStructuralError):
        archive.register_offset("p", FileOffset(16, "aa", 16))


def test_register_offset_rejects_zero_for_later_slot(tmp_path) -> None:
    """Only the first slot may claim byte offset 0."""
    archive = BinaryArchive(OpenMode.READ, tmp_path, "demo", skip_metadata=True)
    archive.register_offset("p", FileOffset(0, "aa", 16))

    with pytest.raises(SerialboxStructuralError):
        archive.register_offset("p", FileOffset(0, "bb", 16))


def test_open_rejects_foreign_prefix(tmp_path) -> None:
    """An index file of another dataset prefix should not load."""
    index = {
        "binary-archive-version": BINARY_ARCHIVE_VERSION,
        "prefix": "other",
        "fields-table": {},
    }
    (tmp_path / "ArchiveMetaData-demo.json").write_text(json.dumps(index), encoding="utf-8")

    with pytest.raises(SerialboxStructuralError):
        BinaryArchive(OpenMode.READ, tmp_path, "demo")
