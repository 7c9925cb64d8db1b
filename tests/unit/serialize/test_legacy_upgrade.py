"""Unit tests for the legacy metadata upgrade."""

from __future__ import annotations

from dataclasses import replace
import json
import os

import numpy
import pytest

from core.config import SerialboxConfig
from core.errors import (
    SerialboxFilesystemError,
    SerialboxModeError,
    SerialboxStructuralError,
)
from core.type_id import TypeID
from core.types import OpenMode
from metadata.savepoint import Savepoint
from serialize import serializer as serializer_module
from serialize.legacy_upgrade import infer_float_type
from serialize.serializer import Serializer


def _legacy_document() -> dict[str, object]:
    return {
        "GlobalMetainfo": {"__created": "yesterday", "model": "cosmo", "dt": 0.5},
        "FieldsTable": [
            {
                "__name": "p",
                "__elementtype": "double",
                "__isize": 2,
                "__jsize": 2,
                "__ksize": 1,
                "units": "Pa",
            }
        ],
        "OffsetTable": [
            {"__name": "s0", "__id": 0, "__offsets": {"p": [0, "deadbeef"]}},
        ],
    }


def _write_legacy(directory, document: dict[str, object]) -> None:
    (directory / "demo.json").write_text(json.dumps(document), encoding="utf-8")


def test_upgrade_rebuilds_registries(tmp_path) -> None:
    """The legacy example should yield the field, savepoint and locator."""
    _write_legacy(tmp_path, _legacy_document())

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    info = serializer.get_field_meta_info("p")
    assert info.type_id is TypeID.FLOAT64 and info.dims == (2, 2, 1)
    assert serializer.fields_at(Savepoint("s0")) == ["p"]
    assert serializer.to_document()["savepoint-list"][0]["field-offsets"] == {"p": 0}
    assert (tmp_path / "MetaData-demo.json").exists()


def test_upgrade_skips_reserved_keys(tmp_path) -> None:
    """Double-underscore keys are legacy internals, not user meta-info."""
    _write_legacy(tmp_path, _legacy_document())

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert sorted(serializer.global_meta_info.keys()) == ["dt", "model"]
    assert serializer.get_field_meta_info("p").meta_info.keys() == ["units"]


def test_upgrade_reads_legacy_payload(tmp_path) -> None:
    """Upgraded locators should point at the legacy payload bytes."""
    _write_legacy(tmp_path, _legacy_document())
    data = numpy.arange(4, dtype=numpy.float64).reshape(2, 2, 1)
    (tmp_path / "demo_p.dat").write_bytes(data.tobytes())

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert numpy.array_equal(serializer.read_array("p", Savepoint("s0")), data)


def test_upgrade_deduplicates_offsets_by_checksum(tmp_path) -> None:
    """Savepoints sharing a checksum should share a slot."""
    document = _legacy_document()
    document["OffsetTable"] = [
        {"__name": "s0", "__offsets": {"p": [0, "aa"]}},
        {"__name": "s1", "__offsets": {"p": [0, "aa"]}},
        {"__name": "s2", "__offsets": {"p": [32, "bb"]}},
    ]
    _write_legacy(tmp_path, document)

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    slots = [entry["field-offsets"]["p"] for entry in serializer.to_document()["savepoint-list"]]
    assert slots == [0, 0, 1] and len(serializer.archive.field_table["p"]) == 2


def test_upgrade_infers_single_precision_meta_info(tmp_path) -> None:
    """A first field of type float should type untyped floats as FLOAT32."""
    document = _legacy_document()
    document["FieldsTable"][0]["__elementtype"] = "float"
    _write_legacy(tmp_path, document)

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert serializer.global_meta_info.get("dt").type_id is TypeID.FLOAT32


def test_infer_float_type_defaults_to_double() -> None:
    """Without fields, untyped floats default to FLOAT64."""
    assert infer_float_type({}) is TypeID.FLOAT64


def test_upgrade_keeps_savepoint_meta_info(tmp_path) -> None:
    """Non-reserved offset table keys become savepoint meta-info."""
    document = _legacy_document()
    document["OffsetTable"][0]["time"] = 1.5
    _write_legacy(tmp_path, document)

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert serializer.has_savepoint(Savepoint("s0", {"time": 1.5}))


def test_upgrade_reads_optional_fourth_dimension(tmp_path) -> None:
    """The optional __lsize key should add a fourth extent."""
    document = _legacy_document()
    document["FieldsTable"][0]["__lsize"] = 3
    _write_legacy(tmp_path, document)

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert serializer.get_field_meta_info("p").dims == (2, 2, 1, 3)


def test_upgrade_rejected_in_append_mode(tmp_path) -> None:
    """Legacy datasets cannot be opened for writing."""
    _write_legacy(tmp_path, _legacy_document())

    with pytest.raises(SerialboxModeError):
        Serializer(OpenMode.APPEND, tmp_path, "demo")


def test_upgrade_skipped_when_current_metadata_is_newer(tmp_path) -> None:
    """An upgraded dataset should load from the current-schema file."""
    _write_legacy(tmp_path, _legacy_document())
    Serializer(OpenMode.READ, tmp_path, "demo")
    document = _legacy_document()
    document["FieldsTable"][0]["__name"] = "q"
    _write_legacy(tmp_path, document)
    os.utime(tmp_path / "demo.json", (0, 0))

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert serializer.field_names() == ["p"]


def test_upgrade_policy_can_force_upgrade(tmp_path) -> None:
    """A custom policy should override the timestamp heuristic."""
    _write_legacy(tmp_path, _legacy_document())
    Serializer(OpenMode.READ, tmp_path, "demo")
    document = _legacy_document()
    document["FieldsTable"][0]["__name"] = "q"
    document["OffsetTable"][0]["__offsets"] = {"q": [0, "cc"]}
    _write_legacy(tmp_path, document)
    os.utime(tmp_path / "demo.json", (0, 0))

    serializer = Serializer(
        OpenMode.READ, tmp_path, "demo", upgrade_policy=lambda legacy, current: True
    )

    assert serializer.field_names() == ["q"]


def test_upgrade_disabled_by_config(tmp_path) -> None:
    """Disabling upgrades should ignore legacy metadata."""
    _write_legacy(tmp_path, _legacy_document())
    config = replace(SerialboxConfig.from_env(), legacy_upgrade=False)

    with pytest.raises(SerialboxFilesystemError):
        Serializer(OpenMode.READ, tmp_path, "demo", config=config)


def test_upgrade_tolerates_persist_failure(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Failing to write upgraded metadata should not fail the open."""
    _write_legacy(tmp_path, _legacy_document())

    def _fail_write(document_path, payload) -> None:
        raise SerialboxFilesystemError(f"read-only location {document_path}")

    monkeypatch.setattr(serializer_module, "write_json_document", _fail_write)

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert serializer.field_names() == ["p"]
    assert not (tmp_path / "MetaData-demo.json").exists()


def test_upgrade_rejects_undecidable_meta_info(tmp_path) -> None:
    """Nested legacy values have no meta-info type."""
    document = _legacy_document()
    document["GlobalMetainfo"]["levels"] = [1, 2]
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_rejects_nonzero_first_offset(tmp_path) -> None:
    """The first slot of a field must start at byte 0."""
    document = _legacy_document()
    document["OffsetTable"][0]["__offsets"] = {"p": [64, "aa"]}
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_rejects_fields_table_object(tmp_path) -> None:
    """A FieldsTable that is not an array is a structural error."""
    document = _legacy_document()
    document["FieldsTable"] = {"p": document["FieldsTable"][0]}
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_rejects_offset_table_object(tmp_path) -> None:
    """An OffsetTable that is not an array is a structural error."""
    document = _legacy_document()
    document["OffsetTable"] = {"s0": document["OffsetTable"][0]}
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_rejects_non_integer_extent(tmp_path) -> None:
    """Dimension keys must hold integers."""
    document = _legacy_document()
    document["FieldsTable"][0]["__isize"] = "two"
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_rejects_offsets_list(tmp_path) -> None:
    """Per-savepoint offsets must be an object keyed by field name."""
    document = _legacy_document()
    document["OffsetTable"][0]["__offsets"] = [[0, "deadbeef"]]
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_rejects_offset_of_undeclared_field(tmp_path) -> None:
    """Offsets may only reference fields of the fields table."""
    document = _legacy_document()
    document["OffsetTable"][0]["__offsets"] = {"q": [0, "deadbeef"]}
    _write_legacy(tmp_path, document)

    with pytest.raises(SerialboxStructuralError):
        Serializer(OpenMode.READ, tmp_path, "demo")


def test_upgrade_records_payload_size_from_declaration(tmp_path) -> None:
    """Rebuilt slots should carry the byte size of the declared field."""
    _write_legacy(tmp_path, _legacy_document())

    serializer = Serializer(OpenMode.READ, tmp_path, "demo")

    assert serializer.archive.field_table["p"][0].size == 2 * 2 * 1 * 8
