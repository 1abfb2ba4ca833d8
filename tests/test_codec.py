"""Tests for store line decoding and encoding."""

import json

import pytest
from pathlib import Path

from aipm.memory.codec import (
    EMPTY_STORE,
    Entity,
    Relation,
    decode_line,
    encode,
    is_empty_store,
    iter_lines,
    iter_records,
    relation_key,
)
from aipm.memory.errors import DecodeError, DecodeErrorKind

from conftest import entity_line, relation_line, write_store


class TestDecodeLine:
    def test_entity(self):
        record = decode_line(entity_line("AIPM_X", "component", ["first", "second"]))
        assert isinstance(record, Entity)
        assert record.name == "AIPM_X"
        assert record.entityType == "component"
        assert record.observations == ["first", "second"]
        assert record.extra == {}

    def test_relation(self):
        record = decode_line(relation_line("AIPM_A", "AIPM_B", "depends_on"))
        assert isinstance(record, Relation)
        assert record.from_ == "AIPM_A"
        assert record.to == "AIPM_B"
        assert record.relationType == "depends_on"

    def test_extra_fields_preserved(self):
        record = decode_line(entity_line("AIPM_X", timestamp=1700000000))
        assert record.extra == {"timestamp": 1700000000}

    def test_missing_observations_default_empty(self):
        record = decode_line('{"type":"entity","name":"AIPM_X","entityType":"t"}')
        assert record.observations == []

    def test_missing_fields_are_not_decode_errors(self):
        record = decode_line('{"type":"relation","from":"AIPM_A"}')
        assert isinstance(record, Relation)
        assert record.to == ""

    def test_malformed_json(self):
        with pytest.raises(DecodeError) as exc:
            decode_line('{"type":"entity",')
        assert exc.value.kind is DecodeErrorKind.MALFORMED

    def test_non_object(self):
        with pytest.raises(DecodeError) as exc:
            decode_line("[1, 2, 3]")
        assert exc.value.kind is DecodeErrorKind.MALFORMED

    def test_missing_type(self):
        with pytest.raises(DecodeError) as exc:
            decode_line('{"name":"AIPM_X"}')
        assert exc.value.kind is DecodeErrorKind.UNKNOWN_KIND

    def test_unknown_type(self):
        with pytest.raises(DecodeError) as exc:
            decode_line('{"type":"observation","name":"AIPM_X"}')
        assert exc.value.kind is DecodeErrorKind.UNKNOWN_KIND
        assert "observation" in str(exc.value)


class TestEncode:
    def test_entity_key_order(self):
        line = encode(Entity(name="AIPM_X", entityType="t", observations=["o"]))
        assert line == '{"type":"entity","name":"AIPM_X","entityType":"t","observations":["o"]}'

    def test_relation_key_order(self):
        line = encode(Relation(from_="AIPM_A", to="AIPM_B", relationType="uses"))
        assert line == '{"type":"relation","from":"AIPM_A","to":"AIPM_B","relationType":"uses"}'

    def test_extras_sorted_after_known_keys(self):
        entity = Entity(name="AIPM_X", entityType="t", extra={"zeta": 1, "alpha": 2})
        keys = list(json.loads(encode(entity)))
        assert keys == ["type", "name", "entityType", "observations", "alpha", "zeta"]

    def test_unicode_kept(self):
        line = encode(Entity(name="AIPM_记忆", entityType="t", observations=["café"]))
        assert "记忆" in line
        assert "café" in line

    def test_no_trailing_newline(self):
        assert not encode(Relation(from_="a", to="b", relationType="c")).endswith("\n")

    @pytest.mark.parametrize(
        "record",
        [
            Entity(name="AIPM_X", entityType="t", observations=[]),
            Entity(name="AIPM_Y", entityType="t", observations=["a", "b"], extra={"timestamp": 5}),
            Relation(from_="AIPM_X", to="AIPM_Y", relationType="uses"),
        ],
    )
    def test_round_trip(self, record):
        assert decode_line(encode(record)) == record

    def test_byte_stable(self):
        line = entity_line("AIPM_X", "t", ["o"])
        assert encode(decode_line(line)) == line


class TestRelationKey:
    def test_key(self):
        relation = Relation(from_="a", to="b", relationType="uses")
        assert relation_key(relation) == ("a", "b", "uses")


class TestStreaming:
    def test_iter_lines_skips_blank(self, tmp_path: Path):
        path = tmp_path / "store.json"
        path.write_text(entity_line("AIPM_A") + "\n\n   \n" + relation_line("AIPM_A", "AIPM_B") + "\n")
        assert [n for n, _ in iter_lines(path)] == [1, 4]

    def test_iter_lines_skips_leading_placeholder(self, tmp_path: Path):
        path = tmp_path / "store.json"
        path.write_text("{}\n" + entity_line("AIPM_A") + "\n")
        lines = list(iter_lines(path))
        assert len(lines) == 1
        assert lines[0][0] == 2

    def test_iter_records_reports_line_number(self, tmp_path: Path):
        path = write_store(tmp_path / "store.json", [entity_line("AIPM_A"), "not json"])
        records = iter_records(path)
        assert isinstance(next(records), Entity)
        with pytest.raises(DecodeError) as exc:
            next(records)
        assert exc.value.line == 2

    def test_is_empty_store(self, tmp_path: Path):
        absent = tmp_path / "absent.json"
        blank = tmp_path / "blank.json"
        blank.write_text("")
        placeholder = tmp_path / "placeholder.json"
        placeholder.write_text(EMPTY_STORE)
        full = write_store(tmp_path / "full.json", [entity_line("AIPM_A")])

        assert is_empty_store(absent)
        assert is_empty_store(blank)
        assert is_empty_store(placeholder)
        assert not is_empty_store(full)


class TestFieldTypes:
    def test_bytes_input(self):
        record = decode_line(entity_line("AIPM_X").encode())
        assert record.name == "AIPM_X"

    def test_invalid_utf8(self):
        with pytest.raises(DecodeError) as exc:
            decode_line(b'{"type":"entity","name":"AIPM_\xff"}')
        assert exc.value.kind is DecodeErrorKind.MALFORMED
        assert "UTF-8" in str(exc.value)

    @pytest.mark.parametrize(
        "line",
        [
            '{"type":"entity","name":{},"entityType":"t"}',
            '{"type":"entity","name":"AIPM_X","entityType":7}',
            '{"type":"entity","name":"AIPM_X","entityType":"t","observations":"o"}',
            '{"type":"relation","from":["a"],"to":"b","relationType":"x"}',
            '{"type":"relation","from":"a","to":null,"relationType":"x"}',
            '{"type":"relation","from":"a","to":"b","relationType":3}',
        ],
    )
    def test_wrong_field_type(self, line):
        with pytest.raises(DecodeError) as exc:
            decode_line(line)
        assert exc.value.kind is DecodeErrorKind.MALFORMED

    def test_null_observations_allowed(self):
        record = decode_line('{"type":"entity","name":"AIPM_X","entityType":"t","observations":null}')
        assert record.observations == []

    def test_iter_records_invalid_utf8(self, tmp_path: Path):
        path = tmp_path / "store.json"
        path.write_bytes(entity_line("AIPM_A").encode() + b"\n" + b'{"type":"entity","name":"\xff"}\n')
        with pytest.raises(DecodeError) as exc:
            list(iter_records(path))
        assert exc.value.line == 2

    def test_iter_lines_keeps_placeholder_on_request(self, tmp_path: Path):
        path = tmp_path / "store.json"
        path.write_text("{}\n" + entity_line("AIPM_A") + "\n")
        assert [n for n, _ in iter_lines(path, skip_placeholder=False)] == [1, 2]
