"""Unit tests for the change event decoder."""

import json

import pytest


@pytest.mark.unit
class TestChangeEventDecoder:
    """Test Debezium envelope -> ChangeEvent decoding."""

    def test_decode_create_event(self, decoder, make_event):
        """Test decoding a create event reads the after image."""
        from cdc_engine.models import Operation

        event = decoder.decode(make_event("k1", op="c", ts=100, rating=8.5), sequence=7)

        assert event.operation is Operation.CREATE
        assert event.entity_key == "k1"
        assert event.source_timestamp == 100
        assert event.sequence == 7
        assert event.image["rating"] == 8.5

    def test_delete_reads_before_image(self, decoder, make_event):
        """Test delete events take the key and fields from the before image."""
        from cdc_engine.models import Operation

        event = decoder.decode(make_event("k1", op="d", ts=110, rating=9.0))
        payload = decoder.extract_payload(event)

        assert event.operation is Operation.DELETE
        assert event.after_image is None
        assert event.entity_key == "k1"
        assert payload["rating"] == 9.0

    def test_timestamp_prefers_source_block(self, decoder):
        """Test source.ts_ms wins over the envelope's ts_ms."""
        raw = {"op": "u", "after": {"key": "k1"}, "source": {"ts_ms": 5}, "ts_ms": 999}

        assert decoder.decode(raw).source_timestamp == 5

    def test_timestamp_falls_back_to_envelope(self, decoder):
        """Test top-level ts_ms is used when the source block has none."""
        raw = {"op": "u", "after": {"key": "k1"}, "ts_ms": 42}

        assert decoder.decode(raw).source_timestamp == 42

    def test_missing_timestamp_decodes_as_zero(self, decoder, make_event):
        """Test an event without any timestamp is kept with timestamp 0."""
        event = decoder.decode(make_event("k1", ts=None))

        assert event.source_timestamp == 0

    def test_sequence_read_from_source_position(self, decoder, make_event):
        """Test the source position becomes the sequence when none is passed."""
        assert decoder.decode(make_event("k1", seq=17)).sequence == 17

    @pytest.mark.parametrize(
        "source,expected",
        [
            ({"sequence": '["24023928", "24023976"]'}, 24023976),
            ({"sequence": '[null, "88"]'}, 88),
            ({"lsn": 512}, 512),
            ({"sequence": "garbage", "lsn": "64"}, 64),
            ({"sequence": -3}, 0),
            ({}, 0),
        ],
    )
    def test_debezium_positions(self, decoder, source, expected):
        """Test Postgres sequence strings and LSNs are read, unusable ones fall back to 0."""
        raw = {"op": "u", "after": {"key": "k1"}, "source": {"ts_ms": 1, **source}}

        assert decoder.decode(raw).sequence == expected

    def test_flattened_position(self, decoder):
        """Test the flattened shape reads __lsn."""
        raw = {"__op": "u", "__ts_ms": 1, "__lsn": 99, "key": "k1"}

        assert decoder.decode(raw).sequence == 99

    def test_redecoding_is_stable(self, decoder, make_event):
        """Test decoding the same event twice yields the same sequence."""
        raw = make_event("k1")

        assert decoder.decode(raw).sequence == decoder.decode(raw).sequence == 0

    def test_decode_json_bytes(self, decoder, make_event):
        """Test JSON-encoded bytes (JSONAsString messages) decode."""
        raw = json.dumps(make_event("k1", rating="7.5")).encode("utf-8")

        event = decoder.decode(raw)

        assert event.entity_key == "k1"

    def test_decode_payload_wrapper(self, decoder, make_event):
        """Test the schema/payload wrapper is unwrapped."""
        raw = {"schema": {"type": "struct"}, "payload": make_event("k2", op="u")}

        assert decoder.decode(raw).entity_key == "k2"

    def test_decode_flattened_format(self, decoder):
        """Test ExtractNewRecordState output with __op / __ts_ms."""
        from cdc_engine.models import Operation

        raw = {"key": "k3", "rating": 6.1, "__op": "d", "__ts_ms": 77}

        event = decoder.decode(raw)

        assert event.operation is Operation.DELETE
        assert event.source_timestamp == 77
        assert event.before_image == {"key": "k3", "rating": 6.1}

    def test_unknown_operation(self, decoder, make_event):
        """Test unknown operation codes are rejected."""
        from cdc_engine.common.errors import DecodeError, DecodeFailure

        with pytest.raises(DecodeError) as exc_info:
            decoder.decode(make_event("k1", op="x"))

        assert exc_info.value.reason is DecodeFailure.UNKNOWN_OPERATION

    def test_missing_image(self, decoder):
        """Test an update without an after image is rejected."""
        from cdc_engine.common.errors import DecodeError, DecodeFailure

        with pytest.raises(DecodeError) as exc_info:
            decoder.decode({"op": "u", "before": {"key": "k1"}, "after": None})

        assert exc_info.value.reason is DecodeFailure.MISSING_IMAGE

    def test_malformed_json(self, decoder):
        """Test non-JSON input is rejected as malformed."""
        from cdc_engine.common.errors import DecodeError, DecodeFailure

        with pytest.raises(DecodeError) as exc_info:
            decoder.decode(b"{not json")

        assert exc_info.value.reason is DecodeFailure.MALFORMED

    @pytest.mark.parametrize("key", [None, "", "\\N"])
    def test_missing_key(self, decoder, make_event, key):
        """Test empty, null and absent keys raise MissingKeyError."""
        from cdc_engine.common.errors import DecodeFailure, MissingKeyError

        with pytest.raises(MissingKeyError) as exc_info:
            decoder.decode(make_event(key))

        assert exc_info.value.reason is DecodeFailure.MISSING_KEY

    def test_absent_key_column(self, decoder):
        """Test an image without the key column raises MissingKeyError."""
        from cdc_engine.common.errors import MissingKeyError

        with pytest.raises(MissingKeyError):
            decoder.decode({"op": "c", "after": {"rating": 1.0}})

    def test_missing_optional_fields_use_defaults(self, decoder, make_event):
        """Test absent optional fields decode to their defaults."""
        event = decoder.decode(make_event("k1"))
        payload = decoder.extract_payload(event)

        assert payload == {"key": "k1", "rating": 0.0, "votes": 0, "genres": []}

    def test_composite_key(self):
        """Test composite keys decode to a tuple in key-field order."""
        from cdc_engine.decoding import decoder_for

        decoder = decoder_for("title_principals")
        raw = {
            "op": "c",
            "after": {"tconst": "tt0000001", "ordering": "2", "nconst": "nm0000005"},
        }

        event = decoder.decode(raw)

        assert event.entity_key == ("tt0000001", 2, "nm0000005")

    def test_composite_key_with_missing_part(self):
        """Test one missing part of a composite key fails the event."""
        from cdc_engine.common.errors import MissingKeyError
        from cdc_engine.decoding import decoder_for

        decoder = decoder_for("title_akas")

        with pytest.raises(MissingKeyError):
            decoder.decode({"op": "c", "after": {"titleId": "tt0000001", "ordering": None}})

    def test_decode_batch_skips_failures(self, decoder, make_event):
        """Test one bad event does not abort the batch."""
        events, errors = decoder.decode_batch(
            [make_event("k1"), make_event(""), make_event("k2")]
        )

        assert [e.entity_key for e in events] == ["k1", "k2"]
        assert len(errors) == 1
