"""Tests for import file decoding and upload validation."""

import json
import sys

import pytest

from sales_import.config import ImportSettings
from sales_import.parsers import (
    MalformedInputError,
    SourceFile,
    UploadRejectedError,
    decode_source,
    parse_records,
    read_source,
    validate_upload,
)


class TestParseRecords:

    def test_array_of_objects(self):
        assert parse_records(b'[{"idComercializacion": 1}, {"idComercializacion": 2}]') == [
            {"idComercializacion": 1},
            {"idComercializacion": 2},
        ]

    def test_strips_utf8_bom(self):
        assert parse_records(b'\xef\xbb\xbf[{"a": 1}]') == [{"a": 1}]

    def test_surrounding_whitespace(self):
        assert parse_records(b'\n  []\n') == []

    @pytest.mark.parametrize("content", [b'{"a": 1}', b'"text"', b'12', b'null'])
    def test_non_array_payload_is_malformed(self, content):
        with pytest.raises(MalformedInputError, match="expected a JSON array"):
            parse_records(content, "ventas.json")

    def test_invalid_json(self):
        with pytest.raises(MalformedInputError, match="invalid JSON"):
            parse_records(b'[{"a": 1,', "ventas.json")

    def test_empty_file(self):
        with pytest.raises(MalformedInputError, match="empty"):
            parse_records(b'   ')

    def test_invalid_utf8(self):
        with pytest.raises(MalformedInputError, match="UTF-8"):
            parse_records(b'["\xff\xfe"]')

    @pytest.mark.skipif(not hasattr(sys, "set_int_max_str_digits"), reason="no integer digit limit")
    def test_integer_beyond_digit_limit_is_malformed(self):
        with pytest.raises(MalformedInputError, match="undecodable JSON value"):
            parse_records(b'[{"idComercializacion": ' + b"9" * 5000 + b"}]", "enorme.json")

    def test_non_object_elements_are_kept_for_the_filter(self):
        assert parse_records(b'[1, "x", {"a": 1}]') == [1, "x", {"a": 1}]


class TestReadSource:

    def test_small_file_read_in_one_go(self):
        source = SourceFile.from_bytes("ventas.json", b'[]')
        assert read_source(source, ImportSettings()) == b'[]'

    def test_large_file_read_in_blocks(self):
        payload = [{"CodigoCotizacion": f"COT-{i}", "pad": "x" * 1000} for i in range(1200)]
        content = json.dumps(payload).encode("utf-8")
        source = SourceFile.from_bytes("grande.json", content)
        import_settings = ImportSettings(streaming_threshold_mb=1, stream_buffer_size=4096)

        assert source.size > import_settings.streaming_threshold_bytes
        assert read_source(source, import_settings) == content

    def test_decode_from_path(self, tmp_path):
        path = tmp_path / "ventas.json"
        path.write_bytes(b'\xef\xbb\xbf[{"idComercializacion": 7}]')
        source = SourceFile.from_path(path)
        try:
            assert decode_source(source, ImportSettings()) == [{"idComercializacion": 7}]
        finally:
            source.close()
        assert source.name == "ventas.json"


class TestValidateUpload:

    def test_accepts_json_files_within_limits(self):
        validate_upload([("a.json", 10), ("B.JSON", 20)], ImportSettings())

    def test_rejects_no_files(self):
        with pytest.raises(UploadRejectedError, match="No files"):
            validate_upload([], ImportSettings())

    def test_rejects_too_many_files(self):
        with pytest.raises(UploadRejectedError, match="At most 2 files"):
            validate_upload([("a.json", 1)] * 3, ImportSettings(max_files=2))

    def test_rejects_other_extensions(self):
        with pytest.raises(UploadRejectedError, match="Unsupported file type"):
            validate_upload([("ventas.csv", 10)], ImportSettings())

    def test_rejects_oversized_file(self):
        import_settings = ImportSettings(max_file_size_mb=1)
        with pytest.raises(UploadRejectedError, match="File too large"):
            validate_upload([("ventas.json", 1024 * 1024 + 1)], import_settings)

    def test_default_limits(self):
        import_settings = ImportSettings()
        assert import_settings.max_files == 20
        assert import_settings.max_file_size_bytes == 200 * 1024 * 1024
        assert import_settings.chunk_size == 5000


class TestSourceFileFromStream:

    def test_measures_and_rewinds(self, tmp_path):
        path = tmp_path / "subida.json"
        path.write_bytes(b'[{"idComercializacion": 3}]')
        with path.open("rb") as stream:
            stream.read()
            source = SourceFile.from_stream("subida.json", stream)

            assert source.size == len(b'[{"idComercializacion": 3}]')
            assert decode_source(source, ImportSettings()) == [{"idComercializacion": 3}]

    def test_large_stream_read_in_blocks(self, tmp_path):
        content = json.dumps([{"pad": "x" * 1000}] * 1200).encode("utf-8")
        path = tmp_path / "grande.json"
        path.write_bytes(content)
        with path.open("rb") as stream:
            source = SourceFile.from_stream("grande.json", stream)
            import_settings = ImportSettings(streaming_threshold_mb=1, stream_buffer_size=4096)

            assert read_source(source, import_settings) == content
