"""Import file decoding and upload validation.

Reads raw JSON bytes (block-buffered for large files), strips a UTF-8 BOM and
decodes the payload into generic record dictionaries.
"""
from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Sequence

from .config import ImportSettings, settings

logger = logging.getLogger(__name__)

_UTF8_BOM = b'\xef\xbb\xbf'
_ALLOWED_EXTENSIONS = {'.json'}


class MalformedInputError(Exception):
    """Raised when a file does not decode into a JSON array of records."""
    pass


class UploadRejectedError(Exception):
    """Raised when an upload breaks the file count, size or type limits."""
    pass


@dataclass
class SourceFile:
    """One import file: its client-facing name, size and a readable stream."""
    name: str
    size: int
    stream: BinaryIO

    @classmethod
    def from_bytes(cls, name: str, content: bytes) -> SourceFile:
        return cls(name=name, size=len(content), stream=io.BytesIO(content))

    @classmethod
    def from_stream(cls, name: str, stream: BinaryIO, size: int | None = None) -> SourceFile:
        """Wrap an open, seekable stream; its size is measured when not given."""
        if size is None:
            stream.seek(0, io.SEEK_END)
            size = stream.tell()
        stream.seek(0)
        return cls(name=name, size=size, stream=stream)

    @classmethod
    def from_path(cls, path: str | Path) -> SourceFile:
        path = Path(path)
        return cls(name=path.name, size=path.stat().st_size, stream=path.open('rb'))

    def close(self) -> None:
        self.stream.close()


def validate_upload(
    files: Sequence[tuple[str, int]],
    import_settings: ImportSettings | None = None,
) -> None:
    """Check upload limits before any file is read.

    Args:
        files: ``(filename, size_in_bytes)`` pairs
        import_settings: Limits to apply (defaults to global settings)

    Raises:
        UploadRejectedError: On the first violated limit
    """
    import_settings = import_settings or settings.imports

    if not files:
        raise UploadRejectedError("No files were received")
    if len(files) > import_settings.max_files:
        raise UploadRejectedError(
            f"At most {import_settings.max_files} files per import, received {len(files)}"
        )

    for filename, size in files:
        extension = Path(filename or '').suffix.lower()
        if extension not in _ALLOWED_EXTENSIONS:
            raise UploadRejectedError(f"Unsupported file type: {filename!r} (expected .json)")
        if size > import_settings.max_file_size_bytes:
            raise UploadRejectedError(
                f"File too large: {filename} ({size / 1024 / 1024:.2f}MB, "
                f"limit {import_settings.max_file_size_mb}MB)"
            )


def read_source(source: SourceFile, import_settings: ImportSettings | None = None) -> bytes:
    """Read the whole file, in fixed-size blocks when it is above the streaming threshold."""
    import_settings = import_settings or settings.imports

    if source.size < import_settings.streaming_threshold_bytes:
        return source.stream.read()

    logger.info(f"Streaming large file {source.name} ({source.size / 1024 / 1024:.2f}MB)")
    buffer = bytearray()
    for block in iter(lambda: source.stream.read(import_settings.stream_buffer_size), b''):
        buffer.extend(block)
    return bytes(buffer)


def parse_records(content: bytes, filename: str = "<payload>") -> list[Any]:
    """Decode JSON bytes into a list of raw records.

    Raises:
        MalformedInputError: Invalid UTF-8, invalid JSON, or a top-level value
            that is not an array
    """
    content = content.strip()
    if content.startswith(_UTF8_BOM):
        content = content[len(_UTF8_BOM):]

    if not content:
        raise MalformedInputError(f"{filename}: file is empty")

    try:
        payload = json.loads(content.decode('utf-8'))
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"{filename}: not valid UTF-8 ({e})") from e
    except json.JSONDecodeError as e:
        raise MalformedInputError(f"{filename}: invalid JSON ({e.msg} at line {e.lineno})") from e
    except ValueError as e:
        # e.g. integer literals beyond the interpreter's digit limit
        raise MalformedInputError(f"{filename}: undecodable JSON value ({e})") from e

    if not isinstance(payload, list):
        raise MalformedInputError(
            f"{filename}: expected a JSON array of sales, got {type(payload).__name__}"
        )

    logger.info(f"Decoded {len(payload)} records from {filename}")
    return payload


def decode_source(source: SourceFile, import_settings: ImportSettings | None = None) -> list[Any]:
    """Read and decode one import file."""
    try:
        content = read_source(source, import_settings)
    except OSError as e:
        raise MalformedInputError(f"{source.name}: could not be read ({e})") from e
    return parse_records(content, source.name)
