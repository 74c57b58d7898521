"""Binary MARC21 decoding: leader, directory, fields and the record stream."""

from __future__ import annotations

import logging
import typing

import pydantic

FIELD_SEP = 0x1E
SUBFIELD_SEP_BIN = b"\x1f"
ENCODING = "ascii"
DATA_ENCODING = "utf-8"
LEADER_LENGTH = 24
LENGTH_PREFIX_LENGTH = 5
DIRECTORY_ENTRY_LENGTH = 12
FIRST_DATA_TAG = "010"
TRAILING_PUNCTUATION = ".,;:/"
MIN_FIELD_CONTENT = 3
SCAN_MAX_RECORD_LENGTH = 100000

DIRECTORY_ENTRY_WARNING = "directory_entry"
FIELD_RANGE_WARNING = "field_range"

LOGGER = logging.getLogger(__name__)


class MarcError(Exception):
    pass


class MalformedLeaderError(MarcError):
    pass


class IncompleteRecordError(MarcError):
    def __init__(self, message: str, position: int = 0):
        super().__init__(message)
        self.position = position


class Leader(pydantic.BaseModel):
    record_length: int
    base_address: int


class DirectoryEntry(pydantic.BaseModel):
    tag: str
    length: int
    offset: int


class SubField(pydantic.BaseModel):
    code: str
    data: str


class Field(pydantic.BaseModel):
    tag: str
    indicator1: str
    indicator2: str
    subfields: list[SubField]


class Diagnostic(pydantic.BaseModel):
    kind: str
    tag: str
    message: str


class DecodedRecord(pydantic.BaseModel):
    leader: Leader
    directory: list[DirectoryEntry]
    fields: list[Field]
    diagnostics: list[Diagnostic]


def parse_digits(buffer: bytes) -> int | None:
    text = buffer.strip()
    if not text or not text.isdigit():
        return None
    return int(text)


def is_control_tag(tag: str) -> bool:
    # MARC tags are fixed three character strings, some local ones alphabetic
    return tag < FIRST_DATA_TAG


def parse_leader(buffer: bytes, available: int | None = None) -> Leader:
    if len(buffer) < LEADER_LENGTH:
        raise MalformedLeaderError(f"record too short: {len(buffer)} bytes")

    if not buffer[0:5].isdigit():
        raise MalformedLeaderError(f"invalid record length: {buffer[0:5]!r}")

    if not buffer[12:17].isdigit():
        raise MalformedLeaderError(f"invalid base address: {buffer[12:17]!r}")

    length = int(buffer[0:5])
    base_address = int(buffer[12:17])

    if length < LEADER_LENGTH or base_address > length:
        raise MalformedLeaderError(f"inconsistent leader: length={length} base_address={base_address}")

    if available is not None and length > available:
        raise IncompleteRecordError(f"record declares {length} bytes, only {available} available")

    return Leader(record_length=length, base_address=base_address)


def parse_directory(buffer: bytes, diagnostics: list[Diagnostic] | None = None) -> list[DirectoryEntry]:
    """Decode the 12-byte directory slots found in ``buffer``.

    ``buffer`` holds the bytes between the leader and the base address. The
    directory ends at the first field terminator, or one byte before the base
    address when there is none. A trailing partial slot is ignored.
    """
    end = buffer.find(bytes([FIELD_SEP]))
    if end < 0:
        end = len(buffer) - 1
    text = buffer[:max(end, 0)]
    entry_count = len(text) // DIRECTORY_ENTRY_LENGTH
    entries = []

    for i in range(entry_count):
        offset = i * DIRECTORY_ENTRY_LENGTH
        field_tag = text[offset: offset + 3].decode(ENCODING, errors="replace").strip()
        field_len = parse_digits(text[offset + 3: offset + 7])
        field_idx = parse_digits(text[offset + 7: offset + 12])
        if field_len is None or field_idx is None:
            message = f"unparsable directory entry {text[offset: offset + 12]!r}"
            LOGGER.warning("Skipping directory entry %s for tag %s: %s", i, field_tag, message)
            if diagnostics is not None:
                diagnostics.append(Diagnostic(kind=DIRECTORY_ENTRY_WARNING, tag=field_tag, message=message))
            continue
        entries.append(DirectoryEntry(tag=field_tag, length=field_len, offset=field_idx))

    return entries


def clean_subfield_data(raw: bytes) -> str:
    text = raw.decode(DATA_ENCODING, errors="replace")
    return text.strip().rstrip(TRAILING_PUNCTUATION).strip()


def parse_subfields(buffer: bytes) -> list[SubField]:
    """Split field content on the subfield delimiter.

    Bytes before the first delimiter are ignored, as are subfields whose data
    is empty once whitespace and trailing punctuation are trimmed.
    """
    sub_buffers = buffer.split(SUBFIELD_SEP_BIN)
    sub_fields = []
    for sub_buf in sub_buffers[1:]:
        if not sub_buf:
            continue
        value = clean_subfield_data(sub_buf[1:])
        if not value:
            continue
        sub_fields.append(SubField(code=chr(sub_buf[0]), data=value))
    return sub_fields


def parse_field(buffer: bytes, leader: Leader, entry: DirectoryEntry,
                diagnostics: list[Diagnostic] | None = None) -> Field | None:
    start = leader.base_address + entry.offset
    end = start + entry.length
    if end > len(buffer):
        message = f"field range {start}:{end} exceeds record length {len(buffer)}"
        LOGGER.warning("Skipping field %s: %s", entry.tag, message)
        if diagnostics is not None:
            diagnostics.append(Diagnostic(kind=FIELD_RANGE_WARNING, tag=entry.tag, message=message))
        return None

    if is_control_tag(entry.tag):
        return None

    value_buf = buffer[start:end]
    if len(value_buf) < MIN_FIELD_CONTENT:
        return None

    content = value_buf[2:]
    if content.endswith(bytes([FIELD_SEP])):
        content = content[:-1]

    return Field(
        tag=entry.tag,
        indicator1=chr(value_buf[0]),
        indicator2=chr(value_buf[1]),
        subfields=parse_subfields(content),
    )


def parse_fields(buffer: bytes, leader: Leader, dir: list[DirectoryEntry],
                 diagnostics: list[Diagnostic] | None = None) -> list[Field]:
    fields = []
    for entry in dir:
        field = parse_field(buffer, leader, entry, diagnostics)
        if field is not None:
            fields.append(field)
    return fields


def parse_record(buffer: bytes) -> DecodedRecord:
    leader = parse_leader(buffer[:LEADER_LENGTH], available=len(buffer))
    diagnostics = []

    dir_buf = buffer[LEADER_LENGTH:leader.base_address]
    directory = parse_directory(dir_buf, diagnostics)

    fields = parse_fields(buffer, leader, directory, diagnostics)

    return DecodedRecord(leader=leader, directory=directory, fields=fields, diagnostics=diagnostics)


def read_length_prefix(buffer: bytes, position: int) -> int | None:
    prefix = buffer[position: position + LENGTH_PREFIX_LENGTH]
    if len(prefix) != LENGTH_PREFIX_LENGTH or not prefix.isdigit():
        return None
    return int(prefix)


def iter_records(buffer: bytes) -> typing.Iterator[tuple[int, bytes]]:
    """Yield ``(position, record bytes)`` for each record in ``buffer``.

    Each record is bounded by its own five digit length prefix. A non-numeric
    prefix steps forward one byte and retries. A record that declares more
    bytes than remain raises ``IncompleteRecordError`` and the tail is dropped.
    """
    position = 0
    total = len(buffer)

    while total - position >= LENGTH_PREFIX_LENGTH:
        length = read_length_prefix(buffer, position)
        if length is None:
            LOGGER.debug("Non-numeric record length at position %s, resyncing", position)
            position += 1
            continue

        if position + length > total:
            raise IncompleteRecordError(f"incomplete record at position {position}", position)

        yield position, buffer[position: position + length]
        position += max(length, 1)


def scan_records(buffer: bytes, limit: int) -> typing.Iterator[tuple[int, str]]:
    position = 0
    found = 0

    while found < limit and position < len(buffer) - LEADER_LENGTH:
        length = read_length_prefix(buffer, position)
        if length is None or not LEADER_LENGTH < length < SCAN_MAX_RECORD_LENGTH:
            position += 1
            continue

        yield position, buffer[position: position + LEADER_LENGTH].decode(ENCODING, errors="replace")
        found += 1
        position += length
