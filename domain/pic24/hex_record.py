#!/usr/bin/env python3
# coding: utf-8
"""@brief Line-by-line Intel-HEX parser producing word-addressed data for PIC24/dsPIC targets

Only record types 0 (data), 1 (end of file) and 4 (extended address) are supported, any other record type is an error.
"""

import enum
import string
from typing import Iterable, Iterator, List, Optional, Tuple

HEX_DIGITS = frozenset(string.hexdigits)

class MalformedHexLineError(Exception):
    def __init__(self, generic_message: str, line_number: Optional[int] = None):
        message = generic_message
        if line_number is not None:
            message = f'Line {line_number}: ' + message
        self.line_number = line_number
        super().__init__(message)

class UnsupportedRecordTypeError(MalformedHexLineError):
    pass

class RecordType(enum.IntEnum):
    DATA = 0
    EOF = 1
    EXTENDED_ADDRESS = 4

class HexRecord:
    """@brief One parsed Intel-HEX line
    """
    def __init__(self, byte_count: int, address: int, record_type: RecordType, payload: List[int]):
        """@brief Constructor
        @param byte_count The number of data bytes announced by the record
        @param address The raw 16-bit (byte) address of the record, before applying any extended address
        @param record_type The RecordType
        @param payload The record data, as a list of 16-bit words
        """
        self.byte_count = byte_count
        self.address = address
        self.record_type = record_type
        self.payload = payload

    def __str__(self) -> str:
        return f'HexRecord({self.record_type.name}, {self.byte_count} bytes @ 0x{self.address:04x})'

    def __repr__(self):
        return str(self)


class _LineReader:
    """@brief Cursor over the hex digits of one line"""
    def __init__(self, text: str, line_number: Optional[int]):
        self.text = text
        self.pos = 0
        self.line_number = line_number

    def read_hex(self, nb_digits: int, field_name: str) -> int:
        field = self.text[self.pos:self.pos + nb_digits]
        if len(field) != nb_digits or not HEX_DIGITS.issuperset(field):
            raise MalformedHexLineError(f'Invalid {field_name} field "{field}"', self.line_number)
        self.pos += nb_digits
        return int(field, 16)


def _check_line_checksum(text: str, byte_count: int, line_number: Optional[int]) -> None:
    """@brief Validate the two's complement checksum of a record (all record bytes, checksum included, sum up to 0)
    """
    record_digits = text[:2 * (byte_count + 5)]
    if len(record_digits) != 2 * (byte_count + 5) or not HEX_DIGITS.issuperset(record_digits):
        raise MalformedHexLineError('Truncated record, cannot validate checksum', line_number)
    if sum(bytes.fromhex(record_digits)) & 0xff != 0:
        raise MalformedHexLineError('Wrong record checksum', line_number)

def parse_hex_line(line: str, line_number: Optional[int] = None, verify_checksum: bool = False) -> HexRecord:
    """@brief Parse one line of an Intel-HEX file
    @param line The text line (trailing end-of-line characters are ignored)
    @param line_number The 1-based line number, only used in error messages
    @param verify_checksum If True, also validate the checksum byte at the end of the record
    @return The parsed HexRecord

    @warning Raises MalformedHexLineError if a field is not hexadecimal, or UnsupportedRecordTypeError for unsupported record types
    """
    line = line.strip()
    if not line.startswith(':'):
        raise MalformedHexLineError('Missing leading ":"', line_number)
    text = line[1:]
    reader = _LineReader(text, line_number)
    byte_count = reader.read_hex(2, 'byte count')
    address = reader.read_hex(4, 'address')
    raw_record_type = reader.read_hex(2, 'record type')
    try:
        record_type = RecordType(raw_record_type)
    except ValueError:
        raise UnsupportedRecordTypeError(f'Unknown hex record type 0x{raw_record_type:02x}', line_number) from None
    if verify_checksum:
        _check_line_checksum(text, byte_count, line_number)

    payload: List[int] = []
    if record_type == RecordType.DATA:
        if byte_count % 2 != 0:
            raise MalformedHexLineError(f'Odd byte count {byte_count} in data record', line_number)
        for _ in range(byte_count // 2):
            payload.append(reader.read_hex(4, 'data'))
    elif record_type == RecordType.EXTENDED_ADDRESS:
        payload.append(reader.read_hex(4, 'extended address'))
    return HexRecord(byte_count=byte_count, address=address, record_type=record_type, payload=payload)

def iter_hex_records(hex_file: Iterable[str], verify_checksum: bool = False) -> Iterator[Tuple[int, HexRecord]]:
    """@brief Parse all lines of a hex file, skipping blank lines
    @param hex_file An iterable over the lines of the file (eg: a text file object)
    @param verify_checksum Validate each record's checksum
    @return Sequence of (line_number, HexRecord) tuples
    """
    for line_number, line in enumerate(hex_file, start=1):
        if not line.strip():
            continue
        yield (line_number, parse_hex_line(line, line_number=line_number, verify_checksum=verify_checksum))

def iter_word_data(hex_file: Iterable[str], verify_checksum: bool = False) -> Iterator[Tuple[int, int, List[int]]]:
    """@brief Get the content of all data records of a hex file, located at their effective word address
    @param hex_file An iterable over the lines of the file
    @param verify_checksum Validate each record's checksum
    @return Sequence of (line_number, word_address, words) tuples, words[i] is located at word_address + i

    @note The extended address offset starts at 0 for each call and applies to all data records following an extended address record
    """
    extended_address = 0
    for (line_number, record) in iter_hex_records(hex_file, verify_checksum=verify_checksum):
        if record.record_type == RecordType.DATA:
            yield (line_number, (record.address + extended_address) // 2, record.payload)
        elif record.record_type == RecordType.EXTENDED_ADDRESS:
            extended_address = record.payload[0] << 16
        # EOF records carry nothing, trailing lines are still parsed
