#!/usr/bin/env python3
# coding: utf-8
"""@brief Row-based model of a PIC24/dsPIC memory image (program flash, EEPROM and configuration words)
"""

import array
import bisect
import copy
import enum
from logging import getLogger
from typing import Iterator, List

from domain.mcu_addressing import MCULogicalAddress, MCULogicalAddressRange
from domain.pic24.pic_device import Family, get_program_row_size
from domain.pic24.pic_device import PM30F_ROW_SIZE, PM33F_ROW_SIZE_SMALL, PM33F_ROW_SIZE_LARGE, PIC24FK_ROW_SIZE
import domain.pic24.bootloader_comm as comm

logger = getLogger(__name__)

ERASED_WORD = 0xFFFF

class MemType(enum.Enum):
    PROGRAM = 'Program'
    EEPROM = 'EEProm'
    CONFIGURATION = 'Configuration'

class MemRow:
    """@brief One row of target memory, the unit of both hex data mapping and program/read commands

    Program rows hold row_size instructions. Each instruction uses two word addresses (low word, then high byte with a
    phantom byte), and three bytes on the wire.
    EEPROM rows hold EE_ROW_SIZE 16-bit words, two bytes each on the wire.
    Configuration rows hold one configuration word, sent as three bytes.
    """
    PM_SIZE = 1536     # Program rows allocated per image
    EE_SIZE = 128      # EEPROM rows (4KB)
    CM_SIZE = 8        # Configuration words

    PM30F_ROW_SIZE = PM30F_ROW_SIZE
    PM33F_ROW_SIZE_SMALL = PM33F_ROW_SIZE_SMALL
    PM33F_ROW_SIZE_LARGE = PM33F_ROW_SIZE_LARGE
    PIC24FK_ROW_SIZE = PIC24FK_ROW_SIZE
    EE_ROW_SIZE = 16

    PROGRAM_BASE = 0x000000
    EEPROM_BASE = 0x7FF000
    CONFIG_BASE = 0xF80000

    def __init__(self, mem_type: MemType, base_address: int, row_number: int, program_row_size: int):
        """@brief Constructor
        @param mem_type The memory region this row belongs to
        @param base_address The word address of the first row of this region
        @param row_number The index of this row inside its region
        @param program_row_size The number of instructions in a program row (only used for program rows)
        """
        self.mem_type = mem_type
        self.row_number = row_number
        if mem_type == MemType.PROGRAM:
            self.row_size = program_row_size
            self.span = program_row_size * 2
            buffer_size = program_row_size * 3
        elif mem_type == MemType.EEPROM:
            self.row_size = MemRow.EE_ROW_SIZE
            self.span = MemRow.EE_ROW_SIZE * 2
            buffer_size = MemRow.EE_ROW_SIZE * 2
        else:
            self.row_size = 1
            self.span = 2
            buffer_size = 3
        self.address = MCULogicalAddress(base_address + row_number * self.span)
        self.address_range = MCULogicalAddressRange(start_address=self.address, end_address=MCULogicalAddress(self.address + self.span))
        self.data = array.array('H', [ERASED_WORD]) * self.span
        self.buffer = bytearray(b'\xff' * buffer_size)
        self.empty = True
        self.formatted = False

    def __str__(self) -> str:
        return f'MemRow({self.mem_type.value} #{self.row_number} @ 0x{self.address:06x}' + (', empty)' if self.empty else ')')

    def __repr__(self):
        return str(self)

    def is_empty(self) -> bool:
        return self.empty

    def get_type(self) -> MemType:
        return self.mem_type

    def get_address(self) -> MCULogicalAddress:
        return self.address

    def get_row_number(self) -> int:
        return self.row_number

    def get_row_size(self) -> int:
        """@brief Get the number of instructions (program), words (EEPROM) or config words (configuration) in this row"""
        return self.row_size

    def get_address_range(self) -> MCULogicalAddressRange:
        return self.address_range

    def get_byte(self, offset: int) -> int:
        return self.buffer[offset]

    def get_payload(self) -> bytes:
        """@brief Get the formatted bytes of this row, as exchanged with the bootloader"""
        return bytes(self.buffer)

    def insert_data(self, address: int, data: int) -> bool:
        """@brief Store a 16-bit word in this row if it owns the provided address
        @param address The word address
        @param data The 16-bit word, as read from the hex file
        @return True if the word was stored in this row
        """
        if not self.address_range.contains(address):
            return False
        self.data[address - self.address] = data
        self.empty = False
        return True

    def format_data(self) -> None:
        """@brief Convert the stored words into the byte layout used on the wire

        The hex file's low word gives the low and middle bytes of an instruction, the high word gives the high byte,
        its phantom byte is dropped.
        """
        if self.mem_type == MemType.EEPROM:
            for count in range(self.row_size):
                self.buffer[count * 2] = (self.data[count * 2] >> 8) & 0xff
                self.buffer[count * 2 + 1] = self.data[count * 2] & 0xff
        else:
            for count in range(self.row_size):
                self.buffer[count * 3] = (self.data[count * 2] >> 8) & 0xff
                self.buffer[count * 3 + 1] = self.data[count * 2] & 0xff
                self.buffer[count * 3 + 2] = (self.data[count * 2 + 1] >> 8) & 0xff
        self.formatted = True

    def send_data(self, target) -> None:
        """@brief Write this row to the target
        @param target The bootloader protocol handler (see BootloaderProtocol)

        @warning Empty rows are sent as well (as erased content), it is up to the caller to skip them
        """
        assert self.formatted, 'format_data() should be called before sending a row'
        if self.mem_type == MemType.PROGRAM:
            command = comm.CommandWriteProgramMemory(address=self.address, payload=self.get_payload())
        elif self.mem_type == MemType.EEPROM:
            command = comm.CommandWriteEEPROM(address=self.address, payload=self.get_payload())
        else:
            command = comm.CommandWriteConfiguration(address=self.address, payload=self.get_payload(), empty=self.empty)
        target.execute(command)

    def read_data(self, target) -> bool:
        """@brief Replace this row's formatted bytes with the content read back from the target
        @param target The bootloader protocol handler
        @return False if the target did not deliver the row content
        """
        try:
            content = target.execute(comm.CommandReadProgramMemory(address=self.address, row_size=self.row_size))
        except (comm.TransportNackError, comm.ReadTimeoutError) as e:
            logger.error(f'Failed reading row at 0x{self.address:06x}: {e}')
            return False
        self.buffer = bytearray(content)
        return True


class MemoryImage:
    """@brief The full set of rows of a target: PM_SIZE program rows, then EE_SIZE EEPROM rows, then CM_SIZE configuration rows
    """
    def __init__(self, program_row_size: int):
        """@brief Constructor
        @param program_row_size The number of instructions per program row for the target device
        """
        self.program_row_size = program_row_size
        self.rows: List[MemRow] = []
        for row in range(MemRow.PM_SIZE):
            self.rows.append(MemRow(MemType.PROGRAM, MemRow.PROGRAM_BASE, row, program_row_size))
        for row in range(MemRow.EE_SIZE):
            self.rows.append(MemRow(MemType.EEPROM, MemRow.EEPROM_BASE, row, program_row_size))
        for row in range(MemRow.CM_SIZE):
            self.rows.append(MemRow(MemType.CONFIGURATION, MemRow.CONFIG_BASE, row, program_row_size))
        # Regions are laid out in increasing address order and rows never overlap, so the first row accepting an
        # address is the last row starting at or before it
        self._row_starts = [row.get_address() for row in self.rows]

    @staticmethod
    def create_for(family: Family, small_ram: bool):
        """@brief Create an empty MemoryImage sized for a device family
        """
        return MemoryImage(program_row_size=get_program_row_size(family, small_ram))

    def __iter__(self) -> Iterator[MemRow]:
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)

    def __getitem__(self, index) -> MemRow:
        return self.rows[index]

    def get_rows_of_type(self, mem_type: MemType) -> List[MemRow]:
        return [row for row in self.rows if row.get_type() == mem_type]

    def insert_data(self, address: int, data: int) -> bool:
        """@brief Store a 16-bit word in the row owning the provided word address
        @return False if no row owns this address
        """
        index = bisect.bisect_right(self._row_starts, address) - 1
        if index < 0:
            return False
        return self.rows[index].insert_data(address, data)

    def format_data(self) -> None:
        for row in self.rows:
            row.format_data()

    def count_non_empty(self, mem_type: MemType = None) -> int:
        return sum(1 for row in self.rows if not row.is_empty() and (mem_type is None or row.get_type() == mem_type))

    def snapshot(self):
        """@brief Get an independent copy of this image (used as the reference content for verification)"""
        return copy.deepcopy(self)
