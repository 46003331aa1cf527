#!/usr/bin/env python3
# coding: utf-8
"""@brief PIC24/dsPIC device descriptors and the device catalog they are looked up in
"""

import enum
from io import IOBase
from logging import getLogger
from typing import Dict, List, Optional

logger = getLogger(__name__)

# Number of instructions per flash row, depending on the device family and RAM size
PM30F_ROW_SIZE = 32
PM33F_ROW_SIZE_SMALL = 64 * 8
PM33F_ROW_SIZE_LARGE = 64 * 16
PIC24FK_ROW_SIZE = 32

class Family(enum.Enum):
    dsPIC30F = 'dsPIC30F'
    dsPIC33F = 'dsPIC33F'
    dsPIC33E = 'dsPIC33E'
    PIC24H = 'PIC24H'
    PIC24F = 'PIC24F'
    PIC24FK = 'PIC24FK'
    PIC24E = 'PIC24E'

FAMILY_BY_NAME: Dict[str, Family] = {family.value: family for family in Family}

def get_program_row_size(family: Family, small_ram: bool) -> int:
    """@brief Get the number of instructions in one program memory row for a device
    @param family The device family
    @param small_ram True for devices with the small RAM layout
    @return The row size, in instructions
    @note dsPIC30F rows (PM30F_ROW_SIZE) are only used by the legacy firmware pipeline, see get_legacy_row_size()
    """
    if family == Family.PIC24FK:
        return PIC24FK_ROW_SIZE
    elif small_ram:
        return PM33F_ROW_SIZE_SMALL
    else:
        return PM33F_ROW_SIZE_LARGE

def get_legacy_row_size(family: Family, small_ram: bool) -> int:
    """@brief Get the row size used to talk to legacy (version 0) bootloader firmwares
    """
    if family == Family.dsPIC30F:
        return PM30F_ROW_SIZE
    return get_program_row_size(family, small_ram)


class DeviceDescriptor:
    """@brief Description of one supported target device
    @note All attributes are immutable once loaded, except revision which is filled when the device is identified
    """
    def __init__(self, name: str, id: int, process_id: int, family: Family, config_page: int, small_ram: bool):
        """@brief Constructor
        @param name The device part name (eg: PIC24HJ128GP502)
        @param id The 16-bit device identifier, as returned by the READ_ID command
        @param process_id The process identifier, as returned by the READ_ID command
        @param family The device family
        @param config_page The word address of the flash page holding the configuration words
        @param small_ram True for devices using small flash rows
        """
        self.name = name
        self.id = id
        self.process_id = process_id
        self.family = family
        self.config_page = config_page
        self.small_ram = small_ram
        # Flash configuration words are the last two words of the configuration page
        self.config_word = config_page + 2 * get_program_row_size(family, small_ram) - 4
        self.revision = None

    def __str__(self) -> str:
        revision = '' if self.revision is None else f' rev 0x{self.revision:04x}'
        return f'{self.name} ({self.family.value}, id 0x{self.id:04x}, process {self.process_id}{revision})'

    def __repr__(self):
        return str(self)


class DeviceCatalog:
    """@brief Table of known devices, indexed by device ID and process ID
    """
    def __init__(self, devices: Optional[List[DeviceDescriptor]] = None):
        self.devices: List[DeviceDescriptor] = list(devices) if devices is not None else []

    def __len__(self):
        return len(self.devices)

    def __iter__(self):
        return iter(self.devices)

    def lookup(self, id: int, process_id: int) -> Optional[DeviceDescriptor]:
        """@brief Find a device from its identification values
        @param id The device ID
        @param process_id The process ID
        @return The matching DeviceDescriptor or None if this device is unknown
        """
        for device in self.devices:
            if device.id == id and device.process_id == process_id:
                return device
        return None

    def load_from(self, file) -> None:
        """@brief Append all devices described in a catalog file to this catalog
        @param file A text file-like object or a filename

        One device per line: name,idHex,processIdDecimal,familyName,configPageHex,smallRAMFlag
        Blank lines and lines starting with # are ignored. Malformed lines are logged and skipped.
        """
        if not isinstance(file, IOBase):
            with open(file=file, mode="rt") as f:
                self.load_from(f)
            return
        for line in file:
            line = line.strip(" \t\r\n")
            if not line or line.startswith('#'):
                continue
            device = parse_device_line(line)
            if device is not None:
                self.devices.append(device)

    @staticmethod
    def create_from(file):
        """@brief Create a DeviceCatalog from a catalog file
        @param file A text file-like object or a filename
        @return The newly constructed DeviceCatalog instance
        """
        catalog = DeviceCatalog()
        catalog.load_from(file)
        logger.debug(f'Loaded {len(catalog)} device(s) into the catalog')
        return catalog


def parse_device_line(device_line: str) -> Optional[DeviceDescriptor]:
    """@brief Parse one (already trimmed) line of a device catalog file
    @param device_line The text line
    @return The DeviceDescriptor described on this line, or None if the line is invalid
    """
    parts = device_line.split(',')
    if len(parts) != 6:
        logger.error(f'Bad device line: {device_line}')
        return None
    (name, id_str, pid_str, family_name, config_page_str, small_ram_str) = parts
    family = FAMILY_BY_NAME.get(family_name.strip())
    if family is None:
        logger.error(f'Unrecognized device family: {family_name}')
        return None
    try:
        return DeviceDescriptor(name=name.strip(),
                                id=int(id_str, 16),
                                process_id=int(pid_str),
                                family=family,
                                config_page=int(config_page_str, 16),
                                small_ram=(int(small_ram_str) != 0))
    except ValueError as e:
        logger.error(f'Error while parsing device line "{device_line}": {e}')
        return None
