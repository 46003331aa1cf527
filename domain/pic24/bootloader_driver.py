#!/usr/bin/env python3
# coding: utf-8
"""@brief Programming pipeline for PIC24/dsPIC targets running the serial bootloader

Identify the device, negotiate the firmware version, map a hex file onto the device memory rows (refusing any content
that would clash with the bootloader), send the rows, read them back for verification and reset the target.
"""

import enum
from typing import Iterable, List, Optional

from domain.common import to_24bit_le
from domain.flasher_context import FlasherContext
from domain.ext_adapters_interface.hex_file_parser_interface import HexFileParser
from domain.ext_adapters_interface.progress_sink_interface import ProgressStatus
from domain.mcu_addressing import MCULocatedLogicalDataChunk
import domain.pic24.bootloader_comm as comm
from domain.pic24.address_clash import PROGRAM_START, CONFIG_PAGE_FAMILIES
from domain.pic24.address_clash import page_clash, reserved_word_clash, config_region_clash
from domain.pic24.hex_record import iter_word_data
from domain.pic24.mem_row import MemoryImage, MemRow, MemType
from domain.pic24.pic_device import DeviceCatalog, DeviceDescriptor, Family, get_legacy_row_size

class UnknownDeviceError(Exception):
    pass

class ProtocolNotReadyError(RuntimeError):
    pass

class AddressClashError(Exception):
    pass

class AddressOutOfRangeError(Exception):
    pass

class UnsupportedFirmwareError(Exception):
    pass

# Families for which legacy firmwares always write the configuration bits
LEGACY_CONFIG_BITS_FAMILIES = frozenset([Family.PIC24H, Family.PIC24FK, Family.dsPIC33F])

class DriverState(enum.Enum):
    IDLE = 'Idle'
    IDENTIFIED = 'Identified'
    VERSION_KNOWN = 'VersionKnown'
    PROGRAMMING = 'Programming'
    VERIFYING = 'Verifying'
    DONE = 'Done'
    ERROR = 'Error'


class VerificationMismatch:
    """@brief One instruction read back with a different value than the one programmed
    """
    def __init__(self, address: int, expected: int, got: int):
        self.address = address
        self.expected = expected
        self.got = got

    def __str__(self) -> str:
        return f'Verification failed at address 0x{self.address:06x}! Expected 0x{self.expected:06x}, got 0x{self.got:06x}'

    def __repr__(self):
        return str(self)


class VerificationResult:
    """@brief Outcome of the read-back of programmed rows
    """
    def __init__(self):
        self.mismatches: List[VerificationMismatch] = []
        self.unreadable_rows: List[int] = []   # Addresses of rows the target refused to read back

    def is_ok(self) -> bool:
        return not self.mismatches and not self.unreadable_rows


class PicBootloaderDriver:
    """@brief Host side of the PIC24/dsPIC serial bootloader
    @note One driver instance owns the session state and the target, it should not be shared between threads
    """
    def __init__(self, context: FlasherContext, device_catalog: DeviceCatalog, config_bits_enabled: bool = True, verify_checksum: bool = False):
        """@brief Constructor
        @param context The context container for flashing operations
        @param device_catalog The known devices
        @param config_bits_enabled Initial configuration bits programming setting (legacy firmwares override it)
        @param verify_checksum Validate the checksum of each hex record
        """
        self.context = context
        self.device_catalog = device_catalog
        self.config_bits_enabled = config_bits_enabled
        self.verify_checksum = verify_checksum
        self.firmware_version = 0
        self.current_device: Optional[DeviceDescriptor] = None
        self.state = DriverState.IDLE

    def _require_device(self) -> DeviceDescriptor:
        if self.current_device is None:
            raise ProtocolNotReadyError('Device not read, or unknown device')
        return self.current_device

    def set_mclr(self, level: bool) -> None:
        """@brief Drive the target's MCLR (reset) line
        """
        self.context.target.set_mclr(level)

    def read_device(self) -> Optional[DeviceDescriptor]:
        """@brief Identify the target device
        @return The DeviceDescriptor of the target, or None if the device did not reply properly or is not in the catalog
        """
        self.context.give_progress(ProgressStatus.BUSY, 0)
        self.context.target.clear()
        try:
            (device_id, process_id, revision) = self.context.execute_on_target(comm.CommandReadID())
        except comm.ReadTimeoutError as e:
            self.context.give_progress(ProgressStatus.IDLE, 0)
            self.current_device = None
            self.state = DriverState.IDLE
            self.context.logger.error(f'No valid reply to device identification ({e}). Check device or baud rate.')
            return None
        self.context.give_progress(ProgressStatus.IDLE, 0)

        device = self.device_catalog.lookup(device_id, process_id)
        if device is None:
            self.current_device = None
            self.state = DriverState.IDLE
            self.context.logger.error(f'Device ID: 0x{device_id:04x}, Process ID: 0x{process_id:x}. Refusing to program unknown device. Check device or baud rate.')
            return None
        device.revision = revision
        self.current_device = device
        self.state = DriverState.IDENTIFIED
        self.context.logger.info(f'Found device {device}')
        return device

    def get_version(self) -> None:
        """@brief Read the bootloader firmware version and adapt the session settings to it
        """
        device = self._require_device()
        self.context.logger.info('Reading firmware version...')
        version = self.context.execute_on_target(comm.CommandReadVersion())
        self.state = DriverState.VERSION_KNOWN
        if version is None:
            self.firmware_version = 0
            self.config_bits_enabled = device.family in LEGACY_CONFIG_BITS_FAMILIES
            self.context.logger.warning('Detected firmware version 0: Config bits always written for PIC24H, '
                                        'but not for PIC24F, PIC24E, or dsPIC33E (last page of program memory skipped for these devices). '
                                        'Update to the latest firmware to change this behavior.')
            return

        (major_version, minor_version, acknowledged) = version
        self.firmware_version = major_version
        if not acknowledged:
            self.context.logger.warning(f'Firmware version {major_version}.{minor_version} not acknowledged by the target')
            return
        self.context.logger.info(f'Firmware version: {major_version}.{minor_version}, config bits programming ' + ('enabled.' if self.config_bits_enabled else 'disabled.'))
        if self.firmware_version >= 3:
            self.context.logger.info(f'Firmware v3.0 or later detected. No pages below location 0x{PROGRAM_START:x} will be written.')

    def should_skip_row(self, row: MemRow, family: Family) -> bool:
        """@brief Check if a row must not be written (nor verified) through the bulk row transfer
        @param row The row to check
        @param family The target's family
        @return True if this row should be left untouched
        """
        address = row.get_address()
        if self.firmware_version >= 3 and address < PROGRAM_START:
            return True
        if family in CONFIG_PAGE_FAMILIES:
            if address >= self._require_device().config_page and not row.is_empty():
                self.context.logger.info(f'Skipping memory row 0x{address:06x} on config bit page')
                return True
        return False

    def load_hex_file(self, hex_file: Iterable[str]) -> MemoryImage:
        """@brief Map the content of a hex file onto a fresh memory image of the target
        @param hex_file An iterable over the lines of the hex file
        @return The populated MemoryImage

        @warning Any malformed line, clash with the bootloader or out of range address raises an exception, nothing is sent to the target
        """
        device = self._require_device()
        family = device.family
        image = MemoryImage.create_for(family, device.small_ram)
        self.context.logger.info('Reading hex file...')
        for (line_number, address, words) in iter_word_data(hex_file, verify_checksum=self.verify_checksum):
            if not page_clash(address, family):
                raise AddressClashError(f'Line {line_number}: program address 0x{address:06x} in hex file clashes with bootloader location. '
                                        'Recompile target code with appropriate linker file.')
            for data in words:
                if not reserved_word_clash(address, data, family):
                    raise AddressClashError(f'Line {line_number}: program data at 0x{address:06x} in hex file clashes with bootloader. '
                                            'Recompile target code with appropriate linker file.')
                if not config_region_clash(address, data, family, device.config_page, device.config_word, self.config_bits_enabled):
                    raise AddressClashError(f'Line {line_number}: configuration bit programming is not enabled, but data exists on the last page of flash (0x{address:06x})! '
                                            'Enable config bit programming or change hex file.')
                if not image.insert_data(address, data):
                    raise AddressOutOfRangeError(f'Line {line_number}: bad hex file, 0x{address:06x} out of range')
                address += 1
        self.context.logger.info('Hex file read successfully.')
        return image

    def _read_legacy_reset_vector(self) -> None:
        device = self._require_device()
        row_size = get_legacy_row_size(device.family, device.small_ram)
        message = 'Programming through a version 0 bootloader firmware is not supported, please update the bootloader'
        try:
            self.context.execute_on_target(comm.CommandReadProgramMemory(address=0x000000, row_size=row_size))
        except (comm.TransportNackError, comm.ReadTimeoutError) as e:
            raise UnsupportedFirmwareError(message + f' (reset vector read failed: {e})') from e
        raise UnsupportedFirmwareError(message)

    def _send_row(self, row: MemRow) -> None:
        """@brief Send one row to the target, re-sending it (up to context.retries times) if the target refuses it
        """
        attempt_number = 0
        while True:
            try:
                row.send_data(self.context.target)
                return
            except comm.TransportNackError as e:
                if attempt_number >= self.context.retries:
                    raise comm.MaxRetriesReachedError(f'Aborting transmission of {row} after {attempt_number} retrie(s)') from e
                attempt_number += 1
                self.context.logger.warning(f'Re-sending {row}: {e}')

    def transmit_image(self, image: MemoryImage) -> None:
        """@brief Send all non-empty rows of a formatted image to the target
        """
        family = self._require_device().family
        non_empty_rows = image.count_non_empty()
        non_empty_row_count = 0
        self.context.logger.info('Programming device...')
        for row in image:
            if not row.is_empty():
                non_empty_row_count += 1
                self.context.give_progress(ProgressStatus.PROGRAMMING, 100 * non_empty_row_count // non_empty_rows)
            if row.get_type() == MemType.CONFIGURATION and not self.config_bits_enabled:
                continue
            if row.is_empty() or self.should_skip_row(row, family):
                continue
            self._send_row(row)
            if row.get_type() == MemType.CONFIGURATION and row.get_row_number() == 0 and family == Family.PIC24H:
                self.context.logger.info('Config bits sent.')

    def verify_image(self, image: MemoryImage, reference: MemoryImage) -> VerificationResult:
        """@brief Read back the program rows of @p image and compare them with @p reference
        @param image The image that was sent (its rows' content is replaced by the read-back data)
        @param reference A copy of the image taken before transmission
        @return The VerificationResult
        @note Verification stops at the first mismatching row, rows that cannot be read are reported and skipped
        """
        family = self._require_device().family
        result = VerificationResult()
        non_empty_program_rows = image.count_non_empty(MemType.PROGRAM)
        non_empty_program_row_count = 0
        self.context.logger.info('Verifying...')
        for row_index in range(MemRow.PM_SIZE):
            row = image[row_index]
            if row.is_empty():
                continue
            non_empty_program_row_count += 1
            self.context.give_progress(ProgressStatus.VERIFYING, 100 * non_empty_program_row_count // non_empty_program_rows)
            if self.should_skip_row(row, family):
                continue
            if not row.read_data(self.context.target):
                self.context.logger.error(f'Problem reading program memory at 0x{row.get_address():06x} during verification.')
                result.unreadable_rows.append(row.get_address())
                continue
            expected_bytes = reference[row_index].get_payload()
            got_bytes = row.get_payload()
            address = row.get_address()
            for index in range(row.get_row_size()):
                expected = to_24bit_le(expected_bytes, 3 * index)
                got = to_24bit_le(got_bytes, 3 * index)
                if expected != got:
                    mismatch = VerificationMismatch(address=address, expected=expected, got=got)
                    self.context.logger.error(str(mismatch))
                    result.mismatches.append(mismatch)
                    break
                address += 2
            if result.mismatches:
                break
        return result

    def resend_configuration(self, image: MemoryImage) -> None:
        """@brief Send the configuration rows again (the firmware needs them right before a reset)
        """
        if not self.config_bits_enabled:
            return
        for row in image.get_rows_of_type(MemType.CONFIGURATION):
            self._send_row(row)

    def reset_target(self) -> None:
        if self.firmware_version == 0 or self.config_bits_enabled:
            self.context.execute_on_target(comm.CommandReset())
        else:
            self.context.execute_on_target(comm.CommandPORReset())

    def program_hex_file(self, hex_file) -> bool:
        """@brief Program a hex file into the identified target, verify it and reset the target
        @param hex_file A filename or an iterable over the lines of the hex file
        @return True if the verification succeeded

        @note Any exception raised on the way ends the session in the Error state (with an Error progress event) before being propagated
        """
        try:
            if isinstance(hex_file, str):
                with open(file=hex_file, mode="rt") as f:
                    verify_ok = self._program_lines(f)
            else:
                verify_ok = self._program_lines(hex_file)
        except Exception:
            self.state = DriverState.ERROR
            self.context.give_progress(ProgressStatus.ERROR, 0)
            raise
        if verify_ok:
            self.state = DriverState.DONE
            self.context.give_progress(ProgressStatus.IDLE, 100)
        else:
            self.context.logger.error('Verification failed.')
            self.state = DriverState.ERROR
            self.context.give_progress(ProgressStatus.ERROR, 0)
        return verify_ok

    def _program_lines(self, hex_file: Iterable[str]) -> bool:
        device = self._require_device()
        self.get_version()
        image = self.load_hex_file(hex_file)
        if self.firmware_version == 0:
            self._read_legacy_reset_vector()
        image.format_data()
        reference = image.snapshot()
        self.state = DriverState.PROGRAMMING
        self.transmit_image(image)
        self.state = DriverState.VERIFYING
        result = self.verify_image(image, reference)
        self.resend_configuration(image)
        self.reset_target()
        self.context.logger.info(f'Done programming {device.name}!')
        return result.is_ok()

    def dump_program_memory(self, hex_file_parser: HexFileParser) -> int:
        """@brief Read the program memory of the target (up to and including the configuration page) into a firmware image
        @param hex_file_parser The firmware image to store read data into (byte addresses, 4 bytes per instruction)
        @return The number of non-erased rows stored
        """
        device = self._require_device()
        image = MemoryImage.create_for(device.family, device.small_ram)
        rows = [row for row in image.get_rows_of_type(MemType.PROGRAM) if row.get_address() <= device.config_page]
        stored_rows = 0
        self.context.logger.info(f'Reading {len(rows)} program rows...')
        for (count, row) in enumerate(rows, start=1):
            if not row.read_data(self.context.target):
                raise comm.ProtocolError(f'Could not read program memory row at 0x{row.get_address():06x}')
            payload = row.get_payload()
            self.context.give_progress(ProgressStatus.BUSY, 100 * count // len(rows))
            if payload == b'\xff' * len(payload):
                continue    # Only erased flash, nothing to dump
            content = bytearray()
            for index in range(row.get_row_size()):
                content += payload[3 * index:3 * index + 3] + b'\x00'  # Phantom byte
            hex_file_parser.put_data_chunk(MCULocatedLogicalDataChunk(start_address=row.get_address().to_byte_address(), content=content))
            stored_rows += 1
        self.context.give_progress(ProgressStatus.IDLE, 100)
        self.context.logger.debug(f'Stored {stored_rows} non-erased rows')
        return stored_rows
