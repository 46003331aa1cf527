# coding: utf-8
import io
import pytest

from adapters.mock_logger import MockLogger, DEBUG
from adapters.mock_progress_sink import MockProgressSink
from adapters.mock_serial_transport import EmulatedBootloaderTransport
from adapters.hex_file_parser_python_intelhex import PythonIntelHexFileParser
from domain.ext_adapters_interface.progress_sink_interface import ProgressStatus
from domain.flasher_context import FlasherContext
import domain.pic24.bootloader_comm as comm
import domain.pic24.bootloader_driver as driver_module
from domain.pic24.bootloader_driver import PicBootloaderDriver, DriverState
from domain.pic24.hex_record import MalformedHexLineError
from domain.pic24.pic_device import DeviceCatalog

TEST_CATALOG = """PIC24F16KA102,4518,5,PIC24FK,2C00,1
PIC24FJ64GA002,0447,5,PIC24F,2C00,1
"""

PIC24FK_ID = 0x4518
PIC24F_ID = 0x0447
TEST_REVISION = 0x5607    # Process ID 5

def make_record(address: int, record_type: int, data: bytes) -> str:
    record = bytes([len(data), (address >> 8) & 0xff, address & 0xff, record_type]) + data
    checksum = (-sum(record)) & 0xff
    return ':' + (record + bytes([checksum])).hex().upper() + '\n'

def make_hex_file(*records) -> io.StringIO:
    """@brief Build a hex file from (byte address, data) data records, inserting extended address records where needed"""
    lines = []
    extended_address = 0
    for (address, data) in records:
        if address >> 16 != extended_address:
            extended_address = address >> 16
            lines.append(make_record(0, 4, extended_address.to_bytes(2, 'big')))
        lines.append(make_record(address & 0xffff, 0, data))
    lines.append(make_record(0, 1, b''))
    return io.StringIO(''.join(lines))

# Two instructions at word address 0xC00: 0x020100 and 0x050403
USER_CODE = (0x1800, b'\x00\x01\x02\x00\x03\x04\x05\x00')

def create_test_driver(device_id: int = PIC24FK_ID, retries: int = 0, row_size: int = 32, **kwargs):
    transport = EmulatedBootloaderTransport(device_id=device_id, revision=TEST_REVISION, row_size=row_size,
                                            version=kwargs.pop('version', (3, 0)), version_ack=kwargs.pop('version_ack', True))
    progress_sink = MockProgressSink()
    logger = MockLogger(DEBUG)
    context = FlasherContext('',
                             progress_sink=progress_sink,
                             logger=logger,
                             target=comm.BootloaderProtocol(device=transport),
                             retries=retries)
    driver = PicBootloaderDriver(context=context, device_catalog=DeviceCatalog.create_from(io.StringIO(TEST_CATALOG)), **kwargs)
    return (driver, transport, progress_sink, logger)

def get_write_commands(transport: EmulatedBootloaderTransport):
    write_ids = (comm.CommandWriteProgramMemory.COMMAND_ID, comm.CommandWriteEEPROM.COMMAND_ID, comm.CommandWriteConfiguration.COMMAND_ID)
    return [(cmd, address) for (cmd, address) in transport.commands_history if cmd in write_ids]

def test_read_device():
    (driver, transport, progress_sink, logger) = create_test_driver()
    device = driver.read_device()
    assert device.name == 'PIC24F16KA102'
    assert device.revision == TEST_REVISION
    assert driver.current_device is device
    assert driver.state == DriverState.IDENTIFIED
    assert progress_sink.events == [(ProgressStatus.BUSY, 0), (ProgressStatus.IDLE, 0)]
    assert transport.clear_count == 1

def test_read_unknown_device():
    (driver, transport, progress_sink, logger) = create_test_driver(device_id=0x9999)
    assert driver.read_device() is None
    assert driver.current_device is None
    assert 'Refusing to program unknown device' in logger.errors_history[0]
    with pytest.raises(driver_module.ProtocolNotReadyError):
        driver.program_hex_file(make_hex_file(USER_CODE))

def test_operations_require_identified_device():
    (driver, transport, progress_sink, logger) = create_test_driver()
    with pytest.raises(driver_module.ProtocolNotReadyError):
        driver.get_version()
    with pytest.raises(driver_module.ProtocolNotReadyError):
        driver.load_hex_file(make_hex_file(USER_CODE))
    with pytest.raises(driver_module.ProtocolNotReadyError):
        driver.dump_program_memory(PythonIntelHexFileParser())
    assert transport.commands_history == []

def test_get_version():
    (driver, transport, progress_sink, logger) = create_test_driver(config_bits_enabled=False)
    driver.read_device()
    driver.get_version()
    assert driver.firmware_version == 3
    assert not driver.config_bits_enabled
    assert driver.state == DriverState.VERSION_KNOWN

def test_get_legacy_version_forces_config_bits():
    (driver, transport, progress_sink, logger) = create_test_driver(config_bits_enabled=False, version=None)
    driver.read_device()
    driver.get_version()
    assert driver.firmware_version == 0
    assert driver.config_bits_enabled  # PIC24FK legacy firmwares always write configuration bits

def test_program_happy_path():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    assert driver.program_hex_file(make_hex_file(USER_CODE))
    assert transport.read_program_memory(0xC00) == b'\x00\x01\x02'
    assert transport.read_program_memory(0xC02) == b'\x03\x04\x05'
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00]
    assert transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID) == [0xC00]
    # All configuration words are sent (as empty) right before the reset
    assert len(transport.get_written_addresses(comm.CommandWriteConfiguration.COMMAND_ID)) == 8
    assert transport.commands_history[-1] == (comm.CommandReset.COMMAND_ID, None)
    assert driver.state == DriverState.DONE
    assert progress_sink.get_last_event() == (ProgressStatus.IDLE, 100)
    assert ProgressStatus.PROGRAMMING in progress_sink.get_statuses()
    assert ProgressStatus.VERIFYING in progress_sink.get_statuses()
    assert logger.errors_history == []

def test_program_from_file(tmp_path):
    hex_path = tmp_path / 'firmware.hex'
    hex_path.write_text(make_hex_file(USER_CODE).getvalue())
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    assert driver.program_hex_file(str(hex_path))
    assert transport.read_program_memory(0xC00) == b'\x00\x01\x02'

def test_program_eeprom_and_config():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    assert driver.program_hex_file(make_hex_file(USER_CODE,
                                                 (0xFFE000, b'\xab\xcd\x12\x34'),   # EEPROM at word address 0x7FF000
                                                 (0x1F00008, b'\x7f\x00')))         # Third configuration word (word address 0xF80004)
    assert transport.eeprom[0x7FF000] == b'\xab\xcd'
    assert transport.config_memory[0xF80004] == b'\x7f\x00\xff'

def test_program_address_clash_sends_nothing():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    # When the hex file has data on the bootloader page
    with pytest.raises(driver_module.AddressClashError):
        driver.program_hex_file(make_hex_file(USER_CODE, (0x0800, b'\x00\x01\x02\x00')))   # Bootloader page
    # Then the load is aborted before any write is sent
    assert get_write_commands(transport) == []
    assert driver.state == DriverState.ERROR
    assert progress_sink.get_last_event() == (ProgressStatus.ERROR, 0)

def test_program_reserved_word_clash():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    with pytest.raises(driver_module.AddressClashError):
        driver.program_hex_file(make_hex_file((0x0500, b'\xff\xff\x00\x00')))
    assert get_write_commands(transport) == []

def test_program_config_page_without_config_bits():
    (driver, transport, progress_sink, logger) = create_test_driver(device_id=PIC24F_ID, row_size=512, config_bits_enabled=False)
    driver.read_device()
    with pytest.raises(driver_module.AddressClashError):
        driver.program_hex_file(make_hex_file((0x5800, b'\x00\x01\x02\x00')))   # Config page 0x2C00
    assert get_write_commands(transport) == []

def test_program_out_of_range():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    with pytest.raises(driver_module.AddressOutOfRangeError):
        driver.program_hex_file(make_hex_file((0x0000, b'\x00\x00'), (0x1F00020, b'\x00\x00')))   # Word address 0xF80010, past the last configuration word
    assert get_write_commands(transport) == []

def test_program_malformed_hex():
    (driver, transport, progress_sink, logger) = create_test_driver(verify_checksum=True)
    driver.read_device()
    bad_checksum_line = make_record(USER_CODE[0], 0, USER_CODE[1])[:-3] + '00\n'
    hex_file = io.StringIO(bad_checksum_line + make_record(0, 1, b''))
    with pytest.raises(MalformedHexLineError):
        driver.program_hex_file(hex_file)
    assert get_write_commands(transport) == []

def test_program_v3_never_writes_below_program_start():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    assert driver.program_hex_file(make_hex_file((0x0000, b'\x00\x0c\x04\x00\x00\x00\x00\x00'), USER_CODE))
    written = transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID)
    assert written == [0xC00]
    assert all(address >= 0xC00 for address in transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID))

def test_program_legacy_firmware_is_unsupported():
    (driver, transport, progress_sink, logger) = create_test_driver(version=None)
    driver.read_device()
    with pytest.raises(driver_module.UnsupportedFirmwareError):
        driver.program_hex_file(make_hex_file(USER_CODE))
    assert transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID) == [0x000000]
    assert get_write_commands(transport) == []
    assert driver.state == DriverState.ERROR

def test_program_verification_mismatch():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.corrupt_reads_at[0xC02] = b'\x12\x34\x56'
    driver.read_device()
    assert not driver.program_hex_file(make_hex_file(USER_CODE))
    assert 'Verification failed at address 0x000c02! Expected 0x050403, got 0x563412' in logger.errors_history
    assert driver.state == DriverState.ERROR
    assert ProgressStatus.ERROR in progress_sink.get_statuses()
    # The target is reset anyway
    assert transport.commands_history[-1] == (comm.CommandReset.COMMAND_ID, None)

def test_verification_stops_at_first_mismatching_row():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.corrupt_reads_at[0xC00] = b'\x12\x34\x56'
    driver.read_device()
    assert not driver.program_hex_file(make_hex_file(USER_CODE, (0x1880, b'\x00\x01\x02\x00')))   # Second row at 0xC40
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00, 0xC40]
    assert transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID) == [0xC00]

def test_program_unreadable_row():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.nack_reads_at.add(0xC00)
    driver.read_device()
    assert not driver.program_hex_file(make_hex_file(USER_CODE, (0x1880, b'\x00\x01\x02\x00')))
    # The unreadable row is reported, the next one is still verified
    assert transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID) == [0xC00, 0xC40]
    assert 'Problem reading program memory at 0x000c00 during verification.' in logger.errors_history

def test_program_without_config_bits_uses_por_reset():
    (driver, transport, progress_sink, logger) = create_test_driver(config_bits_enabled=False)
    driver.read_device()
    assert driver.program_hex_file(make_hex_file(USER_CODE, (0x1F00008, b'\x7f\x00')))
    assert transport.get_written_addresses(comm.CommandWriteConfiguration.COMMAND_ID) == []
    assert transport.commands_history[-1] == (comm.CommandPORReset.COMMAND_ID, None)

def test_program_retries_refused_row():
    (driver, transport, progress_sink, logger) = create_test_driver(retries=2)
    transport.nack_writes_at[0xC00] = 2
    driver.read_device()
    # When the target refuses the first two writes of a row
    assert driver.program_hex_file(make_hex_file(USER_CODE))
    # Then the row is re-sent until accepted
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00] * 3
    assert transport.read_program_memory(0xC00) == b'\x00\x01\x02'

def test_program_too_many_refusals():
    (driver, transport, progress_sink, logger) = create_test_driver(retries=1)
    transport.nack_writes_at[0xC00] = 2
    driver.read_device()
    with pytest.raises(comm.MaxRetriesReachedError):
        driver.program_hex_file(make_hex_file(USER_CODE))
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00] * 2
    assert comm.CommandReset.COMMAND_ID not in [cmd for (cmd, _) in transport.commands_history]
    assert driver.state == DriverState.ERROR

def test_config_page_rows_are_skipped():
    (driver, transport, progress_sink, logger) = create_test_driver(device_id=PIC24F_ID, row_size=512)
    driver.read_device()
    assert driver.program_hex_file(make_hex_file(USER_CODE, (0x5800, b'\x00\x01\x02\x00')))
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00]
    assert 'Skipping memory row 0x002c00 on config bit page' in logger.logs_history

def test_set_mclr():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.set_mclr(True)
    assert transport.rts and transport.dtr
    driver.set_mclr(False)
    assert not transport.rts and not transport.dtr

def test_dump_program_memory():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.write_program_memory(0xC00, b'\x00\x01\x02\x03\x04\x05')
    driver.read_device()
    firmware = PythonIntelHexFileParser()
    assert driver.dump_program_memory(firmware) == 1
    # Rows up to and including the config page (0x2C00), 64 word addresses each
    assert len(transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID)) == 0x2C00 // 64 + 1
    chunks = firmware.get_data_chunks()
    assert len(chunks) == 1
    assert chunks[0].start_address == 0x1800
    assert chunks[0].get_content()[0:8] == b'\x00\x01\x02\x00\x03\x04\x05\x00'
    assert len(chunks[0].get_content()) == 32 * 4
    assert progress_sink.get_last_event() == (ProgressStatus.IDLE, 100)

def test_dump_unreadable_row():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.nack_reads_at.add(0x40)
    driver.read_device()
    with pytest.raises(comm.ProtocolError):
        driver.dump_program_memory(PythonIntelHexFileParser())

def test_verification_reports_24bit_values():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.corrupt_reads_at[0xC00] = b'\x01\x02\x04'
    driver.read_device()
    assert not driver.program_hex_file(make_hex_file((0x1800, b'\x01\x02\x03\x00')))
    assert 'Verification failed at address 0x000c00! Expected 0x030201, got 0x040201' in logger.errors_history

def test_loading_twice_gives_identical_rows():
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    first_image = driver.load_hex_file(make_hex_file(USER_CODE, (0xFFE000, b'\xab\xcd')))
    second_image = driver.load_hex_file(make_hex_file(USER_CODE, (0xFFE000, b'\xab\xcd')))
    first_image.format_data()
    second_image.format_data()
    assert [row.get_payload() for row in first_image] == [row.get_payload() for row in second_image]
    assert first_image.count_non_empty() == 2
    assert get_write_commands(transport) == []

def test_read_device_without_reply():
    (driver, transport, progress_sink, logger) = create_test_driver()
    transport.mute = True
    # When the target does not answer (eg: wrong baud rate)
    assert driver.read_device() is None
    # Then identification fails like for an unknown device
    assert driver.current_device is None
    assert driver.state == DriverState.IDLE
    assert 'Check device or baud rate' in logger.errors_history[0]
    assert progress_sink.get_last_event() == (ProgressStatus.IDLE, 0)

def test_get_version_not_acknowledged():
    (driver, transport, progress_sink, logger) = create_test_driver(version_ack=False)
    driver.read_device()
    driver.get_version()
    assert driver.firmware_version == 3
    assert driver.config_bits_enabled

def test_get_legacy_version_disables_config_bits():
    (driver, transport, progress_sink, logger) = create_test_driver(device_id=PIC24F_ID, row_size=512, version=None)
    driver.read_device()
    driver.get_version()
    assert driver.firmware_version == 0
    assert not driver.config_bits_enabled

def test_program_v2_writes_below_program_start():
    (driver, transport, progress_sink, logger) = create_test_driver(version=(2, 0))
    driver.read_device()
    assert driver.program_hex_file(make_hex_file((0x0000, b'\x00\x0c\x04\x00\x00\x00\x00\x00'), USER_CODE))
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0x000, 0xC00]
    assert transport.get_written_addresses(comm.CommandReadProgramMemory.COMMAND_ID) == [0x000, 0xC00]
    assert transport.read_program_memory(0x000) == b'\x00\x0c\x04'

def test_program_config_resend_refused():
    (driver, transport, progress_sink, logger) = create_test_driver(retries=0)
    transport.nack_writes_at[0xF80000] = 1
    driver.read_device()
    # When the target refuses a configuration word sent right before the reset
    with pytest.raises(comm.MaxRetriesReachedError):
        driver.program_hex_file(make_hex_file(USER_CODE))
    # Then the session ends in error without resetting the target
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00]
    assert comm.CommandReset.COMMAND_ID not in [cmd for (cmd, _) in transport.commands_history]
    assert driver.state == DriverState.ERROR
    assert progress_sink.get_last_event() == (ProgressStatus.ERROR, 0)

def test_program_missing_file(tmp_path):
    (driver, transport, progress_sink, logger) = create_test_driver()
    driver.read_device()
    with pytest.raises(FileNotFoundError):
        driver.program_hex_file(str(tmp_path / 'missing.hex'))
    assert driver.state == DriverState.ERROR
    assert progress_sink.get_last_event() == (ProgressStatus.ERROR, 0)

def test_program_legacy_firmware_refusing_read_back():
    (driver, transport, progress_sink, logger) = create_test_driver(version=None)
    transport.nack_reads_at.add(0x000000)
    driver.read_device()
    with pytest.raises(driver_module.UnsupportedFirmwareError):
        driver.program_hex_file(make_hex_file(USER_CODE))
    assert get_write_commands(transport) == []
    assert progress_sink.get_last_event() == (ProgressStatus.ERROR, 0)
