# coding: utf-8
import pytest

import domain.pic24.bootloader_comm as comm
from adapters.mock_serial_transport import EmulatedBootloaderTransport

class ScriptedTransport:
    """@brief Serial transport replaying a predefined reply and recording written bytes"""
    def __init__(self, reply: bytes = b''):
        self.reply = bytearray(reply)
        self.written = bytearray()
        self.rts = None
        self.dtr = None

    def clear(self):
        self.reply = bytearray()

    def write(self, buffer: bytes):
        self.written += buffer

    def read(self, size: int) -> bytes:
        result = bytes(self.reply[:size])
        del self.reply[:size]
        return result

    def set_rts(self, level: bool):
        self.rts = level

    def set_dtr(self, level: bool):
        self.dtr = level

def test_pack_address24():
    assert comm.pack_address24(0x123456) == b'\x56\x34\x12'
    assert comm.pack_address24(0) == b'\x00\x00\x00'

def test_command_buffers():
    assert comm.CommandReadID().get_as_buffer() == b'\x09'
    assert comm.CommandReadVersion().get_as_buffer() == b'\x11'
    assert comm.CommandReset().get_as_buffer() == b'\x08'
    assert comm.CommandPORReset().get_as_buffer() == b'\x13'
    assert comm.CommandReadProgramMemory(address=0x000C00, row_size=32).get_as_buffer() == b'\x02\x00\x0c\x00'
    assert comm.CommandWriteProgramMemory(address=0x000C00, payload=b'\x00\x01\x02').get_as_buffer() == b'\x03\x00\x0c\x00\x00\x01\x02'
    assert comm.CommandWriteEEPROM(address=0x7FF000, payload=b'\xab\xcd').get_as_buffer() == b'\x05\x00\xf0\x7f\xab\xcd'
    assert comm.CommandWriteConfiguration(address=0xF80004, payload=b'\x12\x34\x00', empty=False).get_as_buffer() == b'\x07\x04\x00\xf8\x00\x12\x34\x00'
    assert comm.CommandWriteConfiguration(address=0xF80004, payload=b'\xff\xff\xff', empty=True).get_as_buffer() == b'\x07\x04\x00\xf8\x01\xff\xff\xff'

def test_read_id_reply():
    assert comm.CommandReadID().parse_reply(bytes([0x34, 0x12, 0, 0, 0x07, 0x56, 0, 0])) == (0x1234, 5, 0x5607)
    with pytest.raises(comm.ReadTimeoutError):
        comm.CommandReadID().parse_reply(b'\x34\x12')

def test_read_version_reply():
    command = comm.CommandReadVersion()
    assert command.parse_reply(b'\x00') is None
    assert command.parse_reply(b'\x03\x02\x01') == (3, 2, True)
    assert command.parse_reply(b'\x03\x02\x05') == (3, 2, False)
    with pytest.raises(comm.ReadTimeoutError):
        command.parse_reply(b'\x03\x02')

def test_read_version_legacy_only_reads_one_byte():
    transport = ScriptedTransport(reply=b'\x00\x55\x55')
    protocol = comm.BootloaderProtocol(device=transport)
    assert protocol.execute(comm.CommandReadVersion()) is None
    assert transport.reply == b'\x55\x55'

def test_read_program_memory_reply():
    command = comm.CommandReadProgramMemory(address=0xC00, row_size=2)
    assert command.parse_reply(b'\x00\x01\x02\x03\x04\x05') == b'\x00\x01\x02\x03\x04\x05'
    with pytest.raises(comm.TransportNackError):
        command.parse_reply(b'\x00')
    with pytest.raises(comm.ReadTimeoutError):
        command.parse_reply(b'\x00\x01\x02')

def test_write_reply():
    command = comm.CommandWriteProgramMemory(address=0xC00, payload=b'\x00\x01\x02')
    assert command.parse_reply(b'\x01') is None
    with pytest.raises(comm.TransportNackError):
        command.parse_reply(b'\x00')
    with pytest.raises(comm.ProtocolError):
        command.parse_reply(b'\x42')
    with pytest.raises(comm.ReadTimeoutError):
        command.parse_reply(b'')

def test_protocol_execute_on_emulated_target():
    transport = EmulatedBootloaderTransport(device_id=0x1234, revision=0x5607, row_size=2)
    protocol = comm.BootloaderProtocol(device=transport)
    assert protocol.execute(comm.CommandReadID()) == (0x1234, 5, 0x5607)
    assert protocol.execute(comm.CommandReadVersion()) == (3, 0, True)
    protocol.execute(comm.CommandWriteProgramMemory(address=0xC00, payload=b'\x00\x01\x02\x03\x04\x05'))
    assert protocol.execute(comm.CommandReadProgramMemory(address=0xC00, row_size=2)) == b'\x00\x01\x02\x03\x04\x05'
    assert protocol.execute(comm.CommandReset()) is None
    assert transport.get_written_addresses(comm.CommandWriteProgramMemory.COMMAND_ID) == [0xC00]

def test_set_mclr_drives_rts_and_dtr():
    transport = ScriptedTransport()
    with comm.BootloaderProtocolSession(device=transport) as protocol:
        protocol.set_mclr(True)
        assert transport.rts and transport.dtr
        protocol.set_mclr(False)
        assert not transport.rts and not transport.dtr
