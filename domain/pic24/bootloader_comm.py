#!/usr/bin/env python3
# coding: utf-8
"""@brief Encoders/decoders for the PIC24/dsPIC serial bootloader commands and the protocol handler executing them
"""

import abc
import struct
from logging import getLogger

from domain.common import hex_dump
from domain.mcu_addressing import MCULogicalAddress

logger = getLogger(__name__)

NACK = 0x00
ACK = 0x01

class MaxRetriesReachedError(Exception):
    pass

class ReadTimeoutError(Exception):
    pass

class TransportNackError(Exception):
    pass

class ProtocolError(Exception):
    pass

def pack_address24(address: int) -> bytes:
    """@brief Encode a word address as 3 little-endian bytes
    """
    assert address >= 0x000000 and address <= 0xffffff
    return struct.pack('<I', address)[0:3]   # We only grab the 3 first bytes (discarding the most significant byte)

class BootloaderCommand(metaclass=abc.ABCMeta):
    """@brief Interface to which must comply all concrete implementations of bootloader command encoders/decoders

    Commands are not framed: a command is its ID byte followed by its arguments, the reply is a fixed number of raw bytes
    """
    COMMAND_ID = None
    COMMAND_NAME = '(unknown)'

    def __init__(self, command_id: int):
        self.command_id = command_id

    @staticmethod
    def to_logical_address(input) -> MCULogicalAddress:
        """@brief Try to convert an input value into a MCULogicalAddress
        @return The resulting MCULogicalAddress instance
        @warning If conversion is not possible, an TypeError exception will be raised
        """
        if isinstance(input, MCULogicalAddress):
            return input
        elif isinstance(input, int):
            return MCULogicalAddress(input)
        else:
            raise TypeError('Unsupported argument type ' + str(type(input)))

    def get_arguments_payload(self) -> bytes:
        """@brief Get the arguments for this command
        @return The arguments formatted as a byte buffer
        """
        return b''

    @abc.abstractmethod
    def get_expected_reply_sz(self) -> int:
        """@brief Get the expected reply size returned to us when issueing this command
        @return The number of bytes we are expecting as a reply
        """
        raise NotImplementedError

    def receive_reply(self, device) -> bytes:
        """@brief Read the reply to this command from the serial device
        @param device The SerialTransport the command was sent to
        @return The raw reply bytes (may be short if the device timed out)
        """
        return device.read(self.get_expected_reply_sz())

    @abc.abstractmethod
    def parse_reply(self, reply_payload: bytes):
        """@brief Parse the reply from the embedded bootloader
        @param reply_payload The data returned by the embedded bootloader
        @return An object containing our interpretation of the reply_payload
        """
        raise NotImplementedError

    def get_as_buffer(self) -> bytes:
        """@brief Represent this command as a binary buffer
        @return The byte buffer to send to the remote target (includes command+arguments)
        """
        return struct.pack('B', self.command_id) + self.get_arguments_payload()

    def __str__(self) -> str:
        """@brief Generic formatter of a command as a string"""
        return self.COMMAND_NAME


class CommandReadID(BootloaderCommand):
    """@brief Class for reading the device ID, process ID and revision of the target"""
    COMMAND_ID = 0x09
    COMMAND_NAME = 'READ_ID'

    def __init__(self):
        super().__init__(command_id=self.COMMAND_ID)

    def get_expected_reply_sz(self) -> int:
        return 8

    def parse_reply(self, reply_payload):
        """@brief Parse the reply and extract the device identification
        @param reply_payload The 8 bytes returned by the bootloader (DEVID then DEVREV registers, 4 bytes each)
        @return A tuple containing device ID, process ID and revision
        """
        if len(reply_payload) != self.get_expected_reply_sz():
            raise ReadTimeoutError('Short read while receiving reply for ' + str(self) + ': ' + hex_dump(reply_payload))
        device_id = (reply_payload[1] << 8) | reply_payload[0]
        process_id = reply_payload[5] >> 4
        revision = (reply_payload[5] << 8) | reply_payload[4]
        return (device_id, process_id, revision)


class CommandReadVersion(BootloaderCommand):
    """@brief Class for getting the bootloader firmware version

    Legacy firmwares do not know this command and reply with a single NACK
    """
    COMMAND_ID = 0x11
    COMMAND_NAME = 'READ_VERSION'

    def __init__(self):
        super().__init__(command_id=self.COMMAND_ID)

    def get_expected_reply_sz(self) -> int:
        return 3

    def receive_reply(self, device) -> bytes:
        major_version = device.read(1)
        if len(major_version) == 1 and major_version[0] == NACK:
            return major_version
        return major_version + device.read(2)

    def parse_reply(self, reply_payload):
        """@return None for a legacy firmware, or a (major_version, minor_version, acknowledged) tuple
        """
        if len(reply_payload) == 1 and reply_payload[0] == NACK:
            return None
        if len(reply_payload) != self.get_expected_reply_sz():
            raise ReadTimeoutError('Short read while receiving reply for ' + str(self) + ': ' + hex_dump(reply_payload))
        (major_version, minor_version, ack) = struct.unpack('BBB', reply_payload)
        return (major_version, minor_version, ack == ACK)


class CommandReadProgramMemory(BootloaderCommand):
    """@brief Class for reading one program memory row from the target"""
    COMMAND_ID = 0x02
    COMMAND_NAME = 'READ_PM'

    def __init__(self, address, row_size: int):
        """@brief Constructor
        @param address The word address of the row to read
        @param row_size The number of instructions in the row (3 bytes are received per instruction)
        """
        self.address = self.to_logical_address(address)
        self.row_size = row_size
        super().__init__(command_id=self.COMMAND_ID)

    def get_arguments_payload(self) -> bytes:
        return pack_address24(self.address)

    def get_expected_reply_sz(self) -> int:
        return self.row_size * 3

    def parse_reply(self, reply_payload):
        if len(reply_payload) != self.get_expected_reply_sz():
            if len(reply_payload) == 1 and reply_payload[0] == NACK:
                raise TransportNackError(f'Target refused to read row at 0x{self.address:06x}')
            raise ReadTimeoutError(f'Short read while receiving reply for {self}: got {len(reply_payload)}/{self.get_expected_reply_sz()} bytes')
        return reply_payload

    def __str__(self) -> str:
        return super().__str__() + f'({self.row_size} instructions at 0x{self.address:06x})'


class CommandWriteRow(BootloaderCommand):
    """@brief Common implementation for commands writing data to the target and expecting an ACK"""

    def __init__(self, command_id: int, address, payload: bytes):
        """@brief Constructor
        @param command_id The command ID
        @param address The word address to write to
        @param payload The formatted row bytes
        """
        self.address = self.to_logical_address(address)
        self.payload = payload
        super().__init__(command_id=command_id)

    def get_arguments_payload(self) -> bytes:
        return pack_address24(self.address) + self.payload

    def get_expected_reply_sz(self) -> int:
        return 1

    def parse_reply(self, reply_payload):
        if len(reply_payload) != self.get_expected_reply_sz():
            raise ReadTimeoutError('Timeout while waiting for ACK to ' + str(self))
        if reply_payload[0] == NACK:
            raise TransportNackError('Got a NACK for ' + str(self))
        if reply_payload[0] != ACK:
            raise ProtocolError(f'Wrong reply. Expected ACK ({ACK:02x}), got {reply_payload[0]:02x} for ' + str(self))

    def __str__(self) -> str:
        return super().__str__() + f'({len(self.payload)} bytes at 0x{self.address:06x})'


class CommandWriteProgramMemory(CommandWriteRow):
    """@brief Class for encoding a command to write a program memory row"""
    COMMAND_ID = 0x03
    COMMAND_NAME = 'WRITE_PM'

    def __init__(self, address, payload: bytes):
        super().__init__(command_id=self.COMMAND_ID, address=address, payload=payload)


class CommandWriteEEPROM(CommandWriteRow):
    """@brief Class for encoding a command to write an EEPROM row"""
    COMMAND_ID = 0x05
    COMMAND_NAME = 'WRITE_EE'

    def __init__(self, address, payload: bytes):
        super().__init__(command_id=self.COMMAND_ID, address=address, payload=payload)


class CommandWriteConfiguration(CommandWriteRow):
    """@brief Class for encoding a command to write one configuration word"""
    COMMAND_ID = 0x07
    COMMAND_NAME = 'WRITE_CM'

    def __init__(self, address, payload: bytes, empty: bool):
        """@brief Constructor
        @param empty True if the hex file contains no value for this configuration word (the target will then leave it untouched)
        """
        assert len(payload) == 3
        self.empty = empty
        super().__init__(command_id=self.COMMAND_ID, address=address, payload=payload)

    def get_arguments_payload(self) -> bytes:
        return pack_address24(self.address) + struct.pack('B', 1 if self.empty else 0) + self.payload


class CommandReset(BootloaderCommand):
    """@brief Class for encoding a command to make the target exit the bootloader and run the user code"""
    COMMAND_ID = 0x08
    COMMAND_NAME = 'RESET'

    def __init__(self):
        super().__init__(command_id=self.COMMAND_ID)

    def get_expected_reply_sz(self) -> int:
        return 0

    def parse_reply(self, reply_payload):
        return


class CommandPORReset(CommandReset):
    """@brief Class for encoding a power-on-reset command (re-arms the configuration bits lockout)"""
    COMMAND_ID = 0x13
    COMMAND_NAME = 'POR_RESET'


class BootloaderProtocol:
    """@brief Class representing the communication protocol with the remote embedded bootloader
    """
    def __init__(self, device):
        """@brief Constructor
        @param device The SerialTransport we read/write serial data from/to
        """
        self.device = device

    def clear(self) -> None:
        """@brief Discard any pending incoming byte"""
        self.device.clear()

    def set_mclr(self, level: bool) -> None:
        """@brief Drive the target's reset line (wired to both RTS and DTR)"""
        self.device.set_rts(level)
        self.device.set_dtr(level)

    def execute(self, command: BootloaderCommand):
        """@brief Request execution of a specific command on the remote embedded bootloader
        @param command The command to execute
        @return The outcome of the command (can be None or the instance of an object encapsulating data)
        """
        assert isinstance(command, BootloaderCommand)  # command provided as argument should implement the BootloaderCommand interface
        logger.debug('Sending command: ' + str(command))
        self.device.write(command.get_as_buffer())
        if not command.get_expected_reply_sz() > 0:
            return
        reply_bytes = command.receive_reply(self.device)
        logger.debug(f'Got {len(reply_bytes)}/{command.get_expected_reply_sz()} bytes reply')
        if len(reply_bytes) <= 16:
            logger.debug('Response buffer: ' + hex_dump(reply_bytes))

        outcome = None
        try:
            outcome = command.parse_reply(reply_bytes)
        except Exception as e:
            logger.error('An error occured while parsing the reply to ' + str(command))
            raise e
        return outcome


class BootloaderProtocolSession:
    """@brief Class allowing RAII for communication sessions with the embedded bootloader
    """
    def __init__(self, device):
        """@brief Constructor
        @param device The SerialTransport we read/write serial data from/to
        """
        self.device = device
        self.handler = None

    def get_handler(self) -> BootloaderProtocol:
        """@brief Get a bootloader protocol handler to run commands on the target
        @return A BootloaderProtocol instance (we'll create it at the first invokation, then keep it in cache)
        """
        if self.handler is None:
            self.handler = BootloaderProtocol(device=self.device)
        return self.handler

    def __enter__(self):
        return self.get_handler()

    def __exit__(self, type, value, traceback):
        pass
