# coding: utf-8
"""@brief Module implementing a fake serial link to an emulated PIC24/dsPIC bootloader
"""
from typing import Dict, List, Optional, Tuple

from domain.ext_adapters_interface.serial_transport_interface import SerialTransport
import domain.pic24.bootloader_comm as comm

class EmulatedBootloaderTransport(SerialTransport):
    """@brief SerialTransport decoding the bootloader commands it receives and replying like the embedded firmware would

    Program memory is emulated as a dict of instructions (word address -> 3 bytes), erased instructions read as ff ff ff
    """
    def __init__(self, device_id: int, revision: int, version: Optional[Tuple[int, int]] = (3, 0),
                 version_ack: bool = True, row_size: int = 512, ee_row_size: int = 16):
        """@brief Constructor
        @param device_id The device ID reported by READ_ID
        @param revision The 16-bit DEVREV value reported by READ_ID (its 4 most significant bits are the process ID)
        @param version The (major, minor) firmware version, or None to emulate a legacy firmware (NACKs READ_VERSION)
        @param version_ack Should the firmware acknowledge the version reply?
        @param row_size Instructions per program row
        @param ee_row_size Words per EEPROM row
        """
        self.device_id = device_id
        self.revision = revision
        self.version = version
        self.version_ack = version_ack
        self.row_size = row_size
        self.ee_row_size = ee_row_size
        self.program_memory: Dict[int, bytes] = {}
        self.eeprom: Dict[int, bytes] = {}
        self.config_memory: Dict[int, bytes] = {}
        self.pending_input = bytearray()
        self.pending_output = bytearray()
        self.commands_history: List[Tuple[int, int]] = []   # (command ID, address or None)
        self.written_bytes = 0
        self.nack_writes_at: Dict[int, int] = {}    # address -> number of writes to NACK before accepting
        self.nack_reads_at = set()
        self.corrupt_reads_at: Dict[int, bytes] = {}  # instruction address -> value returned instead of the stored one
        self.rts = False
        self.dtr = False
        self.clear_count = 0
        self.mute = False     # When True, commands are swallowed without any reply (eg: wrong baud rate)

    def clear(self) -> None:
        self.clear_count += 1
        self.pending_output = bytearray()

    def set_rts(self, level: bool) -> None:
        self.rts = level

    def set_dtr(self, level: bool) -> None:
        self.dtr = level

    def read(self, size: int) -> bytes:
        result = bytes(self.pending_output[:size])
        del self.pending_output[:size]
        return result

    def write(self, buffer: bytes) -> None:
        self.written_bytes += len(buffer)
        if self.mute:
            return
        self.pending_input += buffer
        while self.pending_input and self._process_command():
            pass

    def get_written_addresses(self, command_id: int) -> List[int]:
        return [address for (cmd, address) in self.commands_history if cmd == command_id]

    def write_program_memory(self, address: int, instructions: bytes) -> None:
        """@brief Preload emulated flash with instructions (3 bytes each) starting at a word address"""
        for index in range(len(instructions) // 3):
            self.program_memory[address + 2 * index] = bytes(instructions[3 * index:3 * index + 3])

    def read_program_memory(self, address: int) -> bytes:
        """@brief Get the 3 bytes of the instruction stored at a word address"""
        return self.program_memory.get(address, b'\xff\xff\xff')

    @staticmethod
    def _address(buffer) -> int:
        return buffer[0] | (buffer[1] << 8) | (buffer[2] << 16)

    def _consume(self, size: int) -> Optional[bytes]:
        """@brief Get the @p size first bytes of the pending command, or None if they have not been received yet"""
        if len(self.pending_input) < size:
            return None
        data = bytes(self.pending_input[:size])
        del self.pending_input[:size]
        return data

    def _reply_write(self, address: int) -> bool:
        remaining_nacks = self.nack_writes_at.get(address, 0)
        if remaining_nacks > 0:
            self.nack_writes_at[address] = remaining_nacks - 1
            self.pending_output.append(comm.NACK)
            return False
        self.pending_output.append(comm.ACK)
        return True

    def _process_command(self) -> bool:
        """@brief Execute the first command of pending_input if it has been fully received
        @return True if a command was executed
        """
        command_id = self.pending_input[0]
        if command_id == comm.CommandReadID.COMMAND_ID:
            self._consume(1)
            self.commands_history.append((command_id, None))
            devid = self.device_id.to_bytes(2, 'little')
            self.pending_output += devid + b'\x00\x00' + self.revision.to_bytes(2, 'little') + b'\x00\x00'
        elif command_id == comm.CommandReadVersion.COMMAND_ID:
            self._consume(1)
            self.commands_history.append((command_id, None))
            if self.version is None:
                self.pending_output.append(comm.NACK)
            else:
                self.pending_output += bytes([self.version[0], self.version[1], comm.ACK if self.version_ack else 0xee])
        elif command_id == comm.CommandReadProgramMemory.COMMAND_ID:
            frame = self._consume(4)
            if frame is None:
                return False
            address = self._address(frame[1:4])
            self.commands_history.append((command_id, address))
            if address in self.nack_reads_at:
                self.pending_output.append(comm.NACK)
                return True
            for index in range(self.row_size):
                instruction_address = address + 2 * index
                self.pending_output += self.corrupt_reads_at.get(instruction_address, self.read_program_memory(instruction_address))
        elif command_id == comm.CommandWriteProgramMemory.COMMAND_ID:
            frame = self._consume(4 + 3 * self.row_size)
            if frame is None:
                return False
            address = self._address(frame[1:4])
            self.commands_history.append((command_id, address))
            if self._reply_write(address):
                self.write_program_memory(address, frame[4:])
        elif command_id == comm.CommandWriteEEPROM.COMMAND_ID:
            frame = self._consume(4 + 2 * self.ee_row_size)
            if frame is None:
                return False
            address = self._address(frame[1:4])
            self.commands_history.append((command_id, address))
            if self._reply_write(address):
                for index in range(self.ee_row_size):
                    self.eeprom[address + 2 * index] = frame[4 + 2 * index:6 + 2 * index]
        elif command_id == comm.CommandWriteConfiguration.COMMAND_ID:
            frame = self._consume(8)
            if frame is None:
                return False
            address = self._address(frame[1:4])
            self.commands_history.append((command_id, address))
            if self._reply_write(address) and frame[4] == 0:
                self.config_memory[address] = frame[5:8]
        elif command_id in (comm.CommandReset.COMMAND_ID, comm.CommandPORReset.COMMAND_ID):
            self._consume(1)
            self.commands_history.append((command_id, None))
        else:
            raise ValueError(f'Emulated bootloader got unknown command 0x{command_id:02x}')
        return True
