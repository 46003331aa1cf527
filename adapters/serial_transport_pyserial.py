# coding: utf-8
"""@brief Module implementing the serial transport on top of pyserial
"""
import serial
from serial import Serial

from domain.ext_adapters_interface.serial_transport_interface import SerialTransport

class PySerialTransport(SerialTransport):
    """@brief Concrete implementation of SerialTransport using a pyserial port"""
    READ_TIMEOUT = 5    # Timeout for each read operation (replies), in s

    def __init__(self, port: Serial):
        """@brief Construct a transport on an already opened serial port
        @param port The pyserial Serial instance
        """
        self.port = port

    @staticmethod
    def open(port_name: str, baudrate: int = 115200, timeout: float = READ_TIMEOUT):
        """@brief Open a serial port with the settings expected by the bootloader (8N1, no flow control)
        @return A PySerialTransport instance, to be used as a context manager
        """
        return PySerialTransport(Serial(port_name, baudrate=baudrate, parity=serial.PARITY_NONE, stopbits=serial.STOPBITS_ONE,
                                        bytesize=serial.EIGHTBITS, xonxoff=False, rtscts=False, timeout=timeout))

    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.port.close()

    def clear(self) -> None:
        self.port.reset_input_buffer()

    def write(self, buffer: bytes) -> None:
        self.port.write(buffer)

    def read(self, size: int) -> bytes:
        return self.port.read(size)

    def set_rts(self, level: bool) -> None:
        self.port.rts = level

    def set_dtr(self, level: bool) -> None:
        self.port.dtr = level
