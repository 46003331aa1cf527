#!/usr/bin/env python3
# coding: utf-8

"""@file MCU addressing-related representation
"""

class MCULogicalAddress(int):
    """@brief Class representing a word address in the PIC24/dsPIC address space (24-bit value)
    """

    def to_byte_address(self) -> int:
        """@brief Get the address used for this word in Intel-HEX files (hex files are byte-addressed)
        """
        return int(self) * 2


class MCULogicalAddressRange:
    """@brief Class representing an address range in the MCU adress space
    """
    def __init__(self, start_address: MCULogicalAddress, end_address: MCULogicalAddress):
        """@brief Constructor
        @param start_address The address of the first word in the range
        @param end_address The address of the word after the last word included in the range (thus end_address is excluded)
        """
        assert(start_address < end_address)
        self.start_address = start_address
        self.end_address = end_address

    def __str__(self):
        return f'MCULogicalAddressRange[0x{self.start_address:06x},0x{self.end_address:06x}['

    def __repr__(self):
        return str(self)

    def __eq__(self, other):
        if not isinstance(other, MCULogicalAddressRange):
            return NotImplemented
        return self.start_address == other.start_address and self.end_address == other.end_address

    def __hash__(self):
        return hash((self.start_address, self.end_address))

    def contains(self, address: MCULogicalAddress) -> bool:
        """@brief Check if the specified address is within this address range
        @param address The logical address to check
        @return True if the provided address is inside the range represented by this instance
        """
        return (address >= self.start_address and address < self.end_address)


class MCULocatedLogicalDataChunk:
    """@brief Class representing one chunk of data located at a specific byte address (as stored in a hex file)
    """
    def __init__(self, start_address, content: bytearray):
        """@brief Constructor
        @param start_address The starting address for this chunk
        @param content A byte buffer containing the content of this chunk
        """
        if isinstance(start_address, MCULogicalAddress):
            start_address = start_address
        elif isinstance(start_address, int):
            start_address = MCULogicalAddress(start_address)
        else:
            raise TypeError('Unsupported argument type ' + str(type(start_address)))
        self.start_address: MCULogicalAddress = start_address
        self.size = len(content)
        self.content = content

    def get_content(self) -> bytearray:
        """@brief Get the data chunk's raw bytes
        @return The data chunk bytes as a bytearray buffer
        """
        return self.content

    def __str__(self):
        return f'MCULocatedLogicalDataChunk({self.size} bytes @ 0x{self.start_address:06x})=' + repr(self.content)

    def __repr__(self):
        return str(self)
