# coding: utf-8
"""@brief Module declaring the interface to which must comply all concrete implementations of hex-formatted file writers
"""
import abc
from typing import List

from domain.mcu_addressing import MCULocatedLogicalDataChunk

class HexFileParser(metaclass=abc.ABCMeta):
    """@brief Interface to which must comply all concrete implementations of hex-formatted firmware images
    @note Reading hex files for programming is done line by line by domain.pic24.hex_record, this interface is used to
          store firmware data read back from a target
    """

    @abc.abstractmethod
    def __init__(self):
        """@brief Construct a hex file parser object
        """
        raise NotImplementedError

    @abc.abstractmethod
    def get_data_chunks(self) -> List[MCULocatedLogicalDataChunk]:
        """@brief Get all contiguous data chunks stored in the hex file representation, ordered by address"""
        raise NotImplementedError

    @abc.abstractmethod
    def put_data_chunk(self, content: MCULocatedLogicalDataChunk):
        """@brief Insert the provided content into the hex file representation

        @param content A data chunk with its byte address

        @note This changes the file representation, but in order to be saved on disk, you should then invoke write_hex_to()
        """
        raise NotImplementedError

    @abc.abstractmethod
    def write_hex_to(self, file):
        """@brief Save the content of the current firmware representation to a file

        @param file A file-like object or a filename
        """
        raise NotImplementedError

    @classmethod
    def __subclasshook__(cls, subclass):
        if cls is not HexFileParser:
            return NotImplemented
        return (
            hasattr(subclass, "get_data_chunks")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.get_data_chunks
            )
            and hasattr(subclass, "put_data_chunk")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.put_data_chunk
            )
            and hasattr(subclass, "write_hex_to")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.write_hex_to
            )
            or NotImplemented
        )
