# coding: utf-8
"""@brief Module implementing a hex-formatted firmware image on top of python intelhex
"""
from io import IOBase
from typing import List

from intelhex import IntelHex

from domain.ext_adapters_interface.hex_file_parser_interface import HexFileParser
from domain.mcu_addressing import MCULocatedLogicalDataChunk

class PythonIntelHexFileParser(HexFileParser):
    """@brief Concrete implementation of HexFileParser using python intelhex"""

    def __init__(self):
        """@brief Construct a hex file parser object
        """
        self.intel_hex = IntelHex()

    def get_data_chunks(self) -> List[MCULocatedLogicalDataChunk]:
        chunks = []
        for (start_address, end_address) in self.intel_hex.segments():
            data_chunk = self.intel_hex.tobinstr(start=start_address, end=end_address-1) # IntelHex.tobinstr()'s end address is included, while segments' end_address is excluded
            chunks.append(MCULocatedLogicalDataChunk(start_address=start_address, content=data_chunk))
        return chunks

    def put_data_chunk(self, content: MCULocatedLogicalDataChunk):
        self.intel_hex.puts(content.start_address, bytes(content.get_content()))

    def write_hex_to(self, file):
        if not isinstance(file, IOBase):
            with open(file=file, mode="wt") as f:
                self.write_hex_to(f)
        else:
            self.intel_hex.write_hex_file(file)
