#!/usr/bin/env python3
# coding: utf-8
"""@brief Checks preventing hex file content from overwriting the bootloader or the configuration page

All checks return True when the address/data pair is safe to program
"""

from domain.pic24.pic_device import Family
from domain.pic24.mem_row import ERASED_WORD

PROGRAM_START = 0xC00    # First word address available to user code
BOOTLOADER_PAGE = 0x400
RESERVED_START = 0x200

# Families whose bootloader occupies a flash page starting at BOOTLOADER_PAGE
PAGE_BASED_FAMILIES = frozenset([Family.PIC24H, Family.dsPIC33F, Family.PIC24E, Family.dsPIC33E, Family.PIC24FK, Family.PIC24F])

# Families storing their configuration words in the last page of program memory
CONFIG_PAGE_FAMILIES = frozenset([Family.PIC24F, Family.PIC24E, Family.dsPIC33E])

def page_clash(address: int, family: Family) -> bool:
    """@brief Check that a data record does not start on the bootloader page
    @param address The word address of the start of a data record
    @param family The target's family
    @return False if this record would overwrite the bootloader
    """
    return not (family in PAGE_BASED_FAMILIES and address == BOOTLOADER_PAGE)

def reserved_word_clash(address: int, data: int, family: Family) -> bool:
    """@brief Check that a data word does not overlap the bootloader's reserved window [RESERVED_START, PROGRAM_START)
    @param address The word address
    @param data The 16-bit data word (only erased words are allowed in the reserved window)
    @param family The target's family
    @return False if this word would overwrite the bootloader
    """
    return not (family in PAGE_BASED_FAMILIES
                and address >= RESERVED_START and address < PROGRAM_START
                and data != ERASED_WORD)

def config_region_clash(address: int, data: int, family: Family, config_page: int, config_word: int, config_bits_enabled: bool) -> bool:
    """@brief Check that user code does not use the configuration page when configuration bits won't be written
    @param address The word address
    @param data The 16-bit data word
    @param family The target's family
    @param config_page The word address of the configuration page
    @param config_word The word address of the configuration words
    @param config_bits_enabled Is configuration bits programming enabled for this session?
    @return False if this word lies in the configuration page while configuration bits programming is disabled
    """
    if family in CONFIG_PAGE_FAMILIES:
        if config_bits_enabled:
            return True
        if address >= config_page and address < config_word and data != ERASED_WORD:
            return False
    return True
