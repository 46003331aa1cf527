# coding: utf-8
import io
import logging

from domain.pic24.pic_device import DeviceCatalog, DeviceDescriptor, Family, parse_device_line
from domain.pic24.pic_device import get_program_row_size, get_legacy_row_size

CATALOG_TEXT = """# name,id,pid,family,configPage,smallRAM
PIC24FJ64GA002,0447,3,PIC24F,AC00,1

dsPIC33FJ128GP802,0629,6,dsPIC33F,15800,0
PIC24F16KA102,4518,1,PIC24FK,2C00,1
"""

def test_catalog_parsing():
    catalog = DeviceCatalog.create_from(io.StringIO(CATALOG_TEXT))
    assert len(catalog) == 3
    device = catalog.lookup(0x0447, 3)
    assert device.name == 'PIC24FJ64GA002'
    assert device.family == Family.PIC24F
    assert device.config_page == 0xAC00
    assert device.small_ram
    assert device.revision is None
    device = catalog.lookup(0x0629, 6)
    assert device.family == Family.dsPIC33F
    assert not device.small_ram

def test_lookup_requires_both_ids():
    catalog = DeviceCatalog.create_from(io.StringIO(CATALOG_TEXT))
    assert catalog.lookup(0x0447, 4) is None
    assert catalog.lookup(0x0448, 3) is None

def test_malformed_lines_are_skipped(caplog):
    text = "BAD,0447,3,PIC24F,AC00\n" \
           "PIC99,1234,1,PIC99X,AC00,1\n" \
           "BADID,zz47,3,PIC24F,AC00,1\n" \
           "PIC24FJ64GA002,0447,3,PIC24F,AC00,1\n"
    with caplog.at_level(logging.ERROR):
        catalog = DeviceCatalog.create_from(io.StringIO(text))
    assert len(catalog) == 1
    assert catalog.lookup(0x0447, 3).name == 'PIC24FJ64GA002'
    assert 'Bad device line' in caplog.text
    assert 'Unrecognized device family' in caplog.text
    assert 'BADID' in caplog.text

def test_catalog_from_file(tmp_path):
    catalog_file = tmp_path / 'devices.txt'
    catalog_file.write_text(CATALOG_TEXT)
    catalog = DeviceCatalog()
    catalog.load_from(str(catalog_file))
    assert len(catalog) == 3

def test_parse_device_line_trims_fields():
    device = parse_device_line('PIC24HJ128GP502 , 0C7C , 0 , PIC24H , 15800 , 0')
    assert device.name == 'PIC24HJ128GP502'
    assert device.id == 0x0C7C
    assert device.family == Family.PIC24H

def test_row_sizes():
    assert get_program_row_size(Family.PIC24FK, True) == 32
    assert get_program_row_size(Family.PIC24FK, False) == 32
    assert get_program_row_size(Family.PIC24H, True) == 512
    assert get_program_row_size(Family.dsPIC33E, False) == 1024
    assert get_legacy_row_size(Family.dsPIC30F, False) == 32
    assert get_legacy_row_size(Family.PIC24H, False) == 1024

def test_config_word_is_at_end_of_config_page():
    device = DeviceDescriptor(name='PIC24FJ64GA002', id=0x0447, process_id=3, family=Family.PIC24F, config_page=0xAC00, small_ram=True)
    assert device.config_word == 0xAC00 + 2 * 512 - 4
