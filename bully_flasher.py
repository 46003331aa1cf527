#!/usr/bin/env python3
# coding: utf-8
"""Serial bootloader flasher for PIC24/dsPIC

Usage:
  bully_flasher.py [-d [-d]] [-s] [-m] [-n] [-b <baudrate>] <command> <serial_port> [<hex_filename>]

Where <command> is one of the following:
- identify
- program (requires <hex_filename>)
- dump (requires <hex_filename>)

Options:
  -b <baudrate>  Serial baudrate (default 115200)
  -s             Strict mode: validate the checksum of each hex record
  -m             Pulse the MCLR line (RTS+DTR) to reset the target before identification
  -n             Do not program configuration bits
  -d             Output debug logs (use twice to also output library logs)

Note:
PIC24_DEVICES environment variable should point to the device catalog file (one device per line:
name,idHex,processIdDecimal,familyName,configPageHex,smallRAMFlag)
"""

from logging import DEBUG, INFO
import os
import sys
import time

from domain.common import create_main_logger
from domain.flasher_context import FlasherContext
from domain.pic24.bootloader_comm import BootloaderProtocolSession
from domain.pic24.bootloader_driver import PicBootloaderDriver, UnknownDeviceError
from domain.pic24.pic_device import DeviceCatalog
from adapters.hex_file_parser_python_intelhex import PythonIntelHexFileParser
from adapters.progress_sink_progressbar2 import ProgressBar2Sink
from adapters.progress_sink_silent import SilentProgressSink
from adapters.serial_transport_pyserial import PySerialTransport

logger = None

COMMANDS_WITH_FILE = ("program", "dump")

def get_args(command, serial_port, hex_filename=None):
    """@brief Extract command-line arguments
    @note Simplistic built-in version without external dependencies
    """
    return (command, serial_port, hex_filename)

def pulse_mclr(driver: PicBootloaderDriver):
    """@brief Reset the target so that it enters the bootloader"""
    driver.set_mclr(True)
    time.sleep(0.1)
    driver.set_mclr(False)
    time.sleep(0.1)

def identify_target(driver: PicBootloaderDriver):
    device = driver.read_device()
    if device is None:
        raise UnknownDeviceError("Refusing to program unknown device. Check device or baud rate.")
    return device

if __name__ == "__main__":
    debug = False
    debug_libs = False
    strict_hex = False
    reset_target = False
    config_bits_enabled = True
    baudrate = 115200
    argv = sys.argv
    progname = argv.pop(0)
    while len(argv) > 0 and argv[0].startswith('-'):
        option = argv.pop(0)
        if option == '-d':
            if not debug:
                debug = True
            else:
                debug_libs = True
        elif option == '-s':
            strict_hex = True
        elif option == '-m':
            reset_target = True
        elif option == '-n':
            config_bits_enabled = False
        elif option == '-b' and len(argv) > 0:
            try:
                baudrate = int(argv.pop(0))
            except ValueError:
                print("Invalid baudrate", file=sys.stderr)
                exit(1)
        else:
            print(f"Unknown leading option: '{option}'", file=sys.stderr)
            exit(1)
    try:
        (command, pic_comm_device, pic_firmware_filename) = get_args(*argv)
    except TypeError:
        print(__doc__, file=sys.stderr) # Output usage
        exit(1)
    try:
        devices_filename = os.environ['PIC24_DEVICES']
    except KeyError:
        print("Missing PIC24_DEVICES environment variable, please check help for more details", file=sys.stderr)
        exit(1)
    logger = create_main_logger(name="bully_flasher", log_level=(DEBUG if debug else INFO), also_log_libs=debug_libs)
    if command not in ("identify",) + COMMANDS_WITH_FILE:
        logger.error("Unsupported command '" + command + "'")
        raise NotImplementedError
    if command in COMMANDS_WITH_FILE and pic_firmware_filename is None:
        print(__doc__, file=sys.stderr) # Output usage
        exit(1)
    try:
        device_catalog = DeviceCatalog.create_from(devices_filename)
    except OSError as e:
        logger.error("Error while reading device catalog '" + devices_filename + "': " + str(e))
        exit(1)

    if not logger.isEnabledFor(DEBUG):
        progress_sink = ProgressBar2Sink()
    else:
        progress_sink = SilentProgressSink()

    with PySerialTransport.open(pic_comm_device, baudrate=baudrate) as p:
        with BootloaderProtocolSession(device=p) as target:
            flasher_ctx = FlasherContext(name='cli',
                                         progress_sink=progress_sink,
                                         logger=logger,
                                         target=target,
                                         retries=2)
            driver = PicBootloaderDriver(context=flasher_ctx,
                                         device_catalog=device_catalog,
                                         config_bits_enabled=config_bits_enabled,
                                         verify_checksum=strict_hex)
            if reset_target:
                pulse_mclr(driver)
            try:
                device = identify_target(driver)
            except UnknownDeviceError as e:
                logger.error(str(e))
                exit(1)
            logger.info(f"Target is {device}")
            if command == "identify":
                pass
            elif command == "program":
                try:
                    if not driver.program_hex_file(pic_firmware_filename):
                        logger.error("Firmware mismatch")
                        exit(2)
                except Exception as e:
                    logger.error("Error while programming firmware file '" + pic_firmware_filename + "': " + str(e))
                    exit(1)
            elif command == "dump":
                pic_firmware = PythonIntelHexFileParser()
                driver.dump_program_memory(pic_firmware)
                pic_firmware.write_hex_to(pic_firmware_filename)
            else:
                raise NotImplementedError

    logger.info('Done')
