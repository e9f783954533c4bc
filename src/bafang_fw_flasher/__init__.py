"""
Bafang Firmware Flasher - CAN bus firmware upload for Bafang drive units and displays

Profile-driven transfer engine, python-can transport, bus sniffer and CLI.
"""

__version__ = "0.1.0"
