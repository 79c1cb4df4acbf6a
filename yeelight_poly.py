#!/usr/bin/env python3
"""
Yeelight Polyglot NodeServer

A Polyglot v3 (PG3) NodeServer for Universal Devices ISY that drives
Yeelight LED lights over the Yeelight UDP LAN protocol.

Features:
- SSDP discovery with a persistent IP cache
- Manually configured devices by model name and IP
- Whole-device color, background color and per-LED (direct mode) output
- Canvas and Forced lighting modes, shutdown color

License: MIT
"""

import udi_interface
import sys

# Import node classes
from nodes import Controller

LOGGER = udi_interface.LOGGER

VERSION = '1.0.0'


def main():
    """
    Main entry point for the Yeelight NodeServer.

    Initializes the Polyglot interface and creates the controller node.
    """
    LOGGER.info(f"Yeelight NodeServer v{VERSION} starting...")

    try:
        polyglot = udi_interface.Interface([])
        polyglot.start(VERSION)

        polyglot.updateProfile()
        polyglot.setCustomParamsDoc()

        Controller(
            polyglot,
            'controller',
            'controller',
            'Yeelight Controller'
        )

        LOGGER.info("Yeelight NodeServer started successfully")

        # Run until stopped
        polyglot.runForever()

    except (KeyboardInterrupt, SystemExit):
        LOGGER.info("Yeelight NodeServer shutting down...")
        sys.exit(0)

    except Exception as e:
        LOGGER.error(f"Yeelight NodeServer failed to start: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
