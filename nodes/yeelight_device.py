"""
Yeelight Device Node

Represents a single Yeelight device. Owns the device's UDP session and
render loop; ISY commands set the color the render loop pushes.
"""

import udi_interface
import threading
from dataclasses import replace
from typing import Optional

from lib.discovery import DeviceRecord
from lib.model_catalog import effective_profile, resolve_display_name
from lib.renderer import (
    DeviceRenderer, RenderSettings, StaticPixelSource,
    LIGHTING_MODES, LIGHTING_MODE_CANVAS,
)
from lib.yeelight_api import YeelightSession

LOGGER = udi_interface.LOGGER

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


class YeelightDevice(udi_interface.Node):
    """
    Yeelight Device Node

    Status:
        ST (Power): On when the current color is not black
        GV0 (Online): UDP session token held
        GV1 (Direct Mode): Per-LED direct mode active
        GV2 (Lighting Mode): 0=Canvas, 1=Forced
        GV4 (Red): Red component 0-255
        GV5 (Green): Green component 0-255
        GV6 (Blue): Blue component 0-255
    """

    id = 'yeelight_device'

    drivers = [
        {'driver': 'ST', 'value': 0, 'uom': 2},       # Power (On/Off)
        {'driver': 'GV0', 'value': 0, 'uom': 2},      # Online
        {'driver': 'GV1', 'value': 0, 'uom': 2},      # Direct mode
        {'driver': 'GV2', 'value': 0, 'uom': 25},     # Lighting mode
        {'driver': 'GV4', 'value': 0, 'uom': 56},     # Red
        {'driver': 'GV5', 'value': 0, 'uom': 56},     # Green
        {'driver': 'GV6', 'value': 0, 'uom': 56},     # Blue
    ]

    def __init__(self, polyglot, primary, address, name, record: DeviceRecord,
                 settings: Optional[RenderSettings] = None):
        """
        Initialize the Yeelight device node.

        Args:
            polyglot: Polyglot interface
            primary: Primary node address (controller)
            address: Node address
            name: Device name
            record: Discovered device record
            settings: Lighting settings from the controller's parameters
        """
        super().__init__(polyglot, primary, address, name)

        self.poly = polyglot
        self.name = name
        self.primary = primary
        self.address = address

        self.record = record
        self._lock = threading.Lock()
        self._on_color = WHITE

        profile = effective_profile(record.model, record)
        self._session = YeelightSession(record.ip, record.port, profile)
        led_count = profile.max_led_limit if profile.uses_components else profile.led_count
        self._pixels = StaticPixelSource(WHITE, led_count=led_count)
        self._renderer = DeviceRenderer(
            self._session,
            self._pixels,
            replace(settings) if settings else RenderSettings(),
        )

        LOGGER.info(f"{self.name}: {resolve_display_name(record.model)} at {record.ip}:{record.port}")

        polyglot.addNode(self)

    @property
    def session(self) -> YeelightSession:
        return self._session

    @property
    def settings(self) -> RenderSettings:
        return self._renderer.settings

    def render(self, override_color: Optional[str] = None):
        """One render tick; never raises into PG3"""
        with self._lock:
            try:
                self._renderer.render(override_color)
            except Exception as e:
                LOGGER.error(f"{self.name}: Render failed - {e}")
        self.update_status()

    def shutdown(self, system_suspending: bool = False):
        """Show the shutdown color (or black out and drop the session on suspend)"""
        LOGGER.info(f"{self.name}: Shutdown (suspending={system_suspending})")
        with self._lock:
            try:
                self._renderer.shutdown(system_suspending)
            except Exception as e:
                LOGGER.error(f"{self.name}: Shutdown failed - {e}")

    def update_record(self, record: DeviceRecord):
        """Apply re-discovered address and capabilities"""
        with self._lock:
            self.record = record
            self._session.set_address(record.ip, record.port)
            self._session.profile = effective_profile(record.model, record)
        LOGGER.info(f"{self.name}: Updated from discovery ({record.ip})")

    def apply_settings(self, settings: RenderSettings):
        """Take the controller's lighting settings"""
        with self._lock:
            self._renderer.settings = replace(settings)
        self.update_status()

    def update_status(self):
        session = self._session
        color = self._pixels.color
        self.setDriver('ST', 0 if tuple(color) == BLACK else 1)
        self.setDriver('GV0', 1 if session.has_token else 0)
        self.setDriver('GV1', 1 if session.is_direct_mode else 0)
        self.setDriver('GV2', LIGHTING_MODES.index(self.settings.lighting_mode)
                       if self.settings.lighting_mode in LIGHTING_MODES else 0)
        self.setDriver('GV4', color[0])
        self.setDriver('GV5', color[1])
        self.setDriver('GV6', color[2])

    def _set_color(self, color):
        with self._lock:
            self._pixels.set_color(color)

    def query(self, command=None):
        """Query device status"""
        LOGGER.info(f"Query: {self.name}")
        self.update_status()
        self.reportDrivers()

    def cmd_on(self, command=None):
        """Turn on with the last color"""
        LOGGER.info(f"Turn On: {self.name}")
        self._set_color(self._on_color)
        self.render()

    def cmd_off(self, command=None):
        """Turn off (black)"""
        LOGGER.info(f"Turn Off: {self.name}")
        self._set_color(BLACK)
        self.render()

    def cmd_set_color(self, command):
        """Set RGB color"""
        r = int(command.get('R.uom56', command.get('R', 255)))
        g = int(command.get('G.uom56', command.get('G', 255)))
        b = int(command.get('B.uom56', command.get('B', 255)))

        LOGGER.info(f"Set Color: {self.name} to RGB({r},{g},{b})")

        color = (max(0, min(255, r)), max(0, min(255, g)), max(0, min(255, b)))
        if color != BLACK:
            self._on_color = color
        self._set_color(color)
        self.render()

    def cmd_set_mode(self, command):
        """Set lighting mode (0=Canvas, 1=Forced)"""
        value = int(command.get('value', 0))
        mode = LIGHTING_MODES[value] if 0 <= value < len(LIGHTING_MODES) else LIGHTING_MODE_CANVAS
        LOGGER.info(f"Set Lighting Mode: {self.name} to {mode}")
        with self._lock:
            self.settings.lighting_mode = mode
        self.render()

    def cmd_reconnect(self, command=None):
        """Drop the session; the next tick negotiates a new one"""
        LOGGER.info(f"Reconnect: {self.name}")
        with self._lock:
            self._session.reset()
        self.render()

    commands = {
        'DON': cmd_on,
        'DOF': cmd_off,
        'SET_COLOR': cmd_set_color,
        'SET_MODE': cmd_set_mode,
        'RECONNECT': cmd_reconnect,
        'QUERY': query,
    }
