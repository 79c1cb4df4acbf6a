"""
Yeelight Render Cycle

Drives one device session per tick: keeps the session authenticated and
initialized, samples colors from a pixel source and pushes them to the
device, and sends keepalives.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .color_codec import RGB, corrected_packed, encode_frame, hex_to_rgb
from .model_catalog import ModelProfile
from .yeelight_api import YeelightSession

try:
    import udi_interface
    LOGGER = udi_interface.LOGGER
except ImportError:
    LOGGER = logging.getLogger(__name__)


LIGHTING_MODE_CANVAS = "Canvas"
LIGHTING_MODE_FORCED = "Forced"
LIGHTING_MODES = (LIGHTING_MODE_CANVAS, LIGHTING_MODE_FORCED)

DEFAULT_COLOR = "#009bde"
BLACK = "#000000"

TOKEN_RETRY_INTERVAL = 0.5


@dataclass
class RenderSettings:
    """User-facing lighting options"""
    lighting_mode: str = LIGHTING_MODE_CANVAS
    forced_color: str = DEFAULT_COLOR
    shutdown_color: str = DEFAULT_COLOR


class StaticPixelSource:
    """
    Pixel source holding one color for every LED.

    Individual layout positions can be overridden with set_led_color().
    """

    def __init__(self, color: RGB = (0, 0, 0), led_count: int = 1):
        self.color = tuple(color)
        self.led_count = led_count
        self._overrides = {}

    def set_color(self, color: RGB):
        self.color = tuple(color)
        self._overrides.clear()

    def set_led_color(self, x: int, y: int, color: RGB):
        self._overrides[(x, y)] = tuple(color)

    def color_at(self, x: int, y: int) -> RGB:
        return self._overrides.get((x, y), self.color)

    def channel_led_count(self, channel: str) -> int:
        return self.led_count

    def channel_colors(self, channel: str) -> List[int]:
        """Inline RGB list: [r0, g0, b0, r1, g1, b1, ...]"""
        return list(self.color) * self.led_count


class DeviceRenderer:
    """
    Render loop for a single Yeelight device.

    The pixel source must provide color_at(x, y), channel_led_count(channel)
    and channel_colors(channel).
    """

    def __init__(self, session: YeelightSession, pixel_source,
                 settings: Optional[RenderSettings] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.session = session
        self.pixel_source = pixel_source
        self.settings = settings if settings is not None else RenderSettings()
        self._clock = clock

    @property
    def profile(self) -> ModelProfile:
        return self.session.profile

    def _channel_led_count(self) -> int:
        try:
            count = int(self.pixel_source.channel_led_count(self.profile.channel_name))
        except (TypeError, ValueError):
            return 0
        return max(0, min(count, self.profile.max_led_limit))

    def is_per_led(self) -> bool:
        """True when the device is driven with update_leds frames"""
        profile = self.profile
        return profile.supports_per_led and (
            profile.led_count > 1
            or self._channel_led_count() > 1
            or profile.uses_components
        )

    def render(self, override_color: Optional[str] = None):
        """
        One tick of the render loop.

        Args:
            override_color: Hex color taking precedence over every mode
        """
        session = self.session
        session.poll()

        if not session.has_token:
            last = session.state.last_token_request
            if last is None or self._clock() - last >= TOKEN_RETRY_INTERVAL:
                session.request_token()
            return

        if not session.is_initialized:
            # device needs a tick to settle after power on
            session.initialize_device()
            return

        self.send_colors(override_color)

        if session.keepalive_due(self._clock()):
            session.keepalive()

    def shutdown(self, system_suspending: bool):
        """
        Leave the device in its shutdown state.

        On suspend the light is blacked out and the session dropped; otherwise
        the configured shutdown color is shown and the session kept.
        """
        self.session.poll()
        if system_suspending:
            self.send_colors(BLACK)
            self.session.reset()
        else:
            self.send_colors(self.settings.shutdown_color)
            # light_off survives so a dimmed device is restored on the next color
            self.session.state.clear_delivered()

    def send_colors(self, override_color: Optional[str] = None) -> bool:
        """
        Push the current colors if they changed.

        Returns:
            False if this tick was spent negotiating direct mode
        """
        session = self.session

        if self.is_per_led():
            if not session.is_direct_mode:
                session.expire_direct_mode_request()
                session.enter_direct_mode()
                return False

            if self.profile.uses_components:
                colors = self._component_colors(override_color)
            else:
                colors = self._layout_colors(override_color)
            session.push_per_led_frame(encode_frame(colors))
            return True

        color = self._fixed_color(override_color) or self.pixel_source.color_at(0, 0)
        session.push_single_color(corrected_packed(color))
        return True

    def _fixed_color(self, override_color: Optional[str]) -> Optional[RGB]:
        """Override or forced color, None when sampling the pixel source"""
        if override_color:
            return hex_to_rgb(override_color)
        if self.settings.lighting_mode == LIGHTING_MODE_FORCED:
            return hex_to_rgb(self.settings.forced_color)
        return None

    def _layout_colors(self, override_color: Optional[str]) -> List[RGB]:
        fixed = self._fixed_color(override_color)
        return [
            fixed or self.pixel_source.color_at(x, y)
            for x, y in self.profile.led_positions
        ]

    def _component_colors(self, override_color: Optional[str]) -> List[RGB]:
        count = self._channel_led_count()
        fixed = self._fixed_color(override_color)

        if count == 0:
            color = fixed or self.pixel_source.color_at(0, 0)
            return [color] * self.profile.default_count
        if fixed:
            return [fixed] * count

        inline = self.pixel_source.channel_colors(self.profile.channel_name)
        return _inline_to_rgb(inline)[:count]


def _channel_value(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _inline_to_rgb(inline: Sequence) -> List[RGB]:
    """[r0, g0, b0, r1, ...] -> [(r0, g0, b0), ...]"""
    values = [_channel_value(v) for v in inline]
    return [tuple(values[i:i + 3]) for i in range(0, len(values) - 2, 3)]
