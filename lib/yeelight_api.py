"""
Yeelight UDP Session Protocol

Per-device protocol state machine: token acquisition, keepalive,
direct-mode negotiation, command dispatch and duplicate suppression.

Protocol: newline-terminated JSON commands over a connected UDP socket
(port 55444). Every command carries an increasing sequence id and, once
authenticated, the session token.
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .model_catalog import ModelProfile, FALLBACK_MODEL, resolve_profile
from .transport import DEVICE_PORT, UdpTransport

try:
    import udi_interface
    LOGGER = udi_interface.LOGGER
except ImportError:
    LOGGER = logging.getLogger(__name__)


KEEPALIVE_INTERVAL = 9.0     # device drops to local mode after ~10s idle
BRIGHTNESS_MIN = 1
BRIGHTNESS_MAX = 100

METHOD_SESSION_NEW = "udp_sess_new"
METHOD_KEEPALIVE = "udp_sess_keep_alive"


class SessionPhase(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_TOKEN = "awaiting_token"
    IDLE = "idle"
    ENTERING_DIRECT_MODE = "entering_direct_mode"
    DIRECT_MODE = "direct_mode"


@dataclass
class SessionState:
    """Mutable protocol state for one device"""
    token: str = ""
    sequence: int = 1
    phase: SessionPhase = SessionPhase.UNAUTHENTICATED
    initialized: bool = False
    last_color: Optional[int] = None
    last_frame: Optional[str] = None
    light_off: bool = False
    last_send_time: float = 0.0
    last_token_request: Optional[float] = None

    @property
    def direct_mode(self) -> bool:
        return self.phase is SessionPhase.DIRECT_MODE

    def clear_delivered(self):
        """Forget what was last delivered so the next frame is sent"""
        self.last_color = None
        self.last_frame = None

    def clear_trackers(self):
        """Forget delivered colors and the dimmed-off flag"""
        self.clear_delivered()
        self.light_off = False

    def reset(self):
        """Drop authentication and every negotiated mode"""
        self.token = ""
        self.phase = SessionPhase.UNAUTHENTICATED
        self.initialized = False
        self.last_token_request = None
        self.clear_trackers()


def build_command(sequence: int, method: str, params: List[Any],
                  token: Optional[str] = None) -> str:
    """
    Build one wire command.

    Args:
        sequence: Packet id
        method: Protocol method name
        params: Method parameters
        token: Session token (omitted for udp_sess_new)

    Returns:
        Compact JSON followed by CRLF
    """
    command: Dict[str, Any] = {"id": sequence, "method": method, "params": params}
    if token is not None:
        command["token"] = token
    return json.dumps(command, separators=(',', ':')) + "\r\n"


def parse_reply(text: str) -> Dict[str, Any]:
    """
    Parse a device reply.

    Some firmware sends `"message":invalid params` unquoted; that is
    repaired before parsing.

    Raises:
        ValueError: reply is not a JSON object
    """
    if '"message":invalid params' in text:
        text = text.replace('"message":invalid params', '"message":"invalid params"')
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Reply is not an object: {text!r}")
    return data


class YeelightSession:
    """
    Yeelight UDP session for a single device.

    Owns the session state and the single live transport to the device.
    The transport is created lazily on the first send and dropped on any
    socket error; the next send builds a new one.
    """

    def __init__(self, ip: str, port: int = DEVICE_PORT,
                 profile: Optional[ModelProfile] = None,
                 transport_factory: Optional[Callable[..., Any]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the session.

        Args:
            ip: Device IP address
            port: Device control port (default 55444)
            profile: Model profile (capabilities select bg_* methods)
            transport_factory: Callable building a transport, UdpTransport by default
            clock: Monotonic time source in seconds
        """
        self.ip = ip
        self.port = port
        self.profile = profile if profile is not None else resolve_profile(FALLBACK_MODEL)
        self.state = SessionState()
        self._transport_factory = transport_factory or UdpTransport
        self._transport = None
        self._clock = clock

    def __repr__(self):
        return f"<YeelightSession {self.ip}:{self.port} phase={self.state.phase.value}>"

    @property
    def token(self) -> str:
        return self.state.token

    @property
    def has_token(self) -> bool:
        return len(self.state.token) > 0

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def is_direct_mode(self) -> bool:
        return self.state.direct_mode

    @property
    def is_initialized(self) -> bool:
        return self.state.initialized

    @property
    def transport(self):
        return self._transport

    @property
    def supports_background_rgb(self) -> bool:
        return self.profile.supports_background_rgb

    # --- Transport ---

    def _ensure_transport(self):
        if self._transport is None:
            LOGGER.info(f"Yeelight {self.ip}: Initializing UDP socket")
            self._transport = self._transport_factory(
                self.ip,
                self.port,
                on_message=self._on_message,
                on_error=self._on_socket_error,
            )
            if not self._transport.connect():
                LOGGER.error(f"Yeelight {self.ip}: UDP socket initialization failed")
                self._transport = None
        return self._transport

    def poll(self) -> int:
        """Dispatch replies received since the last tick"""
        if self._transport is None:
            return 0
        return self._transport.poll()

    def set_address(self, ip: str, port: int = DEVICE_PORT):
        """Point the session at a new address, dropping the old session"""
        if ip == self.ip and port == self.port:
            return
        LOGGER.info(f"Yeelight {self.ip}: Address changed to {ip}:{port}")
        self.reset()
        self.ip = ip
        self.port = port

    def reset(self):
        """Close the transport and forget the session (suspend, address change)"""
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self.state.reset()

    def _on_socket_error(self, exc: Exception):
        LOGGER.warning(f"Yeelight {self.ip}: Socket error, resetting session - {exc}")
        self._transport = None
        self.state.reset()

    def _send(self, method: str, params: List[Any]) -> bool:
        """
        Send a command in the session envelope.

        Commands other than udp_sess_new need a token. Nothing is queued:
        an undeliverable command is dropped and the next tick re-evaluates.

        Returns:
            True if the command was delivered to the socket
        """
        needs_token = method != METHOD_SESSION_NEW
        if needs_token and not self.has_token:
            LOGGER.debug(f"Yeelight {self.ip}: No token, dropping {method}")
            return False

        transport = self._ensure_transport()
        if transport is None or not transport.is_connected:
            LOGGER.warning(f"Yeelight {self.ip}: Cannot send {method}, socket not connected")
            return False

        packet = build_command(
            self.state.sequence, method, params,
            self.state.token if needs_token else None,
        )
        if not transport.send(packet):
            return False

        self.state.sequence += 1
        self.state.last_send_time = self._clock()
        return True

    # --- Token ---

    def request_token(self) -> bool:
        """Start a new session; valid in any phase"""
        self.state.token = ""
        self.state.sequence = 1
        self.state.phase = SessionPhase.AWAITING_TOKEN
        self.state.last_token_request = self._clock()

        transport = self._ensure_transport()
        if transport is None:
            return False

        transport.expect(self.state.sequence, self._on_token_response)
        LOGGER.info(f"Yeelight {self.ip}: Requesting UDP Token...")
        if not self._send(METHOD_SESSION_NEW, []):
            if self._transport is not None:
                self._transport.clear_expectation()
            return False
        return True

    def _on_token_response(self, text: str, matched: bool):
        try:
            reply = parse_reply(text)
        except ValueError as e:
            LOGGER.error(f"Yeelight {self.ip}: Failed to parse token response: {e}. Raw data: {text!r}")
            return

        params = reply.get('params')
        token = params.get('token') if isinstance(params, dict) else None
        if token:
            LOGGER.info(f"Yeelight {self.ip}: Token received successfully")
            self.state.token = str(token)
            self.state.phase = SessionPhase.IDLE
            self.keepalive()
        elif 'error' in reply:
            LOGGER.error(f"Yeelight {self.ip}: Error response from device: {self._error_message(reply)}")
        else:
            LOGGER.debug(f"Yeelight {self.ip}: Ignoring non-token reply while awaiting token: {text!r}")

    @staticmethod
    def _error_message(reply: Dict[str, Any]) -> str:
        error = reply.get('error')
        if isinstance(error, dict):
            return str(error.get('message', error))
        return str(error)

    def _on_message(self, text: str):
        """Replies that arrive while nothing is awaited"""
        if '"error"' not in text:
            return
        try:
            reply = parse_reply(text)
        except ValueError:
            LOGGER.error(f"Yeelight {self.ip}: Malformed error reply: {text!r}")
            return
        LOGGER.error(f"Yeelight {self.ip}: Error response from device: {self._error_message(reply)}")

    # --- Keepalive ---

    def keepalive(self) -> bool:
        """Keep the session alive; no-op without a token"""
        if not self.has_token:
            return False
        return self._send(METHOD_KEEPALIVE, ["keeplive_interval", 10])

    def keepalive_due(self, now: Optional[float] = None) -> bool:
        """True when nothing has been delivered for KEEPALIVE_INTERVAL seconds"""
        now = self._clock() if now is None else now
        return now - self.state.last_send_time >= KEEPALIVE_INTERVAL

    # --- Direct mode ---

    def enter_direct_mode(self) -> bool:
        """
        Ask the device to switch to direct (per-LED) mode.

        Only valid from IDLE. The reply to this exact sequence decides
        the outcome.
        """
        if self.state.phase is not SessionPhase.IDLE:
            return False

        transport = self._ensure_transport()
        if transport is None:
            return False

        transport.expect(self.state.sequence, self._on_direct_mode_response)
        if not self._send("activate_fx_mode", [{"mode": "direct"}]):
            if self._transport is not None:
                self._transport.clear_expectation()
            return False

        self.state.phase = SessionPhase.ENTERING_DIRECT_MODE
        LOGGER.info(f"Yeelight {self.ip}: Entering Direct Mode...")
        return True

    def _on_direct_mode_response(self, text: str, matched: bool):
        if self.state.phase is not SessionPhase.ENTERING_DIRECT_MODE:
            return

        ok = False
        if matched:
            try:
                ok = parse_reply(text).get('result') == ["ok"]
            except ValueError:
                ok = False

        if ok:
            LOGGER.info(f"Yeelight {self.ip}: Direct Mode entered successfully")
            self.state.phase = SessionPhase.DIRECT_MODE
            self.state.last_frame = None
        else:
            LOGGER.info(f"Yeelight {self.ip}: Direct Mode activation failed or response not recognized")
            self.state.phase = SessionPhase.IDLE

    def expire_direct_mode_request(self):
        """Give up on an unanswered direct mode request"""
        if self.state.phase is SessionPhase.ENTERING_DIRECT_MODE:
            LOGGER.debug(f"Yeelight {self.ip}: No Direct Mode confirmation, retrying")
            self.state.phase = SessionPhase.IDLE
            if self._transport is not None:
                self._transport.clear_expectation()

    # --- Commands ---

    def set_power(self, on: bool) -> bool:
        """Power on/off (bg_set_power on background-RGB devices)"""
        method = "bg_set_power" if self.supports_background_rgb else "set_power"
        state = "on" if on else "off"
        LOGGER.info(f"Yeelight {self.ip}: Setting power state to: {state}")
        return self._send(method, [state, "sudden"])

    def set_brightness(self, brightness: int) -> bool:
        """Set brightness 1-100 (bg_set_bright on background-RGB devices)"""
        method = "bg_set_bright" if self.supports_background_rgb else "set_bright"
        brightness = max(BRIGHTNESS_MIN, min(BRIGHTNESS_MAX, int(brightness)))
        LOGGER.info(f"Yeelight {self.ip}: Setting brightness to: {brightness}")
        return self._send(method, [brightness, "sudden", 0])

    def set_rgb(self, packed: int) -> bool:
        return self._send("set_rgb", [packed, "sudden", 0])

    def set_bg_rgb(self, packed: int) -> bool:
        return self._send("bg_set_rgb", [packed, "sudden", 0])

    def initialize_device(self):
        """Power on at full brightness once per session"""
        self.set_power(True)
        self.set_brightness(BRIGHTNESS_MAX)
        self.state.initialized = True
        self.state.clear_trackers()

    def push_single_color(self, packed: int) -> bool:
        """
        Send a packed color to a single-zone device.

        Black is rendered by dropping brightness to the minimum instead of
        sending a color; the next non-black color restores full brightness
        first.

        Returns:
            True if anything was sent
        """
        if packed == self.state.last_color:
            return False

        if packed == 0:
            if self.state.light_off:
                self.state.last_color = 0
                return False
            if self.set_brightness(BRIGHTNESS_MIN):
                self.state.light_off = True
                self.state.last_color = 0
                return True
            return False

        if self.state.light_off:
            if not self.set_brightness(BRIGHTNESS_MAX):
                return False
            self.state.light_off = False

        sent = self.set_bg_rgb(packed) if self.supports_background_rgb else self.set_rgb(packed)
        if sent:
            self.state.last_color = packed
        return sent

    def push_per_led_frame(self, encoded: str) -> bool:
        """
        Send an update_leds frame. Only valid in direct mode.

        Returns:
            True if the frame was sent
        """
        if not self.is_direct_mode:
            LOGGER.debug(f"Yeelight {self.ip}: Not in Direct Mode, frame dropped")
            return False
        if encoded == self.state.last_frame:
            return False

        if self._send("update_leds", [encoded]):
            self.state.last_frame = encoded
            return True
        return False
