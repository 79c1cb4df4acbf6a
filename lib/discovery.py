"""
Yeelight Discovery

Finds Yeelight devices with the SSDP-style `wifi_bulb` search, re-checks
previously cached and manually entered addresses with short-lived probe
sockets, and keeps a registry of one controller per device id.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from .ip_cache import IPCache
from .model_catalog import resolve_model_id, resolve_profile
from .transport import DEVICE_PORT, BroadcastSocket, UdpTransport

try:
    import udi_interface
    LOGGER = udi_interface.LOGGER
except ImportError:
    LOGGER = logging.getLogger(__name__)


BROADCAST_ADDRESS = "239.255.255.250"
BROADCAST_PORT = 1982
SCAN_INTERVAL = 60.0
SCAN_SETTLE_DELAY = 5.0
PROBE_TIMEOUT = 15.0
MIN_TOKEN_LENGTH = 30        # shorter tokens are error echoes, not sessions
VENDOR_MARKER = "yeelight"

SEARCH_REQUEST = (
    "M-SEARCH * HTTP/1.1\r\n"
    f"HOST: {BROADCAST_ADDRESS}:{BROADCAST_PORT}\r\n"
    "MAN: \"ssdp:discover\"\r\n"
    "ST: wifi_bulb\r\n"
)
PROBE_REQUEST = '{"id":0,"method":"udp_sess_new","params":[]}\r\n'

REQUIRED_HEADERS = ("support", "Location", "model", "id")

# Persisted record field -> DeviceRecord attribute
CACHE_FIELDS = {
    "name": "name",
    "port": "port",
    "ip": "ip",
    "id": "id",
    "model": "model",
    "supportsStandardRGB": "supports_standard_rgb",
    "supportsBackgroundRGB": "supports_background_rgb",
    "supportsPerLED": "supports_per_led",
    "supportsSegments": "supports_segments",
}


@dataclass
class DeviceRecord:
    """Identity and capabilities of a discovered device"""
    id: str
    ip: str = ""
    port: int = DEVICE_PORT
    name: str = "Yeelight Device"
    model: str = "Unknown Model"
    supports_standard_rgb: bool = True
    supports_background_rgb: bool = False
    supports_per_led: bool = False
    supports_segments: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeviceRecord':
        """
        Build a record from a cache entry or discovery values.

        Accepts persisted (camelCase) or attribute (snake_case) field names;
        missing fields take their defaults.

        Raises:
            ValueError: data is not a dict or has no device id
        """
        if not isinstance(data, dict):
            raise ValueError(f"Device record must be a dict, got {type(data).__name__}")

        values = {}
        for cache_name, attr in CACHE_FIELDS.items():
            if data.get(cache_name) is not None:
                values[attr] = data[cache_name]
            elif data.get(attr) is not None:
                values[attr] = data[attr]

        device_id = values.get('id')
        if device_id is None or str(device_id).strip() == '':
            raise ValueError("Device record has no id")
        values['id'] = str(device_id).strip()

        try:
            values['port'] = int(values.get('port', DEVICE_PORT))
        except (TypeError, ValueError):
            values['port'] = DEVICE_PORT

        for attr in ('supports_standard_rgb', 'supports_background_rgb',
                     'supports_per_led', 'supports_segments'):
            if attr in values:
                values[attr] = bool(values[attr])

        return cls(**values)

    def to_cache_dict(self) -> Dict[str, Any]:
        attrs = asdict(self)
        return {cache_name: attrs[attr] for cache_name, attr in CACHE_FIELDS.items()}


def parse_response(text: str) -> Dict[str, str]:
    """
    Parse a discovery response into a header dict.

    The first colon separates key from value; values may contain colons
    (e.g. Location URLs) and are rejoined.
    """
    if not isinstance(text, str):
        return {}

    headers = {}
    for line in text.replace("\r\n", "\n").split("\n"):
        parts = line.split(':')
        if len(parts) < 2:
            continue
        key = parts[0].strip()
        if key:
            headers[key] = ':'.join(parts[1:]).strip()
    return headers


class YeelightController:
    """
    A discovered device as seen by the discovery service.

    Persists itself to the IP cache on creation and announces itself to the
    registry on its first update tick.
    """

    def __init__(self, record: DeviceRecord, registry: 'ControllerRegistry', cache: IPCache):
        self.record = record
        self.initialized = False
        self._registry = registry
        self._cache = cache
        self.cache_info()

    def __repr__(self):
        return f"<YeelightController {self.record.id} {self.record.name} @ {self.record.ip}>"

    @property
    def id(self) -> str:
        return self.record.id

    def update_with_record(self, record: DeviceRecord) -> bool:
        """
        Replace the controller's record.

        Returns:
            True if anything changed
        """
        changed = record != self.record
        old_ip = self.record.ip
        self.record = record

        if changed:
            if old_ip and old_ip != record.ip:
                LOGGER.info(f"[Discovery] {record.name} moved from {old_ip} to {record.ip}")
                self._cache.remove(old_ip)
            self.cache_info()
        return changed

    def update(self):
        """Discovery tick: announce once"""
        if not self.initialized:
            self.initialized = True
            LOGGER.info(f"[Discovery] Controller initialized: {self.record.name} "
                        f"(Model: {self.record.model}, ID: {self.record.id})")
            self._registry.update(self)
            self._registry.announce(self)

    def cache_info(self):
        if self.record.ip and self.record.id:
            self._cache.add(self.record.ip, self.record.to_cache_dict())
        else:
            LOGGER.warning(f"[Discovery] Attempted to cache invalid controller info: {self.record}")


class ControllerRegistry:
    """
    Controllers keyed by device id.

    The host hooks in through the on_added/on_updated/on_announced callbacks,
    each called with the controller.
    """

    def __init__(self, on_added: Optional[Callable] = None,
                 on_updated: Optional[Callable] = None,
                 on_announced: Optional[Callable] = None):
        self._controllers: Dict[str, YeelightController] = {}
        self.on_added = on_added
        self.on_updated = on_updated
        self.on_announced = on_announced

    def __len__(self):
        return len(self._controllers)

    @property
    def controllers(self) -> List[YeelightController]:
        return list(self._controllers.values())

    def get(self, device_id: str) -> Optional[YeelightController]:
        return self._controllers.get(device_id)

    def add(self, controller: YeelightController):
        self._controllers[controller.id] = controller
        if self.on_added:
            self.on_added(controller)

    def update(self, controller: YeelightController):
        if self.on_updated:
            self.on_updated(controller)

    def announce(self, controller: YeelightController):
        if self.on_announced:
            self.on_announced(controller)


@dataclass
class _Probe:
    transport: Any
    started: float
    forced_record: Optional[DeviceRecord] = None


class DiscoveryService:
    """
    Yeelight device discovery.

    Driven by update(), called once per tick. Nothing blocks: the broadcast
    and probe sockets are drained at the start of each tick.
    """

    def __init__(self, cache: IPCache, registry: Optional[ControllerRegistry] = None,
                 broadcast_socket=None,
                 transport_factory: Optional[Callable[..., Any]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the discovery service.

        Args:
            cache: IP cache of previously found devices
            registry: Controller registry (a bare one is created if omitted)
            broadcast_socket: Socket with broadcast()/poll()/close(); a
                BroadcastSocket to the Yeelight search address by default
            transport_factory: Callable building probe transports
            clock: Monotonic time source in seconds
        """
        self.cache = cache
        self.registry = registry if registry is not None else ControllerRegistry()
        self._broadcast = (broadcast_socket if broadcast_socket is not None
                           else BroadcastSocket(BROADCAST_ADDRESS, BROADCAST_PORT))
        self._broadcast.on_response = self.on_response
        self._transport_factory = transport_factory or UdpTransport
        self._clock = clock
        self._probes: Dict[str, _Probe] = {}
        self._last_scan: Optional[float] = None
        self.discovery_in_progress = False

    @property
    def active_probes(self) -> List[str]:
        return list(self._probes.keys())

    def start(self):
        LOGGER.info("[Discovery] Initializing Yeelight Discovery Service...")
        self.load_cached_devices()

    def stop(self):
        """Close the broadcast socket and every probe"""
        for ip in list(self._probes):
            self._close_probe(ip)
        self._broadcast.close()

    def update(self, now: Optional[float] = None):
        """Discovery tick"""
        now = self._clock() if now is None else now

        for controller in self.registry.controllers:
            controller.update()

        self._broadcast.poll()
        for probe in list(self._probes.values()):
            probe.transport.poll()

        self.sweep_probes(now)
        self.scan(now)

    # --- Broadcast scan ---

    def scan(self, now: Optional[float] = None, force: bool = False) -> bool:
        """
        Broadcast a search request, at most once per SCAN_INTERVAL.

        Args:
            now: Current time (clock() if omitted)
            force: Skip the interval check (a scan still in progress is not repeated)

        Returns:
            True if a search was broadcast
        """
        now = self._clock() if now is None else now

        if self.discovery_in_progress and now - self._last_scan >= SCAN_SETTLE_DELAY:
            self.discovery_in_progress = False

        if self.discovery_in_progress:
            return False
        if not force and self._last_scan is not None and now - self._last_scan < SCAN_INTERVAL:
            return False

        self.discovery_in_progress = True
        self._last_scan = now
        LOGGER.info("[Discovery] Broadcasting Yeelight SSDP scan...")
        try:
            self._broadcast.broadcast(SEARCH_REQUEST)
        except OSError as e:
            LOGGER.error(f"[Discovery] Error broadcasting discovery packet: {e}")
        return True

    def on_response(self, ip: str, text: str) -> Optional[DeviceRecord]:
        """
        Handle one discovery response.

        Returns:
            The registered record, or None if the response was dropped
        """
        if not ip or not text:
            LOGGER.warning("[Discovery] Received invalid discovery response")
            return None

        headers = parse_response(text)
        missing = [name for name in REQUIRED_HEADERS if not headers.get(name)]
        if missing:
            LOGGER.warning(f"[Discovery] Incomplete response from {ip} (missing {', '.join(missing)}). Skipping.")
            return None

        if VENDOR_MARKER not in headers['Location']:
            LOGGER.debug(f"[Discovery] Device at {ip} is not a Yeelight device (Location mismatch)")
            return None

        support = headers['support']
        model = headers['model'].strip()
        record = DeviceRecord(
            id=headers['id'].strip(),
            ip=ip,
            port=DEVICE_PORT,
            name=headers.get('name') or model,
            model=model,
            supports_background_rgb='bg_set_rgb' in support,
            supports_per_led='update_leds' in support,
            supports_segments='set_segment_rgb' in support,
        )
        LOGGER.info(f"[Discovery] Identified Yeelight: {record.model} ({record.name}) at {ip}")
        self.register_or_update(record)
        return record

    # --- Registration ---

    def register_or_update(self, record: DeviceRecord) -> YeelightController:
        """Create the controller for record.id, or refresh the existing one"""
        controller = self.registry.get(record.id)
        if controller is None:
            LOGGER.info(f"[Discovery] Adding new controller: {record.name} ({record.model}) at {record.ip}")
            controller = YeelightController(record, self.registry, self.cache)
            self.registry.add(controller)
        elif controller.update_with_record(record):
            LOGGER.info(f"[Discovery] Updated controller: {record.name} at {record.ip}")
            self.registry.update(controller)
        return controller

    # --- Probes ---

    def load_cached_devices(self):
        """Probe every cached device; drop entries that cannot be used"""
        LOGGER.info("[Discovery] Loading Cached Yeelight Devices...")
        found = False
        for key, value in self.cache.entries():
            if value.get('ip') and value.get('id'):
                LOGGER.info(f"[Discovery] Found Cached Device: [{key}]")
                self.probe(value['ip'])
                found = True
            else:
                LOGGER.warning(f"[Discovery] Invalid cached entry found for key {key}, removing")
                self.cache.remove(key)
        if not found:
            LOGGER.info("[Discovery] No valid cached devices found")

    def check_forced_ip(self, ip: str, display_name: str):
        """
        Probe a manually configured device.

        Args:
            ip: Device IP address
            display_name: Model display name, e.g. 'Cube Matrix'
        """
        LOGGER.info(f"[Discovery] Checking Forced IP: {ip} for device: {display_name}")
        if not ip or not display_name:
            LOGGER.warning("[Discovery] Forced IP check failed: Invalid IP or device name provided")
            return

        model = resolve_model_id(display_name)
        profile = resolve_profile(model)
        record = DeviceRecord(
            id=f"manual_{ip}",
            ip=ip,
            port=DEVICE_PORT,
            name=display_name,
            model=model,
            supports_standard_rgb=profile.supports_standard_rgb,
            supports_background_rgb=profile.supports_background_rgb,
            supports_per_led=profile.supports_per_led,
            supports_segments=profile.supports_segments,
        )
        self.probe(ip, record)

    def probe(self, ip: str, forced_record: Optional[DeviceRecord] = None):
        """
        Ask the device at ip for a token to see if it is alive.

        Args:
            ip: Address to check
            forced_record: Record to register on success instead of the cached one
        """
        if not ip:
            LOGGER.warning("[Discovery] Probe failed: Invalid IP provided")
            return

        self._close_probe(ip)
        transport = self._transport_factory(
            ip,
            DEVICE_PORT,
            on_message=lambda text: self._on_probe_message(ip, text),
            on_error=lambda exc: self._on_probe_error(ip, exc),
            label="Disc UDP",
        )
        self._probes[ip] = _Probe(transport, self._clock(), forced_record)
        LOGGER.info(f"[Discovery] Adding temporary discovery socket for {ip}")

        if transport.connect():
            transport.send(PROBE_REQUEST)

    def _on_probe_message(self, ip: str, text: str):
        probe = self._probes.pop(ip, None)
        if probe is None:
            return

        try:
            try:
                reply = json.loads(text)
            except ValueError as e:
                LOGGER.warning(f"[Discovery] Probe parse error for {ip}: {e}")
                return

            params = reply.get('params') if isinstance(reply, dict) else None
            token = params.get('token') if isinstance(params, dict) else None
            if not isinstance(token, str) or len(token) <= MIN_TOKEN_LENGTH:
                LOGGER.info(f"[Discovery] Invalid token during check for {ip}")
                return

            LOGGER.info(f"[Discovery] Valid token during check, confirming device: {ip}")
            if probe.forced_record is not None:
                self.register_or_update(probe.forced_record)
                return

            cached = self.cache.get(ip)
            if cached is None:
                LOGGER.warning(f"[Discovery] No cache found for {ip}")
                return
            try:
                record = DeviceRecord.from_dict(cached)
            except ValueError as e:
                LOGGER.warning(f"[Discovery] Dropping invalid cache entry for {ip}: {e}")
                self.cache.remove(ip)
                return
            record.ip = ip
            self.register_or_update(record)
        finally:
            probe.transport.close()

    def _on_probe_error(self, ip: str, exc: Exception):
        LOGGER.warning(f"[Discovery] Probe socket error for {ip}: {exc}")
        self._probes.pop(ip, None)

    def _close_probe(self, ip: str):
        probe = self._probes.pop(ip, None)
        if probe is not None:
            probe.transport.close()

    def sweep_probes(self, now: Optional[float] = None) -> int:
        """
        Close probes that have gone PROBE_TIMEOUT without a reply.

        Returns:
            Number of probes closed
        """
        now = self._clock() if now is None else now
        expired = [ip for ip, probe in self._probes.items() if now - probe.started >= PROBE_TIMEOUT]
        for ip in expired:
            LOGGER.info(f"[Discovery] Stopping inactive discovery socket for IP: [{ip}]")
            self._close_probe(ip)
        return len(expired)

    def purge_cache(self):
        self.cache.purge()
