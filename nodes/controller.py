"""
Yeelight Controller Node

Main controller node that runs Yeelight discovery, keeps the IP cache in
PG3 custom data, and creates one device node per discovered Yeelight.
"""

import udi_interface
import datetime
from typing import Dict, Any, List, Tuple

from lib.color_codec import hex_to_rgb
from lib.discovery import ControllerRegistry, DeviceRecord, DiscoveryService, YeelightController
from lib.ip_cache import IPCache
from lib.renderer import RenderSettings, LIGHTING_MODES, LIGHTING_MODE_CANVAS, DEFAULT_COLOR

LOGGER = udi_interface.LOGGER
Custom = udi_interface.Custom


def node_address(device_id: str) -> str:
    """ISY node address for a device id (max 14 chars, lowercase, alphanumeric + _)"""
    address = ''.join(c for c in str(device_id).lower() if c.isalnum() or c == '_')
    if address.startswith('0x'):
        address = address[2:]
    return address[-14:]


def parse_devices(devices_str: str) -> List[Tuple[str, str]]:
    """
    Parse manual device configuration.

    Args:
        devices_str: Comma-separated list of 'Display Name:ip' pairs

    Returns:
        List of (display name, ip)
    """
    devices = []
    if not devices_str:
        return devices

    for device_entry in devices_str.split(','):
        device_entry = device_entry.strip()
        if not device_entry:
            continue

        if ':' in device_entry:
            name, ip = device_entry.rsplit(':', 1)
            name = name.strip()
            ip = ip.strip()
            if name and ip:
                devices.append((name, ip))
        else:
            LOGGER.warning(f"Ignoring device entry without a model name: {device_entry}")
    return devices


def valid_color(value: str, default: str = DEFAULT_COLOR) -> str:
    """Normalize a hex color parameter, falling back to default"""
    value = (value or '').strip()
    if not value:
        return default
    if not value.startswith('#'):
        value = f"#{value}"
    if value.lower() != '#000000' and hex_to_rgb(value) == (0, 0, 0):
        LOGGER.warning(f"Invalid color '{value}', using {default}")
        return default
    return value


class CustomDataStore:
    """Settings store over PG3 custom data"""

    def __init__(self, custom):
        self._custom = custom

    @staticmethod
    def _name(setting_id: str, key: str) -> str:
        return f"{setting_id}.{key}"

    def get_setting(self, setting_id: str, key: str):
        return self._custom.get(self._name(setting_id, key))

    def save_setting(self, setting_id: str, key: str, value: str):
        self._custom[self._name(setting_id, key)] = value

    def remove_setting(self, setting_id: str, key: str):
        name = self._name(setting_id, key)
        if self._custom.get(name) is not None:
            self._custom.delete(name)


class Controller(udi_interface.Node):
    """
    Yeelight Controller Node

    Discovers Yeelight devices (SSDP broadcast, cached and manual IPs)
    and drives every device's render loop from the short poll.
    """

    id = 'controller'

    # Plugin version (major*100 + minor*10 + patch)
    VERSION = 100  # v1.0.0

    drivers = [
        {'driver': 'ST', 'value': 1, 'uom': 2},      # Status (On/Off)
        {'driver': 'GV0', 'value': 0, 'uom': 56},    # Device Count
        {'driver': 'GV2', 'value': 0, 'uom': 56},    # Online Count
        {'driver': 'GV3', 'value': 0, 'uom': 56},    # Cached Devices
        {'driver': 'GV1', 'value': 100, 'uom': 25},  # Version (uses NLS)
    ]

    def __init__(self, polyglot, primary, address, name):
        """
        Initialize the controller node.

        Args:
            polyglot: Polyglot interface
            primary: Primary node address (self for controller)
            address: Node address
            name: Node name
        """
        super().__init__(polyglot, primary, address, name)

        self.poly = polyglot
        self.name = name
        self.primary = primary
        self.address = address

        # Managed devices
        self._devices: Dict[str, Any] = {}
        self._discovery = None
        self._settings = RenderSettings()
        self._manual_devices: List[Tuple[str, str]] = []

        # Configuration
        self._started = False
        self._data_loaded = False
        self._config_done = False
        self._custom_params = Custom(polyglot, 'customparams')
        self._custom_data = Custom(polyglot, 'customdata')

        polyglot.subscribe(polyglot.START, self.start, address)
        polyglot.subscribe(polyglot.POLL, self.poll)
        polyglot.subscribe(polyglot.STOP, self.stop)
        polyglot.subscribe(polyglot.CUSTOMPARAMS, self.parameter_handler)
        polyglot.subscribe(polyglot.CUSTOMDATA, self.data_handler)
        polyglot.subscribe(polyglot.ADDNODEDONE, self.node_added)
        polyglot.subscribe(polyglot.DISCOVER, self.discover)

        polyglot.ready()
        polyglot.addNode(self)

    @property
    def discovery(self):
        return self._discovery

    @property
    def devices(self) -> Dict[str, Any]:
        return self._devices

    def start(self):
        """Start the controller node"""
        LOGGER.info(f"Starting Yeelight Controller: {self.name}")

        self.setDriver('ST', 1)
        self.setDriver('GV1', self.VERSION)

        self._load_config()
        self._started = True
        self._start_discovery()

        timestamp = datetime.datetime.now().strftime("%m/%d %H:%M")
        self.poly.Notices['startup'] = f"Yeelight Controller started ({timestamp})"

        LOGGER.info("Yeelight Controller started successfully")

    def _start_discovery(self):
        """Start discovery once both START and the custom data have arrived"""
        if self._discovery is not None or not (self._started and self._data_loaded):
            return

        cache = IPCache(CustomDataStore(self._custom_data))
        registry = ControllerRegistry(
            on_added=self._controller_added,
            on_updated=self._controller_updated,
            on_announced=self._controller_announced,
        )
        self._discovery = DiscoveryService(cache, registry)
        self._discovery.start()
        self._check_manual_devices()
        self.setDriver('GV3', len(cache))

    def _load_config(self):
        """Read lighting settings and manual devices from custom parameters"""
        LOGGER.info("Loading Yeelight configuration...")
        params = self._custom_params

        mode = (params.get('lighting_mode', '') or LIGHTING_MODE_CANVAS).strip().capitalize()
        if mode not in LIGHTING_MODES:
            LOGGER.warning(f"Unknown lighting mode '{mode}', using {LIGHTING_MODE_CANVAS}")
            mode = LIGHTING_MODE_CANVAS

        self._settings = RenderSettings(
            lighting_mode=mode,
            forced_color=valid_color(params.get('forced_color', '')),
            shutdown_color=valid_color(params.get('shutdown_color', '')),
        )
        for device_info in list(self._devices.values()):
            device_info['node'].apply_settings(self._settings)

        self._manual_devices = parse_devices(params.get('devices', ''))
        if self._manual_devices:
            LOGGER.info(f"Found {len(self._manual_devices)} manual device(s)")
        else:
            LOGGER.info("No manual devices configured. Use Discover or add manually.")
            self._set_config_docs()

        self._config_done = True

    def _check_manual_devices(self):
        if self._discovery is None:
            return
        for display_name, ip in self._manual_devices:
            self._discovery.check_forced_ip(ip, display_name)

    def _set_config_docs(self):
        """Set configuration documentation - displays in PG3 Configuration tab"""
        html = '''
<h2>Yeelight Polyglot v3 NodeServer</h2>
<p style="color: #888;">Version 1.0.0</p>

<h3>Manual Configuration</h3>
<p>Devices are found automatically. To add a device that does not answer discovery,
add a Custom Parameter:</p>

<table border="1" cellpadding="10" style="border-collapse: collapse;">
  <tr><th align="left">Key</th><th align="left">Value</th></tr>
  <tr><td><b>devices</b></td><td>Cube Matrix:192.168.1.50,Monitor Lightbar Pro:192.168.1.51</td></tr>
  <tr><td><b>lighting_mode</b></td><td>Canvas or Forced</td></tr>
  <tr><td><b>forced_color</b></td><td>#009bde</td></tr>
  <tr><td><b>shutdown_color</b></td><td>#009bde</td></tr>
</table>

<p><i>Format: Model Name:ip, Model Name:ip</i></p>
<p>LAN Control must be enabled for each device in the Yeelight app.</p>
'''
        self.poly.setCustomParamsDoc(html)

    def parameter_handler(self, params):
        """Handle configuration parameter changes"""
        LOGGER.info("Configuration parameters updated")
        self._custom_params.load(params)

        if self._config_done:
            self._load_config()
            self._check_manual_devices()

    def data_handler(self, data):
        """Custom data (IP cache) loaded from PG3"""
        LOGGER.debug("Custom data loaded")
        self._custom_data.load(data)
        self._data_loaded = True
        self._start_discovery()

    def node_added(self, node):
        """Called when a node is added"""
        LOGGER.debug(f"Node added: {node.get('address')}")

    # --- Discovery callbacks ---

    def _controller_added(self, controller: YeelightController):
        self._add_yeelight_device(controller.record)

    def _controller_updated(self, controller: YeelightController):
        device_info = self._devices.get(node_address(controller.id))
        if device_info:
            device_info['node'].update_record(controller.record)
        self._update_device_count()

    def _controller_announced(self, controller: YeelightController):
        record = controller.record
        LOGGER.info(f"Yeelight available: {record.name} ({record.model}) at {record.ip}")
        timestamp = datetime.datetime.now().strftime("%m/%d %H:%M")
        self.poly.Notices[f"found_{node_address(record.id)}"] = \
            f"Yeelight found ({timestamp}) - {record.name} at {record.ip}"

    def _add_yeelight_device(self, record: DeviceRecord):
        """
        Add a Yeelight device node.

        Args:
            record: Discovered device record
        """
        address = node_address(record.id)
        if address in self._devices:
            LOGGER.warning(f"Device {record.name} ({address}) already exists")
            return

        LOGGER.info(f"Adding Yeelight device: {record.name} at {record.ip}:{record.port} (address: {address})")

        try:
            from nodes.yeelight_device import YeelightDevice

            node = YeelightDevice(
                self.poly,
                self.address,
                address,
                record.name,
                record,
                self._settings,
            )

            self._devices[address] = {
                'name': record.name,
                'ip': record.ip,
                'id': record.id,
                'node': node
            }

            self._update_device_count()

        except Exception as e:
            LOGGER.error(f"Failed to add device {record.name}: {e}")

    def _update_device_count(self):
        count = len(self._devices)
        self.setDriver('GV0', count)
        LOGGER.debug(f"Device count: {count}")

    # --- Polling ---

    def poll(self, polltype):
        """
        Drive discovery and every device's render loop.

        Args:
            polltype: 'shortPoll' or 'longPoll'
        """
        if polltype == 'shortPoll':
            if self._discovery is not None:
                try:
                    self._discovery.update()
                except Exception as e:
                    LOGGER.error(f"Discovery update failed: {e}")
            self._render_devices()
        elif polltype == 'longPoll':
            LOGGER.debug("Long poll - updating stats")
            self.update_stats()

    def _render_devices(self):
        for address, device_info in list(self._devices.items()):
            node = device_info.get('node')
            if node:
                try:
                    node.render()
                except Exception as e:
                    LOGGER.error(f"Failed to render device {address}: {e}")
        self.update_stats()

    def update_stats(self):
        """Update controller statistics from all devices"""
        online_count = sum(
            1 for device_info in list(self._devices.values())
            if device_info.get('node') and device_info['node'].session.has_token
        )
        self.setDriver('GV2', online_count)
        if self._discovery is not None:
            self.setDriver('GV3', len(self._discovery.cache))

    def stop(self):
        """Show the shutdown color on every device and close discovery sockets"""
        LOGGER.info("Stopping Yeelight Controller...")
        for address, device_info in list(self._devices.items()):
            node = device_info.get('node')
            if node:
                try:
                    node.shutdown(system_suspending=False)
                except Exception as e:
                    LOGGER.error(f"Failed to shut down {address}: {e}")
        if self._discovery is not None:
            self._discovery.stop()
        LOGGER.info("Yeelight Controller stopped")

    # --- Commands ---

    def query(self, command=None):
        """Query all devices"""
        LOGGER.info("Query all devices")
        for device_info in list(self._devices.values()):
            device_info['node'].query()
        self.update_stats()
        self.reportDrivers()

    def discover(self, command=None):
        """Broadcast a discovery scan now"""
        LOGGER.info("Starting Yeelight device discovery...")
        self.poly.Notices.clear()

        if self._discovery is None:
            LOGGER.warning("Discovery not started yet")
            return

        try:
            if not self._discovery.scan(force=True):
                LOGGER.info("Discovery already in progress")
            self._check_manual_devices()
        except Exception as e:
            LOGGER.error(f"Discovery failed: {e}")
            timestamp = datetime.datetime.now().strftime("%m/%d %H:%M")
            self.poly.Notices['discovery_error'] = f"Discovery failed ({timestamp}) - {e}"

    def purge_cache(self, command=None):
        """Forget every cached device address"""
        LOGGER.info("Purging Yeelight IP cache")
        if self._discovery is not None:
            self._discovery.purge_cache()
            self.update_stats()

    def dump_cache(self, command=None):
        """Log the IP cache contents"""
        if self._discovery is not None:
            self._discovery.cache.dump()

    def cmd_all_on(self, command=None):
        """Turn all Yeelight devices on"""
        LOGGER.info("Turning ALL devices ON")
        for address, device_info in list(self._devices.items()):
            try:
                device_info['node'].cmd_on()
            except Exception as e:
                LOGGER.error(f"Failed to turn on {address}: {e}")
        self.update_stats()

    def cmd_all_off(self, command=None):
        """Turn all Yeelight devices off"""
        LOGGER.info("Turning ALL devices OFF")
        for address, device_info in list(self._devices.items()):
            try:
                device_info['node'].cmd_off()
            except Exception as e:
                LOGGER.error(f"Failed to turn off {address}: {e}")
        self.update_stats()

    commands = {
        'DISCOVER': discover,
        'QUERY': query,
        'PURGE_CACHE': purge_cache,
        'DUMP_CACHE': dump_cache,
        'ALL_ON': cmd_all_on,
        'ALL_OFF': cmd_all_off,
        'DON': cmd_all_on,
        'DOF': cmd_all_off,
    }
