"""Yeelight NodeServer Library"""

from .discovery import DeviceRecord, DiscoveryService, ControllerRegistry, YeelightController
from .ip_cache import IPCache, MemorySettingsStore
from .model_catalog import ModelProfile, resolve_profile, effective_profile
from .renderer import DeviceRenderer, RenderSettings, StaticPixelSource
from .transport import UdpTransport, BroadcastSocket
from .yeelight_api import YeelightSession, SessionPhase

__all__ = [
    'DeviceRecord', 'DiscoveryService', 'ControllerRegistry', 'YeelightController',
    'IPCache', 'MemorySettingsStore',
    'ModelProfile', 'resolve_profile', 'effective_profile',
    'DeviceRenderer', 'RenderSettings', 'StaticPixelSource',
    'UdpTransport', 'BroadcastSocket',
    'YeelightSession', 'SessionPhase',
]
