"""Yeelight NodeServer Node Classes"""

from .controller import Controller
from .yeelight_device import YeelightDevice

__all__ = ['Controller', 'YeelightDevice']
