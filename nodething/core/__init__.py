"""Core module"""

from .server import DeviceServer

__all__ = ['DeviceServer']
