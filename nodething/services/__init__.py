"""Services package"""

from .change_feed import ChangeFeedListener
from .device import Completion, Device
from .routing import EventRouter
from .sentinel import PendingCommand, Sentinel, Subscription

__all__ = [
    'ChangeFeedListener', 'Completion', 'Device', 'EventRouter',
    'PendingCommand', 'Sentinel', 'Subscription',
]
