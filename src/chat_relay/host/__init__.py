"""Host runtime boundary: event bus, events, main context and a minimal host."""

from chat_relay.host.bus import EventMetadata, HostBus, HostEvent
from chat_relay.host.events import ChatDelivery, ChatEvent, Events
from chat_relay.host.main_context import MainContext
from chat_relay.host.runtime import GameHost, Player

__all__ = [
    "ChatDelivery",
    "ChatEvent",
    "EventMetadata",
    "Events",
    "GameHost",
    "HostBus",
    "HostEvent",
    "MainContext",
    "Player",
]
