"""Adapters package - transports and frame processing for build sessions.

Contains the session initiator (chunked HTTP creation call), the
persistent channel, the command encoder, and the dispatcher that
reconciles inbound frames into local state.
"""
from __future__ import annotations

__all__ = [
    "Channel",
    "CommandSender",
    "GenerationClient",
    "MessageDispatcher",
    "SessionInitiator",
    "SessionState",
    "open_channel",
]

from vibegen.adapters.channel import Channel, open_channel
from vibegen.adapters.client import GenerationClient
from vibegen.adapters.commands import CommandSender
from vibegen.adapters.dispatcher import MessageDispatcher, SessionState
from vibegen.adapters.initiator import SessionInitiator
