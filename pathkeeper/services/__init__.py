"""Command and query handlers behind the mediator."""

from . import campaigns, characters, chat, custom_builds, encounters, notes, npcs, sessions, users
from .custom_builds import CustomBuildsService
from .mediator import Command, Mediator, Query, Request

HANDLER_MODULES = (users, sessions, campaigns, characters, encounters, notes, npcs, chat, custom_builds)


def build_mediator(session_factory=None) -> Mediator:
    """Create a mediator with every handler registered."""
    mediator = Mediator(session_factory)
    for module in HANDLER_MODULES:
        mediator.register_all(module.HANDLERS)
    return mediator


__all__ = [
    "Command",
    "CustomBuildsService",
    "Mediator",
    "Query",
    "Request",
    "build_mediator",
]
