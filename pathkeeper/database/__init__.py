"""Database module for SQLAlchemy models and session management."""

from .models import (
    Base,
    Campaign,
    CampaignChatMessage,
    Character,
    CharacterNote,
    CustomDefinition,
    Encounter,
    NpcMonster,
    RuleEntry,
    Session,
    User,
)
from .session import get_session, init_db, session_scope

__all__ = [
    "Base",
    "Campaign",
    "CampaignChatMessage",
    "Character",
    "CharacterNote",
    "CustomDefinition",
    "Encounter",
    "NpcMonster",
    "RuleEntry",
    "Session",
    "User",
    "get_session",
    "init_db",
    "session_scope",
]
