"""SQLAlchemy database models for Pathkeeper - Pathfinder 2e.

Models carry their own business rules. Methods raise DomainException when a
rule is violated; services catch it and return a failed Result.

JSON columns are always reassigned (never mutated in place) so that SQLAlchemy
notices the change.
"""

import enum
import random
import string
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from ..core.errors import (
    CharacterErrors,
    DomainException,
    EncounterErrors,
    GeneralErrors,
    SessionErrors,
)
from ..rules.enums import CustomDefinitionType, ModifierTarget, ModifierType
from ..rules.modifiers import ModifierSpec


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UserRole(enum.Enum):
    PLAYER = "player"
    DM = "dm"
    ADMIN = "admin"


class MemberRole(enum.Enum):
    PLAYER = "player"
    DM = "dm"


class CharacterVisibility(enum.Enum):
    PRIVATE = "private"
    SESSION_ONLY = "session_only"
    PUBLIC = "public"


class NoteVisibility(enum.Enum):
    PRIVATE = "private"
    SHARED = "shared"
    DM_ONLY = "dm_only"


class NpcMonsterType(enum.IntEnum):
    ABERRATION = 1
    ANIMAL = 2
    ASTRAL = 3
    BEAST = 4
    CELESTIAL = 5
    CONSTRUCT = 6
    DRAGON = 7
    ELEMENTAL = 8
    ETHEREAL = 9
    FEY = 10
    FIEND = 11
    FUNGUS = 12
    GIANT = 13
    HUMANOID = 14
    MONITOR = 15
    OOZE = 16
    PLANT = 17
    SPIRIT = 18
    UNDEAD = 19
    NPC = 20
    TRAP = 21
    HAZARD = 22


class CombatantType(enum.Enum):
    PC = "PC"
    NPC = "NPC"
    MONSTER = "Monster"


# Used when a combatant's real hit points are unknown
PLACEHOLDER_MAX_HP = {CombatantType.PC: 20, CombatantType.NPC: 15, CombatantType.MONSTER: 25}


class ChatMessageType(enum.IntEnum):
    GENERAL = 1
    SYSTEM = 2
    DICE_ROLL = 3
    CHARACTER_ACTION = 4
    COMBAT = 5
    OUT_OF_CHARACTER = 6
    DM_ONLY = 7


class SessionCode:
    """Six character join code made of A-Z and 0-9."""

    LENGTH = 6
    ALPHABET = string.ascii_uppercase + string.digits

    def __init__(self, value: str):
        self.value = value

    @classmethod
    def generate(cls, rng: random.Random | None = None) -> "SessionCode":
        rng = rng or random.SystemRandom()
        return cls("".join(rng.choice(cls.ALPHABET) for _ in range(cls.LENGTH)))

    @classmethod
    def from_string(cls, value: str) -> "SessionCode":
        """Parse a user supplied code.

        Raises:
            DomainException: If the code is not exactly 6 characters
        """
        cleaned = (value or "").strip()
        if len(cleaned) != cls.LENGTH:
            raise DomainException(SessionErrors.invalid_code(value or ""))
        return cls(cleaned.upper())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SessionCode):
            return self.value == other.value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """An account. Identity is supplied by the hosting environment."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    username = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.PLAYER, nullable=False)
    is_active = Column(Boolean, default=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    characters = relationship("Character", back_populates="owner")

    def deactivate(self) -> None:
        self.is_active = False

    def activate(self) -> None:
        self.is_active = True

    def record_login(self) -> None:
        self.last_login_at = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "display_name": self.display_name or self.username,
            "role": self.role.value if self.role else UserRole.PLAYER.value,
            "is_active": self.is_active,
        }


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class Session(Base):
    """A play session that players join with a short code."""

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(6), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    dm_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    settings = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("SessionMember", back_populates="session", cascade="all, delete-orphan")
    characters = relationship("Character", back_populates="session")
    encounters = relationship("Encounter", back_populates="session", cascade="all, delete-orphan")

    @classmethod
    def create(
        cls,
        dm_user_id: int,
        name: str,
        description: str | None = None,
        code: SessionCode | None = None,
    ) -> "Session":
        """Create a session with the DM as its first member."""
        session = cls(
            code=str(code or SessionCode.generate()),
            dm_user_id=dm_user_id,
            name=name,
            description=description,
            settings={},
            is_active=True,
        )
        session.add_member(dm_user_id, MemberRole.DM, "DM")
        return session

    def get_member(self, user_id: int) -> "SessionMember | None":
        return next((m for m in self.members if m.user_id == user_id), None)

    def is_member(self, user_id: int) -> bool:
        return self.get_member(user_id) is not None

    def add_member(self, user_id: int, role: MemberRole, alias: str) -> "SessionMember":
        if self.is_member(user_id):
            raise DomainException(SessionErrors.user_already_member(user_id))
        if role == MemberRole.DM and any(m.role == MemberRole.DM for m in self.members):
            raise DomainException(GeneralErrors.invalid_operation("Session already has a DM"))
        member = SessionMember(user_id=user_id, role=role, alias=alias, joined_at=datetime.utcnow())
        self.members.append(member)
        return member

    def remove_member(self, user_id: int) -> None:
        member = self.get_member(user_id)
        if member is None:
            return
        if member.role == MemberRole.DM:
            raise DomainException(SessionErrors.cannot_remove_dm())
        self.members.remove(member)

    def add_character(self, character: "Character") -> None:
        if not self.is_member(character.owner_id):
            raise DomainException(
                GeneralErrors.invalid_operation("Character owner must be a session member")
            )
        character.assign_to_session(self)

    def update_settings(self, settings: dict[str, Any]) -> None:
        self.settings = dict(settings)

    def deactivate(self) -> None:
        self.is_active = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "dm_user_id": self.dm_user_id,
            "settings": self.settings or {},
            "is_active": self.is_active,
            "members": [m.to_dict() for m in self.members],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SessionMember(Base):
    """Membership of a user in a session."""

    __tablename__ = "session_members"
    __table_args__ = (UniqueConstraint("session_id", "user_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    role = Column(Enum(MemberRole), default=MemberRole.PLAYER, nullable=False)
    alias = Column(String(50), nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow)

    session = relationship("Session", back_populates="members")

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "alias": self.alias,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------


class Campaign(Base):
    """A long running campaign with its variant rules and join link."""

    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    dm_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    join_token = Column(String(64), nullable=False, unique=True, default=lambda: uuid.uuid4().hex)
    variant_rules = Column(JSON, default=dict)
    settings = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)
    last_activity_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("CampaignMember", back_populates="campaign", cascade="all, delete-orphan")
    chat_messages = relationship(
        "CampaignChatMessage", back_populates="campaign", cascade="all, delete-orphan"
    )

    @classmethod
    def create(
        cls,
        dm_user_id: int,
        name: str,
        description: str | None = None,
        variant_rules: dict[str, Any] | None = None,
    ) -> "Campaign":
        return cls(
            dm_user_id=dm_user_id,
            name=name,
            description=description,
            join_token=uuid.uuid4().hex,
            variant_rules=dict(variant_rules or {}),
            settings={},
            is_active=True,
            last_activity_at=datetime.utcnow(),
        )

    def get_member(self, user_id: int) -> "CampaignMember | None":
        return next((m for m in self.members if m.user_id == user_id), None)

    def add_member(self, user_id: int, alias: str, role: MemberRole = MemberRole.PLAYER) -> "CampaignMember":
        """Add a member. Adding an existing member returns the existing row."""
        existing = self.get_member(user_id)
        if existing is not None:
            return existing
        member = CampaignMember(user_id=user_id, alias=alias, role=role, joined_at=datetime.utcnow())
        self.members.append(member)
        self.update_activity()
        return member

    def remove_member(self, user_id: int) -> None:
        member = self.get_member(user_id)
        if member is not None:
            self.members.remove(member)
            self.update_activity()

    def regenerate_join_token(self) -> str:
        self.join_token = uuid.uuid4().hex
        return self.join_token

    def update_activity(self) -> None:
        self.last_activity_at = datetime.utcnow()

    def can_user_join(self, user_id: int) -> bool:
        return bool(self.is_active) and not self.is_user_member(user_id)

    def is_user_dm(self, user_id: int) -> bool:
        return self.dm_user_id == user_id

    def is_user_member(self, user_id: int) -> bool:
        return self.is_user_dm(user_id) or self.get_member(user_id) is not None

    def alias_taken(self, alias: str) -> bool:
        wanted = alias.strip().lower()
        return any(m.alias.lower() == wanted for m in self.members)

    def to_dict(self, include_token: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "dm_user_id": self.dm_user_id,
            "variant_rules": self.variant_rules or {},
            "settings": self.settings or {},
            "is_active": self.is_active,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "members": [m.to_dict() for m in self.members],
        }
        if include_token:
            data["join_token"] = self.join_token
        return data


class CampaignMember(Base):
    """Membership of a user in a campaign, under an alias."""

    __tablename__ = "campaign_members"
    __table_args__ = (UniqueConstraint("campaign_id", "user_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    alias = Column(String(50), nullable=False)
    role = Column(Enum(MemberRole), default=MemberRole.PLAYER, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="members")

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "user_id": self.user_id,
            "alias": self.alias,
            "role": self.role.value,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------


class Character(Base):
    """A player character (or template)."""

    __tablename__ = "characters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=True)
    name = Column(String(100), nullable=False)
    level = Column(Integer, default=1)
    class_name = Column(String(50), nullable=True)
    ancestry = Column(String(50), nullable=True)
    background = Column(String(50), nullable=True)

    # {"strength": 16, "dexterity": 12, ...}
    ability_scores = Column(JSON, default=dict)
    skills = Column(JSON, default=dict)
    feats = Column(JSON, default=list)
    inventory = Column(JSON, default=list)
    spells = Column(JSON, default=list)
    # Build choices used by variant rules: voluntary_flaws, archetype_feats, current_bulk
    build = Column(JSON, default=dict)
    # Ids of CustomDefinitions the character has equipped
    custom_item_ids = Column(JSON, default=list)
    notes = Column(Text, nullable=True)

    visibility = Column(Enum(CharacterVisibility), default=CharacterVisibility.PRIVATE)
    is_template = Column(Boolean, default=False)
    audit_log = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="characters")
    session = relationship("Session", back_populates="characters")
    character_notes = relationship("CharacterNote", back_populates="character", cascade="all, delete-orphan")

    @classmethod
    def create(
        cls,
        owner_id: int,
        name: str,
        level: int = 1,
        class_name: str | None = None,
        ancestry: str | None = None,
        background: str | None = None,
        ability_scores: dict[str, int] | None = None,
        visibility: CharacterVisibility = CharacterVisibility.PRIVATE,
    ) -> "Character":
        if level < 1 or level > 20:
            raise DomainException(CharacterErrors.invalid_level(level))
        character = cls(
            owner_id=owner_id,
            name=name,
            level=level,
            class_name=class_name,
            ancestry=ancestry,
            background=background,
            ability_scores=dict(ability_scores or {}),
            skills={},
            feats=[],
            inventory=[],
            spells=[],
            build={},
            custom_item_ids=[],
            visibility=visibility,
            is_template=False,
            audit_log=[],
        )
        character.log("Character created")
        return character

    def log(self, message: str) -> None:
        """Append an audit entry."""
        self.audit_log = list(self.audit_log or []) + [
            {"at": datetime.utcnow().isoformat(), "message": message}
        ]

    def set_level(self, level: int) -> None:
        if level < 1 or level > 20:
            raise DomainException(CharacterErrors.invalid_level(level))
        old = self.level
        self.level = level
        self.log(f"Level changed from {old} to {level}")

    def update_ability_scores(self, scores: dict[str, int]) -> None:
        self.ability_scores = {**(self.ability_scores or {}), **scores}
        self.log("Ability scores updated")

    def assign_to_session(self, session: "Session") -> None:
        if self.session_id is not None or self.session is not None:
            raise DomainException(CharacterErrors.already_assigned())
        self.session = session
        self.log(f"Assigned to session {session.name}")

    def remove_from_session(self) -> None:
        if self.session_id is None and self.session is None:
            return
        self.session = None
        self.session_id = None
        self.log("Removed from session")

    def is_owned_by(self, user_id: int) -> bool:
        return self.owner_id == user_id

    def to_calculator_input(self) -> dict[str, Any]:
        """Character data in the shape the CharacterCalculator expects."""
        build = self.build or {}
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level or 1,
            "ability_scores": dict(self.ability_scores or {}),
            "current_bulk": build.get("current_bulk", 0),
            "voluntary_flaws": list(build.get("voluntary_flaws", [])),
            "archetype_feats": list(build.get("archetype_feats", [])),
        }

    def to_dict(self, detailed: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "name": self.name,
            "level": self.level,
            "class_name": self.class_name,
            "ancestry": self.ancestry,
            "background": self.background,
            "visibility": self.visibility.value if self.visibility else None,
            "is_template": self.is_template,
        }
        if detailed:
            data.update(
                {
                    "ability_scores": self.ability_scores or {},
                    "skills": self.skills or {},
                    "feats": self.feats or [],
                    "inventory": self.inventory or [],
                    "spells": self.spells or [],
                    "build": self.build or {},
                    "custom_item_ids": self.custom_item_ids or [],
                    "notes": self.notes,
                    "audit_log": self.audit_log or [],
                }
            )
        return data


class CharacterNote(Base):
    """A note attached to a character, with visibility rules."""

    __tablename__ = "character_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    character_id = Column(Integer, ForeignKey("characters.id"), nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, default="")
    visibility = Column(Enum(NoteVisibility), default=NoteVisibility.PRIVATE)
    tags = Column(JSON, default=list)
    color = Column(String(20), default="#fef3c7")
    sort_order = Column(Integer, default=0)
    is_pinned = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    character = relationship("Character", back_populates="character_notes")

    def can_be_viewed_by(self, user_id: int, is_dm: bool = False, is_owner: bool = False) -> bool:
        """Check read access.

        Args:
            user_id: Viewer
            is_dm: Viewer is the DM of the character's session
            is_owner: Viewer owns the character
        """
        if self.author_id == user_id:
            return True
        if self.visibility == NoteVisibility.SHARED:
            return True
        if self.visibility == NoteVisibility.DM_ONLY:
            return is_dm or is_owner
        return False

    def can_be_edited_by(self, user_id: int, is_dm: bool = False) -> bool:
        if self.author_id == user_id:
            return True
        return is_dm and self.visibility != NoteVisibility.PRIVATE

    def update_content(self, title: str, content: str, tags: list[str] | None = None) -> None:
        self.title = title
        self.content = content
        if tags is not None:
            self.tags = list(tags)

    def change_visibility(self, visibility: NoteVisibility) -> None:
        self.visibility = visibility

    def update_appearance(
        self,
        color: str | None = None,
        is_pinned: bool | None = None,
        sort_order: int | None = None,
    ) -> None:
        if color is not None:
            self.color = color
        if is_pinned is not None:
            self.is_pinned = is_pinned
        if sort_order is not None:
            self.sort_order = sort_order

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "character_id": self.character_id,
            "author_id": self.author_id,
            "title": self.title,
            "content": self.content,
            "visibility": self.visibility.value if self.visibility else None,
            "tags": self.tags or [],
            "color": self.color,
            "sort_order": self.sort_order,
            "is_pinned": self.is_pinned,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ---------------------------------------------------------------------------
# NPCs and monsters
# ---------------------------------------------------------------------------


class NpcMonster(Base):
    """An NPC or monster stat block. Rows without an owner are library content."""

    __tablename__ = "npc_monsters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(NpcMonsterType), default=NpcMonsterType.HUMANOID)
    level = Column(Integer, default=0)
    size = Column(String(20), default="Medium")
    creature_type = Column(String(50), nullable=True)
    alignment = Column(String(30), default="Neutral")
    armor_class = Column(Integer, default=10)
    hit_points = Column(Integer, default=10)
    speed = Column(Integer, default=25)
    ability_scores = Column(JSON, default=dict)
    skills = Column(JSON, default=dict)
    attacks = Column(JSON, default=list)
    abilities = Column(JSON, default=list)
    traits = Column(JSON, default=list)
    saves = Column(JSON, default=dict)
    is_template = Column(Boolean, default=False)
    source = Column(String(100), default="Custom")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_library(self) -> bool:
        return self.owner_id is None

    def assign_to_session(self, session_id: int) -> None:
        if self.session_id is not None:
            raise DomainException(
                GeneralErrors.invalid_operation("NPC/Monster is already assigned to a session")
            )
        self.session_id = session_id

    def remove_from_session(self) -> None:
        self.session_id = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "name": self.name,
            "description": self.description,
            "type": self.type.name if self.type else None,
            "level": self.level,
            "size": self.size,
            "creature_type": self.creature_type,
            "alignment": self.alignment,
            "armor_class": self.armor_class,
            "hit_points": self.hit_points,
            "speed": self.speed,
            "ability_scores": self.ability_scores or {},
            "skills": self.skills or {},
            "attacks": self.attacks or [],
            "abilities": self.abilities or [],
            "traits": self.traits or [],
            "saves": self.saves or {},
            "is_template": self.is_template,
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Encounters
# ---------------------------------------------------------------------------


class Encounter(Base):
    """A persisted combat encounter with its turn order.

    Combatants are stored as a JSON list of dicts with keys ``id``, ``type``,
    ``ref_id``, ``name``, ``initiative``, ``current_hp``, ``max_hp``,
    ``conditions`` and ``turn_order``.
    """

    __tablename__ = "encounters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    round = Column(Integer, default=0)
    current_turn = Column(Integer, default=0)
    active_combatant_id = Column(String(32), nullable=True)
    combatants = Column(JSON, default=list)
    log = Column(JSON, default=list)
    is_active = Column(Boolean, default=False)
    is_completed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    session = relationship("Session", back_populates="encounters")

    @classmethod
    def create(cls, session_id: int, name: str, description: str | None = None) -> "Encounter":
        return cls(
            session_id=session_id,
            name=name,
            description=description,
            round=0,
            current_turn=0,
            combatants=[],
            log=[],
            is_active=False,
            is_completed=False,
        )

    def _copy_combatants(self) -> list[dict[str, Any]]:
        return [dict(c) for c in (self.combatants or [])]

    def get_combatant(self, combatant_id: str) -> dict[str, Any] | None:
        return next((c for c in (self.combatants or []) if c["id"] == combatant_id), None)

    @property
    def active_combatant(self) -> dict[str, Any] | None:
        if self.active_combatant_id is None:
            return None
        return self.get_combatant(self.active_combatant_id)

    def _record(self, message: str) -> None:
        self.log = list(self.log or []) + [
            {"round": self.round or 0, "at": datetime.utcnow().isoformat(), "message": message}
        ]

    def start(self) -> None:
        if self.is_active:
            raise DomainException(EncounterErrors.already_active())
        if not self.combatants:
            raise DomainException(EncounterErrors.no_combatants())

        ordered = sorted(self._copy_combatants(), key=lambda c: c["initiative"], reverse=True)
        for index, combatant in enumerate(ordered):
            combatant["turn_order"] = index

        self.combatants = ordered
        self.is_active = True
        self.round = 1
        self.current_turn = 0
        self.active_combatant_id = ordered[0]["id"]
        self._record("Encounter started")

    def add_combatant(
        self,
        combatant_type: CombatantType,
        name: str,
        initiative: int = 0,
        ref_id: int | None = None,
        max_hp: int | None = None,
    ) -> dict[str, Any]:
        """Add a combatant; hit points fall back to a placeholder for its type."""
        if self.is_completed:
            raise DomainException(EncounterErrors.completed())

        hp = max_hp if max_hp is not None else PLACEHOLDER_MAX_HP[combatant_type]
        combatants = self._copy_combatants()
        combatant = {
            "id": uuid.uuid4().hex,
            "type": combatant_type.value,
            "ref_id": ref_id,
            "name": name,
            "initiative": initiative,
            "current_hp": hp,
            "max_hp": hp,
            "conditions": [],
            "turn_order": len(combatants),
        }
        combatants.append(combatant)
        self.combatants = combatants
        self._record(f"{name} joined the encounter")
        return combatant

    def remove_combatant(self, combatant_id: str) -> None:
        combatant = self.get_combatant(combatant_id)
        if combatant is None:
            return
        if self.active_combatant_id == combatant_id and self.is_active:
            self.next_turn()
        self.combatants = [c for c in self._copy_combatants() if c["id"] != combatant_id]
        if self.active_combatant_id == combatant_id:
            self.active_combatant_id = None
        elif self.active_combatant_id is not None:
            alive = sorted((c for c in self.combatants if c["current_hp"] > 0), key=lambda c: c["turn_order"])
            ids = [c["id"] for c in alive]
            if self.active_combatant_id in ids:
                self.current_turn = ids.index(self.active_combatant_id)
        self._record(f"{combatant['name']} left the encounter")

    def next_turn(self) -> dict[str, Any] | None:
        """Advance to the next living combatant.

        Returns:
            The new active combatant, or None if the encounter ended
        """
        if not self.is_active:
            raise DomainException(EncounterErrors.not_active())

        alive = sorted(
            (c for c in (self.combatants or []) if c["current_hp"] > 0),
            key=lambda c: c["turn_order"],
        )
        if not alive:
            self.end()
            return None

        # Step by turn order; the active combatant may have just dropped to 0 HP
        current = self.get_combatant(self.active_combatant_id) if self.active_combatant_id else None
        current_order = current["turn_order"] if current is not None else -1
        following = [c for c in alive if c["turn_order"] > current_order]

        if following:
            active = following[0]
        else:
            self.round = (self.round or 0) + 1
            self._record(f"Round {self.round} begins")
            active = alive[0]

        self.current_turn = alive.index(active)
        self.active_combatant_id = active["id"]
        return active

    def end(self) -> None:
        self.is_active = False
        self.is_completed = True
        self.active_combatant_id = None
        self._record("Encounter ended")

    def _update_combatant(self, combatant_id: str, **changes: Any) -> dict[str, Any]:
        combatants = self._copy_combatants()
        for combatant in combatants:
            if combatant["id"] == combatant_id:
                combatant.update(changes)
                self.combatants = combatants
                return combatant
        raise DomainException(EncounterErrors.combatant_not_found(combatant_id))

    def set_initiative(self, combatant_id: str, initiative: int) -> dict[str, Any]:
        return self._update_combatant(combatant_id, initiative=initiative)

    def apply_damage(self, combatant_id: str, damage: int) -> dict[str, Any]:
        combatant = self.get_combatant(combatant_id)
        if combatant is None:
            raise DomainException(EncounterErrors.combatant_not_found(combatant_id))
        updated = self._update_combatant(combatant_id, current_hp=max(0, combatant["current_hp"] - damage))
        self._record(f"{combatant['name']} takes {damage} damage")
        return updated

    def heal(self, combatant_id: str, healing: int) -> dict[str, Any]:
        combatant = self.get_combatant(combatant_id)
        if combatant is None:
            raise DomainException(EncounterErrors.combatant_not_found(combatant_id))
        updated = self._update_combatant(
            combatant_id, current_hp=min(combatant["max_hp"], combatant["current_hp"] + healing)
        )
        self._record(f"{combatant['name']} heals {healing}")
        return updated

    def set_conditions(self, combatant_id: str, conditions: list[str]) -> dict[str, Any]:
        return self._update_combatant(combatant_id, conditions=list(conditions))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "description": self.description,
            "round": self.round or 0,
            "current_turn": self.current_turn or 0,
            "active_combatant_id": self.active_combatant_id,
            "combatants": sorted(self.combatants or [], key=lambda c: c.get("turn_order", 0)),
            "is_active": self.is_active,
            "is_completed": self.is_completed,
            "log": self.log or [],
        }


# ---------------------------------------------------------------------------
# Custom content
# ---------------------------------------------------------------------------


class CustomDefinition(Base):
    """User-authored rules content (items, feats, spells...)."""

    __tablename__ = "custom_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(Enum(CustomDefinitionType), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, default="")
    json_data = Column(JSON, default=dict)
    version = Column(Integer, default=1)
    rarity = Column(String(20), default="Common")
    traits = Column(JSON, default=list)
    source = Column(String(100), default="Custom")
    is_public = Column(Boolean, default=False)
    is_approved = Column(Boolean, default=False)
    level = Column(Integer, default=1)
    category = Column(String(50), nullable=True)
    tags = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    modifiers = relationship(
        "CustomDefinitionModifier",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="CustomDefinitionModifier.priority",
    )

    def add_modifier(
        self,
        target: ModifierTarget,
        value: int,
        modifier_type: ModifierType = ModifierType.UNTYPED,
        condition: str | None = None,
        priority: int = 0,
    ) -> "CustomDefinitionModifier":
        modifier = CustomDefinitionModifier(
            target=target,
            value=value,
            modifier_type=modifier_type,
            condition=condition,
            is_active=True,
            priority=priority,
        )
        self.modifiers.append(modifier)
        return modifier

    def remove_modifier(self, modifier: "CustomDefinitionModifier") -> None:
        if modifier in self.modifiers:
            self.modifiers.remove(modifier)

    def update_content(
        self,
        name: str | None = None,
        description: str | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> None:
        """Update content and bump the version."""
        if name is not None:
            self.name = name
        if description is not None:
            self.description = description
        if json_data is not None:
            self.json_data = dict(json_data)
        self.version = (self.version or 1) + 1

    def can_be_edited_by(self, user_id: int) -> bool:
        return self.owner_id == user_id

    def can_be_viewed_by(self, user_id: int | None) -> bool:
        return bool(self.is_public) or (user_id is not None and self.owner_id == user_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "type": self.type.name if self.type else None,
            "name": self.name,
            "description": self.description,
            "json_data": self.json_data or {},
            "version": self.version,
            "rarity": self.rarity,
            "traits": self.traits or [],
            "source": self.source,
            "is_public": self.is_public,
            "is_approved": self.is_approved,
            "level": self.level,
            "category": self.category,
            "tags": self.tags or [],
            "modifiers": [m.to_dict() for m in self.modifiers],
        }


class CustomDefinitionModifier(Base):
    """A stat modifier granted by a custom definition."""

    __tablename__ = "custom_definition_modifiers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    definition_id = Column(Integer, ForeignKey("custom_definitions.id"), nullable=False)
    target = Column(Enum(ModifierTarget), nullable=False)
    value = Column(Integer, nullable=False)
    modifier_type = Column(Enum(ModifierType), default=ModifierType.UNTYPED, nullable=False)
    condition = Column(String(200), nullable=True)
    is_active = Column(Boolean, default=True)
    priority = Column(Integer, default=0)

    definition = relationship("CustomDefinition", back_populates="modifiers")

    def to_spec(self) -> ModifierSpec:
        return ModifierSpec(
            target=self.target,
            value=self.value,
            modifier_type=self.modifier_type or ModifierType.UNTYPED,
            condition=self.condition,
            is_active=True if self.is_active is None else bool(self.is_active),
            priority=self.priority or 0,
            source_id=self.definition_id,
            source_name=self.definition.name if self.definition is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        spec = self.to_spec()
        return {
            "id": self.id,
            "target": self.target.name,
            "value": self.value,
            "type": spec.modifier_type.name,
            "condition": self.condition,
            "is_active": spec.is_active,
            "priority": spec.priority,
            "display_name": spec.display_name,
        }


# ---------------------------------------------------------------------------
# Campaign chat
# ---------------------------------------------------------------------------


class CampaignChatMessage(Base):
    """A chat line in a campaign."""

    __tablename__ = "campaign_chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    character_id = Column(Integer, ForeignKey("characters.id"), nullable=True)
    sender_name = Column(String(100), nullable=False, default="System")
    message_type = Column(Enum(ChatMessageType), default=ChatMessageType.GENERAL)
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    message_data = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="chat_messages")

    @classmethod
    def create_system_message(cls, campaign_id: int, content: str) -> "CampaignChatMessage":
        return cls(
            campaign_id=campaign_id,
            user_id=None,
            sender_name="System",
            message_type=ChatMessageType.SYSTEM,
            content=content,
            message_data={},
        )

    @classmethod
    def create_dice_roll(
        cls,
        campaign_id: int,
        user_id: int,
        sender_name: str,
        content: str,
        roll_result: dict[str, Any],
        is_private: bool = False,
        character_id: int | None = None,
    ) -> "CampaignChatMessage":
        return cls(
            campaign_id=campaign_id,
            user_id=user_id,
            character_id=character_id,
            sender_name=sender_name,
            message_type=ChatMessageType.DICE_ROLL,
            content=content,
            message_data={"rollResult": roll_result, "isPrivate": is_private},
        )

    @property
    def is_private(self) -> bool:
        return bool((self.message_data or {}).get("isPrivate"))

    def is_visible_to(self, user_id: int, is_dm: bool) -> bool:
        """DM-only messages and private rolls are hidden from other players."""
        if is_dm or self.user_id == user_id:
            return True
        if self.message_type == ChatMessageType.DM_ONLY:
            return False
        return not self.is_private

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "user_id": self.user_id,
            "character_id": self.character_id,
            "sender_name": self.sender_name,
            "message_type": self.message_type.name if self.message_type else None,
            "content": self.content,
            "metadata": self.message_data or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ---------------------------------------------------------------------------
# Synced rules library
# ---------------------------------------------------------------------------


class RuleEntry(Base):
    """Rules content downloaded from the SRD."""

    __tablename__ = "rule_entries"
    __table_args__ = (UniqueConstraint("content_type", "name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_type = Column(String(30), nullable=False)
    name = Column(String(200), nullable=False)
    external_id = Column(String(64), nullable=True)
    url = Column(String(500), nullable=True)
    raw_content = Column(Text, default="")
    data = Column(JSON, default=dict)
    traits = Column(JSON, default=list)
    level = Column(Integer, nullable=True)
    checksum = Column(String(64), nullable=True)
    source = Column(String(100), default="Archives of Nethys")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content_type": self.content_type,
            "name": self.name,
            "external_id": self.external_id,
            "url": self.url,
            "data": self.data or {},
            "traits": self.traits or [],
            "level": self.level,
            "checksum": self.checksum,
            "source": self.source,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
