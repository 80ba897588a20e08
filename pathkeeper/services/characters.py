"""Character commands and queries."""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from ..core.errors import CharacterErrors, DomainException, UserErrors
from ..core.result import Result
from ..database.models import Character, CharacterVisibility, User
from ..rules.character import ABILITY_NAMES
from ..rules.variants import RuleModuleRegistry
from .custom_builds import CustomBuildsService
from .mediator import Command, Query

logger = logging.getLogger(__name__)

VISIBILITIES = {v.value for v in CharacterVisibility}
MAX_NAME_LENGTH = 100


def _validate_name(name: str | None) -> list[str]:
    if not (name or "").strip():
        return ["Character name is required"]
    if len(name) > MAX_NAME_LENGTH:
        return [f"Character name must be {MAX_NAME_LENGTH} characters or less"]
    return []


def _validate_scores(scores: dict[str, int] | None) -> list[str]:
    errors = []
    for name, value in (scores or {}).items():
        if name not in ABILITY_NAMES:
            errors.append(f"Unknown ability score '{name}'")
        elif not isinstance(value, int) or not 1 <= value <= 30:
            errors.append(f"{name.capitalize()} must be between 1 and 30")
    return errors


def can_view_character(character: Character, user_id: int | None) -> bool:
    """Owner always; session members unless private; anyone when public."""
    if user_id is not None and character.is_owned_by(user_id):
        return True
    if character.visibility == CharacterVisibility.PUBLIC:
        return True
    if character.visibility == CharacterVisibility.PRIVATE:
        return False
    return character.session is not None and user_id is not None and character.session.is_member(user_id)


@dataclass
class CreateCharacter(Command):
    name: str = ""
    level: int = 1
    class_name: str | None = None
    ancestry: str | None = None
    background: str | None = None
    ability_scores: dict[str, int] = field(default_factory=dict)
    visibility: str = CharacterVisibility.PRIVATE.value
    build: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> list[str]:
        errors = _validate_name(self.name)
        if not 1 <= self.level <= 20:
            errors.append("Level must be between 1 and 20")
        if self.visibility not in VISIBILITIES:
            errors.append(f"Unknown visibility '{self.visibility}'")
        return errors + _validate_scores(self.ability_scores)


@dataclass
class UpdateCharacter(Command):
    character_id: int = 0
    name: str | None = None
    class_name: str | None = None
    ancestry: str | None = None
    background: str | None = None
    ability_scores: dict[str, int] | None = None
    build: dict[str, Any] | None = None
    custom_item_ids: list[int] | None = None
    notes: str | None = None
    visibility: str | None = None

    def validate(self) -> list[str]:
        errors = _validate_name(self.name) if self.name is not None else []
        if self.visibility is not None and self.visibility not in VISIBILITIES:
            errors.append(f"Unknown visibility '{self.visibility}'")
        return errors + _validate_scores(self.ability_scores)


@dataclass
class GetCharacter(Query):
    character_id: int = 0


@dataclass
class ListMyCharacters(Query):
    pass


@dataclass
class UpdateCharacterLevel(Command):
    character_id: int = 0
    level: int = 1


@dataclass
class DeleteCharacter(Command):
    character_id: int = 0


@dataclass
class CalculateCharacter(Query):
    character_id: int = 0
    variant_rules: dict[str, Any] = field(default_factory=dict)
    custom_item_ids: list[int] | None = None

    def validate(self) -> list[str]:
        return [f"Unknown variant rule '{key}'" for key in RuleModuleRegistry.unknown_variant_rules(self.variant_rules)]


def _owned(db: Session, character_id: int, user_id: int | None) -> Character:
    """Load a character the caller owns; raises DomainException otherwise."""
    character = db.get(Character, character_id)
    if character is None:
        raise DomainException(CharacterErrors.not_found(character_id))
    if not character.is_owned_by(user_id):
        raise DomainException(CharacterErrors.not_owner())
    return character


def create_character(db: Session, request: CreateCharacter, current_user_id: int | None) -> Result:
    if db.get(User, current_user_id) is None:
        return Result.failure(UserErrors.not_found(current_user_id))

    character = Character.create(
        owner_id=current_user_id,
        name=request.name.strip(),
        level=request.level,
        class_name=request.class_name,
        ancestry=request.ancestry,
        background=request.background,
        ability_scores=request.ability_scores,
        visibility=CharacterVisibility(request.visibility),
    )
    character.build = dict(request.build)
    db.add(character)
    db.flush()
    logger.info(f"Created character {character.id} '{character.name}'")
    return Result.success(character.to_dict(detailed=True))


def update_character(db: Session, request: UpdateCharacter, current_user_id: int | None) -> Result:
    character = _owned(db, request.character_id, current_user_id)
    for attr in ("name", "class_name", "ancestry", "background", "notes"):
        value = getattr(request, attr)
        if value is not None:
            setattr(character, attr, value.strip() if attr == "name" else value)
    if request.ability_scores is not None:
        character.update_ability_scores(request.ability_scores)
    if request.build is not None:
        character.build = dict(request.build)
    if request.custom_item_ids is not None:
        character.custom_item_ids = list(request.custom_item_ids)
    if request.visibility is not None:
        character.visibility = CharacterVisibility(request.visibility)
    character.log("Character updated")
    return Result.success(character.to_dict(detailed=True))


def get_character(db: Session, request: GetCharacter, current_user_id: int | None) -> Result:
    character = db.get(Character, request.character_id)
    if character is None:
        return Result.failure(CharacterErrors.not_found(request.character_id))
    if not can_view_character(character, current_user_id):
        return Result.failure(CharacterErrors.access_denied())
    return Result.success(character.to_dict(detailed=True))


def list_my_characters(db: Session, request: ListMyCharacters, current_user_id: int | None) -> Result:
    characters = db.query(Character).filter_by(owner_id=current_user_id).order_by(Character.name).all()
    return Result.success([c.to_dict() for c in characters])


def update_character_level(db: Session, request: UpdateCharacterLevel, current_user_id: int | None) -> Result:
    character = _owned(db, request.character_id, current_user_id)
    character.set_level(request.level)
    return Result.success(character.to_dict(detailed=True))


def delete_character(db: Session, request: DeleteCharacter, current_user_id: int | None) -> Result:
    character = _owned(db, request.character_id, current_user_id)
    db.delete(character)
    logger.info(f"Deleted character {request.character_id}")
    return Result.success({"deleted": request.character_id})


def calculate_character(db: Session, request: CalculateCharacter, current_user_id: int | None) -> Result:
    """Run the calculator and stack the modifiers of the character's custom items."""
    character = db.get(Character, request.character_id)
    if character is None:
        return Result.failure(CharacterErrors.not_found(request.character_id))
    if not can_view_character(character, current_user_id):
        return Result.failure(CharacterErrors.access_denied())

    item_ids = request.custom_item_ids
    if item_ids is None:
        item_ids = list(character.custom_item_ids or [])

    result = CustomBuildsService(db).calculate_stats_with_custom_items(
        character, item_ids, request.variant_rules, current_user_id
    )
    if result.is_failure:
        return result
    return Result.success(result.value.to_dict())


HANDLERS = {
    CreateCharacter: create_character,
    UpdateCharacter: update_character,
    GetCharacter: get_character,
    ListMyCharacters: list_my_characters,
    UpdateCharacterLevel: update_character_level,
    DeleteCharacter: delete_character,
    CalculateCharacter: calculate_character,
}
