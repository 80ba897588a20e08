"""Homebrew content: custom definitions and their stat modifiers."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.errors import GeneralErrors
from ..core.result import Result
from ..database.models import Character, CustomDefinition
from ..rules.calculator import CharacterCalculationResult, CharacterCalculator
from ..rules.enums import (
    MAX_DESCRIPTION_LENGTH,
    MAX_JSON_SIZE,
    MAX_MODIFIER_VALUE,
    MAX_MODIFIERS_PER_ITEM,
    MAX_NAME_LENGTH,
    MAX_TAGS,
    MAX_TRAITS,
    MIN_MODIFIER_VALUE,
    CustomDefinitionType,
    ModifierTarget,
    ModifierType,
)
from ..rules.modifiers import ModifierSpec
from .mediator import Command, Query

logger = logging.getLogger(__name__)


def _enum_member(enum_cls: type, value: Any) -> Any:
    """Resolve an enum member from its name or integer value."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
        return enum_cls(int(value))
    return enum_cls[str(value).strip().upper().replace(" ", "_")]


def parse_modifier(data: dict[str, Any]) -> ModifierSpec:
    """Build a ModifierSpec from request data.

    Raises:
        ValueError: If the target or type is unknown or the value is not an integer
    """
    try:
        target = _enum_member(ModifierTarget, data.get("target"))
        modifier_type = _enum_member(ModifierType, data.get("type", data.get("modifier_type", "UNTYPED")))
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown modifier target or type: {e}") from e
    return ModifierSpec(
        target=target,
        value=int(data.get("value", 0)),
        modifier_type=modifier_type,
        condition=data.get("condition"),
        priority=int(data.get("priority", 0)),
    )


def validate_definition(
    name: str,
    description: str = "",
    modifiers: list[dict[str, Any]] | None = None,
    traits: list[str] | None = None,
    tags: list[str] | None = None,
    json_data: dict[str, Any] | None = None,
) -> list[str]:
    """Check a custom definition against the content limits."""
    errors = []
    if not (name or "").strip():
        errors.append("Name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Name must be {MAX_NAME_LENGTH} characters or less")
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less")
    if traits and len(traits) > MAX_TRAITS:
        errors.append(f"Maximum {MAX_TRAITS} traits allowed")
    if tags and len(tags) > MAX_TAGS:
        errors.append(f"Maximum {MAX_TAGS} tags allowed")
    if json_data and len(json.dumps(json_data)) > MAX_JSON_SIZE:
        errors.append(f"Definition data must be {MAX_JSON_SIZE} bytes or less")

    modifiers = modifiers or []
    if len(modifiers) > MAX_MODIFIERS_PER_ITEM:
        errors.append(f"Maximum {MAX_MODIFIERS_PER_ITEM} modifiers allowed")
    for data in modifiers:
        try:
            spec = parse_modifier(data)
        except (TypeError, ValueError) as e:
            errors.append(str(e))
            continue
        if not MIN_MODIFIER_VALUE <= spec.value <= MAX_MODIFIER_VALUE:
            errors.append(f"Modifier value must be between {MIN_MODIFIER_VALUE} and {MAX_MODIFIER_VALUE}")
    return errors


class CustomBuildsService:
    """Queries and operations over custom definitions.

    Args:
        db: Open SQLAlchemy session; the caller owns the transaction
        calculator: Character calculator used for stat previews
    """

    def __init__(self, db: Session, calculator: CharacterCalculator | None = None):
        self.db = db
        self.calculator = calculator or CharacterCalculator()

    def get_custom_definition(self, definition_id: int, user_id: int | None) -> Result:
        definition = self.db.get(CustomDefinition, definition_id)
        if definition is None:
            return Result.failure(GeneralErrors.not_found(f"Custom definition {definition_id}"))
        if not definition.can_be_viewed_by(user_id):
            return Result.failure(GeneralErrors.access_denied("You cannot view this custom definition"))
        return Result.success(definition)

    def get_user_definitions(
        self, user_id: int, definition_type: CustomDefinitionType | None = None
    ) -> Result:
        query = self.db.query(CustomDefinition).filter(CustomDefinition.owner_id == user_id)
        if definition_type is not None:
            query = query.filter(CustomDefinition.type == definition_type)
        return Result.success(query.order_by(CustomDefinition.name).all())

    def search_definitions(
        self,
        search_term: str | None = None,
        definition_type: CustomDefinitionType | None = None,
        public_only: bool = True,
        user_id: int | None = None,
        limit: int = 50,
    ) -> Result:
        """Search definitions by name, optionally restricted to one type.

        With ``public_only`` False the caller's own private definitions are
        included as well.
        """
        query = self.db.query(CustomDefinition)
        if public_only or user_id is None:
            query = query.filter(CustomDefinition.is_public.is_(True))
        else:
            query = query.filter(or_(CustomDefinition.is_public.is_(True), CustomDefinition.owner_id == user_id))
        if search_term:
            query = query.filter(CustomDefinition.name.ilike(f"%{search_term.strip()}%"))
        if definition_type is not None:
            query = query.filter(CustomDefinition.type == definition_type)
        return Result.success(query.order_by(CustomDefinition.name).limit(limit).all())

    def create_definition(
        self,
        owner_id: int,
        definition_type: CustomDefinitionType,
        name: str,
        description: str = "",
        modifiers: list[dict[str, Any]] | None = None,
        level: int = 1,
        rarity: str = "Common",
        traits: list[str] | None = None,
        tags: list[str] | None = None,
        category: str | None = None,
        json_data: dict[str, Any] | None = None,
        is_public: bool = False,
    ) -> Result:
        errors = validate_definition(name, description, modifiers, traits, tags, json_data)
        if errors:
            return Result.failure(GeneralErrors.validation_failed(errors))

        definition = CustomDefinition(
            owner_id=owner_id,
            type=definition_type,
            name=name.strip(),
            description=description or "",
            json_data=dict(json_data or {}),
            version=1,
            rarity=rarity,
            traits=list(traits or []),
            tags=list(tags or []),
            category=category,
            level=level,
            is_public=is_public,
            is_approved=False,
            source="Custom",
        )
        for data in modifiers or []:
            spec = parse_modifier(data)
            definition.add_modifier(spec.target, spec.value, spec.modifier_type, spec.condition, spec.priority)

        self.db.add(definition)
        self.db.flush()
        logger.info(f"Created custom {definition_type.name.lower()} '{definition.name}' for user {owner_id}")
        return Result.success(definition)

    def create_magic_item(
        self,
        owner_id: int,
        name: str,
        description: str = "",
        modifiers: list[dict[str, Any]] | None = None,
        level: int = 1,
        rarity: str = "Common",
        traits: list[str] | None = None,
        is_public: bool = False,
    ) -> Result:
        """Create an item definition tagged as a magic item."""
        traits = list(traits or [])
        if "Magical" not in traits:
            traits.append("Magical")
        return self.create_definition(
            owner_id,
            CustomDefinitionType.ITEM,
            name,
            description,
            modifiers=modifiers,
            level=level,
            rarity=rarity,
            traits=traits,
            category="Magic Item",
            is_public=is_public,
        )

    def modifiers_for(self, definition_ids: list[int], user_id: int | None) -> list[ModifierSpec]:
        """Active modifiers of the viewable definitions among ``definition_ids``."""
        if not definition_ids:
            return []
        definitions = self.db.query(CustomDefinition).filter(CustomDefinition.id.in_(definition_ids)).all()
        specs = []
        for definition in definitions:
            if user_id is not None and not definition.can_be_viewed_by(user_id):
                logger.warning(f"Skipping custom definition {definition.id}: not visible to user {user_id}")
                continue
            specs.extend(m.to_spec() for m in definition.modifiers if m.is_active is not False)
        return specs

    def calculate_stats_with_custom_items(
        self,
        character: Character | None,
        definition_ids: list[int],
        variant_rules: dict[str, Any] | None = None,
        user_id: int | None = None,
    ) -> Result:
        """Run the calculator with the modifiers of the given custom items.

        Returns:
            Result holding a CharacterCalculationResult
        """
        if character is None:
            return Result.failure(GeneralErrors.not_found("Character"))
        modifiers = self.modifiers_for(definition_ids, user_id)
        result: CharacterCalculationResult = self.calculator.calculate_with_modifiers(
            character.to_calculator_input(), modifiers, variant_rules
        )
        return Result.success(result)


@dataclass
class CreateCustomDefinition(Command):
    definition_type: str = "ITEM"
    name: str = ""
    description: str = ""
    modifiers: list[dict[str, Any]] = field(default_factory=list)
    level: int = 1
    rarity: str = "Common"
    traits: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    category: str | None = None
    json_data: dict[str, Any] = field(default_factory=dict)
    is_public: bool = False

    def validate(self) -> list[str]:
        errors = []
        try:
            _enum_member(CustomDefinitionType, self.definition_type)
        except (KeyError, ValueError):
            errors.append(f"Unknown definition type '{self.definition_type}'")
        return errors + validate_definition(
            self.name, self.description, self.modifiers, self.traits, self.tags, self.json_data
        )


@dataclass
class GetCustomDefinition(Query):
    requires_auth: ClassVar[bool] = False

    definition_id: int = 0


@dataclass
class SearchCustomDefinitions(Query):
    requires_auth: ClassVar[bool] = False

    search_term: str | None = None
    definition_type: str | None = None
    include_mine: bool = False
    limit: int = 50


@dataclass
class CreateMagicItem(Command):
    name: str = ""
    description: str = ""
    modifiers: list[dict[str, Any]] = field(default_factory=list)
    level: int = 1
    rarity: str = "Common"
    traits: list[str] = field(default_factory=list)
    is_public: bool = False


@dataclass
class UpdateCustomDefinition(Command):
    definition_id: int = 0
    name: str | None = None
    description: str | None = None
    json_data: dict[str, Any] | None = None
    is_public: bool | None = None


def create_custom_definition(db: Session, request: CreateCustomDefinition, current_user_id: int | None) -> Result:
    service = CustomBuildsService(db)
    result = service.create_definition(
        current_user_id,
        _enum_member(CustomDefinitionType, request.definition_type),
        request.name,
        request.description,
        modifiers=request.modifiers,
        level=request.level,
        rarity=request.rarity,
        traits=request.traits,
        tags=request.tags,
        category=request.category,
        json_data=request.json_data,
        is_public=request.is_public,
    )
    return Result.success(result.value.to_dict()) if result.is_success else result


def create_magic_item(db: Session, request: CreateMagicItem, current_user_id: int | None) -> Result:
    result = CustomBuildsService(db).create_magic_item(
        current_user_id,
        request.name,
        request.description,
        modifiers=request.modifiers,
        level=request.level,
        rarity=request.rarity,
        traits=request.traits,
        is_public=request.is_public,
    )
    return Result.success(result.value.to_dict()) if result.is_success else result


def get_custom_definition(db: Session, request: GetCustomDefinition, current_user_id: int | None) -> Result:
    result = CustomBuildsService(db).get_custom_definition(request.definition_id, current_user_id)
    return Result.success(result.value.to_dict()) if result.is_success else result


def search_custom_definitions(db: Session, request: SearchCustomDefinitions, current_user_id: int | None) -> Result:
    definition_type = None
    if request.definition_type:
        try:
            definition_type = _enum_member(CustomDefinitionType, request.definition_type)
        except (KeyError, ValueError):
            return Result.failure(GeneralErrors.validation_failed([f"Unknown definition type '{request.definition_type}'"]))
    result = CustomBuildsService(db).search_definitions(
        request.search_term,
        definition_type,
        public_only=not request.include_mine,
        user_id=current_user_id,
        limit=request.limit,
    )
    return Result.success([d.to_dict() for d in result.value])


def update_custom_definition(db: Session, request: UpdateCustomDefinition, current_user_id: int | None) -> Result:
    definition = db.get(CustomDefinition, request.definition_id)
    if definition is None:
        return Result.failure(GeneralErrors.not_found(f"Custom definition {request.definition_id}"))
    if not definition.can_be_edited_by(current_user_id):
        return Result.failure(GeneralErrors.access_denied("You do not own this definition"))
    if request.name is not None:
        errors = validate_definition(request.name, request.description or "")
        if errors:
            return Result.failure(GeneralErrors.validation_failed(errors))
    definition.update_content(request.name, request.description, request.json_data)
    if request.is_public is not None:
        definition.is_public = request.is_public
    return Result.success(definition.to_dict())


HANDLERS = {
    CreateCustomDefinition: create_custom_definition,
    CreateMagicItem: create_magic_item,
    GetCustomDefinition: get_custom_definition,
    SearchCustomDefinitions: search_custom_definitions,
    UpdateCustomDefinition: update_custom_definition,
}
