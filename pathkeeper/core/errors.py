"""Domain error catalogue.

Every failure that crosses a service boundary is described by a
:class:`DomainError` with a dotted code (``FAMILY.REASON``), a human readable
message and optional details. Entity methods raise :class:`DomainException`
for rule violations; the mediator turns those into failed results.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DomainError:
    """A coded domain failure."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: Exception) -> "DomainError":
        """Wrap an arbitrary exception."""
        return cls("DOMAIN.EXCEPTION", str(exc), {"exception": type(exc).__name__})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"code": self.code, "message": self.message, "details": dict(self.details)}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class DomainException(Exception):
    """Raised by entities when a business rule is violated."""

    def __init__(self, error: DomainError):
        super().__init__(error.message)
        self.error = error


class SessionErrors:
    NOT_FOUND = "SESSION.NOT_FOUND"
    ALREADY_EXISTS = "SESSION.ALREADY_EXISTS"
    USER_ALREADY_MEMBER = "SESSION.USER_ALREADY_MEMBER"
    CANNOT_REMOVE_DM = "SESSION.CANNOT_REMOVE_DM"
    INACTIVE = "SESSION.INACTIVE"
    INVALID_CODE = "SESSION.INVALID_CODE"
    ACCESS_DENIED = "SESSION.ACCESS_DENIED"

    @staticmethod
    def not_found(session_ref: Any) -> DomainError:
        return DomainError(SessionErrors.NOT_FOUND, f"Session '{session_ref}' was not found")

    @staticmethod
    def user_already_member(user_id: int) -> DomainError:
        return DomainError(
            SessionErrors.USER_ALREADY_MEMBER,
            "User is already a member of this session",
            {"user_id": user_id},
        )

    @staticmethod
    def cannot_remove_dm() -> DomainError:
        return DomainError(SessionErrors.CANNOT_REMOVE_DM, "The DM cannot be removed from the session")

    @staticmethod
    def inactive() -> DomainError:
        return DomainError(SessionErrors.INACTIVE, "This session is no longer active")

    @staticmethod
    def invalid_code(code: str) -> DomainError:
        return DomainError(
            SessionErrors.INVALID_CODE,
            "Session code must be exactly 6 characters",
            {"code": code},
        )

    @staticmethod
    def access_denied() -> DomainError:
        return DomainError(SessionErrors.ACCESS_DENIED, "You do not have access to this session")


class CharacterErrors:
    NOT_FOUND = "CHARACTER.NOT_FOUND"
    ALREADY_ASSIGNED = "CHARACTER.ALREADY_ASSIGNED"
    NOT_OWNER = "CHARACTER.NOT_OWNER"
    INVALID_LEVEL = "CHARACTER.INVALID_LEVEL"
    ACCESS_DENIED = "CHARACTER.ACCESS_DENIED"
    VALIDATION_FAILED = "CHARACTER.VALIDATION_FAILED"

    @staticmethod
    def not_found(character_id: int) -> DomainError:
        return DomainError(CharacterErrors.NOT_FOUND, f"Character {character_id} was not found")

    @staticmethod
    def already_assigned() -> DomainError:
        return DomainError(CharacterErrors.ALREADY_ASSIGNED, "Character is already assigned to a session")

    @staticmethod
    def not_owner() -> DomainError:
        return DomainError(CharacterErrors.NOT_OWNER, "You do not own this character")

    @staticmethod
    def invalid_level(level: int) -> DomainError:
        return DomainError(
            CharacterErrors.INVALID_LEVEL, "Level must be between 1 and 20", {"level": level}
        )

    @staticmethod
    def access_denied() -> DomainError:
        return DomainError(CharacterErrors.ACCESS_DENIED, "You do not have access to this character")


class EncounterErrors:
    NOT_FOUND = "ENCOUNTER.NOT_FOUND"
    ALREADY_ACTIVE = "ENCOUNTER.ALREADY_ACTIVE"
    NOT_ACTIVE = "ENCOUNTER.NOT_ACTIVE"
    COMPLETED = "ENCOUNTER.COMPLETED"
    NO_COMBATANTS = "ENCOUNTER.NO_COMBATANTS"
    COMBATANT_NOT_FOUND = "ENCOUNTER.COMBATANT_NOT_FOUND"
    ACCESS_DENIED = "ENCOUNTER.ACCESS_DENIED"

    @staticmethod
    def not_found(encounter_id: int) -> DomainError:
        return DomainError(EncounterErrors.NOT_FOUND, f"Encounter {encounter_id} was not found")

    @staticmethod
    def already_active() -> DomainError:
        return DomainError(EncounterErrors.ALREADY_ACTIVE, "Encounter is already active")

    @staticmethod
    def not_active() -> DomainError:
        return DomainError(EncounterErrors.NOT_ACTIVE, "Encounter is not active")

    @staticmethod
    def completed() -> DomainError:
        return DomainError(EncounterErrors.COMPLETED, "Encounter has already been completed")

    @staticmethod
    def no_combatants() -> DomainError:
        return DomainError(EncounterErrors.NO_COMBATANTS, "Cannot start an encounter without combatants")

    @staticmethod
    def combatant_not_found(combatant_id: str) -> DomainError:
        return DomainError(
            EncounterErrors.COMBATANT_NOT_FOUND,
            f"Combatant '{combatant_id}' was not found",
            {"combatant_id": combatant_id},
        )

    @staticmethod
    def access_denied() -> DomainError:
        return DomainError(EncounterErrors.ACCESS_DENIED, "You do not have access to this encounter")


class UserErrors:
    NOT_FOUND = "USER.NOT_FOUND"
    EMAIL_ALREADY_EXISTS = "USER.EMAIL_ALREADY_EXISTS"
    USERNAME_ALREADY_EXISTS = "USER.USERNAME_ALREADY_EXISTS"
    INACTIVE = "USER.INACTIVE"
    INSUFFICIENT_PERMISSIONS = "USER.INSUFFICIENT_PERMISSIONS"
    INVALID_CREDENTIALS = "USER.INVALID_CREDENTIALS"

    @staticmethod
    def not_found(user_id: int) -> DomainError:
        return DomainError(UserErrors.NOT_FOUND, f"User {user_id} was not found")

    @staticmethod
    def email_already_exists(email: str) -> DomainError:
        return DomainError(UserErrors.EMAIL_ALREADY_EXISTS, f"Email '{email}' is already registered")

    @staticmethod
    def username_already_exists(username: str) -> DomainError:
        return DomainError(UserErrors.USERNAME_ALREADY_EXISTS, f"Username '{username}' is already taken")

    @staticmethod
    def inactive() -> DomainError:
        return DomainError(UserErrors.INACTIVE, "User account is inactive")

    @staticmethod
    def insufficient_permissions() -> DomainError:
        return DomainError(UserErrors.INSUFFICIENT_PERMISSIONS, "Insufficient permissions")


class RulesErrors:
    NOT_FOUND = "RULES.NOT_FOUND"
    INVALID_RULE = "RULES.INVALID_RULE"
    VALIDATION_FAILED = "RULES.VALIDATION_FAILED"
    MODULE_CONFLICT = "RULES.MODULE_CONFLICT"
    MODULE_FAILED = "RULES.MODULE_FAILED"
    UNKNOWN_VARIANT = "RULES.UNKNOWN_VARIANT"
    CALCULATION_FAILED = "RULES.CALCULATION_FAILED"

    @staticmethod
    def not_found(name: str) -> DomainError:
        return DomainError(RulesErrors.NOT_FOUND, f"Rule '{name}' was not found")

    @staticmethod
    def unknown_variant(name: str) -> DomainError:
        return DomainError(RulesErrors.UNKNOWN_VARIANT, f"Unknown variant rule '{name}'")


class GeneralErrors:
    VALIDATION_FAILED = "VALIDATION.FAILED"
    NOT_FOUND = "GENERAL.NOT_FOUND"
    ACCESS_DENIED = "GENERAL.ACCESS_DENIED"
    CONCURRENCY_CONFLICT = "GENERAL.CONCURRENCY_CONFLICT"
    INVALID_OPERATION = "GENERAL.INVALID_OPERATION"
    INTERNAL_ERROR = "GENERAL.INTERNAL_ERROR"

    @staticmethod
    def validation_failed(messages: list[str]) -> DomainError:
        return DomainError(GeneralErrors.VALIDATION_FAILED, "; ".join(messages), {"errors": list(messages)})

    @staticmethod
    def not_found(what: str) -> DomainError:
        return DomainError(GeneralErrors.NOT_FOUND, f"{what} was not found")

    @staticmethod
    def access_denied(message: str = "Access denied") -> DomainError:
        return DomainError(GeneralErrors.ACCESS_DENIED, message)

    @staticmethod
    def invalid_operation(message: str) -> DomainError:
        return DomainError(GeneralErrors.INVALID_OPERATION, message)

    @staticmethod
    def internal_error(message: str = "An unexpected error occurred") -> DomainError:
        return DomainError(GeneralErrors.INTERNAL_ERROR, message)


class AuthorizationErrors:
    UNAUTHORIZED = "AUTHORIZATION.UNAUTHORIZED"
    FORBIDDEN = "AUTHORIZATION.FORBIDDEN"
    INVALID_TOKEN = "AUTHORIZATION.INVALID_TOKEN"
    TOKEN_EXPIRED = "AUTHORIZATION.TOKEN_EXPIRED"
    INSUFFICIENT_ROLE = "AUTHORIZATION.INSUFFICIENT_ROLE"

    @staticmethod
    def unauthorized() -> DomainError:
        return DomainError(AuthorizationErrors.UNAUTHORIZED, "Authentication is required")

    @staticmethod
    def forbidden(message: str = "You are not allowed to perform this action") -> DomainError:
        return DomainError(AuthorizationErrors.FORBIDDEN, message)

    @staticmethod
    def insufficient_role(required: str) -> DomainError:
        return DomainError(
            AuthorizationErrors.INSUFFICIENT_ROLE,
            f"Role '{required}' is required",
            {"required_role": required},
        )


def http_status_for(error: DomainError) -> int:
    """Map a domain error code onto an HTTP status code."""
    code = error.code
    if code.endswith("NOT_FOUND"):
        return 404
    if code == AuthorizationErrors.UNAUTHORIZED:
        return 401
    if (
        code.endswith("ACCESS_DENIED")
        or code.endswith("NOT_OWNER")
        or code in (AuthorizationErrors.FORBIDDEN, AuthorizationErrors.INSUFFICIENT_ROLE)
        or code == UserErrors.INSUFFICIENT_PERMISSIONS
    ):
        return 403
    if code == GeneralErrors.CONCURRENCY_CONFLICT:
        return 409
    return 400
