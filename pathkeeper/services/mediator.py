"""In-process command/query dispatcher.

Every request passes through the same pipeline before its handler runs:
validation, then authorization, then a unit of work around the handler.
Commands commit when the handler returns a successful Result; failed results
and exceptions roll the transaction back. Queries never commit.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar

from sqlalchemy.orm import Session

from ..core.errors import AuthorizationErrors, DomainException, GeneralErrors
from ..core.result import Result
from ..database.session import get_session

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any, int | None], Result]


@dataclass
class Request:
    """Base for all requests."""

    requires_auth: ClassVar[bool] = True

    def validate(self) -> list[str]:
        """Return validation messages; empty when the request is valid."""
        return []


@dataclass
class Command(Request):
    """A request that changes state."""


@dataclass
class Query(Request):
    """A request that only reads state."""


class Mediator:
    """Routes requests to their registered handlers."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._handlers: dict[type, Handler] = {}
        self._session_factory = session_factory or get_session

    def register(self, request_type: type, handler: Handler) -> None:
        self._handlers[request_type] = handler

    def register_all(self, handlers: dict[type, Handler]) -> None:
        for request_type, handler in handlers.items():
            self.register(request_type, handler)

    def send(self, request: Request, current_user_id: int | None = None) -> Result:
        """Dispatch a request through the pipeline.

        Args:
            request: Command or query instance
            current_user_id: Id of the calling user, if any

        Returns:
            The handler's Result, or a failure from validation or authorization

        Raises:
            LookupError: If no handler is registered for the request type
        """
        name = type(request).__name__
        handler = self._handlers.get(type(request))
        if handler is None:
            raise LookupError(f"No handler registered for {name}")

        errors = request.validate()
        if errors:
            logger.info(f"{name} failed validation: {'; '.join(errors)}")
            return Result.failure(GeneralErrors.validation_failed(errors))

        if request.requires_auth and current_user_id is None:
            return Result.failure(AuthorizationErrors.unauthorized())

        db = self._session_factory()
        try:
            result = handler(db, request, current_user_id)
            if isinstance(request, Command) and result.is_success:
                db.commit()
            else:
                db.rollback()
            if result.is_failure:
                logger.info(f"{name} failed: {result.error}")
            return result
        except DomainException as e:
            db.rollback()
            logger.info(f"{name} rejected: {e.error}")
            return Result.failure(e.error)
        except Exception:
            db.rollback()
            logger.exception(f"{name} raised an unexpected error")
            raise
        finally:
            db.close()
