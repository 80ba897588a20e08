"""Character note commands and queries."""

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..core.errors import CharacterErrors, DomainError, DomainException, GeneralErrors
from ..core.result import Result
from ..database.models import Character, CharacterNote, NoteVisibility
from .characters import can_view_character
from .mediator import Command, Query

NOTE_NOT_FOUND = "NOTE.NOT_FOUND"
NOTE_ACCESS_DENIED = "NOTE.ACCESS_DENIED"
VISIBILITIES = {v.value for v in NoteVisibility}


def _note_not_found(note_id: int) -> DomainError:
    return DomainError(NOTE_NOT_FOUND, f"Note {note_id} was not found")


def _note_access_denied() -> DomainError:
    return DomainError(NOTE_ACCESS_DENIED, "You do not have access to this note")


def _is_dm(character: Character, user_id: int | None) -> bool:
    return character.session is not None and character.session.dm_user_id == user_id


def _validate_note(title: str | None, content: str | None) -> list[str]:
    errors = []
    if title is not None:
        if not title.strip():
            errors.append("Title is required")
        elif len(title) > 200:
            errors.append("Title must be 200 characters or less")
    if content is not None and len(content) > 10000:
        errors.append("Content must be 10000 characters or less")
    return errors


@dataclass
class CreateNote(Command):
    character_id: int = 0
    title: str = ""
    content: str = ""
    visibility: str = NoteVisibility.PRIVATE.value
    tags: list[str] = field(default_factory=list)

    def validate(self) -> list[str]:
        errors = _validate_note(self.title, self.content)
        if self.visibility not in VISIBILITIES:
            errors.append(f"Unknown visibility '{self.visibility}'")
        return errors


@dataclass
class UpdateNote(Command):
    note_id: int = 0
    title: str = ""
    content: str = ""
    tags: list[str] | None = None

    def validate(self) -> list[str]:
        return _validate_note(self.title, self.content)


@dataclass
class ChangeNoteVisibility(Command):
    note_id: int = 0
    visibility: str = NoteVisibility.PRIVATE.value

    def validate(self) -> list[str]:
        return [] if self.visibility in VISIBILITIES else [f"Unknown visibility '{self.visibility}'"]


@dataclass
class UpdateNoteAppearance(Command):
    note_id: int = 0
    color: str | None = None
    is_pinned: bool | None = None
    sort_order: int | None = None


@dataclass
class DeleteNote(Command):
    note_id: int = 0


@dataclass
class GetNoteById(Query):
    note_id: int = 0


@dataclass
class GetNotes(Query):
    character_id: int = 0


def _load_note(db: Session, note_id: int) -> CharacterNote:
    note = db.get(CharacterNote, note_id)
    if note is None:
        raise DomainException(_note_not_found(note_id))
    return note


def _editable_note(db: Session, note_id: int, user_id: int | None) -> CharacterNote:
    note = _load_note(db, note_id)
    if not note.can_be_edited_by(user_id, _is_dm(note.character, user_id)):
        raise DomainException(_note_access_denied())
    return note


def create_note(db: Session, request: CreateNote, current_user_id: int | None) -> Result:
    character = db.get(Character, request.character_id)
    if character is None:
        return Result.failure(CharacterErrors.not_found(request.character_id))
    if not (can_view_character(character, current_user_id) or _is_dm(character, current_user_id)):
        return Result.failure(CharacterErrors.access_denied())

    note = CharacterNote(
        character_id=character.id,
        author_id=current_user_id,
        title=request.title.strip(),
        content=request.content,
        visibility=NoteVisibility(request.visibility),
        tags=list(request.tags),
        color="#fef3c7",
        sort_order=0,
        is_pinned=False,
    )
    db.add(note)
    db.flush()
    return Result.success(note.to_dict())


def update_note(db: Session, request: UpdateNote, current_user_id: int | None) -> Result:
    note = _editable_note(db, request.note_id, current_user_id)
    note.update_content(request.title.strip(), request.content, request.tags)
    return Result.success(note.to_dict())


def change_note_visibility(db: Session, request: ChangeNoteVisibility, current_user_id: int | None) -> Result:
    note = _load_note(db, request.note_id)
    if note.author_id != current_user_id:
        return Result.failure(GeneralErrors.access_denied("Only the author can change note visibility"))
    note.change_visibility(NoteVisibility(request.visibility))
    return Result.success(note.to_dict())


def update_note_appearance(db: Session, request: UpdateNoteAppearance, current_user_id: int | None) -> Result:
    note = _editable_note(db, request.note_id, current_user_id)
    note.update_appearance(request.color, request.is_pinned, request.sort_order)
    return Result.success(note.to_dict())


def delete_note(db: Session, request: DeleteNote, current_user_id: int | None) -> Result:
    note = _editable_note(db, request.note_id, current_user_id)
    db.delete(note)
    return Result.success({"deleted": request.note_id})


def get_note_by_id(db: Session, request: GetNoteById, current_user_id: int | None) -> Result:
    note = _load_note(db, request.note_id)
    character = note.character
    if not note.can_be_viewed_by(
        current_user_id, _is_dm(character, current_user_id), character.is_owned_by(current_user_id)
    ):
        return Result.failure(_note_access_denied())
    return Result.success(note.to_dict())


def get_notes(db: Session, request: GetNotes, current_user_id: int | None) -> Result:
    """Visible notes of a character, pinned first then by sort order."""
    character = db.get(Character, request.character_id)
    if character is None:
        return Result.failure(CharacterErrors.not_found(request.character_id))

    is_dm = _is_dm(character, current_user_id)
    is_owner = character.is_owned_by(current_user_id)
    visible = [n for n in character.character_notes if n.can_be_viewed_by(current_user_id, is_dm, is_owner)]
    visible.sort(key=lambda n: (not n.is_pinned, n.sort_order or 0, n.id))
    return Result.success([n.to_dict() for n in visible])


HANDLERS = {
    CreateNote: create_note,
    UpdateNote: update_note,
    ChangeNoteVisibility: change_note_visibility,
    UpdateNoteAppearance: update_note_appearance,
    DeleteNote: delete_note,
    GetNoteById: get_note_by_id,
    GetNotes: get_notes,
}
