"""FastAPI server: REST endpoints plus campaign and combat websockets."""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..config import get_config
from ..core.errors import AuthorizationErrors, http_status_for
from ..database.models import Campaign, Encounter, RuleEntry
from ..database.session import init_db, session_scope
from ..game.combat import Combatant, CombatantType
from ..rules.variants import RuleModuleRegistry
from ..search import ContentType, OmniSearchService, SearchQuery, SearchSortOrder
from ..services import build_mediator
from ..services.campaigns import (
    CreateCampaign,
    GetCampaign,
    JoinCampaign,
    ListMyCampaigns,
    RegenerateJoinToken,
    UpdateVariantRules,
)
from ..services.characters import (
    CalculateCharacter,
    CreateCharacter,
    DeleteCharacter,
    GetCharacter,
    ListMyCharacters,
    UpdateCharacter,
    UpdateCharacterLevel,
)
from ..services.chat import GetChatHistory, RollDice, SendChatMessage, SendSystemMessage
from ..services.custom_builds import (
    CreateCustomDefinition,
    CreateMagicItem,
    GetCustomDefinition,
    SearchCustomDefinitions,
    UpdateCustomDefinition,
)
from ..services.encounters import (
    AddCombatant,
    ApplyDamage,
    CreateEncounter,
    EndEncounter,
    GetActiveEncounters,
    GetEncounterById,
    GetEncountersBySession,
    NextTurn,
    RemoveCombatant,
    StartEncounter,
)
from ..services.mediator import Request
from ..services.notes import (
    ChangeNoteVisibility,
    CreateNote,
    DeleteNote,
    GetNoteById,
    GetNotes,
    UpdateNote,
    UpdateNoteAppearance,
)
from ..services.npcs import (
    AssignNpcToSession,
    CreateNpcMonster,
    DeleteNpcMonster,
    GetNpcMonsterById,
    GetNpcMonsterLibrary,
    GetNpcMonstersByOwner,
    GetNpcMonstersBySession,
    UpdateNpcMonster,
)
from ..services.sessions import AddCharacterToSession, CreateSession, GetSession, JoinSession, LeaveSession
from ..services.users import CreateUser, GetUser
from ..sync import RulesSyncService, SyncResult
from .hubs import CampaignHub, CombatHub

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def combatant_from_encounter(entry: dict[str, Any]) -> Combatant:
    """Live combatant for a stored encounter combatant."""
    stored_type = entry.get("type")
    if stored_type == "PC":
        combatant_type = CombatantType.PLAYER
    elif stored_type == "NPC":
        combatant_type = CombatantType.NEUTRAL
    else:
        combatant_type = CombatantType.ENEMY
    ref_id = entry.get("ref_id")
    return Combatant(
        id=str(entry["id"]),
        name=entry.get("name", "Unknown"),
        combatant_type=combatant_type,
        initiative=int(entry.get("initiative", 0)),
        max_hp=int(entry.get("max_hp", 1)),
        current_hp=int(entry.get("current_hp", entry.get("max_hp", 1))),
        conditions={str(c): 0 for c in entry.get("conditions") or []},
        character_id=ref_id if combatant_type == CombatantType.PLAYER else None,
        npc_id=ref_id if combatant_type != CombatantType.PLAYER else None,
    )


def load_encounter_combatants(encounter_id: str) -> list[Combatant] | None:
    if not encounter_id.isdigit():
        return None
    with session_scope() as db:
        encounter = db.get(Encounter, int(encounter_id))
        if encounter is None:
            return None
        return [combatant_from_encounter(c) for c in encounter.combatants or []]


# Global state
mediator = build_mediator()
rule_registry = RuleModuleRegistry()
search_service = OmniSearchService()
sync_service = RulesSyncService()
campaign_hub = CampaignHub()
combat_hub = CombatHub(loader=load_encounter_combatants)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    init_db()
    logger.info("Database initialized")

    with session_scope() as db:
        search_service.rebuild_index(db)

    yield

    sync_service.downloader.close()
    logger.info("Shutting down...")


app = FastAPI(
    title="Pathkeeper",
    description="Pathfinder 2e campaign manager",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -- identity and dispatch ---------------------------------------------------


def current_user(x_user_id: int | None = Header(default=None)) -> int | None:
    """Caller identity from the X-User-Id header."""
    return x_user_id


def require_user(user_id: int | None = Depends(current_user)) -> int:
    if user_id is None:
        error = AuthorizationErrors.unauthorized()
        raise HTTPException(status_code=401, detail=error.to_dict())
    return user_id


def dispatch(request: Request, user_id: int | None) -> Any:
    """Send a request through the mediator and unwrap its result.

    Raises:
        HTTPException: With the status mapped from the domain error
    """
    result = mediator.send(request, user_id)
    if result.is_failure:
        raise HTTPException(status_code=http_status_for(result.error), detail=result.error.to_dict())
    return result.value


# -- request bodies ----------------------------------------------------------


class UserCreate(BaseModel):
    email: str
    username: str
    display_name: str | None = None
    role: str = "player"


class SessionCreate(BaseModel):
    name: str
    description: str | None = None


class SessionJoin(BaseModel):
    code: str
    alias: str | None = None


class SessionCharacter(BaseModel):
    character_id: int


class CampaignCreate(BaseModel):
    name: str
    description: str | None = None
    variant_rules: dict[str, Any] = Field(default_factory=dict)


class CampaignJoin(BaseModel):
    token: str
    alias: str = ""


class VariantRulesUpdate(BaseModel):
    variant_rules: dict[str, Any] = Field(default_factory=dict)


class ChatSend(BaseModel):
    content: str
    message_type: str = "GENERAL"
    character_id: int | None = None


class SystemMessage(BaseModel):
    content: str


class DiceRollRequest(BaseModel):
    notation: str = "1d20"
    reason: str | None = None
    is_private: bool = False
    character_id: int | None = None


class CharacterCreate(BaseModel):
    name: str
    level: int = 1
    class_name: str | None = None
    ancestry: str | None = None
    background: str | None = None
    ability_scores: dict[str, int] = Field(default_factory=dict)
    visibility: str = "Private"
    build: dict[str, Any] = Field(default_factory=dict)


class CharacterUpdate(BaseModel):
    name: str | None = None
    class_name: str | None = None
    ancestry: str | None = None
    background: str | None = None
    ability_scores: dict[str, int] | None = None
    build: dict[str, Any] | None = None
    custom_item_ids: list[int] | None = None
    notes: str | None = None
    visibility: str | None = None


class LevelUpdate(BaseModel):
    level: int


class CalculateRequest(BaseModel):
    variant_rules: dict[str, Any] = Field(default_factory=dict)
    custom_item_ids: list[int] | None = None


class NoteCreate(BaseModel):
    title: str
    content: str = ""
    visibility: str = "Private"
    tags: list[str] = Field(default_factory=list)


class NoteUpdate(BaseModel):
    title: str
    content: str = ""
    tags: list[str] | None = None


class NoteVisibilityUpdate(BaseModel):
    visibility: str


class NoteAppearanceUpdate(BaseModel):
    color: str | None = None
    is_pinned: bool | None = None
    sort_order: int | None = None


class EncounterCreate(BaseModel):
    session_id: int
    name: str
    description: str | None = None


class CombatantCreate(BaseModel):
    combatant_type: str = "Monster"
    name: str = ""
    initiative: int = 0
    ref_id: int | None = None
    max_hp: int | None = None


class DamageRequest(BaseModel):
    amount: int
    heal: bool = False


class NpcAssign(BaseModel):
    session_id: int | None = None


class CustomDefinitionCreate(BaseModel):
    definition_type: str = "ITEM"
    name: str
    description: str = ""
    modifiers: list[dict[str, Any]] = Field(default_factory=list)
    level: int = 1
    rarity: str = "Common"
    traits: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    json_data: dict[str, Any] = Field(default_factory=dict)
    is_public: bool = False


class MagicItemCreate(BaseModel):
    name: str
    description: str = ""
    modifiers: list[dict[str, Any]] = Field(default_factory=list)
    level: int = 1
    rarity: str = "Common"
    traits: list[str] = Field(default_factory=list)
    is_public: bool = False


class CustomDefinitionUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    json_data: dict[str, Any] | None = None
    is_public: bool | None = None


class UrlSyncRequest(BaseModel):
    url: str
    content_type: str | None = None


# -- health ------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


# -- users -------------------------------------------------------------------


@app.post("/api/users", status_code=201)
async def create_user(body: UserCreate):
    return dispatch(CreateUser(**body.model_dump()), None)


@app.get("/api/users/{user_id}")
async def get_user(user_id: int, user: int = Depends(require_user)):
    return dispatch(GetUser(user_id=user_id), user)


# -- sessions ----------------------------------------------------------------


@app.post("/api/sessions", status_code=201)
async def create_session(body: SessionCreate, user: int | None = Depends(current_user)):
    return dispatch(CreateSession(**body.model_dump()), user)


@app.post("/api/sessions/join")
async def join_session(body: SessionJoin, user: int | None = Depends(current_user)):
    return dispatch(JoinSession(**body.model_dump()), user)


@app.get("/api/sessions/code/{code}")
async def get_session_by_code(code: str, user: int | None = Depends(current_user)):
    return dispatch(GetSession(code=code), user)


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetSession(session_id=session_id), user)


@app.post("/api/sessions/{session_id}/leave")
async def leave_session(session_id: int, user: int | None = Depends(current_user)):
    return dispatch(LeaveSession(session_id=session_id), user)


@app.post("/api/sessions/{session_id}/characters")
async def add_character_to_session(session_id: int, body: SessionCharacter, user: int | None = Depends(current_user)):
    return dispatch(AddCharacterToSession(session_id=session_id, character_id=body.character_id), user)


@app.get("/api/sessions/{session_id}/encounters")
async def get_session_encounters(session_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetEncountersBySession(session_id=session_id), user)


@app.get("/api/sessions/{session_id}/npcs")
async def get_session_npcs(session_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetNpcMonstersBySession(session_id=session_id), user)


# -- campaigns ---------------------------------------------------------------


@app.post("/api/campaigns", status_code=201)
async def create_campaign(body: CampaignCreate, user: int | None = Depends(current_user)):
    return dispatch(CreateCampaign(**body.model_dump()), user)


@app.get("/api/campaigns")
async def list_campaigns(user: int | None = Depends(current_user)):
    return dispatch(ListMyCampaigns(), user)


@app.post("/api/campaigns/join")
async def join_campaign(body: CampaignJoin, user: int | None = Depends(current_user)):
    return dispatch(JoinCampaign(**body.model_dump()), user)


@app.get("/api/campaigns/{campaign_id}")
async def get_campaign(campaign_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetCampaign(campaign_id=campaign_id), user)


@app.post("/api/campaigns/{campaign_id}/token")
async def regenerate_join_token(campaign_id: int, user: int | None = Depends(current_user)):
    return dispatch(RegenerateJoinToken(campaign_id=campaign_id), user)


@app.put("/api/campaigns/{campaign_id}/variant-rules")
async def update_variant_rules(campaign_id: int, body: VariantRulesUpdate, user: int | None = Depends(current_user)):
    return dispatch(UpdateVariantRules(campaign_id=campaign_id, variant_rules=body.variant_rules), user)


@app.get("/api/campaigns/{campaign_id}/chat")
async def get_chat_history(
    campaign_id: int,
    limit: int = 50,
    before_id: int | None = None,
    user: int | None = Depends(current_user),
):
    return dispatch(GetChatHistory(campaign_id=campaign_id, limit=limit, before_id=before_id), user)


@app.post("/api/campaigns/{campaign_id}/chat", status_code=201)
async def send_chat_message(campaign_id: int, body: ChatSend, user: int | None = Depends(current_user)):
    return dispatch(SendChatMessage(campaign_id=campaign_id, **body.model_dump()), user)


@app.post("/api/campaigns/{campaign_id}/chat/system", status_code=201)
async def send_system_message(campaign_id: int, body: SystemMessage, user: int | None = Depends(current_user)):
    return dispatch(SendSystemMessage(campaign_id=campaign_id, content=body.content), user)


@app.post("/api/campaigns/{campaign_id}/roll", status_code=201)
async def roll_dice(campaign_id: int, body: DiceRollRequest, user: int | None = Depends(current_user)):
    return dispatch(RollDice(campaign_id=campaign_id, **body.model_dump()), user)


# -- characters --------------------------------------------------------------


@app.post("/api/characters", status_code=201)
async def create_character(body: CharacterCreate, user: int | None = Depends(current_user)):
    return dispatch(CreateCharacter(**body.model_dump()), user)


@app.get("/api/characters")
async def list_characters(user: int | None = Depends(current_user)):
    return dispatch(ListMyCharacters(), user)


@app.get("/api/characters/{character_id}")
async def get_character(character_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetCharacter(character_id=character_id), user)


@app.put("/api/characters/{character_id}")
async def update_character(character_id: int, body: CharacterUpdate, user: int | None = Depends(current_user)):
    return dispatch(UpdateCharacter(character_id=character_id, **body.model_dump()), user)


@app.put("/api/characters/{character_id}/level")
async def update_character_level(character_id: int, body: LevelUpdate, user: int | None = Depends(current_user)):
    return dispatch(UpdateCharacterLevel(character_id=character_id, level=body.level), user)


@app.delete("/api/characters/{character_id}")
async def delete_character(character_id: int, user: int | None = Depends(current_user)):
    return dispatch(DeleteCharacter(character_id=character_id), user)


@app.post("/api/characters/{character_id}/calculate")
async def calculate_character(character_id: int, body: CalculateRequest, user: int | None = Depends(current_user)):
    return dispatch(CalculateCharacter(character_id=character_id, **body.model_dump()), user)


@app.get("/api/characters/{character_id}/notes")
async def get_notes(character_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetNotes(character_id=character_id), user)


@app.post("/api/characters/{character_id}/notes", status_code=201)
async def create_note(character_id: int, body: NoteCreate, user: int | None = Depends(current_user)):
    return dispatch(CreateNote(character_id=character_id, **body.model_dump()), user)


@app.get("/api/notes/{note_id}")
async def get_note(note_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetNoteById(note_id=note_id), user)


@app.put("/api/notes/{note_id}")
async def update_note(note_id: int, body: NoteUpdate, user: int | None = Depends(current_user)):
    return dispatch(UpdateNote(note_id=note_id, **body.model_dump()), user)


@app.put("/api/notes/{note_id}/visibility")
async def change_note_visibility(note_id: int, body: NoteVisibilityUpdate, user: int | None = Depends(current_user)):
    return dispatch(ChangeNoteVisibility(note_id=note_id, visibility=body.visibility), user)


@app.put("/api/notes/{note_id}/appearance")
async def update_note_appearance(note_id: int, body: NoteAppearanceUpdate, user: int | None = Depends(current_user)):
    return dispatch(UpdateNoteAppearance(note_id=note_id, **body.model_dump()), user)


@app.delete("/api/notes/{note_id}")
async def delete_note(note_id: int, user: int | None = Depends(current_user)):
    return dispatch(DeleteNote(note_id=note_id), user)


# -- encounters --------------------------------------------------------------


@app.post("/api/encounters", status_code=201)
async def create_encounter(body: EncounterCreate, user: int | None = Depends(current_user)):
    return dispatch(CreateEncounter(**body.model_dump()), user)


@app.get("/api/encounters/active")
async def get_active_encounters(user: int | None = Depends(current_user)):
    return dispatch(GetActiveEncounters(), user)


@app.get("/api/encounters/{encounter_id}")
async def get_encounter(encounter_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetEncounterById(encounter_id=encounter_id), user)


@app.post("/api/encounters/{encounter_id}/combatants", status_code=201)
async def add_combatant(encounter_id: int, body: CombatantCreate, user: int | None = Depends(current_user)):
    return dispatch(AddCombatant(encounter_id=encounter_id, **body.model_dump()), user)


@app.delete("/api/encounters/{encounter_id}/combatants/{combatant_id}")
async def remove_combatant(encounter_id: int, combatant_id: str, user: int | None = Depends(current_user)):
    return dispatch(RemoveCombatant(encounter_id=encounter_id, combatant_id=combatant_id), user)


@app.post("/api/encounters/{encounter_id}/combatants/{combatant_id}/damage")
async def apply_damage(
    encounter_id: int, combatant_id: str, body: DamageRequest, user: int | None = Depends(current_user)
):
    return dispatch(
        ApplyDamage(encounter_id=encounter_id, combatant_id=combatant_id, amount=body.amount, heal=body.heal), user
    )


@app.post("/api/encounters/{encounter_id}/start")
async def start_encounter(encounter_id: int, user: int | None = Depends(current_user)):
    return dispatch(StartEncounter(encounter_id=encounter_id), user)


@app.post("/api/encounters/{encounter_id}/next-turn")
async def next_turn(encounter_id: int, user: int | None = Depends(current_user)):
    return dispatch(NextTurn(encounter_id=encounter_id), user)


@app.post("/api/encounters/{encounter_id}/end")
async def end_encounter(encounter_id: int, user: int | None = Depends(current_user)):
    return dispatch(EndEncounter(encounter_id=encounter_id), user)


# -- npcs and monsters -------------------------------------------------------


@app.post("/api/npcs", status_code=201)
async def create_npc(body: dict[str, Any], user: int | None = Depends(current_user)):
    return dispatch(CreateNpcMonster(data=body), user)


@app.get("/api/npcs")
async def list_my_npcs(user: int | None = Depends(current_user)):
    return dispatch(GetNpcMonstersByOwner(), user)


@app.get("/api/npcs/library")
async def npc_library(
    monster_type: str | None = None,
    min_level: int | None = None,
    max_level: int | None = None,
    search: str | None = None,
):
    return dispatch(
        GetNpcMonsterLibrary(monster_type=monster_type, min_level=min_level, max_level=max_level, search=search),
        None,
    )


@app.get("/api/npcs/{npc_id}")
async def get_npc(npc_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetNpcMonsterById(npc_id=npc_id), user)


@app.put("/api/npcs/{npc_id}")
async def update_npc(npc_id: int, body: dict[str, Any], user: int | None = Depends(current_user)):
    return dispatch(UpdateNpcMonster(npc_id=npc_id, data=body), user)


@app.delete("/api/npcs/{npc_id}")
async def delete_npc(npc_id: int, user: int | None = Depends(current_user)):
    return dispatch(DeleteNpcMonster(npc_id=npc_id), user)


@app.put("/api/npcs/{npc_id}/session")
async def assign_npc(npc_id: int, body: NpcAssign, user: int | None = Depends(current_user)):
    return dispatch(AssignNpcToSession(npc_id=npc_id, session_id=body.session_id), user)


# -- custom content ----------------------------------------------------------


@app.post("/api/custom-definitions", status_code=201)
async def create_custom_definition(body: CustomDefinitionCreate, user: int | None = Depends(current_user)):
    definition = dispatch(CreateCustomDefinition(**body.model_dump()), user)
    _index_custom_definition(definition["id"])
    return definition


@app.post("/api/custom-definitions/magic-items", status_code=201)
async def create_magic_item(body: MagicItemCreate, user: int | None = Depends(current_user)):
    definition = dispatch(CreateMagicItem(**body.model_dump()), user)
    _index_custom_definition(definition["id"])
    return definition


@app.get("/api/custom-definitions")
async def search_custom_definitions(
    search_term: str | None = None,
    definition_type: str | None = None,
    include_mine: bool = False,
    limit: int = 50,
    user: int | None = Depends(current_user),
):
    return dispatch(
        SearchCustomDefinitions(
            search_term=search_term, definition_type=definition_type, include_mine=include_mine, limit=limit
        ),
        user,
    )


@app.get("/api/custom-definitions/{definition_id}")
async def get_custom_definition(definition_id: int, user: int | None = Depends(current_user)):
    return dispatch(GetCustomDefinition(definition_id=definition_id), user)


@app.put("/api/custom-definitions/{definition_id}")
async def update_custom_definition(
    definition_id: int, body: CustomDefinitionUpdate, user: int | None = Depends(current_user)
):
    definition = dispatch(UpdateCustomDefinition(definition_id=definition_id, **body.model_dump()), user)
    _index_custom_definition(definition_id)
    return definition


def _index_custom_definition(definition_id: int) -> None:
    from ..database.models import CustomDefinition
    from ..search.service import document_from_custom

    with session_scope() as db:
        definition = db.get(CustomDefinition, definition_id)
        if definition is not None and definition.is_public:
            search_service.index_document(document_from_custom(definition))
        else:
            search_service.remove_document(f"custom-{definition_id}")


# -- rules -------------------------------------------------------------------


@app.get("/api/rules/variants")
async def list_variant_rules():
    return [module.to_dict() for module in rule_registry.list_modules()]


@app.get("/api/rules/entries")
async def list_rule_entries(content_type: str | None = None, name: str | None = None, limit: int = 50):
    with session_scope() as db:
        query = db.query(RuleEntry)
        if content_type:
            try:
                query = query.filter(RuleEntry.content_type == ContentType.parse(content_type).name)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
        if name:
            query = query.filter(RuleEntry.name.ilike(f"%{name}%"))
        return [entry.to_dict() for entry in query.order_by(RuleEntry.name).limit(limit).all()]


# -- search ------------------------------------------------------------------


@app.get("/api/search")
async def search(
    q: str = "",
    content_types: list[str] | None = Query(default=None),
    sort_by: str = "RELEVANCE",
    page_size: int | None = None,
    page: int = 1,
    include_facets: bool = True,
    required_traits: list[str] | None = Query(default=None),
    excluded_traits: list[str] | None = Query(default=None),
    min_level: int | None = None,
    max_level: int | None = None,
    source: str | None = None,
    include_custom: bool = True,
):
    try:
        types = [ContentType.parse(t) for t in content_types or []]
        order = SearchSortOrder[sort_by.upper()]
    except (ValueError, KeyError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid search option: {e}")

    query = SearchQuery(
        query=q,
        content_types=types,
        sort_by=order,
        page_size=page_size or get_config().search.default_page_size,
        page_number=page,
        include_facets=include_facets,
        required_traits=required_traits or [],
        excluded_traits=excluded_traits or [],
        min_level=min_level,
        max_level=max_level,
        source=source,
        include_custom=include_custom,
    )
    return search_service.search(query).to_dict()


@app.get("/api/search/autocomplete")
async def autocomplete(q: str = "", limit: int | None = None):
    return [s.to_dict() for s in search_service.autocomplete(q, limit)]


@app.get("/api/search/stats")
async def search_stats():
    return search_service.get_stats().to_dict()


@app.post("/api/search/rebuild")
async def rebuild_search_index(user: int = Depends(require_user)):
    with session_scope() as db:
        count = search_service.rebuild_index(db)
    return {"indexed": count}


# -- rules sync --------------------------------------------------------------


def _run_sync(job: Callable[..., SyncResult], *args: Any, **kwargs: Any) -> None:
    """Background task body: run a sync, then refresh the search index."""
    result = job(*args, **kwargs)
    if result.items_processed:
        with session_scope() as db:
            search_service.rebuild_index(db)


def _parse_content_type(value: str) -> ContentType:
    try:
        return ContentType.parse(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/sync", status_code=202)
async def start_full_sync(background_tasks: BackgroundTasks, user: int = Depends(require_user)):
    sync_id = sync_service.create_sync()
    background_tasks.add_task(_run_sync, sync_service.sync_all, sync_id=sync_id, initiated_by=str(user))
    return {"sync_id": sync_id}


@app.post("/api/sync/url", status_code=202)
async def start_url_sync(body: UrlSyncRequest, background_tasks: BackgroundTasks, user: int = Depends(require_user)):
    content_type = _parse_content_type(body.content_type) if body.content_type else None
    sync_id = sync_service.create_sync()
    background_tasks.add_task(
        _run_sync, sync_service.sync_from_url, body.url, content_type, sync_id=sync_id, initiated_by=str(user)
    )
    return {"sync_id": sync_id}


@app.get("/api/sync/progress/{sync_id}")
async def get_sync_progress(sync_id: str):
    return sync_service.get_progress(sync_id).to_dict()


@app.get("/api/sync/history")
async def get_sync_history(page_size: int = 20, page: int = 1):
    return [h.to_dict() for h in sync_service.get_history(page_size, page)]


@app.post("/api/sync/cancel/{sync_id}")
async def cancel_sync(sync_id: str, user: int = Depends(require_user)):
    if not sync_service.cancel_sync(sync_id):
        raise HTTPException(status_code=404, detail="Sync not found or already finished")
    return {"sync_id": sync_id, "cancelled": True}


@app.post("/api/sync/{content_type}", status_code=202)
async def start_type_sync(content_type: str, background_tasks: BackgroundTasks, user: int = Depends(require_user)):
    parsed = _parse_content_type(content_type)
    sync_id = sync_service.create_sync()
    background_tasks.add_task(
        _run_sync, sync_service.sync_content_type, parsed, sync_id=sync_id, initiated_by=str(user)
    )
    return {"sync_id": sync_id}


# -- websockets --------------------------------------------------------------


async def _serve_hub(hub: CampaignHub | CombatHub, key: str, connection_id: str, websocket: WebSocket) -> None:
    """Feed incoming frames to a hub until the client goes away."""
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                await websocket.send_json({"type": "Error", "message": "Invalid JSON"})
                continue
            await hub.dispatch(key, connection_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.leave(key, connection_id)


@app.websocket("/ws/campaigns/{campaign_id}")
async def campaign_socket(websocket: WebSocket, campaign_id: int, user_id: int, alias: str | None = None):
    """Campaign presence, shared sheets and messages."""
    with session_scope() as db:
        campaign = db.get(Campaign, campaign_id)
        allowed = campaign is not None and campaign.is_user_member(user_id)
        member = campaign.get_member(user_id) if allowed else None
        member_alias = member.alias if member else "DM"
    if not allowed:
        await websocket.close(code=4004, reason="Not a member of this campaign")
        return

    await websocket.accept()
    key = str(campaign_id)
    connection_id = uuid.uuid4().hex
    await campaign_hub.join(key, connection_id, websocket, str(user_id), alias or member_alias)
    await _serve_hub(campaign_hub, key, connection_id, websocket)


@app.websocket("/ws/combat/{encounter_id}")
async def combat_socket(websocket: WebSocket, encounter_id: str, name: str = "Unknown"):
    """Live combat tracking for an encounter."""
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    await combat_hub.join(encounter_id, connection_id, websocket, name)
    await _serve_hub(combat_hub, encounter_id, connection_id, websocket)


def run_server(host: str | None = None, port: int | None = None):
    """Run the FastAPI server."""
    import uvicorn

    server = get_config().server
    uvicorn.run(app, host=host or server.host, port=port or server.port)


if __name__ == "__main__":
    run_server()
