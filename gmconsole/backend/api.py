"""FastAPI endpoints for encounters, combat HP, rests, inventory and websocket sync."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gmconsole.backend import charges, consumables, inventory
from gmconsole.backend.config import BackendSettings, configure_logging, load_settings
from gmconsole.backend.errors import (
    DomainValidationError,
    InvalidTransitionError,
    PartialWriteError,
    RecordNotFoundError,
    RepositoryError,
)
from gmconsole.backend.lock import CombatLock, RepositoryCombatLock
from gmconsole.backend.models import ENCOUNTERS, PARTICIPANTS
from gmconsole.backend.security import GMAccess
from gmconsole.backend.service import EncounterService
from gmconsole.backend.store import Repository, Unsubscribe, create_repository
from gmconsole.backend.sync import ChangeDispatcher, CurrentParticipantView, NotesDebouncer

logger = logging.getLogger(__name__)

TURN_ACTIONS = {"START", "NEXT_TURN", "PREV_TURN"}


class CreateEncounterRequest(BaseModel):
    token: str = ""
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)


class EncounterStateResponse(BaseModel):
    state: dict[str, Any]


class ActionResponse(BaseModel):
    state: dict[str, Any]
    events: list[dict[str, Any]]
    current: dict[str, Any] | None = None


class ActionEnvelope(BaseModel):
    token: str = ""
    action: dict[str, Any]


class NotesEnvelope(BaseModel):
    token: str = ""
    notes: str = Field(max_length=5000)


class RestEnvelope(BaseModel):
    token: str = ""
    rest_type: Literal["short_rest", "long_rest"]


class ConsumeEnvelope(BaseModel):
    token: str = ""
    inventory_id: str = Field(min_length=1)


class GiveItemEnvelope(BaseModel):
    token: str = ""
    item_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class TokenEnvelope(BaseModel):
    token: str = ""


class EncounterWebSocketHub:
    def __init__(self, dispatcher: ChangeDispatcher) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._routes: dict[str, list[Unsubscribe]] = {}
        self._dispatcher = dispatcher
        self._dirty: set[str] = set()

    async def connect(self, encounter_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[encounter_id].add(websocket)
        if encounter_id not in self._routes:
            self._routes[encounter_id] = self._watch(encounter_id)

    def _watch(self, encounter_id: str) -> list[Unsubscribe]:
        def mark_dirty() -> None:
            self._dirty.add(encounter_id)

        return [
            self._dispatcher.route(PARTICIPANTS, mark_dirty, predicate=lambda record: record.get("encounter_id") == encounter_id),
            self._dispatcher.route(ENCOUNTERS, mark_dirty, predicate=lambda record: record.get("id") == encounter_id),
        ]

    def disconnect(self, encounter_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(encounter_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(encounter_id, None)
            for unsubscribe in self._routes.pop(encounter_id, []):
                unsubscribe()

    def take_dirty(self) -> list[str]:
        dirty = sorted(self._dirty)
        self._dirty.clear()
        return dirty

    async def send_state(self, websocket: WebSocket, state: dict[str, Any]) -> None:
        await websocket.send_json({"type": "state.full", "state": state})

    async def broadcast_state(self, encounter_id: str, state: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(encounter_id, set())):
            try:
                await self.send_state(websocket, state)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(encounter_id=encounter_id, websocket=websocket)


def create_app(
    repository: Repository | None = None,
    lock: CombatLock | None = None,
    settings: BackendSettings | None = None,
) -> FastAPI:
    settings = settings if settings is not None else load_settings()
    configure_logging(settings.log_level)
    record_store = repository if repository is not None else create_repository(settings.database_url)
    combat_lock = lock if lock is not None else RepositoryCombatLock(record_store)
    service = EncounterService(repository=record_store, lock=combat_lock)
    access = GMAccess.from_settings(settings)

    dispatcher = ChangeDispatcher(record_store)
    websocket_hub = EncounterWebSocketHub(dispatcher)
    publish_tasks: set[asyncio.Task[None]] = set()

    def schedule_publish(_: str) -> None:
        task = asyncio.get_running_loop().create_task(publish_changes())
        publish_tasks.add(task)
        task.add_done_callback(publish_tasks.discard)

    notes = NotesDebouncer(
        write=lambda participant_id, text: record_store.update(PARTICIPANTS, participant_id, {"notes": text}),
        delay_ms=settings.notes_debounce_ms,
        after_fire=schedule_publish,
    )
    views: dict[str, CurrentParticipantView] = {}

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        flushed = notes.flush_all()
        if flushed:
            logger.info("Flushed %d pending note edits on shutdown", flushed)
        dispatcher.close()

    app = FastAPI(title="GM Console API", version="0.3.0", lifespan=lifespan)
    app.state.websocket_hub = websocket_hub
    app.state.notes = notes
    app.state.service = service

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(_: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(DomainValidationError)
    async def validation_failed(_: Request, exc: DomainValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RecordNotFoundError)
    async def not_found(_: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RepositoryError)
    async def repository_failed(_: Request, exc: RepositoryError) -> JSONResponse:
        logger.error("Repository failure: %s", exc)
        content: dict[str, Any] = {"detail": str(exc)}
        if isinstance(exc, PartialWriteError):
            content["applied"] = exc.applied
            content["total"] = exc.total
        return JSONResponse(status_code=502, content=content)

    def get_service() -> EncounterService:
        return service

    def require_gm(token: str | None) -> None:
        if not access.allows(token):
            raise HTTPException(status_code=403, detail="GM token required")

    def view_for(encounter_id: str) -> CurrentParticipantView:
        if encounter_id not in views:
            views[encounter_id] = CurrentParticipantView(loader=service.participant_resources)
        return views[encounter_id]

    async def publish_changes() -> None:
        for encounter_id in websocket_hub.take_dirty():
            try:
                state = service.load(encounter_id).to_dict()
            except RecordNotFoundError:
                continue
            await websocket_hub.broadcast_state(encounter_id=encounter_id, state=state)

    app.state.publish_changes = publish_changes

    @app.post("/api/encounters")
    async def create_encounter(
        payload: CreateEncounterRequest,
        local_service: EncounterService = Depends(get_service),
    ) -> dict[str, Any]:
        require_gm(payload.token)
        return local_service.create_encounter(name=payload.name, description=payload.description)

    @app.get("/api/encounters")
    def list_encounters(local_service: EncounterService = Depends(get_service)) -> list[dict[str, Any]]:
        return local_service.list_encounters()

    @app.get("/api/encounters/{encounter_id}", response_model=EncounterStateResponse)
    def get_encounter(
        encounter_id: str,
        local_service: EncounterService = Depends(get_service),
    ) -> EncounterStateResponse:
        return EncounterStateResponse(state=local_service.load(encounter_id).to_dict())

    @app.delete("/api/encounters/{encounter_id}")
    async def delete_encounter(
        encounter_id: str,
        token: str = Query(default=""),
        local_service: EncounterService = Depends(get_service),
    ) -> dict[str, Any]:
        require_gm(token)
        participant_ids = [participant["id"] for participant in local_service.load(encounter_id).participants]
        local_service.delete_encounter(encounter_id)
        for participant_id in participant_ids:
            notes.cancel(participant_id)
        views.pop(encounter_id, None)
        return {"deleted": encounter_id}

    @app.post("/api/encounters/{encounter_id}/actions", response_model=ActionResponse)
    async def post_action(
        encounter_id: str,
        payload: ActionEnvelope,
        local_service: EncounterService = Depends(get_service),
    ) -> ActionResponse:
        require_gm(payload.token)
        result = local_service.apply(encounter_id=encounter_id, action=payload.action)
        if str(payload.action.get("type", "")).upper() == "REMOVE_PARTICIPANT":
            notes.cancel(str(payload.action.get("participantId", "")))
        current = None
        if str(payload.action.get("type", "")).upper() in TURN_ACTIONS:
            view = view_for(encounter_id)
            await view.select(result.aggregate.current_participant)
            current = {"participantId": view.participant_id, "resources": view.resources}
        await publish_changes()
        return ActionResponse(state=result.aggregate.to_dict(), events=result.engine_events, current=current)

    @app.get("/api/encounters/{encounter_id}/current")
    async def get_current_participant(
        encounter_id: str,
        local_service: EncounterService = Depends(get_service),
    ) -> dict[str, Any]:
        aggregate = local_service.load(encounter_id)
        view = view_for(encounter_id)
        fresh = await view.select(aggregate.current_participant)
        return {"participantId": view.participant_id, "resources": view.resources, "fresh": fresh}

    @app.put("/api/encounters/{encounter_id}/participants/{participant_id}/notes")
    async def put_notes(
        encounter_id: str,
        participant_id: str,
        payload: NotesEnvelope,
        local_service: EncounterService = Depends(get_service),
    ) -> dict[str, Any]:
        require_gm(payload.token)
        if local_service.load(encounter_id).participant(participant_id) is None:
            raise RecordNotFoundError(PARTICIPANTS, participant_id)
        notes.submit(participant_id, payload.notes)
        return {"participantId": participant_id, "notes": payload.notes, "pending": True}

    @app.post("/api/encounters/{encounter_id}/participants/{participant_id}/notes/flush")
    async def flush_notes(encounter_id: str, participant_id: str, payload: TokenEnvelope) -> dict[str, Any]:
        require_gm(payload.token)
        flushed = notes.flush(participant_id)
        await publish_changes()
        return {"participantId": participant_id, "flushed": flushed}

    @app.post("/api/rests")
    async def post_rest(payload: RestEnvelope) -> dict[str, Any]:
        require_gm(payload.token)
        report = charges.take_rest(record_store, payload.rest_type)
        return {"restType": report.rest_type, "changed": report.changed, "examined": report.examined}

    @app.post("/api/ability-grants/{grant_id}/use")
    async def post_use_ability(grant_id: str, payload: TokenEnvelope) -> dict[str, Any]:
        require_gm(payload.token)
        return charges.use_ability(record_store, grant_id)

    @app.post("/api/characters/{character_id}/consume")
    async def post_consume(character_id: str, payload: ConsumeEnvelope) -> dict[str, Any]:
        require_gm(payload.token)
        report = consumables.use_consumable(record_store, character_id, payload.inventory_id)
        await publish_changes()
        return {
            "character": report.character,
            "hpChanged": report.hp_changed,
            "remainingQuantity": report.remaining_quantity,
            "effects": report.effects,
            "participantIds": report.participant_ids,
        }

    @app.post("/api/characters/{character_id}/items")
    async def post_give_item(character_id: str, payload: GiveItemEnvelope) -> dict[str, Any]:
        require_gm(payload.token)
        return inventory.give_item(record_store, character_id, payload.item_id, payload.quantity)

    @app.post("/api/inventory/{inventory_id}/equip")
    async def post_toggle_equip(inventory_id: str, payload: TokenEnvelope) -> dict[str, Any]:
        require_gm(payload.token)
        return inventory.toggle_equip(record_store, inventory_id)

    @app.get("/api/characters/{character_id}/stats")
    def get_character_stats(character_id: str) -> dict[str, Any]:
        return inventory.character_stats(record_store, character_id).to_dict()

    @app.websocket("/ws/encounters/{encounter_id}")
    async def encounter_ws(
        websocket: WebSocket,
        encounter_id: str,
        local_service: EncounterService = Depends(get_service),
    ) -> None:
        try:
            state = local_service.load(encounter_id).to_dict()
        except RecordNotFoundError:
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(encounter_id=encounter_id, websocket=websocket)
        await websocket_hub.send_state(websocket=websocket, state=state)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(encounter_id=encounter_id, websocket=websocket)

    return app


app = create_app()
