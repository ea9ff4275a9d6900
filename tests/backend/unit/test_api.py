import pytest

fastapi = pytest.importorskip("fastapi")
pytest.importorskip("httpx")
from fastapi.testclient import TestClient

from gmconsole.backend.api import create_app
from gmconsole.backend.config import BackendSettings
from gmconsole.backend.lock import InMemoryCombatLock
from gmconsole.backend.models import ABILITIES, ABILITY_GRANTS, CHARACTERS, INVENTORY, ITEMS, PARTICIPANTS
from gmconsole.backend.store import InMemoryRepository


def _settings(gm_token: str | None = None, notes_debounce_ms: int = 10_000) -> BackendSettings:
    return BackendSettings(
        server_salt="test-salt",
        database_url=None,
        host="127.0.0.1",
        port=8000,
        gm_token=gm_token,
        notes_debounce_ms=notes_debounce_ms,
        log_level="INFO",
    )


def _repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.insert(CHARACTERS, {"id": "c1", "name": "Vex", "current_hp": 5, "max_hp": 20, "ac": 11, "str": 2})
    repository.insert(ITEMS, {"id": "stim", "name": "Stim", "is_consumable": True, "hp_mod": 50})
    repository.insert(ITEMS, {"id": "blade", "name": "Monoblade", "type": "weapon", "str_mod": 1})
    repository.insert(ABILITIES, {"id": "a1", "name": "Second Wind", "charge_type": "short_rest", "max_charges": 2})
    repository.insert(ABILITY_GRANTS, {"id": "g1", "character_id": "c1", "ability_id": "a1", "current_charges": 0})
    return repository


def _client(
    repository: InMemoryRepository | None = None,
    gm_token: str | None = None,
    notes_debounce_ms: int = 10_000,
) -> TestClient:
    settings = _settings(gm_token, notes_debounce_ms=notes_debounce_ms)
    app = create_app(repository=repository or _repository(), lock=InMemoryCombatLock(), settings=settings)
    return TestClient(app)


def test_post_encounters_returns_draft_row() -> None:
    client = _client()

    response = client.post("/api/encounters", json={"name": "Session 1"})

    assert response.status_code == 200
    data = response.json()
    assert data["id"]
    assert data["status"] == "draft"
    assert client.get("/api/encounters").json()[0]["id"] == data["id"]


def test_post_encounters_rejects_empty_name() -> None:
    response = _client().post("/api/encounters", json={"name": ""})

    assert response.status_code == 422


def test_get_encounter_returns_state_and_404_for_unknown() -> None:
    client = _client()
    created = client.post("/api/encounters", json={"name": "Session 1"}).json()

    found = client.get(f"/api/encounters/{created['id']}")
    missing = client.get("/api/encounters/nope")

    assert found.status_code == 200
    assert found.json()["state"]["encounter"]["name"] == "Session 1"
    assert found.json()["state"]["participants"] == []
    assert missing.status_code == 404


def test_post_action_requires_gm_token_when_configured() -> None:
    client = _client(gm_token="table-secret")
    created = client.post("/api/encounters", json={"name": "Session 1", "token": "table-secret"}).json()
    action = {"type": "ADD_PARTICIPANT", "participantType": "player", "entityId": "c1"}

    forbidden = client.post(f"/api/encounters/{created['id']}/actions", json={"token": "wrong", "action": action})
    allowed = client.post(f"/api/encounters/{created['id']}/actions", json={"token": "table-secret", "action": action})

    assert forbidden.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json()["events"][0]["kind"] == "participant_added"


def test_start_returns_current_participant_resources() -> None:
    client = _client()
    encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]
    client.post(
        f"/api/encounters/{encounter_id}/actions",
        json={"action": {"type": "ADD_PARTICIPANT", "participantType": "player", "entityId": "c1"}},
    )

    response = client.post(f"/api/encounters/{encounter_id}/actions", json={"action": {"type": "START"}})

    assert response.status_code == 200
    body = response.json()
    assert body["state"]["encounter"]["status"] == "active"
    assert body["current"]["resources"]["entity"]["name"] == "Vex"
    assert body["current"]["resources"]["abilities"][0]["id"] == "g1"


def test_action_errors_map_to_status_codes() -> None:
    client = _client()
    encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]

    empty_start = client.post(f"/api/encounters/{encounter_id}/actions", json={"action": {"type": "START"}})
    bad_transition = client.post(f"/api/encounters/{encounter_id}/actions", json={"action": {"type": "END"}})

    assert empty_start.status_code == 400
    assert bad_transition.status_code == 409


def test_delete_encounter() -> None:
    client = _client()
    encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]

    assert client.delete(f"/api/encounters/{encounter_id}").status_code == 200
    assert client.get(f"/api/encounters/{encounter_id}").status_code == 404


def test_rest_and_ability_use() -> None:
    repository = _repository()
    client = _client(repository)

    rest = client.post("/api/rests", json={"rest_type": "long_rest"})
    used = client.post("/api/ability-grants/g1/use", json={})
    invalid = client.post("/api/rests", json={"rest_type": "nap"})

    assert rest.status_code == 200
    assert rest.json()["changed"] == 1
    assert used.json()["current_charges"] == 1
    assert invalid.status_code == 422


def test_consume_give_and_equip_items() -> None:
    repository = _repository()
    client = _client(repository)
    repository.insert(INVENTORY, {"id": "inv-stim", "character_id": "c1", "item_id": "stim", "quantity": 1})

    consumed = client.post("/api/characters/c1/consume", json={"inventory_id": "inv-stim"})
    given = client.post("/api/characters/c1/items", json={"item_id": "blade"})
    equipped = client.post(f"/api/inventory/{given.json()['inventory']['id']}/equip", json={})
    stats = client.get("/api/characters/c1/stats")

    assert consumed.status_code == 200
    assert consumed.json()["character"]["current_hp"] == 20
    assert consumed.json()["remainingQuantity"] == 0
    assert equipped.json()["is_equipped"] is True
    assert stats.json()["scores"]["str"] == 3


def test_notes_are_debounced_until_flushed() -> None:
    repository = _repository()
    with _client(repository) as client:
        encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]
        added = client.post(
            f"/api/encounters/{encounter_id}/actions",
            json={"action": {"type": "ADD_PARTICIPANT", "participantType": "player", "entityId": "c1"}},
        ).json()
        participant_id = added["state"]["participants"][0]["id"]
        notes_url = f"/api/encounters/{encounter_id}/participants/{participant_id}/notes"

        client.put(notes_url, json={"notes": "ble"})
        client.put(notes_url, json={"notes": "bleeding"})
        assert repository.get(PARTICIPANTS, participant_id)["notes"] == ""

        flushed = client.post(f"{notes_url}/flush", json={})

    assert flushed.json()["flushed"] is True
    assert repository.get(PARTICIPANTS, participant_id)["notes"] == "bleeding"


def test_websocket_sends_initial_state_after_connect() -> None:
    client = _client()
    encounter_id = client.post("/api/encounters", json={"name": "Session WS"}).json()["id"]

    with client.websocket_connect(f"/ws/encounters/{encounter_id}") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "state.full"
    assert message["state"]["encounter"]["id"] == encounter_id


def test_websocket_rejects_unknown_encounter() -> None:
    client = _client()

    with pytest.raises(Exception):
        with client.websocket_connect("/ws/encounters/missing") as websocket:
            websocket.receive_json()


def test_websocket_broadcasts_full_state_after_roster_change() -> None:
    with _client() as client:
        encounter_id = client.post("/api/encounters", json={"name": "Session WS"}).json()["id"]

        with client.websocket_connect(f"/ws/encounters/{encounter_id}") as ws_first:
            with client.websocket_connect(f"/ws/encounters/{encounter_id}") as ws_second:
                ws_first.receive_json()
                ws_second.receive_json()

                client.post(
                    f"/api/encounters/{encounter_id}/actions",
                    json={"action": {"type": "ADD_PARTICIPANT", "participantType": "player", "entityId": "c1"}},
                )

                first_message = ws_first.receive_json()
                second_message = ws_second.receive_json()

    assert first_message["type"] == "state.full"
    assert len(first_message["state"]["participants"]) == 1
    assert second_message["state"] == first_message["state"]


def _add_player(client: TestClient, encounter_id: str) -> str:
    added = client.post(
        f"/api/encounters/{encounter_id}/actions",
        json={"action": {"type": "ADD_PARTICIPANT", "participantType": "player", "entityId": "c1"}},
    ).json()
    return added["state"]["participants"][0]["id"]


def test_non_numeric_initiative_is_a_validation_error() -> None:
    client = _client()
    encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]
    participant_id = _add_player(client, encounter_id)

    response = client.post(
        f"/api/encounters/{encounter_id}/actions",
        json={"action": {"type": "SET_INITIATIVE", "participantId": participant_id, "initiative": "fast"}},
    )

    assert response.status_code == 400


def test_removing_participant_drops_its_pending_note() -> None:
    repository = _repository()
    with _client(repository) as client:
        encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]
        participant_id = _add_player(client, encounter_id)
        client.put(f"/api/encounters/{encounter_id}/participants/{participant_id}/notes", json={"notes": "doomed"})

        removed = client.post(
            f"/api/encounters/{encounter_id}/actions",
            json={"action": {"type": "REMOVE_PARTICIPANT", "participantId": participant_id}},
        )
        assert client.app.state.notes.pending_keys() == set()

    assert removed.status_code == 200
    assert repository.get(PARTICIPANTS, participant_id) is None


def test_timed_note_write_is_broadcast() -> None:
    with _client(notes_debounce_ms=20) as client:
        encounter_id = client.post("/api/encounters", json={"name": "Ambush"}).json()["id"]
        participant_id = _add_player(client, encounter_id)

        with client.websocket_connect(f"/ws/encounters/{encounter_id}") as websocket:
            websocket.receive_json()
            client.put(f"/api/encounters/{encounter_id}/participants/{participant_id}/notes", json={"notes": "bleeding"})
            message = websocket.receive_json()

    assert message["type"] == "state.full"
    assert message["state"]["participants"][0]["notes"] == "bleeding"
