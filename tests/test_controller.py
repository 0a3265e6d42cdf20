import httpx
import pytest

from api_client import ApiClient, ApiError, NetworkError
from cache import CACHE_KEYS, LocalCache
from controller import StatusGateError, build_controllers
from main import app
from sync import PendingSyncState


class FakeApi:
    """Servidor de mentira: guarda llamadas y devuelve lo que se le diga"""

    def __init__(self, collections=None):
        self.collections = collections or {}
        self.calls = []
        self.batch_result = None
        self.fail_with = None

    async def list_all(self, collection, **params):
        self.calls.append(("list_all", collection))
        return [dict(item) for item in self.collections.get(collection, [])]

    async def create(self, collection, data):
        self.calls.append(("create", collection, data))
        entity = {"id": 100 + len(self.calls), **data}
        self.collections.setdefault(collection, []).append(entity)
        return dict(entity)

    async def delete(self, collection, entity_id):
        self.calls.append(("delete", collection, entity_id))
        if self.fail_with:
            raise self.fail_with
        return {"success": True}

    async def batch_update(self, collection, items):
        self.calls.append(("batch_update", collection, list(items)))
        if self.fail_with:
            raise self.fail_with
        if self.batch_result is not None:
            return self.batch_result
        updated = []
        for entity_id, data in items:
            for entity in self.collections.get(collection, []):
                if entity["id"] == entity_id:
                    entity.update(data)
                    updated.append(dict(entity))
        return {"updated": updated, "errors": []}


def server_data():
    return {
        "projects": [
            {"id": 1, "name": "Web", "status": "completed", "githubUrl": "https://github.com/ana/web", "demoUrl": None},
            {"id": 2, "name": "CLI", "status": "active", "githubUrl": None, "demoUrl": None},
        ],
        "skills": [
            {"id": 10, "name": "Python", "status": "mastered", "linkedProjectIds": [1], "masteredAt": "2024-01-01T00:00:00"},
            {"id": 11, "name": "Go", "status": "learning", "linkedProjectIds": [2], "masteredAt": None},
            {"id": 12, "name": "Rust", "status": "mastered", "linkedProjectIds": [1, 3], "masteredAt": "2024-01-01T00:00:00"},
        ],
        "resources": [{"id": 20, "title": "Docs", "isRead": False}],
    }


@pytest.fixture
def notes():
    return []


@pytest.fixture
async def setup(tmp_path, notes):
    started = []

    async def _setup(api=None):
        api = api or FakeApi(server_data())
        controllers = build_controllers(
            api, LocalCache(str(tmp_path)), debounce_seconds=60,
            notify=lambda kind, message: notes.append((kind, message)),
        )
        for controller in controllers.values():
            controller.start()
            started.append(controller)
            await controller.load()
        return api, controllers

    yield _setup
    for controller in started:
        controller.queue.shutdown()


async def test_load_uses_fresh_cache(tmp_path, setup):
    api, controllers = await setup()
    assert ("list_all", "skills") in api.calls

    api.calls.clear()
    await controllers["skills"].load()
    assert api.calls == []

    await controllers["skills"].load(force=True)
    assert api.calls == [("list_all", "skills")]


async def test_change_is_optimistic_and_batched(setup, notes):
    api, controllers = await setup()
    resources = controllers["resources"]

    resources.change(20, {"isRead": True})
    assert resources.find(20)["isRead"] is True
    assert resources.sync_state == PendingSyncState.pending
    assert resources.cache.load(CACHE_KEYS["resources"]).data[0]["isRead"] is True
    assert not any(call[0] == "batch_update" for call in api.calls)

    resources.change(20, {"title": "Docs oficiales"})
    assert await resources.queue.flush() is True

    assert api.calls[-1] == ("batch_update", "resources", [(20, {"isRead": True, "title": "Docs oficiales"})])
    assert resources.sync_state == PendingSyncState.idle
    assert notes[-1] == ("success", "1 cambios sincronizados")


async def test_gate_rejects_locally_without_network(setup, notes):
    api, controllers = await setup()
    skills = controllers["skills"]
    api.calls.clear()

    with pytest.raises(StatusGateError) as info:
        skills.change(11, {"status": "mastered"})

    assert info.value.field == "status"
    assert skills.find(11)["status"] == "learning"
    assert skills.queue.pending_count == 0
    assert api.calls == []
    assert notes[-1][0] == "error"


async def test_skill_gate_sees_optimistic_project_status(setup):
    api, controllers = await setup()
    controllers["projects"].change(2, {"status": "completed", "githubUrl": "https://github.com/ana/cli"})

    controllers["skills"].change(11, {"status": "mastered"})
    assert controllers["skills"].find(11)["status"] == "mastered"


async def test_project_gate_requires_url(setup):
    api, controllers = await setup()
    with pytest.raises(StatusGateError):
        controllers["projects"].change(2, {"status": "completed", "demoUrl": "  "})

    with pytest.raises(StatusGateError):
        await controllers["projects"].create({"name": "Nuevo", "status": "completed"})


async def test_rejected_items_trigger_reload(setup, notes):
    api, controllers = await setup()
    resources = controllers["resources"]
    api.batch_result = {"updated": [], "errors": [{"id": 20, "error": "Recurso no encontrado", "code": "NOT_FOUND"}]}

    resources.change(20, {"isRead": True})
    api.calls.clear()
    assert await resources.queue.flush() is False

    assert resources.sync_state == PendingSyncState.error
    assert ("list_all", "resources") in api.calls
    assert resources.find(20)["isRead"] is False
    assert notes[-1][0] == "error"


async def test_network_failure_on_flush_reloads(setup):
    api, controllers = await setup()
    skills = controllers["skills"]
    api.fail_with = NetworkError("timeout")

    skills.change(11, {"priority": 5})
    assert await skills.queue.flush() is False
    assert skills.sync_state == PendingSyncState.error
    assert "priority" not in skills.find(11)


async def test_create_appends_server_entity(setup):
    api, controllers = await setup()
    created = await controllers["resources"].create({"title": "Libro", "isRead": False})
    assert controllers["resources"].find(created["id"]) == created


async def test_delete_discards_pending_change(setup):
    api, controllers = await setup()
    resources = controllers["resources"]
    resources.change(20, {"isRead": True})

    assert await resources.delete(20) is True
    assert resources.find(20) is None
    assert resources.queue.pending_count == 0


async def test_failed_delete_restores_from_server(setup, notes):
    api, controllers = await setup()
    api.fail_with = ApiError(500, "DATABASE_ERROR", "boom")

    assert await controllers["resources"].delete(20) is False
    assert controllers["resources"].find(20) is not None
    assert notes[-1][0] == "error"


async def test_project_delete_downgrades_skills_locally(setup):
    api, controllers = await setup()

    assert await controllers["projects"].delete(1) is True

    skills = controllers["skills"]
    python = skills.find(10)
    assert python["status"] == "learning"
    assert python["masteredAt"] is None
    assert python["linkedProjectIds"] == []
    # Rust sigue ligado al proyecto 3, que no está completado en local
    assert skills.find(12)["status"] == "learning"
    assert skills.find(11)["linkedProjectIds"] == [2]


async def test_against_real_api(tmp_path, auth_headers, notes):
    token = auth_headers["Authorization"].split(" ", 1)[1]
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    async with ApiClient(token=token, http=http) as api:
        await api.create("projects", {"name": "Blog", "status": "completed", "githubUrl": "https://github.com/ana/blog"})
        controllers = build_controllers(api, LocalCache(str(tmp_path)), debounce_seconds=60,
                                        notify=lambda kind, message: notes.append((kind, message)))
        projects, skills = controllers["projects"], controllers["skills"]
        projects.start()
        skills.start()
        await projects.load()
        await skills.load()

        project_id = projects.items[0]["id"]
        skill = await skills.create({"name": "Astro", "linkedProjectIds": [project_id]})
        skills.change(skill["id"], {"status": "mastered"})
        await skills.close()

        server_skill = await api.get("skills", skill["id"])
        assert server_skill["status"] == "mastered"
        assert skills.find(skill["id"])["masteredAt"] is not None

        assert await projects.delete(project_id) is True
        assert skills.find(skill["id"])["status"] == "learning"
        assert (await api.get("skills", skill["id"]))["status"] == "learning"
        await projects.close()
