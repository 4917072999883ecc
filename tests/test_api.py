"""HTTP API tests: tasks, readiness, webhooks and auth."""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from flux.config import Settings


async def create_project(client, name="Test Project") -> str:
    res = await client.post("/api/projects", json={"name": name})
    assert res.status_code == 201
    return res.json()["id"]


async def create_task(client, project_id, title, **fields) -> dict:
    res = await client.post(f"/api/projects/{project_id}/tasks", json={"title": title, **fields})
    assert res.status_code == 201
    return res.json()


class TestTasks:
    @pytest.mark.asyncio
    async def test_create_task_with_priority(self, client):
        project_id = await create_project(client)

        task = await create_task(client, project_id, "Urgent task", priority=0)

        assert task["priority"] == 0
        assert task["status"] == "todo"
        assert task["depends_on"] == []

    @pytest.mark.asyncio
    async def test_invalid_priority_rejected(self, client):
        project_id = await create_project(client)

        res = await client.post(f"/api/projects/{project_id}/tasks", json={"title": "x", "priority": 3})

        assert res.status_code == 422

    @pytest.mark.asyncio
    async def test_create_task_in_unknown_project_is_404(self, client):
        res = await client.post("/api/projects/nope/tasks", json={"title": "x"})
        assert res.status_code == 404

    @pytest.mark.asyncio
    async def test_patch_unknown_task_is_404(self, client):
        res = await client.patch("/api/tasks/nonexistent", json={"priority": 0})
        assert res.status_code == 404

    @pytest.mark.asyncio
    async def test_task_detail_reports_blocked(self, client):
        project_id = await create_project(client)
        blocker = await create_task(client, project_id, "Blocker")
        blocked = await create_task(client, project_id, "Blocked", depends_on=[blocker["id"], "gone"])

        res = await client.get(f"/api/tasks/{blocked['id']}")
        assert res.json()["blocked"] is True
        assert res.json()["blocked_by"] == [blocker["id"]]

        await client.patch(f"/api/tasks/{blocker['id']}", json={"status": "done"})

        res = await client.get(f"/api/tasks/{blocked['id']}")
        assert res.json()["blocked"] is False

    @pytest.mark.asyncio
    async def test_comments_are_appended(self, client):
        project_id = await create_project(client)
        task = await create_task(client, project_id, "Commented")

        await client.post(f"/api/tasks/{task['id']}/comments", json={"body": "first"})
        res = await client.post(f"/api/tasks/{task['id']}/comments", json={"body": "second", "author": "mcp"})

        comments = res.json()["comments"]
        assert [c["body"] for c in comments] == ["first", "second"]
        assert comments[1]["author"] == "mcp"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["title", "status", "archived", "depends_on"])
    async def test_patch_cannot_clear_required_field(self, client, field):
        project_id = await create_project(client)
        task = await create_task(client, project_id, "Keep me")

        res = await client.patch(f"/api/tasks/{task['id']}", json={field: None})

        assert res.status_code == 422
        stored = (await client.get(f"/api/tasks/{task['id']}")).json()
        assert stored["title"] == "Keep me"
        assert stored["status"] == "todo"
        assert stored["archived"] is False

    @pytest.mark.asyncio
    async def test_patch_can_clear_optional_fields(self, client):
        project_id = await create_project(client)
        task = await create_task(client, project_id, "Optional", priority=0, notes="n")

        res = await client.patch(f"/api/tasks/{task['id']}", json={"priority": None, "notes": None})

        assert res.status_code == 200
        assert res.json()["priority"] is None
        assert res.json()["notes"] is None


class TestProjectsAndEpics:
    @pytest.mark.asyncio
    async def test_get_and_update_project(self, client):
        project_id = await create_project(client)

        res = await client.patch(f"/api/projects/{project_id}", json={"name": "Renamed"})
        assert res.status_code == 200

        res = await client.get(f"/api/projects/{project_id}")
        assert res.json()["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_project_name_cannot_be_cleared(self, client):
        project_id = await create_project(client)

        res = await client.patch(f"/api/projects/{project_id}", json={"name": None})

        assert res.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_project_is_404(self, client):
        assert (await client.get("/api/projects/nope")).status_code == 404
        assert (await client.patch("/api/projects/nope", json={"name": "x"})).status_code == 404

    @pytest.mark.asyncio
    async def test_update_epic(self, client):
        project_id = await create_project(client)
        epic = (await client.post(f"/api/projects/{project_id}/epics", json={"title": "Launch"})).json()

        res = await client.patch(
            f"/api/projects/{project_id}/epics/{epic['id']}",
            json={"status": "in_progress", "notes": "soon"},
        )

        assert res.status_code == 200
        assert res.json()["status"] == "in_progress"
        assert res.json()["notes"] == "soon"

    @pytest.mark.asyncio
    async def test_delete_epic_keeps_its_tasks(self, client):
        project_id = await create_project(client)
        epic = (await client.post(f"/api/projects/{project_id}/epics", json={"title": "Launch"})).json()
        task = await create_task(client, project_id, "In epic", epic_id=epic["id"])

        res = await client.delete(f"/api/projects/{project_id}/epics/{epic['id']}")

        assert res.status_code == 200
        assert (await client.get(f"/api/projects/{project_id}/epics")).json() == []
        stored = (await client.get(f"/api/tasks/{task['id']}")).json()
        assert stored["epic_id"] is None

    @pytest.mark.asyncio
    async def test_epic_of_another_project_is_404(self, client):
        project_id = await create_project(client)
        other_id = await create_project(client, "Other")
        epic = (await client.post(f"/api/projects/{other_id}/epics", json={"title": "Theirs"})).json()

        res = await client.delete(f"/api/projects/{project_id}/epics/{epic['id']}")

        assert res.status_code == 404

    @pytest.mark.asyncio
    async def test_update_and_delete_events_are_delivered(self, client, dispatcher, endpoint):
        await client.post(
            "/api/webhooks",
            json={
                "name": "audit",
                "url": "https://hooks.example.com",
                "events": ["project.updated", "epic.updated", "epic.deleted"],
            },
        )
        project_id = await create_project(client)
        epic = (await client.post(f"/api/projects/{project_id}/epics", json={"title": "Launch"})).json()

        await client.patch(f"/api/projects/{project_id}", json={"description": "d"})
        await client.patch(f"/api/projects/{project_id}/epics/{epic['id']}", json={"title": "Launch v2"})
        await client.delete(f"/api/projects/{project_id}/epics/{epic['id']}")
        await dispatcher.drain()

        events = sorted(request.headers["X-Flux-Event"] for request in endpoint.requests)
        assert events == ["epic.deleted", "epic.updated", "project.updated"]


class TestReadyTasks:
    @pytest.mark.asyncio
    async def test_sorted_by_priority_with_ties_in_creation_order(self, client):
        project_id = await create_project(client)
        p2 = await create_task(client, project_id, "P2 task", priority=2)
        p0 = await create_task(client, project_id, "P0 task", priority=0)
        unset = await create_task(client, project_id, "No priority")
        p1 = await create_task(client, project_id, "P1 task", priority=1)

        res = await client.get("/api/tasks/ready")

        assert res.status_code == 200
        assert [t["id"] for t in res.json()] == [p0["id"], p1["id"], p2["id"], unset["id"]]

    @pytest.mark.asyncio
    async def test_filters_by_project(self, client):
        project_id = await create_project(client)
        other_id = await create_project(client, "Project 2")
        await create_task(client, project_id, "Task 1", priority=0)
        await create_task(client, other_id, "Task 2", priority=0)

        res = await client.get(f"/api/tasks/ready?project_id={project_id}")

        assert [t["title"] for t in res.json()] == ["Task 1"]

    @pytest.mark.asyncio
    async def test_excludes_blocked_done_and_archived(self, client):
        project_id = await create_project(client)
        blocker = await create_task(client, project_id, "Blocker")
        await create_task(client, project_id, "Blocked", priority=0, depends_on=[blocker["id"]])
        done = await create_task(client, project_id, "Done", priority=0)
        archived = await create_task(client, project_id, "Archived", priority=0)
        ready = await create_task(client, project_id, "Ready", priority=1)
        await client.patch(f"/api/tasks/{done['id']}", json={"status": "done"})
        await client.patch(f"/api/tasks/{archived['id']}", json={"archived": True})

        res = await client.get("/api/tasks/ready")

        assert [t["id"] for t in res.json()] == [ready["id"], blocker["id"]]

    @pytest.mark.asyncio
    async def test_deleted_dependency_does_not_block(self, client):
        project_id = await create_project(client)
        blocker = await create_task(client, project_id, "Blocker")
        dependent = await create_task(client, project_id, "Dependent", depends_on=[blocker["id"]])

        await client.delete(f"/api/tasks/{blocker['id']}")
        res = await client.get("/api/tasks/ready")

        assert [t["id"] for t in res.json()] == [dependent["id"]]

    @pytest.mark.asyncio
    async def test_empty(self, client):
        res = await client.get("/api/tasks/ready")
        assert res.json() == []


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_task_mutation_delivers_to_subscriber(self, client, dispatcher, endpoint):
        res = await client.post(
            "/api/webhooks",
            json={"name": "ci", "url": "https://hooks.example.com", "events": ["task.created"], "secret": "s3cr3t"},
        )
        assert res.status_code == 201
        webhook = res.json()
        assert webhook["has_secret"] is True
        assert "secret" not in webhook

        project_id = await create_project(client)
        task = await create_task(client, project_id, "Announce me")
        await dispatcher.drain()

        assert len(endpoint.requests) == 1
        assert "X-Flux-Signature" in endpoint.requests[0].headers

        res = await client.get(f"/api/webhooks/{webhook['id']}/deliveries")
        deliveries = res.json()
        assert len(deliveries) == 1
        assert deliveries[0]["status"] == "success"
        assert deliveries[0]["attempts"] == 1
        assert task["id"] in deliveries[0]["payload"]

    @pytest.mark.asyncio
    async def test_test_endpoint_returns_outcome_without_history(self, client, endpoint):
        res = await client.post(
            "/api/webhooks",
            json={"name": "ci", "url": "https://hooks.example.com", "events": ["task.updated"]},
        )
        webhook_id = res.json()["id"]

        res = await client.post(f"/api/webhooks/{webhook_id}/test")

        assert res.status_code == 200
        assert res.json()["success"] is True
        assert res.json()["status_code"] == 200
        assert len(endpoint.requests) == 1
        assert (await client.get("/api/deliveries")).json() == []

    @pytest.mark.asyncio
    async def test_unknown_webhook_is_404(self, client):
        assert (await client.post("/api/webhooks/missing/test")).status_code == 404
        assert (await client.get("/api/webhooks/missing/deliveries")).status_code == 404
        assert (await client.delete("/api/webhooks/missing")).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_event_type_rejected(self, client):
        res = await client.post(
            "/api/webhooks",
            json={"name": "ci", "url": "https://hooks.example.com", "events": ["task.exploded"]},
        )
        assert res.status_code == 422

    @pytest.mark.asyncio
    async def test_disable_webhook_stops_deliveries(self, client, dispatcher, endpoint):
        res = await client.post(
            "/api/webhooks",
            json={"name": "ci", "url": "https://hooks.example.com", "events": ["project.created"]},
        )
        webhook_id = res.json()["id"]

        await client.patch(f"/api/webhooks/{webhook_id}", json={"enabled": False})
        await create_project(client)
        await dispatcher.drain()

        assert endpoint.requests == []


class TestAuth:
    @pytest_asyncio.fixture
    async def secured_client(self, session_factory, dispatcher):
        from flux.main import create_app

        settings = Settings(_env_file=None, FLUX_API_KEY="top-secret", SENTRY_DSN=None)
        app = create_app(settings=settings, session_factory=session_factory)
        app.state.session_factory = session_factory
        app.state.dispatcher = dispatcher
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    @pytest.mark.asyncio
    async def test_reads_are_public(self, secured_client):
        assert (await secured_client.get("/api/tasks/ready")).status_code == 200

    @pytest.mark.asyncio
    async def test_writes_require_token(self, secured_client):
        res = await secured_client.post("/api/projects", json={"name": "x"})
        assert res.status_code == 401

        res = await secured_client.post(
            "/api/projects", json={"name": "x"}, headers={"Authorization": "Bearer wrong"}
        )
        assert res.status_code == 401

        res = await secured_client.post(
            "/api/projects", json={"name": "x"}, headers={"Authorization": "Bearer top-secret"}
        )
        assert res.status_code == 201

    @pytest.mark.asyncio
    async def test_dev_mode_allows_writes(self, client):
        assert (await client.post("/api/projects", json={"name": "x"})).status_code == 201


@pytest.mark.asyncio
async def test_health(client):
    res = await client.get("/health")
    assert res.json() == {"status": "healthy", "pending_deliveries": 0}
