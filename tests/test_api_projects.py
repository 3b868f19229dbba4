from conftest import OTHER_USER_ID, auth_headers, make_token

from taskboard.database import db

API = "/api/v1/projects"


async def _create(client, name="Website relaunch", **fields):
    response = await client.post(API, json={"name": name, **fields}, headers=auth_headers())
    assert response.status_code == 201
    return response.json()


async def _etag(client, project_id, user_id=None):
    headers = auth_headers(user_id) if user_id else auth_headers()
    response = await client.get(f"{API}/{project_id}", headers=headers)
    assert response.status_code == 200
    return response.headers["etag"]


async def test_requires_bearer_token(client):
    response = await client.get(API)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"

    bad = await client.get(API, headers={"Authorization": f"Bearer {make_token('x', 'wrong')}"})
    assert bad.status_code == 401


async def test_create_and_get(client):
    body = await _create(client, description="New site", tags=["web"])

    assert body["ownerId"] == "user-alice"
    assert body["memberIds"] == ["user-alice"]
    assert body["status"] == "Planning"
    assert body["taskCount"] == 0

    response = await client.get(f"{API}/{body['id']}", headers=auth_headers())
    assert response.status_code == 200
    detail = response.json()
    assert detail["name"] == "Website relaunch"
    assert detail["tasks"] == []
    assert response.headers["etag"].startswith('"')


async def test_create_sets_location(client):
    response = await client.post(API, json={"name": "Located"}, headers=auth_headers())
    assert response.headers["location"].endswith(f"{API}/{response.json()['id']}")


async def test_create_validation(client):
    response = await client.post(API, json={"name": ""}, headers=auth_headers())
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "validation_failed"
    assert error["details"]["errors"]

    response = await client.post(
        API,
        json={"name": "Dates", "startDate": "2026-05-01T00:00:00Z", "endDate": "2026-04-01T00:00:00Z"},
        headers=auth_headers(),
    )
    assert response.status_code == 422


async def test_not_modified_is_repeatable(client):
    project = await _create(client)
    etag = await _etag(client, project["id"])

    for _ in range(2):
        response = await client.get(
            f"{API}/{project['id']}", headers=auth_headers(**{"If-None-Match": etag})
        )
        assert response.status_code == 304
        assert response.headers["etag"] == etag
        assert response.content == b""

    response = await client.get(
        f"{API}/{project['id']}", headers=auth_headers(**{"If-None-Match": '"stale"'})
    )
    assert response.status_code == 200


async def test_update_without_if_match_is_rejected_and_changes_nothing(client):
    project = await _create(client)
    etag = await _etag(client, project["id"])

    response = await client.put(
        f"{API}/{project['id']}", json={"name": "Changed"}, headers=auth_headers()
    )
    assert response.status_code == 428
    assert response.json()["error"]["code"] == "precondition_required"
    assert await _etag(client, project["id"]) == etag


async def test_update_with_current_etag_then_replay(client):
    project = await _create(client)
    e1 = await _etag(client, project["id"])

    response = await client.put(
        f"{API}/{project['id']}",
        json={"name": "Changed", "status": "Active"},
        headers=auth_headers(**{"If-Match": e1}),
    )
    assert response.status_code == 200
    e2 = response.headers["etag"]
    assert e2 != e1
    assert response.json()["name"] == "Changed"
    assert response.json()["status"] == "Active"
    assert await _etag(client, project["id"]) == e2

    replay = await client.put(
        f"{API}/{project['id']}",
        json={"name": "Again"},
        headers=auth_headers(**{"If-Match": e1}),
    )
    assert replay.status_code == 412
    assert replay.json()["error"]["code"] == "precondition_failed"

    current = await client.get(f"{API}/{project['id']}", headers=auth_headers())
    assert current.json()["name"] == "Changed"
    assert current.headers["etag"] == e2


async def test_update_rejects_inverted_dates(client):
    project = await _create(client, startDate="2026-05-01T00:00:00Z")
    etag = await _etag(client, project["id"])

    response = await client.put(
        f"{API}/{project['id']}",
        json={"endDate": "2026-04-01T00:00:00Z"},
        headers=auth_headers(**{"If-Match": etag}),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_failed"


async def test_task_change_changes_project_etag(client):
    project = await _create(client)
    e1 = await _etag(client, project["id"])

    await client.post(
        f"{API}/{project['id']}/tasks", json={"title": "First"}, headers=auth_headers()
    )

    response = await client.get(
        f"{API}/{project['id']}", headers=auth_headers(**{"If-None-Match": e1})
    )
    assert response.status_code == 200
    assert response.json()["taskCount"] == 1


async def test_delete_with_stale_etag_keeps_project(client):
    project = await _create(client)
    e1 = await _etag(client, project["id"])

    response = await client.put(
        f"{API}/{project['id']}",
        json={"name": "Renamed"},
        headers=auth_headers(**{"If-Match": e1}),
    )
    e2 = response.headers["etag"]

    stale = await client.delete(
        f"{API}/{project['id']}", headers=auth_headers(**{"If-Match": e1})
    )
    assert stale.status_code == 412

    current = await client.get(f"{API}/{project['id']}", headers=auth_headers())
    assert current.status_code == 200
    assert current.json()["name"] == "Renamed"
    assert current.headers["etag"] == e2
    listing = await client.get(API, headers=auth_headers())
    assert listing.json()["totalCount"] == 1


async def test_delete_flow(client):
    project = await _create(client)
    etag = await _etag(client, project["id"])

    assert (await client.delete(f"{API}/{project['id']}", headers=auth_headers())).status_code == 428

    response = await client.delete(
        f"{API}/{project['id']}", headers=auth_headers(**{"If-Match": etag})
    )
    assert response.status_code == 204

    assert (await client.get(f"{API}/{project['id']}", headers=auth_headers())).status_code == 404
    again = await client.delete(
        f"{API}/{project['id']}", headers=auth_headers(**{"If-Match": etag})
    )
    assert again.status_code == 404


async def test_other_users_cannot_see_or_touch(client):
    project = await _create(client)
    etag = await _etag(client, project["id"])
    other = auth_headers(OTHER_USER_ID)

    assert (await client.get(f"{API}/{project['id']}", headers=other)).status_code == 404
    response = await client.put(
        f"{API}/{project['id']}",
        json={"name": "Mine now"},
        headers={**other, "If-Match": etag},
    )
    assert response.status_code == 404
    assert (await client.get(f"{API}/{project['id']}/analytics", headers=other)).status_code == 404

    listing = await client.get(API, headers=other)
    assert listing.json()["totalCount"] == 0


async def test_list_paging(client):
    for i in range(3):
        await _create(client, name=f"Project {i}")

    response = await client.get(API, params={"pageNumber": 1, "pageSize": 2}, headers=auth_headers())
    page = response.json()
    assert page["totalCount"] == 3
    assert page["totalPages"] == 2
    assert len(page["items"]) == 2

    response = await client.get(API, params={"pageNumber": 0, "pageSize": 1000}, headers=auth_headers())
    page = response.json()
    assert page["pageNumber"] == 1
    assert page["pageSize"] == 20
    assert len(page["items"]) == 3

    response = await client.get(API, params={"search": "project 1"}, headers=auth_headers())
    assert response.json()["totalCount"] == 1


async def test_analytics_endpoint(client):
    project = await _create(client)
    for status in ("Todo", "Todo", "InProgress", "Done"):
        await client.post(
            f"{API}/{project['id']}/tasks",
            json={"title": "Work", "status": status},
            headers=auth_headers(),
        )

    response = await client.get(f"{API}/{project['id']}/analytics", headers=auth_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["totalTasks"] == 4
    assert body["completionPercentage"] == 25.0
    assert body["tasksByStatus"]["Todo"] == 2


async def test_cache_outage_does_not_break_reads(client, fake_redis):
    project = await _create(client)
    fake_redis.down = True

    response = await client.get(f"{API}/{project['id']}", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["id"] == project["id"]


async def test_health(client, database, monkeypatch):
    monkeypatch.setattr("taskboard.main.db", database)

    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "ok"
    assert body["cache"]["redis_available"] is True


async def test_health_reports_unreachable_store(client):
    assert db.engine is None
    response = await client.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"
