"""
Task endpoints end to end: role-scoped listing, permissions, validation
ordering and list-cache consistency.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

from taskdesk.database import async_session
from taskdesk.models import Task


def _create(client, headers, assignee, **fields):
    body = {"title": fields.pop("title", "Task"), "assignedTo": str(assignee.id), **fields}
    res = client.post("/tasks", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def _insert_task_directly(title, assignee, creator):
    async def insert():
        async with async_session() as s:
            s.add(Task(title=title, assigned_to=assignee.id, created_by=creator.id))
            await s.commit()

    asyncio.run(insert())


class TestCreateTask:
    def test_status_forced_to_pending(self, client, users, auth):
        res = client.post(
            "/tasks",
            json={"title": "T1", "assignedTo": str(users["u1"].id), "status": "Completed"},
            headers=auth(users["admin"]),
        )
        assert res.status_code == 201
        body = res.json()
        assert body["title"] == "T1"
        assert body["status"] == "Pending"
        assert body["priority"] == "Medium"
        assert body["assignedTo"] == str(users["u1"].id)
        assert body["createdBy"] == str(users["admin"].id)

    def test_missing_title_is_rejected(self, client, users, auth):
        res = client.post(
            "/tasks", json={"assignedTo": str(users["u1"].id)}, headers=auth(users["u1"])
        )
        assert res.status_code == 400
        assert res.json()["msg"] == "Validation failed"
        assert any(e["field"] == "title" for e in res.json()["errors"])

    def test_malformed_assignee_is_rejected(self, client, users, auth):
        res = client.post(
            "/tasks", json={"title": "T", "assignedTo": "not-an-id"}, headers=auth(users["u1"])
        )
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "assignedTo"

    def test_unknown_assignee_is_rejected(self, client, users, auth):
        res = client.post(
            "/tasks", json={"title": "T", "assignedTo": str(uuid.uuid4())}, headers=auth(users["u1"])
        )
        assert res.status_code == 400

    def test_invalid_priority_is_rejected(self, client, users, auth):
        res = client.post(
            "/tasks",
            json={"title": "T", "assignedTo": str(users["u1"].id), "priority": "Urgent"},
            headers=auth(users["u1"]),
        )
        assert res.status_code == 400

    def test_requires_token(self, client, users):
        res = client.post("/tasks", json={"title": "T", "assignedTo": str(users["u1"].id)})
        assert res.status_code == 401
        assert res.json() == {"msg": "No token, authorization denied"}

    def test_rejects_bad_token(self, client, users):
        res = client.get("/tasks", headers={"Authorization": "Bearer garbage"})
        assert res.status_code == 401
        assert res.json() == {"msg": "Token is not valid"}


class TestListTasks:
    def test_role_scoping(self, client, users, auth):
        admin, manager, u1, u2 = users["admin"], users["manager"], users["u1"], users["u2"]
        by_admin_for_u1 = _create(client, auth(admin), u1, title="admin->u1")
        by_manager_for_u2 = _create(client, auth(manager), u2, title="manager->u2")
        by_admin_for_manager = _create(client, auth(admin), manager, title="admin->manager")
        by_u2_for_u2 = _create(client, auth(u2), u2, title="u2->u2")

        def titles(user):
            res = client.get("/tasks", headers=auth(user))
            assert res.status_code == 200
            return {t["title"] for t in res.json()}

        assert titles(admin) == {
            by_admin_for_u1["title"],
            by_manager_for_u2["title"],
            by_admin_for_manager["title"],
            by_u2_for_u2["title"],
        }
        assert titles(manager) == {by_manager_for_u2["title"], by_admin_for_manager["title"]}
        assert titles(u1) == {by_admin_for_u1["title"]}
        assert titles(u2) == {by_manager_for_u2["title"], by_u2_for_u2["title"]}

    def test_filters(self, client, users, auth):
        admin, u1 = users["admin"], users["u1"]
        now = datetime.now(timezone.utc)
        _create(client, auth(admin), u1, title="Write report", priority="High",
                dueDate=(now + timedelta(days=2)).isoformat())
        _create(client, auth(admin), u1, title="Buy milk", description="and the report paper",
                priority="Low", dueDate=(now + timedelta(days=10)).isoformat())
        _create(client, auth(admin), u1, title="Call Bob", priority="High")

        res = client.get("/tasks", params={"priority": "High"}, headers=auth(admin))
        assert {t["title"] for t in res.json()} == {"Write report", "Call Bob"}

        res = client.get("/tasks", params={"search": "REPORT"}, headers=auth(admin))
        assert {t["title"] for t in res.json()} == {"Write report", "Buy milk"}

        res = client.get(
            "/tasks",
            params={"dueDateFrom": now.isoformat(), "dueDateTo": (now + timedelta(days=5)).isoformat()},
            headers=auth(admin),
        )
        assert [t["title"] for t in res.json()] == ["Write report"]

        res = client.get("/tasks", params={"status": "Completed"}, headers=auth(admin))
        assert res.json() == []

    def test_sorting(self, client, users, auth):
        admin, u1 = users["admin"], users["u1"]
        for title in ("b", "c", "a"):
            _create(client, auth(admin), u1, title=title)

        default = [t["title"] for t in client.get("/tasks", headers=auth(admin)).json()]
        assert default == ["a", "c", "b"]

        asc = client.get("/tasks", params={"sortBy": "title"}, headers=auth(admin)).json()
        assert [t["title"] for t in asc] == ["a", "b", "c"]

        desc = client.get(
            "/tasks", params={"sortBy": "title", "sortOrder": "desc"}, headers=auth(admin)
        ).json()
        assert [t["title"] for t in desc] == ["c", "b", "a"]

    def test_search_wildcards_match_literally(self, client, users, auth):
        admin, u1 = users["admin"], users["u1"]
        for title in ("alpha", "beta", "100% done", "snake_case"):
            _create(client, auth(admin), u1, title=title)

        def search(term):
            res = client.get("/tasks", params={"search": term}, headers=auth(admin))
            return {t["title"] for t in res.json()}

        assert search("%") == {"100% done"}
        assert search("_") == {"snake_case"}
        assert search("e_c") == {"snake_case"}
        assert search("a%a") == set()

    def test_items_carry_assignee_and_creator(self, client, users, auth):
        manager, u1 = users["manager"], users["u1"]
        _create(client, auth(manager), u1, title="populated")

        [task] = client.get("/tasks", headers=auth(u1)).json()

        assert task["assignedTo"] == str(u1.id)
        assert task["assignee"] == {"id": str(u1.id), "username": "u1", "email": "u1@test.com"}
        assert task["creator"] == {
            "id": str(manager.id),
            "username": "manager",
            "email": "manager@test.com",
        }

    def test_unknown_sort_field(self, client, users, auth):
        res = client.get("/tasks", params={"sortBy": "password"}, headers=auth(users["admin"]))
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "sortBy"


class TestListCache:
    def test_repeated_get_is_served_from_cache(self, client, users, auth):
        admin, u1 = users["admin"], users["u1"]
        _create(client, auth(admin), u1, title="first")

        first = client.get("/tasks", headers=auth(admin))
        # Written behind the API's back: a cached list must not see it
        _insert_task_directly("sneaky", u1, admin)
        second = client.get("/tasks", headers=auth(admin))

        assert second.status_code == 200
        assert second.content == first.content
        assert [t["title"] for t in second.json()] == ["first"]

    def test_mutation_invalidates_every_list_key(self, client, users, auth):
        admin, u1 = users["admin"], users["u1"]
        task = _create(client, auth(admin), u1, title="first")

        client.get("/tasks", headers=auth(admin))
        client.get("/tasks", params={"priority": "Medium"}, headers=auth(admin))
        client.get("/tasks", headers=auth(u1))

        res = client.put(f"/tasks/{task['id']}", json={"title": "renamed"}, headers=auth(admin))
        assert res.status_code == 200

        for headers, params in ((auth(admin), {}), (auth(admin), {"priority": "Medium"}), (auth(u1), {})):
            titles = [t["title"] for t in client.get("/tasks", params=params, headers=headers).json()]
            assert titles == ["renamed"]

    def test_cache_is_not_shared_between_callers(self, client, users, auth):
        admin, u1, u2 = users["admin"], users["u1"], users["u2"]
        _create(client, auth(admin), u1, title="for u1")

        assert len(client.get("/tasks", headers=auth(u1)).json()) == 1
        assert client.get("/tasks", headers=auth(u2)).json() == []


class TestUpdateTask:
    def test_assignee_can_update(self, client, users, auth):
        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}", json={"status": "In Progress"}, headers=auth(users["u1"])
        )
        assert res.status_code == 200
        body = res.json()
        assert body["status"] == "In Progress"
        assert body["title"] == task["title"]

    def test_non_owner_gets_403(self, client, users, auth):
        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}", json={"status": "Completed"}, headers=auth(users["u2"])
        )
        assert res.status_code == 403
        assert "msg" in res.json()

    def test_non_owner_gets_403_even_with_invalid_payload(self, client, users, auth):
        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}", json={"status": "Nope", "title": ""}, headers=auth(users["u2"])
        )
        assert res.status_code == 403

    def test_missing_task_is_404_before_permission(self, client, users, auth):
        res = client.put(f"/tasks/{uuid.uuid4()}", json={"title": "x"}, headers=auth(users["u2"]))
        assert res.status_code == 404
        assert res.json() == {"msg": "Task not found"}

        res = client.put("/tasks/not-an-id", json={"title": "x"}, headers=auth(users["u2"]))
        assert res.status_code == 404

    def test_invalid_payload_from_owner_is_400(self, client, users, auth):
        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(f"/tasks/{task['id']}", json={"status": "Nope"}, headers=auth(users["u1"]))
        assert res.status_code == 400
        res = client.put(f"/tasks/{task['id']}", json={"title": None}, headers=auth(users["u1"]))
        assert res.status_code == 400

    def test_reassignment_through_update(self, client, users, auth):
        task = _create(client, auth(users["manager"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}",
            json={"assignedTo": str(users["u2"].id)},
            headers=auth(users["manager"]),
        )
        assert res.status_code == 200
        assert res.json()["assignedTo"] == str(users["u2"].id)

        assert client.get("/tasks", headers=auth(users["u1"])).json() == []
        assert len(client.get("/tasks", headers=auth(users["u2"])).json()) == 1


class TestDeleteTask:
    def test_creator_can_delete(self, client, users, auth):
        task = _create(client, auth(users["u1"]), users["u1"])
        res = client.delete(f"/tasks/{task['id']}", headers=auth(users["u1"]))
        assert res.status_code == 200
        assert res.json() == {"msg": "Task removed"}
        assert client.get("/tasks", headers=auth(users["u1"])).json() == []

    def test_assignee_cannot_delete(self, client, users, auth):
        task = _create(client, auth(users["manager"]), users["u1"])
        res = client.delete(f"/tasks/{task['id']}", headers=auth(users["u1"]))
        assert res.status_code == 403

    def test_admin_can_delete_any(self, client, users, auth):
        task = _create(client, auth(users["manager"]), users["u1"])
        res = client.delete(f"/tasks/{task['id']}", headers=auth(users["admin"]))
        assert res.status_code == 200

    def test_missing_task(self, client, users, auth):
        res = client.delete(f"/tasks/{uuid.uuid4()}", headers=auth(users["u1"]))
        assert res.status_code == 404


class TestAssignTask:
    def test_manager_can_assign(self, client, users, auth):
        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}/assign",
            json={"userId": str(users["manager"].id)},
            headers=auth(users["manager"]),
        )
        assert res.status_code == 200
        body = res.json()
        assert body["assignedTo"] == str(users["manager"].id)
        assert body["assignee"]["username"] == "manager"
        assert body["creator"]["email"] == "admin@test.com"

    def test_user_cannot_assign(self, client, users, auth):
        task = _create(client, auth(users["u1"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}/assign",
            json={"userId": str(users["u2"].id)},
            headers=auth(users["u1"]),
        )
        assert res.status_code == 403

    def test_malformed_ids(self, client, users, auth):
        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}/assign", json={"userId": "bad"}, headers=auth(users["admin"])
        )
        assert res.status_code == 400
        assert res.json()["msg"] == "Invalid Task ID or User ID"

        res = client.put(
            "/tasks/bad/assign", json={"userId": str(users["u2"].id)}, headers=auth(users["admin"])
        )
        assert res.status_code == 400

    def test_missing_task_or_user(self, client, users, auth):
        res = client.put(
            f"/tasks/{uuid.uuid4()}/assign",
            json={"userId": str(users["u2"].id)},
            headers=auth(users["admin"]),
        )
        assert res.status_code == 404

        task = _create(client, auth(users["admin"]), users["u1"])
        res = client.put(
            f"/tasks/{task['id']}/assign",
            json={"userId": str(uuid.uuid4())},
            headers=auth(users["admin"]),
        )
        assert res.status_code == 404
        assert res.json() == {"msg": "User not found"}
