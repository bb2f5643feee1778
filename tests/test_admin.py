"""
Tests for the admin console: staff accounts, dashboard stats and the audit log.
"""

from datetime import datetime

from bakeshop.audit import build_log_query, parse_iso_date, record_activity


class TestStats:
    def test_counts(self, client, customer, admin, owner, product, login):
        login(admin)
        stats = client.get("/api/admin/stats").get_json()["stats"]
        assert stats == {"users": 1, "admins": 1, "owners": 1, "categories": 1, "products": 1}


class TestStaffAccounts:
    def test_list_puts_owner_first(self, client, admin, owner, customer, login):
        login(admin)
        admins = client.get("/api/admin/admins").get_json()["admins"]
        assert [item["username"] for item in admins] == ["olivia", "adrian"]

    def test_admin_can_create_admin(self, client, admin, login, database):
        login(admin)
        response = client.post(
            "/api/admin/admins",
            json={"username": "bella", "email": "bella@bakeshop.test", "password": "longenough"},
        )
        assert response.status_code == 201
        assert response.get_json()["admin"]["role"] == "admin"
        entry = database.audit_logs.find_one({"action": "CREATED_ADMIN"})
        assert entry["details"] == "adrian added bella as admin"

    def test_admin_cannot_delete_admin(self, client, admin, make_account, login, database):
        target = make_account("bella", "admin")
        login(admin)
        response = client.delete(f"/api/admin/admins/{target['_id']}")
        assert response.status_code == 403
        assert response.get_json()["message"] == "Owner access required"
        assert database.users.count_documents({"_id": target["_id"]}) == 1

    def test_owner_deletes_admin(self, client, owner, admin, login, database):
        login(owner)
        response = client.delete(f"/api/admin/admins/{admin['_id']}")
        assert response.status_code == 200
        assert database.users.count_documents({"_id": admin["_id"]}) == 0
        assert database.audit_logs.count_documents({"action": "DELETED_ADMIN"}) == 1

    def test_owner_account_is_protected(self, client, owner, login, database):
        login(owner)
        response = client.delete(f"/api/admin/admins/{owner['_id']}")
        assert response.status_code == 403
        assert response.get_json()["message"] == "Owner account cannot be deleted"

        response = client.put(f"/api/admin/admins/{owner['_id']}", json={"username": "boss"})
        assert response.status_code == 403
        assert response.get_json()["message"] == "Owner account cannot be modified"

    def test_plain_user_is_not_an_admin_target(self, client, owner, customer, login):
        login(owner)
        response = client.delete(f"/api/admin/admins/{customer['_id']}")
        assert response.status_code == 404
        assert response.get_json()["message"] == "Admin account not found"

    def test_owner_updates_admin(self, client, owner, admin, login, database):
        login(owner)
        response = client.put(f"/api/admin/admins/{admin['_id']}", json={"email": "chef@bakeshop.test"})
        assert response.status_code == 200
        assert database.users.find_one({"_id": admin["_id"]})["email"] == "chef@bakeshop.test"
        assert database.audit_logs.count_documents({"action": "UPDATED_ADMIN"}) == 1

    def test_malformed_admin_id(self, client, owner, login):
        login(owner)
        assert client.delete("/api/admin/admins/nope").status_code == 400


class TestAuditLog:
    def test_logs_are_newest_first_with_actor(self, app, client, owner, admin, login, database):
        database.audit_logs.insert_many(
            [
                {
                    "actor": admin["_id"],
                    "action": "CREATED_CATEGORY",
                    "target_type": "category",
                    "target_label": "Breads",
                    "details": "adrian created category Breads",
                    "created_at": datetime(2024, 5, 1, 9, 0),
                },
                {
                    "actor": admin["_id"],
                    "action": "DELETED_PRODUCT",
                    "target_type": "product",
                    "target_label": "Old scone",
                    "details": "adrian deleted product Old scone",
                    "created_at": datetime(2024, 5, 2, 9, 0),
                },
            ]
        )
        login(owner)
        logs = client.get("/api/admin/logs").get_json()["logs"]
        assert [entry["action"] for entry in logs] == ["DELETED_PRODUCT", "CREATED_CATEGORY"]
        assert logs[0]["actor"] == {"id": str(admin["_id"]), "username": "adrian", "role": "admin"}
        assert logs[0]["createdAt"] == "2024-05-02T09:00:00Z"

        searched = client.get("/api/admin/logs?search=scone").get_json()["logs"]
        assert [entry["targetLabel"] for entry in searched] == ["Old scone"]

        dated = client.get("/api/admin/logs?from=2024-05-01&to=2024-05-01").get_json()["logs"]
        assert [entry["action"] for entry in dated] == ["CREATED_CATEGORY"]

    def test_invalid_limit(self, client, owner, login):
        login(owner)
        assert client.get("/api/admin/logs?limit=many").status_code == 400

    def test_record_activity_ignores_bad_entries(self, app, database):
        with app.app_context():
            record_activity(None, "CREATED_PRODUCT", "product", None, "Bun")
            record_activity({"_id": "x"}, "CREATED_PRODUCT", "pastry", None, "Bun")
        assert database.audit_logs.count_documents({}) == 0

    def test_record_activity_truncates_long_text(self, app, admin, database):
        with app.app_context():
            record_activity(admin, "UPDATED_PRODUCT", "product", None, "L" * 500, "D" * 500)
        entry = database.audit_logs.find_one({})
        assert len(entry["target_label"]) == 140
        assert len(entry["details"]) == 300

    def test_date_parsing(self):
        assert parse_iso_date("2024-05-01") == datetime(2024, 5, 1)
        assert parse_iso_date("2024-05-01", end_of_day=True) == datetime(2024, 5, 2)
        assert parse_iso_date("2024-05-01T10:00:00+02:00") == datetime(2024, 5, 1, 8, 0)
        assert parse_iso_date("yesterday") is None

    def test_query_ignores_unparseable_dates(self):
        assert build_log_query(search="", start="soon", end=None) == {}
