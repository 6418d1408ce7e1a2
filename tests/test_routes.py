import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError

from portal import db
from portal.kvstore import LOGIN_SESSIONS_KEY, VISIT_LOG_KEY

from support import StoreTestCase

BROWSER = {"User-Agent": "Mozilla/5.0 (routes test)"}


class RoutesTestCase(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.client = self.app.test_client()

    def login(self, username="admin", password="admin123"):
        return self.client.post(
            "/login",
            json={"username": username, "password": password},
            headers=BROWSER,
        )


class AuthRoutesTestCase(RoutesTestCase):
    def test_login_returns_user_without_digest(self):
        response = self.login()
        self.assertEqual(response.status_code, 200)
        user = response.get_json()["user"]
        self.assertEqual(user["username"], "admin")
        self.assertEqual(user["role"], "admin")
        self.assertNotIn("passwordDigest", user)
        self.assertIsNotNone(user["lastLogin"])

        sessions = self.kv.read_collection(LOGIN_SESSIONS_KEY)
        self.assertEqual(sessions[-1]["userAgent"], BROWSER["User-Agent"])

    def test_bad_password_and_unknown_user_look_the_same(self):
        wrong = self.login(password="nope")
        unknown = self.login(username="ghost", password="admin123")
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.get_json(), unknown.get_json())

    def test_me_and_logout(self):
        self.assertEqual(self.client.get("/me").status_code, 401)
        self.login(username="user", password="user123")
        self.assertEqual(self.client.get("/me").get_json()["user"]["username"], "user")
        self.assertEqual(self.client.post("/logout").status_code, 200)
        self.assertEqual(self.client.get("/me").status_code, 401)

    def test_websites_filtered_by_role(self):
        self.login(username="user", password="user123")
        ids = [w["id"] for w in self.client.get("/websites").get_json()["websites"]]
        self.assertEqual(ids, ["github", "stackoverflow", "zeolf"])

    def test_admin_routes_require_admin(self):
        self.assertEqual(self.client.get("/admin/users").status_code, 401)
        self.login(username="user", password="user123")
        self.assertEqual(self.client.get("/admin/users").status_code, 403)
        self.assertEqual(self.client.get("/admin/analytics").status_code, 403)


class AdminRoutesTestCase(RoutesTestCase):
    def setUp(self):
        super().setUp()
        self.assertEqual(self.login().status_code, 200)

    def test_create_user_and_duplicate(self):
        payload = {"username": "alice", "password": "pw1", "role": "user", "permissions": ["github"]}
        created = self.client.post("/admin/users", json=payload)
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.get_json()["user"]["permissions"], ["github"])

        duplicate = self.client.post("/admin/users", json=payload)
        self.assertEqual(duplicate.status_code, 409)
        usernames = [u["username"] for u in self.client.get("/admin/users").get_json()["users"]]
        self.assertEqual(usernames.count("alice"), 1)

    def test_create_user_validation(self):
        self.assertEqual(self.client.post("/admin/users", json={"password": "x"}).status_code, 400)
        bad_role = {"username": "z", "password": "x", "role": "root"}
        self.assertEqual(self.client.post("/admin/users", json=bad_role).status_code, 400)
        bad_perms = {"username": "z", "password": "x", "permissions": "github"}
        self.assertEqual(self.client.post("/admin/users", json=bad_perms).status_code, 400)

    def test_delete_user(self):
        self.assertEqual(self.client.delete("/admin/users/user-1").status_code, 200)
        self.assertEqual(self.client.delete("/admin/users/user-1").status_code, 404)
        self.assertEqual(self.client.delete("/admin/users/admin-1").status_code, 400)

    def test_update_permissions(self):
        response = self.client.put("/admin/users/user-1/permissions", json={"permissions": ["google"]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["user"]["permissions"], ["google"])
        missing = self.client.put("/admin/users/nobody/permissions", json={"permissions": []})
        self.assertEqual(missing.status_code, 404)

    def test_add_and_delete_website(self):
        response = self.client.post(
            "/admin/websites",
            json={"name": "Example", "url": "example.com", "description": "desc"},
        )
        self.assertEqual(response.status_code, 201)
        website = response.get_json()["website"]
        self.assertEqual(website["url"], "https://example.com")

        self.client.put("/admin/users/user-1/permissions", json={"permissions": [website["id"]]})
        self.assertEqual(self.client.delete(f"/admin/websites/{website['id']}").status_code, 200)
        self.assertEqual(self.store.get_user("user-1").permissions, [])
        self.assertEqual(self.client.delete(f"/admin/websites/{website['id']}").status_code, 404)

    def test_login_summary(self):
        summary = self.client.get("/admin/logins").get_json()
        self.assertEqual(summary["totalUsers"], 2)
        self.assertEqual(summary["loggedInUsers"], 1)
        self.assertEqual(summary["recentSessions"][0]["username"], "admin")

    def test_analytics_snapshot(self):
        self.client.post("/track/pageview", json={"pageUrl": "/"}, headers=BROWSER)
        self.client.post("/track/pageview", json={"pageUrl": "/admin"}, headers=BROWSER)
        analytics = self.client.get("/admin/analytics").get_json()["analytics"]
        self.assertEqual(analytics["totalVisitors"], 2)
        self.assertEqual(analytics["uniqueVisitors"], 1)
        self.assertEqual(len(analytics["weeklyStats"]), 7)
        self.assertEqual(len(analytics["monthlyStats"]), 12)
        self.assertEqual(analytics["dailyStats"][-1]["pageViews"], 2)

    def test_storage_failure_is_reported(self):
        failure = OperationalError("UPDATE", {}, Exception("database or disk is full"))
        with mock.patch.object(db.session, "commit", side_effect=failure):
            response = self.client.post(
                "/admin/websites",
                json={"name": "Example", "url": "example.com"},
            )
        self.assertEqual(response.status_code, 507)
        self.assertFalse(response.get_json()["ok"])


class TrackingRoutesTestCase(RoutesTestCase):
    def test_pageview_then_end(self):
        first = self.client.post("/track/pageview", json={"pageUrl": "/home"}, headers=BROWSER)
        self.assertEqual(first.status_code, 200)
        self.assertTrue(first.get_json()["visit"]["isUnique"])
        second = self.client.post("/track/pageview", json={"pageUrl": "/about"}, headers=BROWSER)
        self.assertFalse(second.get_json()["visit"]["isUnique"])
        self.assertEqual(
            first.get_json()["visit"]["sessionId"],
            second.get_json()["visit"]["sessionId"],
        )

        ended = self.client.post("/track/end")
        self.assertTrue(ended.get_json()["recorded"])

    def test_separate_browsers_are_each_unique(self):
        other_client = self.app.test_client()
        first = self.client.post("/track/pageview", json={"pageUrl": "/"}, headers=BROWSER)
        second = other_client.post("/track/pageview", json={"pageUrl": "/"}, headers=BROWSER)
        self.assertTrue(first.get_json()["visit"]["isUnique"])
        self.assertTrue(second.get_json()["visit"]["isUnique"])
        self.assertNotEqual(
            first.get_json()["visit"]["sessionId"],
            second.get_json()["visit"]["sessionId"],
        )

    def test_end_without_session_is_noop(self):
        response = self.client.post("/track/end")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.get_json()["recorded"])
        self.assertEqual(self.kv.read_collection(VISIT_LOG_KEY), [])

    def test_referrer_from_body(self):
        response = self.client.post(
            "/track/pageview",
            json={"pageUrl": "/", "referrer": "https://github.com/some/repo"},
        )
        self.assertEqual(response.get_json()["visit"]["referrer"], "https://github.com/some/repo")

    def test_event_validation(self):
        self.assertEqual(self.client.post("/track/event", json={}).status_code, 400)
        bad = self.client.post("/track/event", json={"eventName": "x", "properties": [1]})
        self.assertEqual(bad.status_code, 400)
        ok = self.client.post("/track/event", json={"eventName": "open_tab", "properties": {"id": "github"}})
        self.assertEqual(ok.status_code, 201)
        self.assertEqual(ok.get_json()["event"]["eventName"], "open_tab")

    def test_client_errors_feed_health(self):
        self.assertEqual(self.client.get("/health").get_json()["status"], "ok")
        response = self.client.post(
            "/track/error",
            json={"message": "Failed to load iframe", "context": "BrowserTabs"},
        )
        self.assertEqual(response.status_code, 201)
        health = self.client.get("/health").get_json()
        self.assertEqual(health["status"], "warning")
        self.assertEqual(health["errorCount"], 1)

        self.login()
        errors = self.client.get("/admin/errors").get_json()["errors"]
        self.assertEqual(errors[0]["context"], "BrowserTabs")


if __name__ == "__main__":
    unittest.main()
