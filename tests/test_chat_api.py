import importlib
import os
import sys
import unittest
from datetime import datetime


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, room, event, payload):
        self.events.append((room, event, payload))


class FailingPublisher:
    def publish(self, room, event, payload):
        raise ConnectionError("message queue unavailable")


class ChatApiTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.publisher = RecordingPublisher()
        self.app.extensions["chat_publisher"] = self.publisher
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

        self.client = self.app.test_client()
        db = self.app_module.db
        User = self.app_module.User
        RoleEnum = self.app_module.RoleEnum

        self.developer = User(name="Dev", email="dev@example.com", role=RoleEnum.developer)
        self.developer.set_password("Password!1")
        self.outsider = User(name="Outsider", email="out@example.com", role=RoleEnum.developer)
        self.outsider.set_password("Password!1")
        db.session.add_all([self.developer, self.outsider])
        db.session.commit()

        client = self.app_module.Client(name="Acme")
        db.session.add(client)
        db.session.flush()
        self.project = self.app_module.Project(name="Apollo", client_id=client.id)
        db.session.add(self.project)
        db.session.flush()
        self.assignment = self.app_module.ProjectAssignment(
            user_id=self.developer.id,
            project_id=self.project.id,
            assigned_at=datetime(2024, 1, 1, 9, 0),
            last_read_at=datetime(2024, 1, 1, 9, 0),
        )
        db.session.add(self.assignment)
        db.session.commit()

        self.dev_token = self._login("dev@example.com")
        self.outsider_token = self._login("out@example.com")

    def tearDown(self):
        self.app_module.db.session.remove()
        self.app_module.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _login(self, email):
        response = self.client.post(
            "/api/auth/login",
            json={"email": email, "password": "Password!1"},
        )
        self.assertEqual(response.status_code, 200)
        return response.get_json()["access_token"]

    def _auth_headers(self, token):
        return {"Authorization": f"Bearer {token}"}

    def _send(self, content, token=None):
        return self.client.post(
            f"/api/chat/{self.project.id}/messages",
            headers=self._auth_headers(token or self.dev_token),
            json={"content": content},
        )

    def test_message_is_stored_and_published(self):
        response = self._send("  Deploy is done  ")

        self.assertEqual(response.status_code, 201)
        message = response.get_json()
        self.assertEqual(message["content"], "Deploy is done")
        self.assertEqual(message["senderName"], "Dev")

        self.assertEqual(len(self.publisher.events), 1)
        room, event, payload = self.publisher.events[0]
        self.assertEqual(room, f"project:{self.project.id}")
        self.assertEqual(event, "new-message")
        self.assertEqual(payload["id"], message["id"])

    def test_history_is_returned_oldest_first(self):
        for text in ("one", "two", "three"):
            self.assertEqual(self._send(text).status_code, 201)

        response = self.client.get(
            f"/api/chat/{self.project.id}/messages?limit=2",
            headers=self._auth_headers(self.dev_token),
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual([m["content"] for m in response.get_json()], ["two", "three"])

    def test_publish_failure_does_not_lose_message(self):
        self.app.extensions["chat_publisher"] = FailingPublisher()

        with self.assertLogs(self.app.logger, level="WARNING"):
            response = self._send("still saved")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.app_module.Message.query.count(), 1)

    def test_empty_message_is_rejected(self):
        response = self._send("   ")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.publisher.events, [])

    def test_non_member_cannot_read_or_post(self):
        response = self._send("hello", token=self.outsider_token)
        self.assertEqual(response.status_code, 403)

        response = self.client.get(
            f"/api/chat/{self.project.id}/messages",
            headers=self._auth_headers(self.outsider_token),
        )
        self.assertEqual(response.status_code, 403)

    def _add_member(self, name, email, role=None):
        db = self.app_module.db
        user = self.app_module.User(
            name=name, email=email, role=role or self.app_module.RoleEnum.developer
        )
        user.set_password("Password!1")
        db.session.add(user)
        db.session.flush()
        db.session.add(
            self.app_module.ProjectAssignment(
                user_id=user.id,
                project_id=self.project.id,
                assigned_at=datetime(2024, 1, 1, 9, 0),
                last_read_at=datetime(2024, 1, 1, 9, 0),
            )
        )
        db.session.commit()
        return self._login(email)

    def _unread(self, token):
        response = self.client.get(
            "/api/chat/unread-counts", headers=self._auth_headers(token)
        )
        self.assertEqual(response.status_code, 200)
        return response.get_json()

    def test_unread_counts_skip_own_messages_and_reset_on_read(self):
        peer_token = self._add_member("Peer", "peer@example.com")
        self._send("from peer 1", token=peer_token)
        self._send("from peer 2", token=peer_token)
        self._send("from dev")

        self.assertEqual(self._unread(self.dev_token), {str(self.project.id): 2})
        self.assertEqual(self._unread(peer_token), {str(self.project.id): 1})

        self.client.post(
            f"/api/chat/{self.project.id}/read",
            headers=self._auth_headers(self.dev_token),
        )
        self.assertEqual(self._unread(self.dev_token), {str(self.project.id): 0})

    def test_unread_counts_include_projects_without_chat(self):
        self.assertEqual(self._unread(self.dev_token), {str(self.project.id): 0})
        self.assertEqual(self._unread(self.outsider_token), {})

    def test_admin_unread_counts_cover_every_chat_group(self):
        admin = self.app_module.User(
            name="Admin", email="admin@example.com", role=self.app_module.RoleEnum.admin
        )
        admin.set_password("Password!1")
        self.app_module.db.session.add(admin)
        self.app_module.db.session.commit()
        admin_token = self._login("admin@example.com")

        self.assertEqual(self._unread(admin_token), {})

        self._send("one")
        self._send("two")
        self._send("from admin", token=admin_token)

        self.assertEqual(self._unread(admin_token), {str(self.project.id): 2})

    def test_mark_read_updates_assignment(self):
        response = self.client.post(
            f"/api/chat/{self.project.id}/read",
            headers=self._auth_headers(self.dev_token),
        )

        self.assertEqual(response.status_code, 200)
        self.app_module.db.session.refresh(self.assignment)
        self.assertGreater(self.assignment.last_read_at, datetime(2024, 1, 1, 9, 0))


if __name__ == "__main__":
    unittest.main()
