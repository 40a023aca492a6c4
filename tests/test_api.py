import os
import unittest
import uuid
from datetime import datetime

import jwt
from fastapi.testclient import TestClient

from core.db import DB
from core.models.user import User
from core.storage_service import R2Storage, get_storage
from web import app

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _token(user_id, email):
    payload = {"sub": user_id, "email": email, "aud": "authenticated", "role": "authenticated"}
    return jwt.encode(payload, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        app.dependency_overrides[get_storage] = lambda: R2Storage(config={})
        self.client = TestClient(app)
        self.user_id = str(uuid.uuid4())
        self.email = f"api_{self.user_id[:8]}@example.com"
        self.headers = {"Authorization": f"Bearer {_token(self.user_id, self.email)}"}

    def tearDown(self):
        app.dependency_overrides.clear()

    def _setup_languages(self):
        resp = self.client.put(
            "/api/user/settings",
            json={"mother_language": "zh-cn", "learning_language": "en", "proficiency_level": "beginner"},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        return resp.json()

    def _add_admin(self):
        admin_id = str(uuid.uuid4())
        email = f"admin_{admin_id[:8]}@example.com"
        session = DB.get_session()
        try:
            now = datetime.now()
            session.add(User(id=admin_id, email=email, role="admin", status="active", created_at=now, updated_at=now))
            session.commit()
        finally:
            session.close()
        return {"Authorization": f"Bearer {_token(admin_id, email)}"}

    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")
        self.assertTrue(resp.headers.get("X-Trace-Id"))

    def test_requires_authentication(self):
        resp = self.client.get("/api/analyze/usage")
        self.assertEqual(resp.status_code, 401)
        body = resp.json()
        self.assertEqual(body["code"], 40101)
        self.assertEqual(body["data"]["kind"], "not_authenticated")

    def test_invalid_token_is_rejected(self):
        resp = self.client.get("/api/analyze/usage", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(resp.status_code, 401)

    def test_session_needs_setup_then_ready(self):
        resp = self.client.get("/api/user/session", headers=self.headers)
        self.assertEqual(resp.status_code, 409)
        self.assertTrue(resp.json()["data"]["needs_setup"])

        body = self._setup_languages()
        self.assertEqual(body["code"], 0)
        self.assertEqual(body["data"]["email"], self.email)

        resp = self.client.get("/api/user/session", headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["user"]["learning_language"], "en")

    def test_settings_validation(self):
        resp = self.client.put(
            "/api/user/settings",
            json={"mother_language": "en", "learning_language": "en", "proficiency_level": "beginner"},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.put("/api/user/settings", json={}, headers=self.headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Invalid input")
        self.assertTrue(resp.json()["data"]["issues"])

    def test_analyze_flow(self):
        self._setup_languages()
        files = {"image": ("cat.png", PNG_BYTES, "image/png")}
        resp = self.client.post("/api/analyze/image", files=files, headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["usage"]["used"], 1)
        task_id = data["task_id"]

        pending = self.client.get("/api/analyze/pending", headers=self.headers).json()["data"]["task"]
        self.assertEqual(pending["id"], task_id)

        resp = self.client.post("/api/analyze/image", files=files, headers=self.headers)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["data"]["task_id"], task_id)

        resp = self.client.patch(
            f"/api/analyze/task/{task_id}",
            json={"status": "completed", "description": "A cat", "vocabulary": [{"word": "cat", "translation": "猫"}]},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        detail = self.client.get(f"/api/analyze/task/{task_id}", headers=self.headers).json()["data"]
        self.assertEqual(detail["status"], "completed")
        resp = self.client.patch(f"/api/analyze/task/{task_id}", json={"status": "pending"}, headers=self.headers)
        self.assertEqual(resp.status_code, 409)

        usage = self.client.get("/api/analyze/usage", headers=self.headers).json()["data"]
        self.assertEqual(usage["used"], 1)
        self.assertEqual(usage["remaining"], usage["limit"] - 1)

    def test_rejects_unsupported_image(self):
        self._setup_languages()
        files = {"image": ("cat.gif", b"GIF89a", "image/gif")}
        resp = self.client.post("/api/analyze/image", files=files, headers=self.headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Invalid file type. Supported: JPG, PNG, WEBP")

    def test_saved_analysis_routes(self):
        payload = {
            "image_url": "https://cdn.example.com/images/cat.png",
            "description": "A cat sleeping",
            "vocabulary": [{"word": "cat", "translation": "猫"}, {"word": "sleep", "translation": "睡觉"}],
        }
        resp = self.client.post("/api/saved", json=payload, headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        analysis_id = resp.json()["data"]["id"]

        found = self.client.get("/api/saved/search", params={"q": "睡觉"}, headers=self.headers).json()["data"]
        self.assertEqual(found["total_count"], 1)

        recent = self.client.get("/api/analyses/recent", headers=self.headers).json()["data"]
        self.assertEqual(recent[0]["id"], analysis_id)

        stats = self.client.get("/api/stats", headers=self.headers).json()["data"]
        self.assertEqual(stats["total_words_learned"], 2)

        resp = self.client.delete(f"/api/saved/{analysis_id}", headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        resp = self.client.get(f"/api/saved/{analysis_id}", headers=self.headers)
        self.assertEqual(resp.status_code, 404)

    def test_saved_requires_translation(self):
        payload = {"image_url": "https://x/a.png", "description": "x", "vocabulary": [{"word": "cat"}]}
        resp = self.client.post("/api/saved", json=payload, headers=self.headers)
        self.assertEqual(resp.status_code, 400)

    def test_admin_routes_require_admin_role(self):
        self._setup_languages()
        resp = self.client.get("/api/admin/users", headers=self.headers)
        self.assertEqual(resp.status_code, 403)

        admin_headers = self._add_admin()
        resp = self.client.get("/api/admin/users", params={"search": self.email}, headers=admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([u["id"] for u in resp.json()["data"]["users"]], [self.user_id])

        resp = self.client.put(f"/api/admin/users/{self.user_id}/limit", json={"daily_limit": 2000}, headers=admin_headers)
        self.assertEqual(resp.status_code, 400)
        resp = self.client.put(f"/api/admin/users/{self.user_id}/limit", json={"daily_limit": 3}, headers=admin_headers)
        self.assertEqual(resp.status_code, 200)
        usage = self.client.get("/api/analyze/usage", headers=self.headers).json()["data"]
        self.assertEqual(usage["limit"], 3)

    def test_admin_creates_and_edits_users(self):
        admin_headers = self._add_admin()
        email = f"created_{uuid.uuid4().hex[:8]}@example.com"
        resp = self.client.post("/api/admin/users", json={"email": email, "name": "Ana"}, headers=admin_headers)
        self.assertEqual(resp.status_code, 200)
        created_id = resp.json()["data"]["id"]

        resp = self.client.post("/api/admin/users", json={"email": email}, headers=admin_headers)
        self.assertEqual(resp.status_code, 409)
        resp = self.client.post("/api/admin/users", json={"email": email, "role": "admin"}, headers=admin_headers)
        self.assertEqual(resp.status_code, 403)

        resp = self.client.put(
            f"/api/admin/users/{created_id}",
            json={"name": "Ana Li", "proficiency_level": "intermediate"},
            headers=admin_headers,
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["updated_fields"], ["name", "proficiency_level"])
        detail = self.client.get(f"/api/admin/users/{created_id}", headers=admin_headers).json()["data"]
        self.assertEqual(detail["name"], "Ana Li")
        self.assertEqual(detail["proficiency_level"], "intermediate")

    def test_description_audio_disabled(self):
        resp = self.client.post(
            "/api/audio/description",
            json={"analysis_id": str(uuid.uuid4()), "kind": "translated"},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 501)


if __name__ == "__main__":
    unittest.main()
