import os
import unittest
import uuid
from datetime import date, datetime
from unittest import mock

from core import admin_service
from core.analysis_service import save_analysis
from core.db import DB
from core.errors import AppError, ErrorKind
from core.models.admin_log import AdminLog
from core.models.saved_analysis import SavedAnalysis
from core.models.user import User
from core.models.user_stats import UserStats
from core.usage_service import increment_usage, resolve_daily_limit


class RecordingStorage:
    def __init__(self):
        self.deleted = []

    def is_configured(self):
        return True

    def key_from_url(self, url):
        return url.rsplit("/", 1)[-1]

    def delete(self, key):
        self.deleted.append(key)


class AdminServiceTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.admin = self._add_user(role="admin")
        self.super_admin = self._add_user(role="super_admin")
        self.member = self._add_user(role="user")

    def tearDown(self):
        self.session.close()

    def _add_user(self, role="user"):
        user_id = str(uuid.uuid4())
        now = datetime.now()
        self.session.add(User(
            id=user_id,
            email=f"{role}_{user_id[:8]}@example.com",
            name=role,
            role=role,
            status="active",
            created_at=now,
            updated_at=now,
        ))
        self.session.commit()
        return {"id": user_id, "email": f"{role}_{user_id[:8]}@example.com", "role": role}

    def _logs(self, target_id):
        self.session.expire_all()
        return self.session.query(AdminLog).filter(AdminLog.target_id == target_id).all()

    def _save_for(self, user_id):
        return save_analysis(
            self.session,
            user_id,
            image_url="https://cdn.example.com/images/x.png",
            description="A tree",
            vocabulary=[{"word": "tree", "translation": "树"}],
        )

    def test_verify_admin_access(self):
        info = admin_service.verify_admin_access(self.session, self.admin["id"])
        self.assertEqual(info["role"], "admin")
        with self.assertRaises(AppError) as ctx:
            admin_service.verify_admin_access(self.session, self.member["id"])
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        with self.assertRaises(AppError) as ctx:
            admin_service.verify_admin_access(self.session, None)
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_AUTHENTICATED)

    def test_cannot_suspend_self(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.update_user_status(self.session, self.admin, self.admin["id"], "suspend")
        self.assertEqual(ctx.exception.message, "Cannot suspend your own account")

    def test_suspend_and_reactivate_are_logged(self):
        admin_service.update_user_status(self.session, self.admin, self.member["id"], "suspend", reason="spam")
        result = admin_service.update_user_status(self.session, self.admin, self.member["id"], "reactivate")
        self.assertEqual(result["status"], "active")
        actions = sorted(log.action for log in self._logs(self.member["id"]))
        self.assertEqual(actions, ["user_reactivated", "user_suspended"])

    def test_update_limit_bounds(self):
        for value in (0, 1001):
            with self.assertRaises(AppError) as ctx:
                admin_service.update_user_limit(self.session, self.admin, self.member["id"], value)
            self.assertEqual(ctx.exception.message, "Invalid input: daily_limit must be between 1 and 1000")

    def test_update_limit_records_previous_value(self):
        admin_service.update_user_limit(self.session, self.admin, self.member["id"], 25)
        admin_service.update_user_limit(self.session, self.admin, self.member["id"], 40)
        self.assertEqual(resolve_daily_limit(self.session, self.member["id"]), 40)
        details = [log.details for log in self._logs(self.member["id"]) if log.action == "limit_changed"]
        self.assertIn({"previous_limit": 10, "new_limit": 25}, details)
        self.assertIn({"previous_limit": 25, "new_limit": 40}, details)

    def test_first_limit_change_records_configured_default(self):
        with mock.patch.dict(os.environ, {"DAILY_FREE_LIMIT": "7"}):
            admin_service.update_user_limit(self.session, self.admin, self.member["id"], 30)
        details = [log.details for log in self._logs(self.member["id"]) if log.action == "limit_changed"]
        self.assertEqual(details, [{"previous_limit": 7, "new_limit": 30}])

    def test_create_user_initializes_stats(self):
        email = f"New_{uuid.uuid4().hex[:8]}@Example.com"
        result = admin_service.create_user(self.session, self.admin, email, name=" Mei ", learning_language="ja")
        self.assertEqual(result["email"], email.lower())
        detail = admin_service.get_user_detail(self.session, result["id"])
        self.assertEqual(detail["name"], "Mei")
        self.assertEqual(detail["role"], "user")
        self.assertEqual(detail["status"], "active")
        self.assertEqual(detail["learning_language"], "ja")
        self.assertEqual(detail["stats"]["total_analyses"], 0)
        self.session.expire_all()
        self.assertIsNotNone(self.session.query(UserStats).filter(UserStats.user_id == result["id"]).first())
        log = self._logs(result["id"])[0]
        self.assertEqual(log.action, "user_created")
        self.assertEqual(log.admin_id, self.admin["id"])

    def test_create_user_rejects_duplicate_email(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.create_user(self.session, self.admin, self.member["email"].upper())
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)
        self.assertEqual(ctx.exception.message, "A user with this email already exists")

    def test_create_user_validates_input(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.create_user(self.session, self.admin, "not-an-email")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)
        with self.assertRaises(AppError) as ctx:
            admin_service.create_user(self.session, self.admin, "x@example.com", mother_language="en")
        self.assertIn("Mother language and learning language must be different", ctx.exception.issues)

    def test_only_super_admin_creates_admins(self):
        email = f"ops_{uuid.uuid4().hex[:8]}@example.com"
        with self.assertRaises(AppError) as ctx:
            admin_service.create_user(self.session, self.admin, email, role="admin")
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        result = admin_service.create_user(self.session, self.super_admin, email, role="admin")
        self.assertEqual(admin_service.get_user_detail(self.session, result["id"])["role"], "admin")

    def test_update_user_profile_fields(self):
        email = f"renamed_{uuid.uuid4().hex[:8]}@example.com"
        result = admin_service.update_user(
            self.session, self.admin, self.member["id"],
            email=email, name="Kai", learning_language="ko", proficiency_level="advanced",
        )
        self.assertEqual(result["updated_fields"], ["email", "learning_language", "name", "proficiency_level"])
        detail = admin_service.get_user_detail(self.session, self.member["id"])
        self.assertEqual(detail["email"], email)
        self.assertEqual(detail["learning_language"], "ko")
        self.assertEqual(detail["proficiency_level"], "advanced")
        actions = [log.action for log in self._logs(self.member["id"])]
        self.assertEqual(actions, ["user_updated"])

    def test_update_user_email_must_be_unique(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.update_user(self.session, self.admin, self.member["id"], email=self.admin["email"])
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)
        self.assertEqual(ctx.exception.message, "Email is already in use")
        # 改回自己当前的邮箱不算冲突
        result = admin_service.update_user(self.session, self.admin, self.member["id"], email=self.member["email"])
        self.assertEqual(result["updated_fields"], [])

    def test_update_user_status_and_role_rules(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.update_user(self.session, self.admin, self.admin["id"], status="suspended")
        self.assertEqual(ctx.exception.message, "Cannot suspend your own account")
        with self.assertRaises(AppError) as ctx:
            admin_service.update_user(self.session, self.admin, self.member["id"], role="super_admin")
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        with self.assertRaises(AppError) as ctx:
            admin_service.update_user(self.session, self.admin, self.member["id"], nickname="x")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)

        admin_service.update_user(self.session, self.super_admin, self.member["id"], role="admin", status="suspended")
        actions = sorted(log.action for log in self._logs(self.member["id"]))
        self.assertEqual(actions, ["role_changed", "user_suspended"])

    def test_only_super_admin_assigns_admin_role(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.update_user_role(self.session, self.admin, self.member["id"], "admin")
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        result = admin_service.update_user_role(self.session, self.super_admin, self.member["id"], "admin")
        self.assertEqual(result["role"], "admin")

    def test_only_super_admin_deletes_admins(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.delete_user(self.session, self.admin, self.super_admin["id"])
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        with self.assertRaises(AppError):
            admin_service.delete_user(self.session, self.super_admin, self.super_admin["id"])

    def test_delete_user_removes_related_rows(self):
        self._save_for(self.member["id"])
        increment_usage(self.session, self.member["id"])
        storage = RecordingStorage()
        result = admin_service.delete_user(self.session, self.admin, self.member["id"], reason="abuse", storage=storage)
        self.assertTrue(result["deleted"])
        self.assertEqual(storage.deleted, ["x.png"])
        self.session.expire_all()
        self.assertIsNone(self.session.query(User).filter(User.id == self.member["id"]).first())
        self.assertEqual(self.session.query(SavedAnalysis).filter(SavedAnalysis.user_id == self.member["id"]).count(), 0)
        log = self._logs(self.member["id"])[0]
        self.assertEqual(log.action, "user_deleted")
        self.assertEqual(log.details["analyses_count"], 1)

    def test_flag_and_delete_content(self):
        saved = self._save_for(self.member["id"])
        admin_service.flag_content(self.session, self.admin, saved["id"], "inappropriate")
        flagged = admin_service.get_moderation_content(self.session, flagged=True)
        self.assertIn(saved["id"], [a["id"] for a in flagged["analyses"]])

        storage = RecordingStorage()
        admin_service.delete_content(self.session, self.admin, saved["id"], reason="policy", storage=storage)
        self.assertEqual(storage.deleted, ["x.png"])
        actions = sorted(log.action for log in self._logs(saved["id"]))
        self.assertEqual(actions, ["content_deleted", "content_flagged"])
        with self.assertRaises(AppError) as ctx:
            admin_service.delete_content(self.session, self.admin, saved["id"])
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_flag_requires_reason(self):
        saved = self._save_for(self.member["id"])
        with self.assertRaises(AppError):
            admin_service.flag_content(self.session, self.admin, saved["id"], "  ")

    def test_activity_logs_filter_by_action(self):
        admin_service.update_user_limit(self.session, self.admin, self.member["id"], 5)
        logs = admin_service.get_activity_logs(self.session, action="limit_changed")
        self.assertTrue(all(log["action"] == "limit_changed" for log in logs["logs"]))
        self.assertIn(self.admin["email"], [log["admin_email"] for log in logs["logs"]])
        with self.assertRaises(AppError):
            admin_service.get_activity_logs(self.session, action="unknown")

    def test_user_list_search(self):
        result = admin_service.get_admin_users(self.session, search=self.member["email"].upper())
        self.assertEqual([u["id"] for u in result["users"]], [self.member["id"]])
        with self.assertRaises(AppError):
            admin_service.get_admin_users(self.session, sort_by="email")

    def test_platform_stats_growth_series(self):
        stats = admin_service.get_platform_stats(self.session, today=date.today())
        self.assertEqual(len(stats["user_growth"]), admin_service.GROWTH_DAYS + 1)
        self.assertGreaterEqual(stats["total_users"], 3)
        self.assertGreaterEqual(stats["user_growth"][-1]["count"], 3)

    def test_invalid_user_id(self):
        with self.assertRaises(AppError) as ctx:
            admin_service.get_user_detail(self.session, "42")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)


if __name__ == "__main__":
    unittest.main()
