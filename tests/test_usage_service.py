import os
import shutil
import tempfile
import threading
import unittest
import uuid
from datetime import date, datetime
from unittest import mock

from core import usage_service
from core.db import DB, Db
from core.models.daily_usage import DailyUsage
from core.models.user_limit import UserLimit
from core.models.user_stats import UserStats
from core.usage_service import (
    DEFAULT_DAILY_LIMIT,
    apply_streak,
    check_daily_limit,
    get_daily_usage,
    increment_usage,
    reserve_usage,
)


class UsageServiceTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.user_id = str(uuid.uuid4())
        self.day = date(2026, 3, 10)

    def tearDown(self):
        self.session.close()

    def _set_limit(self, limit):
        now = datetime.now()
        self.session.add(UserLimit(
            id=str(uuid.uuid4()),
            user_id=self.user_id,
            daily_limit=limit,
            created_at=now,
            updated_at=now,
        ))
        self.session.commit()

    def _stats(self):
        self.session.expire_all()
        return self.session.query(UserStats).filter(UserStats.user_id == self.user_id).first()

    def test_fresh_day_has_full_quota(self):
        info = check_daily_limit(self.session, self.user_id, today=self.day)
        self.assertEqual(info["used"], 0)
        self.assertEqual(info["limit"], DEFAULT_DAILY_LIMIT)
        self.assertEqual(info["remaining"], DEFAULT_DAILY_LIMIT)
        self.assertTrue(info["can_analyze"])

    def test_custom_limit_reached(self):
        self._set_limit(3)
        for _ in range(3):
            increment_usage(self.session, self.user_id, today=self.day)
        info = check_daily_limit(self.session, self.user_id, today=self.day)
        self.assertEqual(info["used"], 3)
        self.assertEqual(info["limit"], 3)
        self.assertEqual(info["remaining"], 0)
        self.assertFalse(info["can_analyze"])

    def test_increment_does_not_enforce_cap(self):
        self._set_limit(1)
        increment_usage(self.session, self.user_id, today=self.day)
        info = increment_usage(self.session, self.user_id, today=self.day)
        self.assertEqual(info["used"], 2)
        self.assertEqual(info["remaining"], 0)

    def test_reserve_refuses_at_cap(self):
        self._set_limit(2)
        results = [reserve_usage(self.session, self.user_id, today=self.day)[0] for _ in range(3)]
        self.assertEqual(results, [True, True, False])
        ok, info = reserve_usage(self.session, self.user_id, today=self.day)
        self.assertFalse(ok)
        self.assertEqual(info["used"], 2)
        # 被拒绝的请求不计入累计分析数
        self.assertEqual(self._stats().total_analyses, 2)

    def test_same_day_increments_keep_streak(self):
        increment_usage(self.session, self.user_id, today=self.day)
        increment_usage(self.session, self.user_id, today=self.day)
        usage = get_daily_usage(self.session, self.user_id, "2026-03-10")
        self.assertEqual(usage, {"date": "2026-03-10", "usage_count": 2})
        stats = self._stats()
        self.assertEqual(stats.total_analyses, 2)
        self.assertEqual(stats.current_streak, 1)
        self.assertEqual(stats.last_activity_date, "2026-03-10")

    def test_consecutive_days_extend_streak(self):
        increment_usage(self.session, self.user_id, today=date(2026, 3, 10))
        increment_usage(self.session, self.user_id, today=date(2026, 3, 11))
        stats = self._stats()
        self.assertEqual(stats.current_streak, 2)
        self.assertEqual(stats.longest_streak, 2)

    def test_skipped_day_resets_streak_but_keeps_longest(self):
        increment_usage(self.session, self.user_id, today=date(2026, 3, 10))
        increment_usage(self.session, self.user_id, today=date(2026, 3, 11))
        increment_usage(self.session, self.user_id, today=date(2026, 3, 13))
        stats = self._stats()
        self.assertEqual(stats.current_streak, 1)
        self.assertEqual(stats.longest_streak, 2)

    def test_usage_is_per_day(self):
        increment_usage(self.session, self.user_id, today=date(2026, 3, 10))
        info = check_daily_limit(self.session, self.user_id, today=date(2026, 3, 11))
        self.assertEqual(info["used"], 0)

    def test_apply_streak_without_history(self):
        stats = UserStats(current_streak=0, longest_streak=5, last_activity_date=None)
        self.assertTrue(apply_streak(stats, self.day))
        self.assertEqual(stats.current_streak, 1)
        self.assertEqual(stats.longest_streak, 5)
        self.assertFalse(apply_streak(stats, self.day))

    def test_stats_failure_rolls_back_counter(self):
        self._set_limit(5)
        reserve_usage(self.session, self.user_id, today=self.day)
        with mock.patch.object(usage_service, "_touch_stats", side_effect=RuntimeError("stats unavailable")):
            with self.assertRaises(RuntimeError):
                reserve_usage(self.session, self.user_id, today=self.day)
            with self.assertRaises(RuntimeError):
                increment_usage(self.session, self.user_id, today=self.day)
        self.assertEqual(get_daily_usage(self.session, self.user_id, "2026-03-10")["usage_count"], 1)
        self.assertEqual(self._stats().total_analyses, 1)

    def test_first_row_insert_conflict_retries_update(self):
        self._set_limit(5)
        real_get = usage_service._get_usage_row
        state = {"raced": False}

        def racing_get(session, user_id, key):
            row = real_get(session, user_id, key)
            if row is None and not state["raced"]:
                # 另一个请求在条件更新与插入之间写入了今日首条记录
                state["raced"] = True
                now = datetime.now()
                session.add(DailyUsage(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    usage_date=key,
                    usage_count=1,
                    created_at=now,
                    updated_at=now,
                ))
                session.commit()
            return row

        with mock.patch.object(usage_service, "_get_usage_row", side_effect=racing_get):
            ok, info = reserve_usage(self.session, self.user_id, today=self.day)
        self.assertTrue(state["raced"])
        self.assertTrue(ok)
        self.assertEqual(info["used"], 2)
        self.assertEqual(get_daily_usage(self.session, self.user_id, "2026-03-10")["usage_count"], 2)
        self.assertEqual(self._stats().total_analyses, 1)


class ConcurrentReserveTestCase(unittest.TestCase):
    """文件库上多线程同时占用额度，成功次数不超过上限。"""

    WORKERS = 8
    LIMIT = 3

    def setUp(self):
        self.folder = tempfile.mkdtemp(prefix="lexilens-usage-")
        self.db = Db(f"sqlite:///{os.path.join(self.folder, 'usage.db')}")
        self.db.create_tables()
        self.user_id = str(uuid.uuid4())
        self.day = date(2026, 3, 10)
        session = self.db.get_session()
        try:
            now = datetime.now()
            session.add(UserLimit(
                id=str(uuid.uuid4()),
                user_id=self.user_id,
                daily_limit=self.LIMIT,
                created_at=now,
                updated_at=now,
            ))
            session.commit()
        finally:
            session.close()

    def tearDown(self):
        self.db.engine.dispose()
        shutil.rmtree(self.folder, ignore_errors=True)

    def _reserve(self, barrier, results, errors):
        barrier.wait()
        session = self.db.get_session()
        try:
            ok, _ = reserve_usage(session, self.user_id, today=self.day)
            results.append(ok)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    def test_parallel_reservations_respect_limit(self):
        barrier = threading.Barrier(self.WORKERS)
        results, errors = [], []
        threads = [
            threading.Thread(target=self._reserve, args=(barrier, results, errors))
            for _ in range(self.WORKERS)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), self.WORKERS)
        self.assertEqual(results.count(True), self.LIMIT)

        session = self.db.get_session()
        try:
            self.assertEqual(get_daily_usage(session, self.user_id, "2026-03-10")["usage_count"], self.LIMIT)
            stats = session.query(UserStats).filter(UserStats.user_id == self.user_id).first()
            self.assertEqual(stats.total_analyses, self.LIMIT)
        finally:
            session.close()


if __name__ == "__main__":
    unittest.main()
