import unittest
import uuid
from datetime import datetime, timedelta

from core.db import DB
from core.models.analysis_task import AnalysisTask
from core.task_service import create_task
from jobs.task_sweep import run_sweep_once


class TaskSweepTestCase(unittest.TestCase):
    def test_run_sweep_once_removes_stuck_tasks(self):
        DB.create_tables()
        session = DB.get_session()
        try:
            stuck = create_task(session, str(uuid.uuid4()), now=datetime.now() - timedelta(hours=1))
            fresh = create_task(session, str(uuid.uuid4()))
            stuck_id, fresh_id = stuck.id, fresh.id
            result = run_sweep_once()
            self.assertGreaterEqual(result["total"], 1)
            session.expire_all()
            ids = {t.id for t in session.query(AnalysisTask).all()}
            self.assertNotIn(stuck_id, ids)
            self.assertIn(fresh_id, ids)
        finally:
            session.close()


if __name__ == "__main__":
    unittest.main()
