import json
import os
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import cfg
from core.log import get_logger
from core.events import log_event, E

logger = get_logger(__name__)

DEFAULT_DB_URL = "sqlite:///data/lexilens.db"
SQLITE_BUSY_TIMEOUT = 30


def _json_dumps(value) -> str:
    # 词汇中的中日韩文字按原样存储，便于 LIKE 检索
    return json.dumps(value, ensure_ascii=False)


def _use_immediate_transactions(engine) -> None:
    """
    文件 SQLite：事务开始即取写锁（BEGIN IMMEDIATE）。
    多个会话并发占用额度时按顺序排队，避免读锁升级写锁时互相死锁。
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Db:
    """数据库连接管理：引擎、会话工厂与建表。"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or os.getenv("DB") or cfg.get("db", DEFAULT_DB_URL)
        self.engine = self._create_engine(self.url)
        self.Session = sessionmaker(bind=self.engine, autoflush=True, expire_on_commit=False)
        self._tables_ready = False

    @staticmethod
    def _create_engine(url: str):
        if url.startswith("sqlite"):
            if url in ("sqlite://", "sqlite:///:memory:"):
                # 内存库需要在线程间共享同一连接
                return create_engine(
                    url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                    json_serializer=_json_dumps,
                )
            path = url.replace("sqlite:///", "", 1)
            folder = os.path.dirname(path)
            if folder:
                os.makedirs(folder, exist_ok=True)
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
                json_serializer=_json_dumps,
            )
            _use_immediate_transactions(engine)
            return engine
        return create_engine(
            url, pool_pre_ping=True, pool_size=10, max_overflow=20, json_serializer=_json_dumps
        )

    def create_tables(self) -> None:
        if self._tables_ready:
            return
        from core.models.base import Base
        import core.models  # noqa: F401  注册所有模型

        Base.metadata.create_all(self.engine)
        self._tables_ready = True
        log_event(logger, E.SYSTEM_DB_INIT, dialect=self.engine.dialect.name)

    def get_session(self):
        return self.Session()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("数据库连接检查失败")
            return False

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name


DB = Db()
