from .base import Base, Column, String, DateTime, JSON

ADMIN_ACTIONS = (
    "user_created",
    "user_updated",
    "user_suspended",
    "user_reactivated",
    "user_deleted",
    "content_flagged",
    "content_deleted",
    "role_changed",
    "limit_changed",
)
TARGET_TYPES = ("user", "content", "user_limit", "system")


class AdminLog(Base):
    # 只追加，不更新不删除
    __tablename__ = "admin_logs"

    id = Column(String(255), primary_key=True, index=True)
    admin_id = Column(String(255), index=True, nullable=False)
    action = Column(String(32), index=True, nullable=False)
    target_type = Column(String(32), nullable=False)
    target_id = Column(String(255), index=True, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, index=True)
