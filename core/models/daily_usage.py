from .base import Base, Column, String, Integer, DateTime, UniqueConstraint


class DailyUsage(Base):
    __tablename__ = "daily_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "usage_date", name="daily_usage_user_date_idx"),
    )

    id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), index=True, nullable=False)
    usage_date = Column(String(10), index=True, nullable=False)  # YYYY-MM-DD (UTC)
    usage_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
