from .base import Base, Column, String, Integer, DateTime


class UserLimit(Base):
    __tablename__ = "user_limits"

    id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), unique=True, index=True, nullable=False)
    daily_limit = Column(Integer, nullable=False)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
