from .base import Base, Column, String, Integer, DateTime


class UserStats(Base):
    __tablename__ = "user_stats"

    id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), unique=True, index=True, nullable=False)
    total_words_learned = Column(Integer, default=0, nullable=False)
    total_analyses = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_activity_date = Column(String(10), nullable=True)  # YYYY-MM-DD (UTC)
    updated_at = Column(DateTime)
