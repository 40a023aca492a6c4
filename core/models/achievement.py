from .base import Base, Column, String, DateTime


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), index=True, nullable=False)
    type = Column(String(32), nullable=False)  # words_10 / words_100 / streak_7 ...
    unlocked_at = Column(DateTime)
