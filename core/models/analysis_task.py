from .base import Base, Column, String, DateTime, Text, JSON


class AnalysisTask(Base):
    from_attributes = True
    __tablename__ = "analysis_tasks"

    id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), index=True, nullable=False)
    status = Column(String(32), default="pending", index=True)  # pending/analyzing/completed/error
    image_url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    vocabulary = Column(JSON, nullable=True)
    saved_analysis_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime)
