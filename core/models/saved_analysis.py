from .base import Base, Column, String, DateTime, Text, JSON, Boolean


class SavedAnalysis(Base):
    __tablename__ = "saved_analyses"

    id = Column(String(255), primary_key=True, index=True)
    user_id = Column(String(255), index=True, nullable=False)
    image_url = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    description_native = Column(Text, nullable=True)
    learning_language = Column(String(10), nullable=True)
    mother_language = Column(String(10), nullable=True)
    vocabulary = Column(JSON, nullable=False)
    description_audio_url = Column(Text, nullable=True)
    description_native_audio_url = Column(Text, nullable=True)
    # 审核
    flagged = Column(Boolean, default=False, nullable=False)
    flag_reason = Column(Text, nullable=True)
    flagged_at = Column(DateTime, nullable=True)
    flagged_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, index=True)

    def media_urls(self):
        urls = [self.image_url, self.description_audio_url, self.description_native_audio_url]
        return [u for u in urls if u]
