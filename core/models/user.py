from .base import Base, Column, String, DateTime

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ADMIN_ROLES = {ROLE_ADMIN, ROLE_SUPER_ADMIN}

STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"


class User(Base):
    __tablename__ = 'users'
    # 与 Supabase auth 用户 id 一致
    id = Column(String(255), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(100), nullable=True)
    mother_language = Column(String(10), default="zh-cn")
    learning_language = Column(String(10), default="en")
    proficiency_level = Column(String(20), default="beginner")
    role = Column(String(20), default=ROLE_USER, index=True)  # user/admin/super_admin
    status = Column(String(20), default=STATUS_ACTIVE, index=True)  # active/suspended
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    @property
    def is_admin(self) -> bool:
        return str(self.role or "") in ADMIN_ROLES
