# 所有模型共用的基类与列类型
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# 日期键格式：UTC 自然日 YYYY-MM-DD
DATE_KEY_FORMAT = "%Y-%m-%d"

__all__ = [
    "Base",
    "Column",
    "Integer",
    "String",
    "Text",
    "Boolean",
    "DateTime",
    "JSON",
    "UniqueConstraint",
    "DATE_KEY_FORMAT",
]
