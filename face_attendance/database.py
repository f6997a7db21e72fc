"""
数据库连接和模型基类
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

# 创建模型基类
Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """根据连接串创建SQLAlchemy引擎"""
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        pool_pre_ping=True,
    )


def init_db(bind: Engine) -> None:
    """创建所有数据表"""
    # 导入模型以注册到 Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=bind)
