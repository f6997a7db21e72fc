"""
基础仓储类
"""
from typing import Generic, TypeVar, Type, Optional, List, Callable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import Base
from ..exceptions import PersistenceError

ModelType = TypeVar("ModelType", bound=Base)
T = TypeVar("T")


class BaseRepository(Generic[ModelType]):
    """
    提供基本的数据库操作
    """
    def __init__(self, model: Type[ModelType]):
        self.model = model
        self.primary_key = inspect(model).primary_key[0].name

    def _write(self, db: Session, action: str, fn: Callable[[], T]) -> T:
        """
        执行写操作并提交，失败时回滚并抛出 PersistenceError
        """
        try:
            result = fn()
            db.commit()
            return result
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"{action}失败: {e.__class__.__name__}") from e

    def get(self, db: Session, id: int) -> Optional[ModelType]:
        """
        根据ID获取单个记录
        """
        return db.query(self.model).filter(getattr(self.model, self.primary_key) == id).first()

    def get_multi(self, db: Session, *, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """
        获取多条记录
        """
        return db.query(self.model).offset(skip).limit(limit).all()

    def create(self, db: Session, *, obj_in: dict) -> ModelType:
        """
        创建记录
        """
        db_obj = self.model(**obj_in)

        def _add():
            db.add(db_obj)
            db.flush()
            return db_obj

        self._write(db, "创建记录", _add)
        db.refresh(db_obj)
        return db_obj

    def update(self, db: Session, *, db_obj: ModelType, obj_in: dict) -> ModelType:
        """
        更新记录
        """
        def _apply():
            for field, value in obj_in.items():
                setattr(db_obj, field, value)
            db.add(db_obj)
            return db_obj

        self._write(db, "更新记录", _apply)
        db.refresh(db_obj)
        return db_obj

    def delete(self, db: Session, *, id: int) -> Optional[ModelType]:
        """
        删除记录
        """
        obj = db.get(self.model, id)
        if obj is None:
            return None

        def _remove():
            db.delete(obj)
            return obj

        return self._write(db, "删除记录", _remove)
