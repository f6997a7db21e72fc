"""
人员及人脸描述符仓储类（描述符持久化存储）
"""
from typing import Optional, List, Dict, Sequence

from sqlalchemy.orm import Session, selectinload

from .base_repository import BaseRepository
from ..models.person import Person, FaceDescriptor, ROLE_ADMIN


class PersonRepository(BaseRepository[Person]):
    """
    人员数据仓储操作
    """
    def __init__(self):
        super().__init__(Person)

    def get_by_email(self, db: Session, email: str) -> Optional[Person]:
        """
        根据邮箱获取人员

        Args:
            db: 数据库会话
            email: 邮箱（不区分大小写）

        Returns:
            Optional[Person]: 人员，不存在则返回None
        """
        return db.query(self.model).filter(self.model.email == email.strip().lower()).first()

    def is_active(self, db: Session, person_id: int) -> bool:
        person = self.get(db, person_id)
        return bool(person is not None and person.is_active)

    def count_admins(self, db: Session) -> int:
        return db.query(self.model).filter(self.model.role == ROLE_ADMIN).count()

    def count_active(self, db: Session) -> int:
        return db.query(self.model).filter(self.model.is_active.is_(True)).count()

    def find_active_with_descriptor(self, db: Session, person_id: int) -> List[List[float]]:
        """
        获取单个激活人员的全部描述符

        Args:
            db: 数据库会话
            person_id: 人员ID

        Returns:
            List[List[float]]: 描述符列表；人员不存在、未激活或没有描述符时为空列表
        """
        rows = db.query(FaceDescriptor.vector)\
            .join(Person, Person.id == FaceDescriptor.person_id)\
            .filter(Person.id == person_id, Person.is_active.is_(True))\
            .order_by(FaceDescriptor.id)\
            .all()
        return [list(row.vector) for row in rows]

    def find_all_active_with_descriptors(self, db: Session) -> Dict[int, List[List[float]]]:
        """
        扫描所有带描述符的激活人员

        Returns:
            Dict[int, List[List[float]]]: 人员ID -> 描述符列表
        """
        rows = db.query(FaceDescriptor.person_id, FaceDescriptor.vector)\
            .join(Person, Person.id == FaceDescriptor.person_id)\
            .filter(Person.is_active.is_(True))\
            .order_by(FaceDescriptor.person_id, FaceDescriptor.id)\
            .all()
        gallery: Dict[int, List[List[float]]] = {}
        for row in rows:
            gallery.setdefault(row.person_id, []).append(list(row.vector))
        return gallery

    def get_with_descriptors(self, db: Session, person_id: int) -> Optional[Person]:
        return db.query(self.model)\
            .options(selectinload(self.model.descriptors))\
            .filter(self.model.id == person_id)\
            .first()

    def add_descriptors(self, db: Session, person: Person, vectors: Sequence[Sequence[float]]) -> Person:
        """追加描述符"""
        def _add():
            for vector in vectors:
                person.descriptors.append(FaceDescriptor(vector=[float(x) for x in vector]))
            db.add(person)
            return person

        self._write(db, "保存人脸描述符", _add)
        db.refresh(person)
        return person

    def replace_descriptors(self, db: Session, person: Person, vectors: Sequence[Sequence[float]]) -> Person:
        """替换全部描述符"""
        def _replace():
            person.descriptors = [FaceDescriptor(vector=[float(x) for x in v]) for v in vectors]
            db.add(person)
            return person

        self._write(db, "替换人脸描述符", _replace)
        db.refresh(person)
        return person

    def clear_descriptors(self, db: Session, person: Person) -> Person:
        return self.replace_descriptors(db, person, [])
