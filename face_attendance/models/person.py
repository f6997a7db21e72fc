"""
人员及人脸描述符数据模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow

ROLE_ADMIN = "admin"
ROLE_STANDARD = "standard"


class Person(Base):
    """人员表"""
    __tablename__ = "persons"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default=ROLE_STANDARD)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    descriptors = relationship(
        "FaceDescriptor",
        back_populates="person",
        cascade="all, delete-orphan",
        order_by="FaceDescriptor.id",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class FaceDescriptor(Base):
    """人脸描述符表，一个人员可以有多个样本"""
    __tablename__ = "face_descriptors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    person_id = Column(Integer, ForeignKey("persons.id", ondelete="CASCADE"), index=True, nullable=False)

    # 128维浮点向量
    vector = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    person = relationship("Person", back_populates="descriptors")
