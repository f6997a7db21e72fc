"""
人员服务：注册、人脸描述符维护、启用/停用、修改密码
"""
import logging
from typing import List, Sequence

from sqlalchemy.orm import Session

from ..exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError, AuthError
from ..models.person import Person, ROLE_ADMIN, ROLE_STANDARD
from ..repositories import PersonRepository
from ..utils.passwords import hash_password, verify_password
from .embedder import FaceEmbedder, extract_descriptors
from .match_engine import MatchEngine, validate_descriptor
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

ROLES = (ROLE_ADMIN, ROLE_STANDARD)
MIN_PASSWORD_LENGTH = 6


class PersonService:
    def __init__(
        self,
        person_repository: PersonRepository,
        match_engine: MatchEngine,
        session_manager: SessionManager,
        max_descriptors: int,
        min_detection_confidence: float
    ):
        self.person_repository = person_repository
        self.match_engine = match_engine
        self.session_manager = session_manager
        self.max_descriptors = max_descriptors
        self.min_detection_confidence = min_detection_confidence

    def get(self, db: Session, person_id: int) -> Person:
        person = self.person_repository.get_with_descriptors(db, person_id)
        if person is None:
            raise NotFoundError("人员不存在")
        return person

    def list_persons(self, db: Session, skip: int = 0, limit: int = 100) -> List[Person]:
        return self.person_repository.get_multi(db, skip=skip, limit=limit)

    def register(
        self,
        db: Session,
        *,
        name: str,
        email: str,
        password: str,
        role: str = ROLE_STANDARD
    ) -> Person:
        """
        注册人员

        Raises:
            ValidationError: 角色或密码不合法
            ConflictError: 邮箱已被使用
        """
        if role not in ROLES:
            raise ValidationError("角色必须是 admin 或 standard")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"密码长度不能少于{MIN_PASSWORD_LENGTH}位")
        email = email.strip().lower()
        if self.person_repository.get_by_email(db, email) is not None:
            raise ConflictError("该邮箱已被注册")

        person = self.person_repository.create(db, obj_in={
            "name": name.strip(),
            "email": email,
            "password_hash": hash_password(password),
            "role": role,
            "is_active": True,
        })
        logger.info(f"Registered person {person.id} ({person.role})")
        return person

    def bootstrap_admin(self, db: Session, *, name: str, email: str, password: str) -> Person:
        """系统中还没有管理员时，允许无需登录创建第一个管理员"""
        if self.person_repository.count_admins(db) > 0:
            raise ForbiddenError("管理员已存在，请使用管理员账号登录后创建人员")
        return self.register(db, name=name, email=email, password=password, role=ROLE_ADMIN)

    def authenticate(self, db: Session, email: str, password: str) -> Person:
        person = self.person_repository.get_by_email(db, email)
        if person is None or not verify_password(password, person.password_hash):
            raise AuthError("邮箱或密码错误", reason=AuthError.INVALID_CREDENTIALS)
        if not person.is_active:
            raise AuthError("账号已停用", reason=AuthError.INVALID_CREDENTIALS)
        return person

    def _check_vectors(self, vectors: Sequence[Sequence[float]]) -> List[List[float]]:
        if not vectors:
            raise ValidationError("描述符列表不能为空")
        return [validate_descriptor(v).tolist() for v in vectors]

    def _check_count(self, count: int) -> None:
        if count > self.max_descriptors:
            raise ValidationError(f"人脸样本数量超过限制，最多支持{self.max_descriptors}个")

    def descriptors_from_images(self, embedder: FaceEmbedder, images: Sequence[bytes]) -> List[List[float]]:
        if not images:
            raise ValidationError("图片列表不能为空")
        self._check_count(len(images))
        return extract_descriptors(embedder, images, self.min_detection_confidence)

    def add_descriptors(self, db: Session, person_id: int, vectors: Sequence[Sequence[float]]) -> Person:
        """
        追加人脸样本：先写存储，再刷新该人员的缓存条目
        """
        checked = self._check_vectors(vectors)
        person = self.get(db, person_id)
        self._check_count(len(person.descriptors) + len(checked))
        person = self.person_repository.add_descriptors(db, person, checked)
        self.match_engine.sync_person(db, person.id)
        logger.info(f"Added {len(checked)} descriptors for person {person.id}")
        return person

    def replace_descriptors(self, db: Session, person_id: int, vectors: Sequence[Sequence[float]]) -> Person:
        checked = self._check_vectors(vectors)
        self._check_count(len(checked))
        person = self.get(db, person_id)
        person = self.person_repository.replace_descriptors(db, person, checked)
        self.match_engine.sync_person(db, person.id)
        logger.info(f"Replaced descriptors for person {person.id} ({len(checked)} samples)")
        return person

    def clear_descriptors(self, db: Session, person_id: int) -> Person:
        person = self.get(db, person_id)
        person = self.person_repository.clear_descriptors(db, person)
        self.match_engine.sync_person(db, person.id)
        logger.info(f"Cleared descriptors for person {person.id}")
        return person

    def set_active(self, db: Session, person_id: int, is_active: bool) -> Person:
        """
        启用或停用人员

        停用后立即不可被识别，并注销其全部会话。
        """
        person = self.get(db, person_id)
        person = self.person_repository.update(db, db_obj=person, obj_in={"is_active": is_active})
        self.match_engine.sync_person(db, person.id)
        if not is_active:
            self.session_manager.revoke_all(db, person.id)
        logger.info(f"Person {person.id} {'activated' if is_active else 'deactivated'}")
        return person

    def change_password(self, db: Session, person_id: int, old_password: str, new_password: str) -> int:
        """
        修改密码，成功后注销该人员的全部会话

        Returns:
            int: 被注销的会话数
        """
        person = self.get(db, person_id)
        if not verify_password(old_password, person.password_hash):
            raise ValidationError("原密码错误")
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"密码长度不能少于{MIN_PASSWORD_LENGTH}位")
        self.person_repository.update(db, db_obj=person, obj_in={"password_hash": hash_password(new_password)})
        return self.session_manager.revoke_all(db, person.id)
