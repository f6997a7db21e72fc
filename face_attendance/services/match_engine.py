"""
人脸描述符最近邻匹配
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from ..cache import DescriptorCache
from ..exceptions import ValidationError
from ..repositories import PersonRepository

logger = logging.getLogger(__name__)

DESCRIPTOR_LENGTH = 128


@dataclass(frozen=True)
class MatchResult:
    """单次请求的匹配结果，不持久化"""
    person_id: int
    distance: float
    confidence: float


def validate_descriptor(descriptor: Sequence[float]) -> np.ndarray:
    """
    校验描述符并转换为numpy数组

    Args:
        descriptor: 128维浮点序列

    Returns:
        np.ndarray: float64数组

    Raises:
        ValidationError: 长度不是128或包含非有限数值
    """
    try:
        arr = np.asarray(descriptor, dtype=np.float64)
    except (TypeError, ValueError):
        raise ValidationError("人脸描述符必须是数值数组")
    if arr.ndim != 1 or arr.shape[0] != DESCRIPTOR_LENGTH:
        raise ValidationError(f"人脸描述符必须是{DESCRIPTOR_LENGTH}维数组")
    if not np.all(np.isfinite(arr)):
        raise ValidationError("人脸描述符包含无效数值")
    return arr


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """计算两个描述符之间的欧氏距离"""
    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)
    if a_arr.shape != b_arr.shape:
        raise ValidationError("描述符长度不一致")
    return float(np.linalg.norm(a_arr - b_arr))


def confidence_from_distance(distance: float) -> float:
    return max(0.0, 1.0 - distance)


def find_best_match(
    descriptor: Sequence[float],
    gallery: Mapping[int, Sequence[Sequence[float]]],
    threshold: float,
    tie_margin: float = 0.0,
    is_active: Optional[Callable[[int], bool]] = None
) -> Optional[MatchResult]:
    """
    在图库中线性扫描寻找最近的人员

    每个人员取其所有描述符中的最小距离；只有最小距离低于阈值且人员
    处于激活状态时才返回结果。第一名与第二名的距离差小于 tie_margin
    （或完全相等）时视为无法区分，不返回结果。

    Args:
        descriptor: 输入描述符（128维）
        gallery: 人员ID -> 描述符列表
        threshold: 距离阈值，距离必须严格小于该值
        tie_margin: 判定为歧义的最小距离差
        is_active: 判断人员是否激活的回调，None表示全部视为激活

    Returns:
        Optional[MatchResult]: 匹配结果，没有人员满足条件时返回None
    """
    query = validate_descriptor(descriptor)

    candidates: List[tuple] = []
    for person_id, samples in gallery.items():
        matrix = np.asarray(samples, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] == 0 or matrix.shape[1] != DESCRIPTOR_LENGTH:
            logger.warning(f"Skipping malformed gallery entry for person {person_id}")
            continue
        distance = float(np.min(np.linalg.norm(matrix - query, axis=1)))
        if distance < threshold:
            candidates.append((distance, person_id))

    candidates.sort(key=lambda item: item[0])

    active = [
        (distance, person_id) for distance, person_id in candidates
        if is_active is None or is_active(person_id)
    ]
    if not active:
        return None

    best_distance, best_person = active[0]
    if len(active) > 1:
        runner_up_distance, runner_up = active[1]
        gap = runner_up_distance - best_distance
        if gap <= 0 or gap < tie_margin:
            logger.info(
                f"Ambiguous match rejected: persons {best_person} and {runner_up} "
                f"within {gap:.4f} (margin {tie_margin})"
            )
            return None

    return MatchResult(
        person_id=best_person,
        distance=best_distance,
        confidence=confidence_from_distance(best_distance),
    )


class MatchEngine:
    """
    人脸匹配引擎：缓存优先读取图库，缓存不完整时从存储重建
    """
    def __init__(
        self,
        person_repository: PersonRepository,
        descriptor_cache: DescriptorCache,
        threshold: float,
        tie_margin: float = 0.0
    ):
        self.person_repository = person_repository
        self.descriptor_cache = descriptor_cache
        self.threshold = threshold
        self.tie_margin = tie_margin

    def rebuild_gallery(self, db: Session) -> Dict[int, List[List[float]]]:
        """从存储扫描所有激活人员的描述符并覆盖缓存"""
        gallery = self.person_repository.find_all_active_with_descriptors(db)
        self.descriptor_cache.replace_all(gallery)
        return gallery

    def load_gallery(self, db: Session) -> Dict[int, List[List[float]]]:
        """
        获取匹配用图库

        缓存完整时直接使用缓存；否则惰性重建。缓存不可用时直接使用存储结果。
        """
        gallery = self.descriptor_cache.complete_gallery()
        if gallery is not None:
            return gallery
        logger.info("Descriptor cache incomplete, rebuilding from store")
        return self.rebuild_gallery(db)

    def descriptors_for(self, db: Session, person_id: int) -> List[List[float]]:
        """读取单个人员的描述符，缓存未命中时回源"""
        def _load():
            return self.person_repository.find_active_with_descriptor(db, person_id) or None

        return self.descriptor_cache.get(person_id, _load) or []

    def sync_person(self, db: Session, person_id: int) -> None:
        """
        人员描述符或状态变化后，用存储中的最新数据刷新该人员的缓存条目
        """
        descriptors = self.person_repository.find_active_with_descriptor(db, person_id)
        if descriptors:
            self.descriptor_cache.put(person_id, descriptors)
        else:
            self.descriptor_cache.invalidate(person_id)

    def match(self, descriptor: Sequence[float], gallery: Mapping[int, Sequence[Sequence[float]]],
              is_active: Optional[Callable[[int], bool]] = None) -> Optional[MatchResult]:
        return find_best_match(descriptor, gallery, self.threshold, self.tie_margin, is_active)

    def identify(self, db: Session, descriptor: Sequence[float]) -> Optional[MatchResult]:
        """
        识别输入描述符对应的人员

        激活状态以存储为准，已停用的人员即使仍在缓存中也不会被匹配。
        """
        validate_descriptor(descriptor)
        gallery = self.load_gallery(db)
        if not gallery:
            return None
        return self.match(descriptor, gallery, lambda pid: self.person_repository.is_active(db, pid))
