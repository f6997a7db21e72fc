"""
人脸图片解码与特征提取接口
"""
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

from ..exceptions import ValidationError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceDetection:
    """特征提取结果"""
    descriptor: List[float]
    confidence: float


class FaceEmbedder:
    """
    人脸检测与特征提取模型的接口

    实现类接收原始图片字节，返回128维描述符和检测置信度；
    图片中没有人脸时返回None。
    """

    def extract(self, image_bytes: bytes) -> Optional[FaceDetection]:
        raise NotImplementedError


class UnconfiguredEmbedder(FaceEmbedder):
    """未部署特征提取模型时使用"""

    def extract(self, image_bytes: bytes) -> Optional[FaceDetection]:
        raise UpstreamError("人脸特征提取模型未配置")


def decode_base64_image(encoded: str, max_bytes: int) -> bytes:
    """
    解码Base64图片并确认是可识别的图片格式

    Args:
        encoded: Base64字符串，允许带 data URI 前缀和空白字符
        max_bytes: 解码后的最大字节数

    Returns:
        bytes: 原始图片字节

    Raises:
        ValidationError: 空数据、Base64格式错误、图片过大或无法解码
    """
    if not encoded:
        raise ValidationError("空图片数据")

    # 清理base64字符串
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    encoded = re.sub(r'\s+', '', encoded)
    padding = len(encoded) % 4
    if padding:
        encoded += '=' * (4 - padding)

    try:
        image_data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("图片数据格式错误，无法解码Base64")

    if len(image_data) > max_bytes:
        raise ValidationError(f"图片过大，最大支持{max_bytes // (1024 * 1024)}MB")

    nparr = np.frombuffer(image_data, np.uint8)
    if nparr.size == 0 or cv2.imdecode(nparr, cv2.IMREAD_COLOR) is None:
        raise ValidationError("无法解码图片数据")

    return image_data


def extract_detection(embedder: FaceEmbedder, image_bytes: bytes) -> Optional[FaceDetection]:
    """
    调用特征提取模型，模型异常统一转换为 UpstreamError
    """
    try:
        detection = embedder.extract(image_bytes)
    except UpstreamError:
        raise
    except Exception as e:
        logger.exception("Face embedder failed")
        raise UpstreamError(f"人脸特征提取失败: {e}") from e

    if detection is None:
        return None
    if len(detection.descriptor) != 128:
        raise UpstreamError("人脸特征提取模型返回了无效的描述符")
    return detection


def extract_descriptors(
    embedder: FaceEmbedder,
    images: Sequence[bytes],
    min_confidence: float
) -> List[List[float]]:
    """
    从多张注册图片中提取描述符，每张合格图片对应一个样本

    Raises:
        ValidationError: 所有图片都未检测到合格人脸
    """
    descriptors: List[List[float]] = []
    for index, image_bytes in enumerate(images):
        detection = extract_detection(embedder, image_bytes)
        if detection is None:
            logger.info(f"Registration image {index + 1}: no face detected")
            continue
        if detection.confidence < min_confidence:
            logger.info(
                f"Registration image {index + 1}: detection confidence "
                f"{detection.confidence:.2f} below {min_confidence}"
            )
            continue
        descriptors.append([float(x) for x in detection.descriptor])

    if not descriptors:
        raise ValidationError("图片中未检测到清晰的人脸")
    return descriptors
