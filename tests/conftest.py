import os
import sys
import datetime
from typing import Dict, List, Optional

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# 添加项目根目录到 Python 路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from main import create_app
from face_attendance.config import Config
from face_attendance.container import ServiceContainer
from face_attendance.database import Base, init_db
from face_attendance.services.embedder import FaceEmbedder, FaceDetection

# 使用内存数据库进行测试
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

START_TIME = datetime.datetime(2024, 3, 4, 9, 0, 0)


class FakeClock:
    """可手动拨动的时钟"""

    def __init__(self, now: datetime.datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> datetime.datetime:
        self.now = self.now + datetime.timedelta(**kwargs)
        return self.now


class FakeEmbedder(FaceEmbedder):
    """按图片字节返回预先登记的描述符，未登记的图片视为没有人脸"""

    def __init__(self):
        self.faces: Dict[bytes, FaceDetection] = {}
        self.calls = 0

    def register(self, image_bytes: bytes, descriptor: List[float], confidence: float = 0.99) -> bytes:
        self.faces[image_bytes] = FaceDetection(descriptor=list(descriptor), confidence=confidence)
        return image_bytes

    def extract(self, image_bytes: bytes) -> Optional[FaceDetection]:
        self.calls += 1
        return self.faces.get(image_bytes)


def make_descriptor(index: int = 0, value: float = 0.0) -> List[float]:
    """128维描述符：全零向量在 index 位置取 value，与全零向量的距离恰好为 value"""
    vector = [0.0] * 128
    vector[index] = value
    return vector


def make_image(seed: int) -> bytes:
    """生成一张可以被 OpenCV 解码、内容各不相同的 PNG 图片"""
    image = np.full((16, 16, 3), seed % 256, dtype=np.uint8)
    image[0, 0] = (seed // 256) % 256
    ok, buffer = cv2.imencode('.png', image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def test_config(tmp_path):
    return type("TestConfig", (Config,), {
        "SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "WORKDAY_TZ": "UTC",
        "ATTENDANCE_MIN_INTERVAL_SECONDS": 300,
        "RECENT_ATTENDANCE_TTL_SECONDS": 3600,
        "DESCRIPTOR_CACHE_TTL_SECONDS": 3600,
        "SESSION_CACHE_TTL_SECONDS": 3600,
        "ACCESS_TOKEN_EXPIRE_MINUTES": 1440,
        "DEBUG": True,
    })


@pytest.fixture
def engine():
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    # 清理数据库
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def container(test_config, clock, embedder, engine):
    return ServiceContainer(config=test_config, clock=clock, embedder=embedder, engine=engine)


@pytest.fixture
def db(container):
    db = container.new_session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(container):
    app = create_app(container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def person_factory(db, container):
    """创建带人脸样本的人员"""
    counter = {"n": 0}

    def _create(name: str = None, descriptors: List[List[float]] = None, role: str = "standard",
                password: str = "secret123"):
        counter["n"] += 1
        n = counter["n"]
        person = container.person_service.register(
            db,
            name=name or f"Person {n}",
            email=f"person{n}@example.com",
            password=password,
            role=role,
        )
        if descriptors:
            person = container.person_service.add_descriptors(db, person.id, descriptors)
        return person

    return _create
