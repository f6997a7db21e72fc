"""
服务容器：每个应用实例构造一次，挂载在 app.state 上
"""
import logging
from typing import Optional, Type

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .cache import CacheBackend, TTLCacheBackend, DescriptorCache, AttendanceMarkerCache, SessionCache
from .config import Config
from .database import build_engine
from .repositories import PersonRepository, AttendanceRepository, SessionRepository
from .services.attendance_service import AttendanceService
from .services.auth_service import AuthService
from .services.embedder import FaceEmbedder, UnconfiguredEmbedder
from .services.image_store import ImageStore
from .services.match_engine import MatchEngine
from .services.person_service import PersonService
from .services.session_manager import SessionManager
from .services.token_signer import TokenSigner
from .utils.clock import Clock, utcnow, epoch_seconds

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    组装配置、时钟、缓存后端、仓储和服务

    测试中可以注入自己的时钟、缓存后端、特征提取模型和数据库引擎。
    """
    def __init__(
        self,
        config: Type[Config] = Config,
        clock: Clock = utcnow,
        cache_backend: Optional[CacheBackend] = None,
        embedder: Optional[FaceEmbedder] = None,
        engine: Optional[Engine] = None
    ):
        self.config = config
        self.clock = clock
        self.engine = engine if engine is not None else build_engine(config.DATABASE_URL)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        # 缓存过期时间与注入的时钟保持同一时间轴
        self.cache_backend = cache_backend or TTLCacheBackend(timer=lambda: epoch_seconds(self.clock()))
        self.embedder = embedder or UnconfiguredEmbedder()

        self.person_repository = PersonRepository()
        self.attendance_repository = AttendanceRepository()
        self.session_repository = SessionRepository()

        self.descriptor_cache = DescriptorCache(self.cache_backend, config.DESCRIPTOR_CACHE_TTL_SECONDS)
        self.marker_cache = AttendanceMarkerCache(self.cache_backend, config.RECENT_ATTENDANCE_TTL_SECONDS)
        self.session_cache = SessionCache(self.cache_backend, config.SESSION_CACHE_TTL_SECONDS)

        self.image_store = ImageStore(config.UPLOAD_DIR)
        self.token_signer = TokenSigner(config.SECRET_KEY, config.ALGORITHM, clock=clock)

        self.match_engine = MatchEngine(
            self.person_repository,
            self.descriptor_cache,
            threshold=config.FACE_DISTANCE_THRESHOLD,
            tie_margin=config.FACE_TIE_MARGIN,
        )
        self.session_manager = SessionManager(
            self.session_repository,
            self.person_repository,
            self.session_cache,
            self.token_signer,
            token_ttl_seconds=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            cache_ttl_seconds=config.SESSION_CACHE_TTL_SECONDS,
            clock=clock,
        )
        self.person_service = PersonService(
            self.person_repository,
            self.match_engine,
            self.session_manager,
            max_descriptors=config.MAX_DESCRIPTORS_PER_PERSON,
            min_detection_confidence=config.FACE_DETECTION_MIN_CONFIDENCE,
        )
        self.auth_service = AuthService(self.person_service, self.session_manager)
        self.attendance_service = AttendanceService(
            self.attendance_repository,
            self.person_repository,
            self.match_engine,
            self.marker_cache,
            self.image_store,
            min_interval_seconds=config.ATTENDANCE_MIN_INTERVAL_SECONDS,
            tz_name=config.WORKDAY_TZ,
            clock=clock,
        )

    def new_session(self) -> Session:
        return self.session_factory()

    def warm_up(self) -> None:
        """启动时预加载人脸图库，失败不影响启动（匹配时会惰性重建）"""
        db = self.new_session()
        try:
            gallery = self.match_engine.rebuild_gallery(db)
            logger.info(f"Descriptor gallery warmed up with {len(gallery)} persons")
        except Exception as e:
            logger.warning(f"Descriptor gallery warm-up failed: {e}")
        finally:
            db.close()

    def shutdown(self) -> None:
        self.cache_backend.clear()
        self.engine.dispose()
        logger.info("Service container shut down")
