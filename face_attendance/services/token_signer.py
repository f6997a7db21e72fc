"""
访问令牌签发与校验（JWT）
"""
import datetime
from dataclasses import dataclass

import jwt

from ..exceptions import AuthError
from ..utils.clock import Clock, utcnow, epoch_seconds, from_epoch_seconds


@dataclass(frozen=True)
class TokenPayload:
    person_id: int
    role: str
    session_id: str
    issued_at: datetime.datetime
    expires_at: datetime.datetime


class TokenSigner:
    """
    令牌只做签名和过期校验；会话是否仍然有效由 SessionManager 判断
    """
    REQUIRED_CLAIMS = ["sub", "sid", "role", "iat", "exp"]

    def __init__(self, secret: str, algorithm: str = "HS256", clock: Clock = utcnow):
        self.secret = secret
        self.algorithm = algorithm
        self.clock = clock

    def sign(self, payload: TokenPayload) -> str:
        claims = {
            "sub": str(payload.person_id),
            "role": payload.role,
            "sid": payload.session_id,
            "iat": int(epoch_seconds(payload.issued_at)),
            "exp": int(epoch_seconds(payload.expires_at)),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenPayload:
        """
        校验签名和过期时间

        过期判断使用注入的时钟，令牌在 exp 时刻及之后都视为过期。

        Raises:
            AuthError: reason 为 invalid_token 或 expired_token
        """
        if not token:
            raise AuthError("缺少访问令牌", reason=AuthError.MISSING_TOKEN)
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": self.REQUIRED_CLAIMS,
                },
            )
            payload = TokenPayload(
                person_id=int(claims["sub"]),
                role=str(claims["role"]),
                session_id=str(claims["sid"]),
                issued_at=from_epoch_seconds(claims["iat"]),
                expires_at=from_epoch_seconds(claims["exp"]),
            )
        except jwt.InvalidTokenError:
            raise AuthError("无效的访问令牌", reason=AuthError.INVALID_TOKEN)
        except (TypeError, ValueError, OverflowError):
            raise AuthError("无效的访问令牌", reason=AuthError.INVALID_TOKEN)

        if self.clock() >= payload.expires_at:
            raise AuthError("访问令牌已过期", reason=AuthError.EXPIRED_TOKEN)
        return payload
