"""
Signed entry/exit tokens bound to a booking.

Tokens are HS256 JWTs signed with ACCESS_TOKEN_SECRET. They are stored only on
the booking they describe and must always be checked with ``verify`` before
their contents are trusted.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4
import enum
import logging

from jose import JWTError, jwt

from parkgo.config import settings
from parkgo.core.exceptions import InvalidToken, ExpiredToken, WrongType
from parkgo.models.base import utcnow
from parkgo.models.facility import VehicleClass

logger = logging.getLogger(__name__)


class AccessTokenType(str, enum.Enum):
    ENTRY = "entry"
    EXIT = "exit"


@dataclass(frozen=True)
class AccessTokenClaims:
    token_type: AccessTokenType
    booking_id: UUID
    facility_id: UUID
    vehicle_class: VehicleClass
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class AccessTokenService:
    """
    Issue and verify entry/exit access tokens
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.secret = secret or settings.ACCESS_TOKEN_SECRET
        self.algorithm = algorithm or settings.ACCESS_TOKEN_ALGORITHM
        self.clock = clock

    def issue(
        self,
        token_type: AccessTokenType,
        booking_id: UUID,
        facility_id: UUID,
        vehicle_class: VehicleClass,
        ttl: timedelta
    ) -> str:
        issued_at = self.clock()
        claims = {
            "type": AccessTokenType(token_type).value,
            "bid": str(booking_id),
            "fid": str(facility_id),
            "vc": VehicleClass(vehicle_class).value,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
            "jti": uuid4().hex,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def issue_entry(self, booking) -> str:
        return self.issue(
            AccessTokenType.ENTRY,
            booking.id,
            booking.facility_id,
            booking.vehicle_class,
            timedelta(hours=settings.ENTRY_TOKEN_TTL_HOURS)
        )

    def issue_exit(self, booking) -> str:
        return self.issue(
            AccessTokenType.EXIT,
            booking.id,
            booking.facility_id,
            booking.vehicle_class,
            timedelta(hours=settings.EXIT_TOKEN_TTL_HOURS)
        )

    def verify(
        self,
        token: str,
        expected_type: Optional[AccessTokenType] = None
    ) -> AccessTokenClaims:
        """
        Decode a token and check its signature, expiry and type.

        Raises:
            InvalidToken: malformed, tampered with, or signed by another key
            ExpiredToken: signature is valid but the expiry has passed
            WrongType: token is for the other action
        """
        if not token:
            raise InvalidToken()

        try:
            # Expiry is checked against the service clock below
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False}
            )
        except JWTError as e:
            logger.info(f"Rejected access token: {e}")
            raise InvalidToken()

        try:
            claims = AccessTokenClaims(
                token_type=AccessTokenType(payload["type"]),
                booking_id=UUID(payload["bid"]),
                facility_id=UUID(payload["fid"]),
                vehicle_class=VehicleClass(payload["vc"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.info(f"Access token payload is incomplete: {e}")
            raise InvalidToken()

        if claims.is_expired(self.clock()):
            raise ExpiredToken()

        if expected_type is not None and claims.token_type != expected_type:
            raise WrongType(expected=AccessTokenType(expected_type).value, actual=claims.token_type.value)

        return claims

    def is_still_valid(self, token: Optional[str], token_type: AccessTokenType) -> bool:
        """True when ``token`` verifies as ``token_type`` right now"""
        if not token:
            return False
        try:
            self.verify(token, token_type)
        except (InvalidToken, ExpiredToken, WrongType):
            return False
        return True
