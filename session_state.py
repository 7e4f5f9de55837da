"""Per-virtual-user credential holder."""

from typing import Optional

from token_codec import TokenCodec


class SessionState:
    """
    Holds exactly one credential for one virtual user.

    The cart server is stateless and keeps the cart inside the token, so the
    latest rotated value must always replace the previous one. Nothing here
    looks at `exp`; an expired token simply shows up as an HTTP failure.
    """

    def __init__(self, codec: TokenCodec, ttl_seconds: int = 3600):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.codec = codec
        self.ttl_seconds = ttl_seconds
        self.credential: Optional[str] = None
        self.rotations = 0

    @property
    def has_credential(self) -> bool:
        return self.credential is not None

    def ensure(self, subject: str) -> str:
        if self.credential is None:
            self.credential = self.codec.mint(subject, [], self.ttl_seconds)
        return self.credential

    def rotate(self, candidate: Optional[str]) -> None:
        if candidate is None:
            return
        self.credential = candidate
        self.rotations += 1
