"""
Failure Injection
=================
Deliberately broken cart calls: credentials the server must reject, item
references it must refuse, and requests cut off by a very short timeout.

Each injected call carries its own accepted statuses and check name, so a
server that rejects bad input correctly produces passing checks and no
failed samples. Only timeouts (and servers that accept garbage) show up as
failures.
"""

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from cart_client import CartResult, ItemRef
from token_codec import TokenCodec

INJECTIONS = ("bad_token", "bad_item", "timeout")

# Category every sample is reported under
VALID = "valid"
CATEGORIES = {
    None: VALID,
    "bad_token": "invalid_jwt",
    "bad_item": "malformed",
    "timeout": "timeout",
}

INVALID_ITEM_IDS = ("999999", "-1", "abc", "999999999999999999")
ITEM_OPERATIONS = ("add", "remove", "increase", "decrease", "modify")

DEFAULT_TIMEOUT_SECONDS = 0.001
REJECTED_CREDENTIAL_STATUSES = (302, 401)
REJECTED_INPUT_STATUSES = tuple(range(400, 500))


def bad_tokens(codec: TokenCodec, subject: str) -> Sequence[str]:
    """Credentials a cart server must refuse."""
    return (
        "invalid_token_123",
        codec.mint(subject, [], ttl_seconds=-3600),  # well signed, expired an hour ago
        "malformed.jwt.token",
        "",
        "null",
        "a" * 1000,
    )


@dataclass
class InjectedCall:
    """How to issue one call of a step, after injection."""
    credential: Optional[str]
    item_id: ItemRef
    expect: Optional[Sequence[int]] = None
    timeout: Optional[float] = None
    allow_redirects: bool = True
    check_name: Optional[str] = None


def prepare(
    inject: Optional[str],
    credential: Optional[str],
    item_id: ItemRef,
    codec: TokenCodec,
    subject: str,
    expect: Optional[Sequence[int]] = None,
    timeout: Optional[float] = None,
) -> InjectedCall:
    if inject is None:
        return InjectedCall(credential, item_id, expect)

    if inject == "bad_token":
        return InjectedCall(
            credential=random.choice(bad_tokens(codec, subject)),
            item_id=item_id,
            expect=expect or REJECTED_CREDENTIAL_STATUSES,
            # A login redirect is a rejection; following it would turn it into a 200
            allow_redirects=False,
            check_name="invalid credential rejected",
        )

    if inject == "bad_item":
        return InjectedCall(
            credential=credential,
            item_id=random.choice(INVALID_ITEM_IDS),
            expect=expect or REJECTED_INPUT_STATUSES,
            check_name="malformed request handled",
        )

    if inject == "timeout":
        return InjectedCall(
            credential=credential,
            item_id=item_id,
            expect=expect,
            timeout=timeout or DEFAULT_TIMEOUT_SECONDS,
            check_name="timeout handled",
        )

    raise ValueError(f"Unknown injection: {inject}")


def settle(inject: Optional[str], result: CartResult) -> CartResult:
    """A timed-out call is still a failed sample, but the driver handled it."""
    if inject == "timeout" and result.error == "Timeout":
        result.check_passed = True
    return result
