"""
Cart Operation Client
=====================
Issues the cart mutations and reads against the target server over a shared
aiohttp session, judges each response against the cart contract, and hands
back any rotated credential.

Cart contract (what the checks assert):
- add / increase create the item when it is absent (increase answers with the
  new quantity as a bare integer)
- decrease answers with the new quantity, or, when the quantity reaches zero,
  with a re-rendered cart and an `HX-Retarget` pointing at the cart container
- remove answers with the re-rendered cart and the same `HX-Retarget`
- decrease / remove of an item that is not in the cart answer 400
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Union

import aiohttp
from faker import Faker

from token_codec import DEFAULT_COOKIE_NAME, DEFAULT_TOKEN_HEADER, extract_rotated

fake = Faker()

RETARGET_HEADER = "HX-Retarget"
CART_CONTAINER = "#cart-content"
EMPTY_CART_MARKER = "Your cart is empty"

_QUANTITY = re.compile(r"\d+")

# Catalog index, or a raw path segment when probing input validation
ItemRef = Union[int, str, None]


@dataclass
class EndpointConfig:
    """Configuration for one cart endpoint."""
    path: str
    method: str = "GET"
    requires_auth: bool = True
    expected_status: Sequence[int] = (200,)
    check_name: str = ""


ENDPOINTS: Dict[str, EndpointConfig] = {
    "add": EndpointConfig(
        path="/api/cart/add/{item_id}",
        method="POST",
        check_name="add to cart status 200",
    ),
    "remove": EndpointConfig(
        path="/api/cart/remove/{item_id}",
        method="DELETE",
        expected_status=(200, 400),  # 400 when the item was never added
        check_name="remove from cart accepted",
    ),
    "increase": EndpointConfig(
        path="/api/cart/increase-quantity/{item_id}",
        method="POST",
        check_name="increase quantity returns number",
    ),
    "decrease": EndpointConfig(
        path="/api/cart/decrease-quantity/{item_id}",
        method="POST",
        expected_status=(200, 400),
        check_name="decrease quantity accepted",
    ),
    "view": EndpointConfig(
        path="/api/cart",
        method="GET",
        check_name="cart view status 200",
    ),
    "browse": EndpointConfig(
        path="/api/items",
        method="GET",
        requires_auth=False,
        check_name="items load",
    ),
}


@dataclass
class CartResult:
    """Outcome of one cart call: (status, rotated credential, body) plus judgement."""
    operation: str
    status: int
    latency_ms: float
    body: str = ""
    rotated: Optional[str] = None
    retarget: Optional[str] = None
    item_id: ItemRef = None
    error: Optional[str] = None
    accepted: bool = False  # status within the accepted set and no transport error
    check_passed: bool = False
    check_name: str = ""
    quantity: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def failed(self) -> bool:
        return not self.accepted

    @property
    def refreshes_cart(self) -> bool:
        return self.retarget == CART_CONTAINER


def parse_quantity(body: str) -> Optional[int]:
    if _QUANTITY.fullmatch(body or ""):
        return int(body)
    return None


def is_cart_fragment(body: str) -> bool:
    """A re-rendered cart, as opposed to a bare quantity."""
    return bool(body and body.strip()) and parse_quantity(body.strip()) is None


def browser_headers() -> Dict[str, str]:
    """Header set of a real browser, for targets behind bot protection."""
    return {
        "User-Agent": fake.user_agent(),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate, br",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Cache-Control": "max-age=0",
    }


class CartClient:
    """
    Cart API client bound to one aiohttp session.

    The session may be shared by every virtual user; it must not keep cookies
    (use `aiohttp.DummyCookieJar`) because the credential is sent explicitly
    per call from the caller's SessionState.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        auth_mode: str = "cookie",
        cookie_name: str = DEFAULT_COOKIE_NAME,
        token_header: str = DEFAULT_TOKEN_HEADER,
        bootstrap_path: str = "/",
        verify_ssl: bool = True,
        headers: Optional[Dict[str, str]] = None,
    ):
        if auth_mode not in ("cookie", "bearer"):
            raise ValueError(f"Unknown auth mode: {auth_mode}")
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.auth_mode = auth_mode
        self.cookie_name = cookie_name
        self.token_header = token_header
        self.bootstrap_path = bootstrap_path
        self.verify_ssl = verify_ssl
        self.headers = headers or {
            "Content-Type": "application/json",
            "User-Agent": "CartLoadTest/1.0",
        }

    def _auth_headers(self, credential: Optional[str]) -> Dict[str, str]:
        # An empty string is still sent; only None means "no credential"
        if credential is None:
            return {}
        if self.auth_mode == "bearer":
            return {"Authorization": f"Bearer {credential}"}
        return {"Cookie": f"{self.cookie_name}={credential}"}

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        credential: Optional[str] = None,
        item_id: ItemRef = None,
        timeout: Optional[float] = None,
        allow_redirects: bool = True,
    ) -> CartResult:
        url = f"{self.base_url}{path}"
        headers = {**self.headers, **self._auth_headers(credential)}
        options = {"headers": headers, "ssl": self.verify_ssl, "allow_redirects": allow_redirects}
        if timeout is not None:
            options["timeout"] = aiohttp.ClientTimeout(total=timeout)

        start = time.perf_counter()
        try:
            async with self.session.request(method, url, **options) as response:
                raw = await response.read()
                latency = (time.perf_counter() - start) * 1000
                return CartResult(
                    operation=operation,
                    status=response.status,
                    latency_ms=latency,
                    body=raw.decode("utf-8", errors="replace"),
                    rotated=extract_rotated(response.headers, self.cookie_name, self.token_header),
                    retarget=response.headers.get(RETARGET_HEADER),
                    item_id=item_id,
                )
        except asyncio.TimeoutError:
            error = "Timeout"
        except aiohttp.ClientConnectorError as e:
            error = f"ConnectionError: {type(e).__name__}"
        except aiohttp.ClientError as e:
            error = str(type(e).__name__)

        return CartResult(
            operation=operation,
            status=0,
            latency_ms=(time.perf_counter() - start) * 1000,
            item_id=item_id,
            error=error,
        )

    async def call(
        self,
        operation: str,
        credential: Optional[str],
        item_id: ItemRef = None,
        expect: Optional[Sequence[int]] = None,
        timeout: Optional[float] = None,
        allow_redirects: bool = True,
        check_name: Optional[str] = None,
    ) -> CartResult:
        """
        Issue one cart operation and judge it.

        `item_id` may be a raw path segment (e.g. "abc") to exercise the
        server's input validation; `expect` and `check_name` then describe
        the rejection the caller is looking for.
        """
        endpoint = ENDPOINTS[operation]
        path = endpoint.path.format(item_id=item_id) if item_id is not None else endpoint.path
        result = await self._request(
            operation,
            endpoint.method,
            path,
            credential if endpoint.requires_auth else None,
            item_id,
            timeout,
            allow_redirects,
        )
        accepted_statuses = tuple(expect) if expect is not None else tuple(endpoint.expected_status)
        judge(result, accepted_statuses, check_name or endpoint.check_name)
        return result

    async def add(self, item_id: int, credential: str, expect: Optional[Sequence[int]] = None) -> CartResult:
        return await self.call("add", credential, item_id, expect)

    async def remove(self, item_id: int, credential: str, expect: Optional[Sequence[int]] = None) -> CartResult:
        return await self.call("remove", credential, item_id, expect)

    async def increase_quantity(
        self, item_id: int, credential: str, expect: Optional[Sequence[int]] = None
    ) -> CartResult:
        return await self.call("increase", credential, item_id, expect)

    async def decrease_quantity(
        self, item_id: int, credential: str, expect: Optional[Sequence[int]] = None
    ) -> CartResult:
        return await self.call("decrease", credential, item_id, expect)

    async def view_cart(self, credential: str, expect: Optional[Sequence[int]] = None) -> CartResult:
        return await self.call("view", credential, None, expect)

    async def browse(self, expect: Optional[Sequence[int]] = None) -> CartResult:
        return await self.call("browse", None, None, expect)

    async def bootstrap(self) -> CartResult:
        """Unauthenticated first visit; the server answers with a fresh credential."""
        result = await self._request("bootstrap", "GET", self.bootstrap_path)
        result.accepted = result.error is None and result.status == 200
        result.check_name = "credential issued"
        result.check_passed = result.accepted and result.rotated is not None
        return result


def judge(result: CartResult, accepted_statuses: Sequence[int], check_name: str) -> CartResult:
    """Apply the cart contract to a finished call."""
    result.check_name = check_name
    result.accepted = result.error is None and result.status in accepted_statuses
    if not result.accepted:
        result.check_passed = False
        return result

    result.check_passed = True
    if result.status != 200:
        return result

    if result.operation == "increase":
        result.quantity = parse_quantity(result.body)
        result.check_passed = result.quantity is not None
    elif result.operation == "decrease":
        if result.refreshes_cart:
            result.quantity = 0
            result.check_passed = is_cart_fragment(result.body)
        else:
            result.quantity = parse_quantity(result.body)
            result.check_passed = result.quantity is not None and result.quantity > 0
    elif result.operation == "remove":
        result.check_passed = result.refreshes_cart and is_cart_fragment(result.body)
    elif result.operation == "view":
        result.check_passed = bool(result.body)
    return result
