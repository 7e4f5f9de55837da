"""
Shared fixtures: a compliant in-process cart server and a cookie-less client session.

The server keeps no state of its own: the cart lives inside the signed token,
exactly like the real target, and every mutation answers with a re-signed
token through the configured carrier.
"""

import base64
import json
import time

import aiohttp
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from token_codec import DEFAULT_SECRET, TokenCodec, sign

CATALOG = ["Apples", "Bananas", "Carrots", "Dates", "Eggs", "Figs", "Grapes", "Honey"]

SEEN = web.AppKey("seen", list)
ROTATION = web.AppKey("rotation", str)
ISSUE_ON_INDEX = web.AppKey("issue_on_index", bool)
CODEC = web.AppKey("codec", TokenCodec)


def _b64decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def decode_token(token: str, secret: str = DEFAULT_SECRET):
    """Payload of a valid, unexpired token, or None."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    signing_input = f"{parts[0]}.{parts[1]}"
    if sign(signing_input, secret) != parts[2]:
        return None
    payload = json.loads(_b64decode(parts[1]))
    if payload.get("exp", 0) < time.time():
        return None
    return payload


def render_cart(cart) -> str:
    if not cart:
        return '<div id="cart-content"><p>Your cart is empty</p></div>'
    lines = "".join(
        f'<li class="font-semibold">{CATALOG[entry["id"]]} x{entry["quantity"]}</li>' for entry in cart
    )
    return f'<div id="cart-content"><ul>{lines}</ul></div>'


def _token_from(request: web.Request):
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):]
    return request.cookies.get("jwt_token")


def _respond(request: web.Request, payload, body: str, status: int = 200, retarget: bool = False):
    app = request.app
    token = app[CODEC].mint(payload["user_id"], payload["cart"], 3600)
    response = web.Response(text=body, status=status, content_type="text/html")
    if app[ROTATION] == "cookie":
        response.set_cookie("jwt_token", token, path="/", httponly=True)
    else:
        response.headers["X-Jwt-Token"] = token
    if retarget:
        response.headers["HX-Retarget"] = "#cart-content"
    return response


def _authorized(handler):
    async def wrapper(request: web.Request):
        token = _token_from(request)
        request.app[SEEN].append((request.method, request.path, token))
        payload = decode_token(token) if token else None
        if payload is None:
            return web.Response(text="Unauthorized", status=401)
        return await handler(request, payload)
    return wrapper


def _find(cart, item_id):
    for entry in cart:
        if entry["id"] == item_id:
            return entry
    return None


async def index(request: web.Request):
    if not request.app[ISSUE_ON_INDEX]:
        return web.Response(text="<html>shop</html>", content_type="text/html")
    payload = {"user_id": f"visitor_{len(request.app[SEEN])}", "cart": []}
    request.app[SEEN].append((request.method, request.path, None))
    return _respond(request, payload, "<html>shop</html>")


async def items(request: web.Request):
    body = "".join(f"<li>{name}</li>" for name in CATALOG)
    return web.Response(text=f"<ul>{body}</ul>", content_type="text/html")


@_authorized
async def add(request: web.Request, payload):
    item_id = int(request.match_info["item_id"])
    if item_id >= len(CATALOG):
        return web.Response(text="Unknown item", status=400)
    entry = _find(payload["cart"], item_id)
    if entry is None:
        entry = {"id": item_id, "quantity": 0}
        payload["cart"].append(entry)
    entry["quantity"] += 1
    return _respond(request, payload, f"<div>{CATALOG[item_id]} x{entry['quantity']}</div>")


@_authorized
async def remove(request: web.Request, payload):
    item_id = int(request.match_info["item_id"])
    entry = _find(payload["cart"], item_id)
    if entry is None:
        return web.Response(text="Item not in cart", status=400)
    payload["cart"].remove(entry)
    return _respond(request, payload, render_cart(payload["cart"]), retarget=True)


@_authorized
async def increase(request: web.Request, payload):
    item_id = int(request.match_info["item_id"])
    if item_id >= len(CATALOG):
        return web.Response(text="Unknown item", status=400)
    entry = _find(payload["cart"], item_id)
    if entry is None:
        entry = {"id": item_id, "quantity": 0}
        payload["cart"].append(entry)
    entry["quantity"] += 1
    return _respond(request, payload, str(entry["quantity"]))


@_authorized
async def decrease(request: web.Request, payload):
    item_id = int(request.match_info["item_id"])
    entry = _find(payload["cart"], item_id)
    if entry is None:
        return web.Response(text="Item not in cart", status=400)
    entry["quantity"] -= 1
    if entry["quantity"] <= 0:
        payload["cart"].remove(entry)
        return _respond(request, payload, render_cart(payload["cart"]), retarget=True)
    return _respond(request, payload, str(entry["quantity"]))


@_authorized
async def view(request: web.Request, payload):
    return web.Response(text=render_cart(payload["cart"]), content_type="text/html")


def build_cart_app(rotation: str = "cookie", issue_on_index: bool = True) -> web.Application:
    app = web.Application()
    app[SEEN] = []
    app[ROTATION] = rotation
    app[ISSUE_ON_INDEX] = issue_on_index
    app[CODEC] = TokenCodec(DEFAULT_SECRET)
    app.router.add_get("/", index)
    app.router.add_get("/api/items", items)
    app.router.add_get("/api/cart", view)
    app.router.add_post(r"/api/cart/add/{item_id:\d+}", add)
    app.router.add_delete(r"/api/cart/remove/{item_id:\d+}", remove)
    app.router.add_post(r"/api/cart/increase-quantity/{item_id:\d+}", increase)
    app.router.add_post(r"/api/cart/decrease-quantity/{item_id:\d+}", decrease)
    return app


def base_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}"


@pytest_asyncio.fixture
async def cart_server():
    """Factory: `await cart_server(rotation="header")` starts a fresh server."""
    servers = []

    async def start(rotation: str = "cookie", issue_on_index: bool = True) -> TestServer:
        server = TestServer(build_cart_app(rotation, issue_on_index))
        await server.start_server()
        servers.append(server)
        return server

    yield start
    for server in servers:
        await server.close()


@pytest_asyncio.fixture
async def http_session():
    async with aiohttp.ClientSession(
        cookie_jar=aiohttp.DummyCookieJar(),
        timeout=aiohttp.ClientTimeout(total=5),
    ) as session:
        yield session
