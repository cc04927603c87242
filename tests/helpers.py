"""Test doubles for the upstream API and the login agent."""
import base64
import time

import httpx
import orjson

from favsync.auth.login_agent import ExternalLoginAgent, LoginResult
from favsync.auth.session_store import SessionStore

BASE_URL = "https://www.vinted.fr"


def make_jwt(exp: int) -> str:
    """Unsigned token whose claims carry the given exp."""
    def segment(data: dict) -> str:
        return base64.urlsafe_b64encode(orjson.dumps(data)).decode("ascii").rstrip("=")
    return f"{segment({'alg': 'HS256'})}.{segment({'exp': exp, 'sub': '42'})}.signature"


def now() -> int:
    return int(time.time())


def favorites_url(user_id: str, page: int, per_page: int) -> str:
    return f"/api/v2/users/{user_id}/items/favourites?page={page}&per_page={per_page}"


def listing_item(item_id, title="Item", price="10.0", **extra) -> dict:
    item = {
        "id": item_id,
        "title": title,
        "brand_title": "Zara",
        "price": {"amount": price, "currency_code": "EUR"},
        "photo": {"url": f"https://images.example/{item_id}.jpg"},
        "url": f"{BASE_URL}/items/{item_id}-item",
        "is_closed": False,
        "user": {"login": "seller"},
        "size_title": "M",
        "status": "Très bon état",
    }
    item.update(extra)
    return item


def detail_body(item_id, **fields) -> dict:
    return {"item": {"id": item_id, **fields}}


class FakeUpstream:
    """Scripted responses keyed by path and query, with a log of requests.

    Responses for a path are served in order; the last one repeats.
    Unscripted paths answer 404.
    """

    def __init__(self):
        self.routes: dict[str, list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, *responses) -> None:
        self.routes.setdefault(path, []).extend(responses)

    def count(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.raw_path.decode() == path)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.raw_path.decode())
        if not queue:
            return httpx.Response(404, json={"code": 404})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            response = response(request)
            if not isinstance(response, httpx.Response):
                response = await response
        # Fresh copy, scripted responses may be served more than once
        return httpx.Response(
            response.status_code,
            headers=response.headers.multi_items(),
            content=response.content,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class ScriptedLoginAgent(ExternalLoginAgent):
    """Login agent that writes a session straight into the state database."""

    def __init__(self, db_path, succeed: bool = True):
        super().__init__(command=["login-agent"], timeout=5)
        self.session_store = SessionStore(db_path)
        self.succeed = succeed
        self.calls = 0

    async def _run(self, credential) -> LoginResult:
        self.calls += 1
        if not self.succeed:
            return LoginResult(success=False, exit_code=1, output="login refused")
        await self.session_store.put("_vinted_fr_session", f"fresh-session-{self.calls}")
        return LoginResult(success=True, exit_code=0, output="session saved")
