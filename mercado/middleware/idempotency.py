"""
Replay idempotente de `POST /pdv/checkout/finalize`.

Mismo operador + mismo Idempotency-Key => misma respuesta. Dos envíos simultáneos
del botón "Finalizar" se serializan por clave y el segundo recibe el replay del primero.
"""
import asyncio
import json
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..core.config import settings

logger = logging.getLogger(__name__)

FINALIZE_PATH = "/pdv/checkout/finalize"


class ReplayStore:
    """Respuestas de ventas cerradas (TTL, tamaño acotado) y un lock por clave en vuelo."""

    def __init__(self, ttl: int, max_entries: int = 2048):
        self.ttl = ttl
        self.max_entries = max_entries
        self._responses = OrderedDict()
        self._inflight = {}  # clave -> [lock, cuántos la usan]
        self._guard = asyncio.Lock()

    async def lookup(self, key):
        async with self._guard:
            item = self._responses.get(key)
            if item and item["exp"] < time.time():
                del self._responses[key]
                return None
            return item

    async def remember(self, key, response: Response, body: bytes):
        async with self._guard:
            while len(self._responses) >= self.max_entries:
                self._responses.popitem(last=False)
            self._responses[key] = {
                "status": response.status_code,
                "headers": dict(response.headers),
                "media_type": response.media_type,
                "body": body,
                "exp": time.time() + self.ttl,
            }

    @asynccontextmanager
    async def serialized(self, key):
        async with self._guard:
            entry = self._inflight.setdefault(key, [asyncio.Lock(), 0])
            entry[1] += 1
        await entry[0].acquire()
        try:
            yield
        finally:
            async with self._guard:
                entry[0].release()
                entry[1] -= 1
                if entry[1] == 0:
                    del self._inflight[key]

    def inflight(self) -> int:
        return len(self._inflight)

    def clear(self):
        self._responses.clear()


replay_store = ReplayStore(ttl=settings.idempotency_ttl)


def _without_length(headers) -> dict:
    return {k: v for k, v in headers.items() if k.lower() != "content-length"}


def _is_sale(body: bytes) -> bool:
    try:
        js = json.loads(body.decode("utf-8"))
    except ValueError:
        return False
    return isinstance(js, dict) and "sale" in js


def _replay(cached: dict) -> Response:
    js = json.loads(cached["body"].decode("utf-8"))
    js["replay"] = True
    headers = _without_length(cached["headers"])
    headers["Idempotent-Replay"] = "true"
    return Response(
        content=json.dumps(js).encode("utf-8"),
        status_code=cached["status"],
        media_type=cached["media_type"],
        headers=headers,
    )


class CheckoutIdempotency(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        idem_key = request.headers.get("Idempotency-Key")
        if request.method != "POST" or request.url.path != FINALIZE_PATH or not idem_key:
            return await call_next(request)

        key = f"{request.headers.get('X-User-Id') or '-'}:{idem_key}"
        async with replay_store.serialized(key):
            cached = await replay_store.lookup(key)
            if cached:
                logger.info("Replay idempotente de cierre %s", key)
                return _replay(cached)

            response = await call_next(request)
            body = b"".join([chunk async for chunk in response.body_iterator])
            fresh = Response(
                content=body,
                status_code=response.status_code,
                media_type=response.media_type,
                headers=_without_length(response.headers),
            )
            # sólo se recuerdan cierres exitosos; un error se puede reintentar
            if response.status_code == 200 and _is_sale(body):
                await replay_store.remember(key, fresh, body)
            return fresh


def install_idempotency(app):
    app.add_middleware(CheckoutIdempotency)
