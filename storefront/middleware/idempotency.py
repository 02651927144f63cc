"""
Replay por Idempotency-Key para POST /api/checkout.

Permite que el cliente reintente su propio envio sin crear dos ordenes: la primera
respuesta exitosa se cachea en memoria (por proceso) y se repite tal cual. La creacion
de la orden en si sigue sin ser idempotente.

La clave se guarda por usuario (X-User-Id) junto con el hash del body: la misma clave
de otro usuario es otra entrada, y la misma clave con otro body es un 422.
"""
import asyncio
import hashlib
import json
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ..core.errors import ValidationError

logger = logging.getLogger(__name__)

# Endpoints soportados y la clave de exito esperada en el JSON
ALLOW = {
    "/api/checkout": "order",
}


class _Cache:
    def __init__(self, ttl=3600, max_entries=2048):
        self.ttl = ttl
        self.max_entries = max_entries
        self._store = {}
        self._lock = asyncio.Lock()

    async def get(self, key):
        async with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            if item["exp"] < time.time():
                self._store.pop(key, None)
                return None
            return item

    async def set(self, key, val):
        async with self._lock:
            if len(self._store) >= self.max_entries:
                self._store.pop(next(iter(self._store)))
            val["exp"] = time.time() + self.ttl
            self._store[key] = val


class _KeyedLocks:
    """Un lock por clave; la entrada se borra cuando nadie la usa ni la espera."""

    def __init__(self):
        self._locks = {}
        self._guard = asyncio.Lock()

    def __len__(self):
        return len(self._locks)

    async def acquire(self, key):
        async with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [asyncio.Lock(), 0]
            entry[1] += 1
        await entry[0].acquire()

    async def release(self, key):
        async with self._guard:
            entry = self._locks[key]
            entry[0].release()
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]


def _drop_content_length(headers: dict) -> dict:
    # Quita cualquier Content-Length (casing-insensitive)
    return {k: v for k, v in headers.items() if k.lower() != "content-length"}


def _replay(cached: dict) -> Response:
    body_bytes = cached["body"]
    try:
        js = json.loads(body_bytes.decode("utf-8"))
    except ValueError:
        js = None
    if isinstance(js, dict):
        js.setdefault("replay", True)
        body_bytes = json.dumps(js).encode("utf-8")
    headers = _drop_content_length(dict(cached["headers"]))
    headers["Idempotent-Replay"] = "true"
    return Response(
        content=body_bytes,
        status_code=cached["status"],
        media_type=cached["media_type"],
        headers=headers,
    )


def _is_success(status: int, body_bytes: bytes, success_key: str) -> bool:
    if status != 200:
        return False
    try:
        js = json.loads(body_bytes.decode("utf-8"))
    except ValueError:
        return False
    return isinstance(js, dict) and success_key in js


def _key_reused() -> JSONResponse:
    err = ValidationError(
        "Idempotency-Key was already used with a different request body",
        code="IDEMPOTENCY_KEY_REUSED",
        status_code=422,
    )
    return JSONResponse(status_code=err.status_code, content=err.as_dict())


def _replay_or_reject(cached: dict, fingerprint: str, cache_key: str) -> Response:
    if cached["fingerprint"] != fingerprint:
        logger.warning("Idempotency-Key reused with another body for %s", cache_key)
        return _key_reused()
    logger.info("Idempotent replay for %s", cache_key)
    return _replay(cached)


idem_cache = _Cache(ttl=3600)
_keyed_locks = _KeyedLocks()


class CheckoutIdempotency(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        if request.method != "POST":
            return await call_next(request)

        path = request.url.path
        success_key = ALLOW.get(path)
        if not success_key:
            return await call_next(request)

        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key:
            return await call_next(request)

        owner = request.headers.get("X-User-Id") or "anonymous"
        cache_key = f"{request.method}:{path}:{owner}:{idem_key}"
        fingerprint = hashlib.sha256(await request.body()).hexdigest()

        # 1) Replay inmediato si esta cacheado
        cached = await idem_cache.get(cache_key)
        if cached:
            return _replay_or_reject(cached, fingerprint, cache_key)

        # 2) Seccion critica por clave (dos envios simultaneos del mismo cliente)
        await _keyed_locks.acquire(cache_key)
        try:
            cached = await idem_cache.get(cache_key)
            if cached:
                return _replay_or_reject(cached, fingerprint, cache_key)

            # 3) Procesar y capturar el body de la respuesta real
            response = await call_next(request)
            body_bytes = b""
            async for chunk in response.body_iterator:
                body_bytes += chunk

            headers = _drop_content_length(dict(response.headers))
            new_resp = Response(
                content=body_bytes,
                status_code=response.status_code,
                media_type=response.media_type,
                headers=headers,
            )

            # 4) Cachear solo si 200 y contiene la clave de exito; los errores se pueden reintentar
            if _is_success(response.status_code, body_bytes, success_key):
                await idem_cache.set(
                    cache_key,
                    {
                        "status": new_resp.status_code,
                        "headers": dict(new_resp.headers),
                        "media_type": new_resp.media_type,
                        "body": body_bytes,
                        "fingerprint": fingerprint,
                    },
                )
            return new_resp
        finally:
            await _keyed_locks.release(cache_key)


def install_idempotency(app):
    app.add_middleware(CheckoutIdempotency)
