import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from .config import get_config
from .db import init_db
from .errors import ValidationError, NotFoundError
from .runtime import Runtime
from .statuses import is_terminal

log = logging.getLogger(__name__)

def _client_key(request:Request, trusted_proxies)->str:
    peer=request.client.host if request.client else 'unknown'
    if peer in trusted_proxies:
        fwd=request.headers.get('x-forwarded-for','').split(',')[0].strip()
        if fwd: peer=fwd
    return f"rate_limit:{peer}"

def create_app(runtime:Optional[Runtime]=None)->FastAPI:
    owns_db=runtime is None
    rt=runtime or Runtime()
    cfg=rt.cfg; trusted=set(cfg['rate_limit'].get('trusted_proxies') or [])

    @asynccontextmanager
    async def lifespan(app:FastAPI):
        if owns_db: init_db()
        await rt.start()
        try: yield
        finally: await rt.stop()

    app=FastAPI(title="coderun API", lifespan=lifespan)
    app.state.runtime=rt
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

    @app.middleware("http")
    async def rate_limit(request:Request, call_next):
        if not await rt.rate_limiter.check(_client_key(request, trusted)):
            return JSONResponse({'error': 'Too Many Requests'}, status_code=429)
        return await call_next(request)

    # Errors
    @app.exception_handler(ValidationError)
    async def on_validation(request:Request, exc:ValidationError):
        if exc.status_code==400 or not exc.errors: return JSONResponse({'error': str(exc)}, status_code=exc.status_code)
        return JSONResponse(exc.errors, status_code=exc.status_code)

    @app.exception_handler(NotFoundError)
    async def on_not_found(request:Request, exc:NotFoundError):
        return JSONResponse({'error': str(exc)}, status_code=404)

    @app.exception_handler(RequestValidationError)
    async def on_malformed(request:Request, exc:RequestValidationError):
        return JSONResponse({'error': 'Malformed request'}, status_code=400)

    @app.exception_handler(Exception)
    async def on_unhandled(request:Request, exc:Exception):
        log.exception("unhandled error on %s", request.url.path)
        return JSONResponse({'error': str(exc) or 'Internal Server Error', 'timestamp': datetime.now(timezone.utc).isoformat(),
                             'path': request.url.path}, status_code=500)

    @app.get("/")
    def root(): return {"ok": True}

    # Submissions
    @app.post("/submissions/batch")
    async def create_batch(payload: dict, base64_encoded: bool = False):
        out=await rt.submissions.create_batch(payload.get('submissions'), base64_encoded)
        return JSONResponse(out, status_code=201)

    @app.get("/submissions/batch")
    async def get_batch(tokens: str = None, fields: str = None, base64_encoded: bool = False):
        if not tokens: return JSONResponse({'error': 'Missing tokens parameter'}, status_code=400)
        wanted=[t.strip() for t in tokens.split(',') if t.strip()]
        return await rt.submissions.get_batch(wanted, fields, base64_encoded)

    @app.post("/submissions")
    async def create_submission(payload: dict, base64_encoded: bool = False, wait: bool = False):
        created=await rt.submissions.create(payload, base64_encoded)
        if wait:
            done=await rt.submissions.wait_for_completion(created['token'], base64_encoded)
            if done is not None: return JSONResponse(done, status_code=201)
        return JSONResponse(created, status_code=201)

    @app.get("/submissions/{token}")
    async def get_submission(token: str, fields: str = None, base64_encoded: bool = False):
        sub=await rt.store.get_by_token(token)
        if sub is None: raise NotFoundError('Submission not found')
        cache=f"public, max-age={cfg['cache']['ttl']}" if is_terminal(sub.status_id) else 'no-store'
        return JSONResponse(rt.submissions.format(sub, fields, base64_encoded), headers={'Cache-Control': cache})

    @app.get("/submissions/{token}/ws")
    async def ws_plain(token: str):
        if await rt.store.get_by_token(token) is None: raise NotFoundError('Submission not found')
        return JSONResponse({'error': 'Expected WebSocket upgrade'}, status_code=400)

    # WebSockets
    @app.websocket("/submissions/{token}/ws")
    async def ws_updates(ws: WebSocket, token: str):
        if await rt.store.get_by_token(token) is None:
            if 'websocket.http.response' in ws.scope.get('extensions', {}):
                await ws.send_denial_response(JSONResponse({'error': 'Submission not found'}, status_code=404))
            else: await ws.close(code=4404)
            return
        await ws.accept()
        channel=rt.hub.channel(token)
        sid=await channel.upgrade(token, ws)
        if sid is None:
            rt.hub.release(token); return
        try:
            while True:
                await channel.receive(sid, await ws.receive_text())
        except WebSocketDisconnect: pass
        finally:
            channel.disconnect(sid); rt.hub.release(token)

    # Reference data
    @app.get("/languages")
    async def languages():
        rows=await rt.store.list_languages()
        return JSONResponse([{'id': l.id, 'name': l.name} for l in rows], headers={'Cache-Control': f"public, max-age={cfg['cache']['static_ttl']}"})

    @app.get("/statuses")
    async def statuses():
        rows=await rt.store.list_statuses()
        return JSONResponse([{'id': s.id, 'description': s.description} for s in rows], headers={'Cache-Control': f"public, max-age={cfg['cache']['static_ttl']}"})

    return app

logging.basicConfig(level=get_config()['logging']['level'], format=get_config()['logging']['format'])
app = create_app()
