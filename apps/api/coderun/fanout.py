"""
Per-submission push updates.

One ``SubmissionChannel`` actor exists per token (named ``ws-<token>``). It
keeps the live WebSocket subscribers in memory and only the token itself in
durable actor storage, so after a restart subscribers have to reconnect.
"""
import asyncio, json, logging, time, uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from .actors import Actor, ActorNamespace, ActorStorage

log = logging.getLogger(__name__)

def _ts():
    return datetime.now(timezone.utc).isoformat()

def connected_message(token:str)->dict:
    return {'type': 'connected', 'timestamp': _ts(), 'token': token, 'message': f"Connected to submission {token}"}

def status_message(token:str, status:dict, data:Optional[dict]=None)->dict:
    msg={'type': 'status_update', 'timestamp': _ts(), 'token': token, 'status': status}
    if data is not None: msg['data']=data
    return msg

def progress_message(token:str, stage:str, message:str)->dict:
    return {'type': 'progress_update', 'timestamp': _ts(), 'token': token, 'stage': stage, 'message': message}

def error_message(token:str, error:str, details:Optional[str]=None)->dict:
    msg={'type': 'error', 'timestamp': _ts(), 'token': token, 'error': error}
    if details is not None: msg['details']=details
    return msg

@dataclass
class Subscriber:
    id: str
    socket: Any
    connected_at: float = field(default_factory=time.time)

class SubmissionChannel(Actor):
    def __init__(self, name:str, storage:Optional[ActorStorage]=None, retention_seconds:float=3600, sweep_seconds:float=300, clock=time.time):
        super().__init__(name, storage)
        self.token=''; self.subscribers:Dict[str,Subscriber]={}
        self.retention_seconds=retention_seconds; self.sweep_seconds=sweep_seconds; self.clock=clock
        self._restored=False; self._sweep_task:Optional[asyncio.Task]=None

    async def restore(self):
        if self._restored: return
        if self.storage: self.token=await self.storage.get('token', '') or self.token
        self._restored=True

    async def upgrade(self, token:str, socket)->Optional[str]:
        """Register an accepted socket and greet it. Returns the subscriber id, or None if the greeting failed."""
        async with self.turn():
            await self.restore()
            if self.token and self.token != token: raise ValueError(f"channel {self.name} belongs to another submission")
            if not self.token:
                self.token=token
                if self.storage: await self.storage.put('token', token)
            sid=uuid.uuid4().hex
            self.subscribers[sid]=Subscriber(sid, socket, self.clock())
            if not await self._send(sid, json.dumps(connected_message(self.token))): return None
        log.info("subscriber %s connected to %s (%d total)", sid, self.token, len(self.subscribers))
        self._schedule_sweep()
        return sid

    async def receive(self, subscriber_id:str, text:str):
        try: msg=json.loads(text)
        except ValueError:
            log.warning("unparseable message from subscriber %s", subscriber_id); return
        if isinstance(msg, dict) and msg.get('type')=='ping':
            await self._send(subscriber_id, json.dumps({'type': 'pong', 'timestamp': _ts()}))

    def disconnect(self, subscriber_id:str):
        if self.subscribers.pop(subscriber_id, None) is not None:
            log.info("subscriber %s left %s (%d remaining)", subscriber_id, self.token, len(self.subscribers))

    async def broadcast(self, event:dict)->int:
        text=json.dumps(event, default=str); reached=0; failed=0
        async with self.turn():
            for sid in list(self.subscribers):
                if await self._send(sid, text): reached+=1
                else: failed+=1
        log.debug("broadcast %s to %d subscribers of %s (%d failures)", event.get('type'), reached, self.token or self.name, failed)
        return reached

    async def sweep(self)->int:
        now=self.clock(); closed=0
        for sid,sub in list(self.subscribers.items()):
            if now - sub.connected_at > self.retention_seconds:
                try: await sub.socket.close(code=1000, reason='Connection timeout')
                except Exception: log.warning("error closing stale subscriber %s", sid, exc_info=True)
                self.subscribers.pop(sid, None); closed+=1
        return closed

    def stop_sweep(self):
        if self._sweep_task and not self._sweep_task.done(): self._sweep_task.cancel()

    async def shutdown(self):
        self.stop_sweep()
        for sid,sub in list(self.subscribers.items()):
            try: await sub.socket.close(code=1001, reason='Server shutting down')
            except Exception: log.debug("subscriber %s already closed", sid)
        self.subscribers.clear()

    async def _send(self, sid:str, text:str)->bool:
        sub=self.subscribers.get(sid)
        if sub is None: return False
        try:
            await sub.socket.send_text(text); return True
        except Exception:
            log.warning("send to subscriber %s failed, dropping it", sid, exc_info=True)
            self.subscribers.pop(sid, None); return False

    def _schedule_sweep(self):
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task=asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_seconds)
            await self.sweep()
            if not self.subscribers: break

class ChannelHub:
    """Addresses channels by token; what the executor and the HTTP layer talk to."""
    def __init__(self, session_factory=None, retention_seconds:float=3600, sweep_seconds:float=300):
        self.namespace=ActorNamespace('ws', lambda name: SubmissionChannel(
            name, ActorStorage(name, session_factory), retention_seconds, sweep_seconds))

    def channel(self, token:str)->SubmissionChannel:
        return self.namespace.get(token)

    async def broadcast(self, token:str, event:dict)->int:
        ch=self.channel(token)
        reached=await ch.broadcast(event)
        self.release(token)
        return reached

    def release(self, token:str):
        ch=self.namespace.peek(token)
        if ch is not None and not ch.subscribers and self.namespace.evict(token): ch.stop_sweep()

    async def shutdown(self):
        for ch in self.namespace: await ch.shutdown()
