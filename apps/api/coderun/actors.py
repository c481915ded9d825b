"""
Named single-instance actors.

A namespace maps a stable name (``executor-42``, ``ws-<token>``,
``rate-limiter-3``) to exactly one live instance inside this process. Each
actor serialises its own work through ``self.lock``; different names never
share state.
"""
import asyncio, logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Generic, Optional, TypeVar
from .db import SessionLocal
from .models import ActorState

log = logging.getLogger(__name__)

class ActorStorage:
    """Small durable key/value area private to one actor name."""
    def __init__(self, name:str, session_factory=None):
        self.name=name; self.session_factory=session_factory or SessionLocal

    async def get(self, key:str, default:Any=None)->Any:
        db=self.session_factory()
        try:
            row=db.query(ActorState).filter_by(actor=self.name, key=key).first()
            return row.value if row else default
        finally: db.close()

    async def put(self, key:str, value:Any):
        db=self.session_factory()
        try:
            row=db.query(ActorState).filter_by(actor=self.name, key=key).first()
            if row: row.value=value
            else: db.add(ActorState(actor=self.name, key=key, value=value))
            db.commit()
        finally: db.close()

    async def delete(self, key:str):
        db=self.session_factory()
        try: db.query(ActorState).filter_by(actor=self.name, key=key).delete(); db.commit()
        finally: db.close()

class Actor:
    def __init__(self, name:str, storage:Optional[ActorStorage]=None):
        self.name=name; self.storage=storage; self.lock=asyncio.Lock(); self.pending=0

    @asynccontextmanager
    async def turn(self):
        # pending counts waiters too, so an actor with queued work is never evicted
        self.pending+=1
        try:
            async with self.lock: yield
        finally: self.pending-=1

    @property
    def busy(self)->bool:
        return self.pending>0 or self.lock.locked()

A = TypeVar('A', bound=Actor)

class ActorNamespace(Generic[A]):
    def __init__(self, prefix:str, factory:Callable[[str], A]):
        self.prefix=prefix; self.factory=factory; self._live:Dict[str, A]={}

    def name_for(self, key:Any)->str:
        return f"{self.prefix}-{key}"

    def get(self, key:Any)->A:
        name=self.name_for(key)
        actor=self._live.get(name)
        if actor is None:
            actor=self.factory(name); self._live[name]=actor
            log.debug("actor %s created", name)
        return actor

    def peek(self, key:Any)->Optional[A]:
        return self._live.get(self.name_for(key))

    def evict(self, key:Any)->bool:
        name=self.name_for(key); actor=self._live.get(name)
        if actor is None or actor.busy: return False
        del self._live[name]; return True

    def __len__(self): return len(self._live)
    def __iter__(self): return iter(list(self._live.values()))
