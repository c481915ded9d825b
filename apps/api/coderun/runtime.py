import asyncio, logging, time
from typing import Optional
from .actors import ActorNamespace
from .callback import CallbackService
from .config import get_config
from .db import SessionLocal
from .dispatch import Dispatcher, SubmissionQueue
from .execution import ExecutionService
from .executor import SubmissionExecutor
from .fanout import ChannelHub
from .ratelimit import ShardedRateLimiter
from .sandbox import IsolatedExecutor, build_sandbox
from .store import SubmissionStore
from .submissions import SubmissionService

log = logging.getLogger(__name__)

class Runtime:
    """Everything one process needs, built once and handed to the app."""

    def __init__(self, cfg:Optional[dict]=None, session_factory=None, sandbox:Optional[IsolatedExecutor]=None, clock=time.time):
        self.cfg=cfg=cfg or get_config()
        self.session_factory=session_factory or SessionLocal
        self.store=SubmissionStore(self.session_factory)
        self.sandbox=sandbox or build_sandbox(cfg)
        self.execution=ExecutionService(self.sandbox, bool(cfg['sandbox']['network_isolation']), cfg['sandbox']['stdin_file'])
        self.hub=ChannelHub(self.session_factory, cfg['websocket']['retention_seconds'], cfg['websocket']['sweep_seconds'])
        self.callbacks=CallbackService(self.store, cfg['callback']['timeout'])
        host=cfg['execution']['host']
        self.executors=ActorNamespace('executor', lambda name: SubmissionExecutor(name, self.execution, self.store, self.hub, self.callbacks, host))
        self.queue=SubmissionQueue(cfg['queue']['max_attempts'], cfg['queue']['retry_delay'])
        self.dispatcher=Dispatcher(self.queue, self.executors, cfg['queue']['workers'])
        rl=cfg['rate_limit']
        self.rate_limiter=ShardedRateLimiter(rl['shards'], rl['requests_per_minute'], rl['window_seconds'], clock)
        self.submissions=SubmissionService(self.store, self.queue, cfg)
        self._sweeper:Optional[asyncio.Task]=None

    async def start(self):
        self.dispatcher.start()
        self._sweeper=asyncio.get_running_loop().create_task(self.rate_limiter.run_sweeper(self.cfg['rate_limit']['sweep_seconds']))

    async def stop(self):
        await self.dispatcher.stop()
        if self._sweeper:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
        await self.hub.shutdown()
        await self.sandbox.close()
        log.info("runtime stopped")
