import asyncio, logging, uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from .actors import ActorNamespace
from .executor import SubmissionExecutor

log = logging.getLogger(__name__)

@dataclass
class Message:
    body: Dict[str,Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0

class SubmissionQueue:
    """
    In-process job queue. It owns redelivery: a message reported as failed is
    re-enqueued after ``retry_delay * attempts`` seconds until ``max_attempts``
    deliveries have failed, then it is parked in ``dead_letters``.
    """
    def __init__(self, max_attempts:int=3, retry_delay:float=1.0):
        self.max_attempts=max_attempts; self.retry_delay=retry_delay
        self._queue:asyncio.Queue=asyncio.Queue(); self.dead_letters:List[Message]=[]
        self._retries=set()

    async def send(self, body:Dict[str,Any])->Message:
        msg=Message(body); await self._queue.put(msg)
        return msg

    async def receive(self)->Message:
        return await self._queue.get()

    async def settle(self, message:Message, ok:bool):
        self._queue.task_done()
        if ok: return
        message.attempts+=1
        if message.attempts >= self.max_attempts:
            log.error("message %s failed %d times, moving to dead letters", message.id, message.attempts)
            self.dead_letters.append(message); return
        task=asyncio.get_running_loop().create_task(self._redeliver(message, self.retry_delay*message.attempts))
        self._retries.add(task); task.add_done_callback(self._retries.discard)

    async def _redeliver(self, message:Message, delay:float):
        await asyncio.sleep(delay)
        log.info("redelivering message %s (attempt %d)", message.id, message.attempts+1)
        await self._queue.put(message)

    def qsize(self)->int: return self._queue.qsize()

    async def join(self): await self._queue.join()

class Dispatcher:
    """Hands each job to the executor actor named after its submission id."""
    def __init__(self, queue:SubmissionQueue, executors:ActorNamespace[SubmissionExecutor], workers:int=4):
        self.queue=queue; self.executors=executors; self.workers=max(1, int(workers))
        self._tasks:List[asyncio.Task]=[]

    def executor_for(self, job:Dict[str,Any])->SubmissionExecutor:
        return self.executors.get(job['submission_id'])

    async def handle(self, message:Message)->bool:
        job=message.body
        try:
            await self.executor_for(job).execute(job)
            return True
        except Exception:
            log.exception("handoff of submission %s failed", job.get('submission_id'))
            return False
        finally:
            self.executors.evict(job.get('submission_id'))

    async def consume(self):
        while True:
            message=await self.queue.receive()
            ok=await self.handle(message)
            await self.queue.settle(message, ok)

    def start(self):
        loop=asyncio.get_running_loop()
        self._tasks=[loop.create_task(self.consume()) for _ in range(self.workers)]
        log.info("dispatcher started with %d workers", self.workers)

    async def stop(self):
        for t in self._tasks: t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks=[]
