import logging
from typing import Optional
import httpx
from .store import SubmissionStore

log = logging.getLogger(__name__)

def callback_payload(sub)->dict:
    return {
        'token': sub.token, 'stdout': sub.stdout, 'stderr': sub.stderr, 'compile_output': sub.compile_output,
        'time': sub.time, 'memory': sub.memory, 'exit_code': sub.exit_code, 'exit_signal': sub.exit_signal,
        'message': sub.message,
        'status': {'id': sub.status.id, 'name': sub.status.name, 'description': sub.status.description},
        'language': {'id': sub.language.id, 'name': sub.language.name},
    }

class CallbackService:
    """One PUT per finished submission; failures are logged, never retried."""
    def __init__(self, store:SubmissionStore, timeout:float=10.0, client:Optional[httpx.AsyncClient]=None):
        self.store=store; self.timeout=timeout; self.client=client

    async def send(self, submission_id:int, url:str)->bool:
        try:
            sub=await self.store.get_by_id(submission_id)
            if sub is None: return False
            if self.client is not None:
                r=await self.client.put(url, json=callback_payload(sub), timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r=await client.put(url, json=callback_payload(sub))
            log.info("callback for %s delivered to %s (%s)", sub.token, url, r.status_code)
            return True
        except Exception:
            log.exception("callback to %s failed", url)
            return False
