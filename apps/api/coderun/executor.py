"""
Executor actor: owns the lifecycle of one submission.

IN_QUEUE -> PROCESSING -> one terminal status. Compilation failure ends the
lifecycle before the run phase. Anything unexpected becomes INTERNAL_ERROR;
nothing raised during a lifecycle escapes ``execute``.
"""
import logging, traceback
from typing import Any, Dict, Optional
from .actors import Actor
from .callback import CallbackService
from .execution import ExecutionService
from .fanout import ChannelHub, status_message, progress_message, error_message
from .statuses import StatusId, is_terminal, status_dict
from .store import SubmissionStore, utcnow

log = logging.getLogger(__name__)

class SubmissionExecutor(Actor):
    def __init__(self, name:str, execution:ExecutionService, store:SubmissionStore, hub:ChannelHub,
                 callbacks:Optional[CallbackService]=None, host:str='worker-01'):
        super().__init__(name)
        self.execution=execution; self.store=store; self.hub=hub; self.callbacks=callbacks; self.host=host

    async def execute(self, job:Dict[str,Any])->Optional[int]:
        """Run the job to a terminal status and return it. Returns None when the submission no longer exists."""
        async with self.turn():
            sid=job['submission_id']; token=job['token']
            current=await self.store.get_by_id(sid)
            if current is None:
                log.warning("submission %s (%s) vanished before execution", sid, token); return None
            if is_terminal(current.status_id):
                log.info("submission %s already finished with status %s, skipping redelivery", token, current.status_id)
                return current.status_id
            log.info("starting submission %s (%s)", sid, token)
            try:
                # PROCESSING precedes every terminal status, a failed workspace open included
                await self.store.mark_processing(sid, self.host)
                await self._broadcast(token, status_message(token, status_dict(StatusId.PROCESSING)))
                async with self.execution.workspace(f"{sid}-{token}") as ws:
                    status_id=await self._lifecycle(ws, job)
                log.info("submission %s finished with status %s", token, int(status_id))
                return int(status_id)
            except Exception as exc:
                log.exception("internal error while executing %s", token)
                await self._fail(sid, token, exc)
                return int(StatusId.INTERNAL_ERROR)

    async def _lifecycle(self, ws, job:Dict[str,Any])->int:
        sid=job['submission_id']; token=job['token']; language=job['language']
        limits=job.get('limits') or {}; options=job.get('options') or {}; code=job['source_code']

        if language.get('compile_cmd'):
            await self._broadcast(token, progress_message(token, 'compiling', 'Compiling source code...'))
            compiled=await self.execution.compile_if_needed(ws, code, language, limits, options)
            if not compiled['success']:
                exit_code=compiled.get('exit_code') or 1
                await self.store.mark_compilation_failed(sid, compiled['output'], exit_code)
                await self._broadcast(token, status_message(token, status_dict(StatusId.COMPILATION_ERROR),
                                                            {'compile_output': compiled['output'] or '', 'exit_code': exit_code}))
                now=utcnow()
                await self.store.append_result(sid, stderr=compiled['output'], exit_code=exit_code, started_at=now, finished_at=now)
                await self._callback(sid, options)
                log.info("compilation failed for %s", token)
                return StatusId.COMPILATION_ERROR
            if compiled['output']: await self.store.set_compile_output(sid, compiled['output'])

        await self._broadcast(token, progress_message(token, 'running', 'Executing code...'))
        if job.get('test_cases'):
            batch=await self.execution.execute_test_cases(ws, code, language, job['test_cases'], limits, options)
            runs=batch['results']; evaluation=batch['evaluation']
            result=self.execution.aggregate_results(runs)
        else:
            runs=await self.execution.execute_runs(ws, code, language, job.get('stdin') or '', options.get('number_of_runs') or 1, limits, options)
            result=self.execution.aggregate_results(runs)
            evaluation=self.execution.evaluate_results(result, job.get('expected_output'))

        await self.store.update_with_results(sid, evaluation, result)
        sub=await self.store.get_by_id(sid)
        status={'id': sub.status.id, 'name': sub.status.name, 'description': sub.status.description}
        await self._broadcast(token, status_message(token, status, {
            'stdout': result.stdout or '', 'stderr': result.stderr or '', 'time': str(result.time),
            'memory': result.memory, 'exit_code': result.exit_code, 'message': evaluation.get('message')}))
        recorded=runs if job.get('test_cases') else [result]
        for r in recorded:
            await self.store.append_result(sid, stdout=r.stdout, stderr=r.stderr, exit_code=r.exit_code,
                                           started_at=r.started_at, finished_at=r.finished_at)
        await self._callback(sid, options)
        return sub.status_id

    async def _fail(self, sid:int, token:str, exc:BaseException):
        try: await self.store.mark_internal_error(sid, exc)
        except Exception: log.exception("could not record internal error for %s", token)
        await self._broadcast(token, error_message(token, 'Internal Error', str(exc) or exc.__class__.__name__))
        try:
            now=utcnow()
            await self.store.append_result(sid, stderr="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), exit_code=1, started_at=now, finished_at=now)
        except Exception: log.exception("could not append result for %s", token)

    async def _broadcast(self, token:str, message:dict):
        try: await self.hub.broadcast(token, message)
        except Exception: log.exception("failed to broadcast %s for %s", message.get('type'), token)

    async def _callback(self, sid:int, options:Dict[str,Any]):
        url=options.get('callback_url')
        if url and self.callbacks is not None: await self.callbacks.send(sid, url)
