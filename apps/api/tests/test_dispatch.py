"""
Tests for the job queue and dispatcher (coderun/dispatch.py)
"""

import asyncio
from coderun.actors import Actor, ActorNamespace
from coderun.dispatch import Dispatcher, SubmissionQueue
from coderun.statuses import StatusId
from conftest import PY_LANG_ID


class RecordingExecutor(Actor):
    def __init__(self, name, calls, failures):
        super().__init__(name)
        self.calls = calls
        self.failures = failures

    async def execute(self, job):
        async with self.turn():
            self.calls.append((self.name, job['submission_id']))
            if len(self.calls) <= self.failures:
                raise RuntimeError('handoff failed')
            return int(StatusId.ACCEPTED)


def _namespace(calls, failures=0):
    return ActorNamespace('executor', lambda name: RecordingExecutor(name, calls, failures))


async def _until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError('condition not reached in time')
        await asyncio.sleep(0.005)


class TestDispatcher:
    def test_job_goes_to_executor_named_after_submission(self):
        """Should address the executor actor by submission id"""
        calls = []
        dispatcher = Dispatcher(SubmissionQueue(), _namespace(calls))
        assert dispatcher.executor_for({'submission_id': 42}).name == 'executor-42'
        assert dispatcher.executor_for({'submission_id': 42}) is dispatcher.executor_for({'submission_id': 42})

    def test_consumes_jobs(self):
        """Should hand every queued job to its executor and acknowledge it"""
        calls = []
        queue = SubmissionQueue()
        executors = _namespace(calls)
        dispatcher = Dispatcher(queue, executors, workers=2)

        async def scenario():
            dispatcher.start()
            for i in (1, 2, 3):
                await queue.send({'submission_id': i})
            await asyncio.wait_for(queue.join(), 2)
            await dispatcher.stop()

        asyncio.run(scenario())
        assert sorted(calls) == [('executor-1', 1), ('executor-2', 2), ('executor-3', 3)]
        assert len(executors) == 0
        assert queue.dead_letters == []

    def test_failed_handoff_is_redelivered(self):
        """Should redeliver a job whose handoff failed"""
        calls = []
        queue = SubmissionQueue(max_attempts=3, retry_delay=0.01)
        dispatcher = Dispatcher(queue, _namespace(calls, failures=1), workers=1)

        async def scenario():
            dispatcher.start()
            await queue.send({'submission_id': 7})
            await _until(lambda: len(calls) == 2)
            await asyncio.wait_for(queue.join(), 2)
            await dispatcher.stop()

        asyncio.run(scenario())
        assert calls == [('executor-7', 7), ('executor-7', 7)]
        assert queue.dead_letters == []

    def test_exhausted_job_is_dead_lettered(self):
        """Should park a job after max_attempts failed deliveries"""
        calls = []
        queue = SubmissionQueue(max_attempts=2, retry_delay=0.01)
        dispatcher = Dispatcher(queue, _namespace(calls, failures=100), workers=1)

        async def scenario():
            dispatcher.start()
            await queue.send({'submission_id': 9})
            await _until(lambda: queue.dead_letters)
            await dispatcher.stop()

        asyncio.run(scenario())
        assert len(calls) == 2
        assert queue.dead_letters[0].body == {'submission_id': 9}
        assert queue.dead_letters[0].attempts == 2

    def test_handle_reports_outcome(self):
        """Should return True on success and False when the executor raises"""
        calls = []
        dispatcher = Dispatcher(SubmissionQueue(), _namespace(calls, failures=1))

        async def scenario():
            queue = dispatcher.queue
            first = await dispatcher.handle(await queue.send({'submission_id': 1}))
            second = await dispatcher.handle(await queue.send({'submission_id': 1}))
            return first, second

        assert asyncio.run(scenario()) == (False, True)


class TestQueueWithRuntime:
    def test_submission_runs_through_dispatcher(self, runtime, store):
        """Should take a created submission to a terminal status via the queue"""
        async def scenario():
            runtime.dispatcher.start()
            created = await runtime.submissions.create({'source_code': 'print(1+1)', 'language_id': PY_LANG_ID, 'expected_output': '2'})
            await asyncio.wait_for(runtime.queue.join(), 5)
            await runtime.dispatcher.stop()
            return await store.get_by_token(created['token'])

        sub = asyncio.run(scenario())
        assert sub.status_id == StatusId.ACCEPTED
        assert len(runtime.executors) == 0
