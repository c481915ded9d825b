"""
End-to-end runs against the local subprocess sandbox, using the host Python interpreter.
"""

import asyncio
import pytest
from coderun.runtime import Runtime
from coderun.sandbox import LocalSandbox
from coderun.statuses import StatusId
from conftest import PY_LANG_ID, PY_COMPILED_LANG_ID


@pytest.fixture
def local_runtime(cfg, session_factory):
    return Runtime(cfg, session_factory, LocalSandbox(cfg['sandbox']['root']))


def _execute(rt, **body):
    body.setdefault('language_id', PY_LANG_ID)

    async def scenario():
        created = await rt.submissions.create(body)
        job = (await rt.queue.receive()).body
        await rt.executors.get(job['submission_id']).execute(job)
        return await rt.store.get_by_token(created['token'])

    return asyncio.run(scenario())


class TestLocalExecution:
    def test_accepted(self, local_runtime):
        """Should run real code and accept matching output"""
        sub = _execute(local_runtime, source_code='print(1+1)', expected_output='2')
        assert sub.status_id == StatusId.ACCEPTED
        assert sub.stdout == '2\n'
        assert sub.exit_code == 0
        assert sub.time >= 0

    def test_stdin(self, local_runtime):
        """Should feed stdin to the program"""
        sub = _execute(local_runtime, source_code='print(int(input()) * 2)', stdin='21\n', expected_output='42')
        assert sub.status_id == StatusId.ACCEPTED

    def test_wrong_answer(self, local_runtime):
        """Should flag mismatched output"""
        sub = _execute(local_runtime, source_code='print(1+1)', expected_output='3')
        assert sub.status_id == StatusId.WRONG_ANSWER

    def test_non_zero_exit(self, local_runtime):
        """Should report NZEC for an explicit non-zero exit"""
        sub = _execute(local_runtime, source_code='import sys\nsys.exit(3)')
        assert sub.status_id == StatusId.RUNTIME_ERROR_NZEC
        assert sub.exit_code == 3

    def test_abort_signal(self, local_runtime):
        """Should recover SIGABRT from the exit status"""
        sub = _execute(local_runtime, source_code='import os\nos.abort()')
        assert sub.status_id == StatusId.RUNTIME_ERROR_SIGABRT
        assert sub.exit_signal == 6

    def test_time_limit(self, local_runtime, cfg):
        """Should give up on an endless loop at the wall-time limit"""
        sub = _execute(local_runtime, source_code='while True:\n    pass', wall_time_limit=1)
        assert sub.status_id == StatusId.TIME_LIMIT_EXCEEDED
        assert sub.stdout == ''

    def test_compile_error(self, local_runtime):
        """Should stop at a failing compile step"""
        sub = _execute(local_runtime, source_code='print(', language_id=PY_COMPILED_LANG_ID)
        assert sub.status_id == StatusId.COMPILATION_ERROR
        assert 'SyntaxError' in (sub.compile_output or '')

    def test_compiled_language_runs(self, local_runtime):
        """Should run after a successful compile in the same workspace"""
        sub = _execute(local_runtime, source_code='print("ok")', language_id=PY_COMPILED_LANG_ID, expected_output='ok')
        assert sub.status_id == StatusId.ACCEPTED

    def test_additional_files(self, local_runtime):
        """Should make additional files readable from the program"""
        import base64, json
        files = base64.b64encode(json.dumps([{'path': 'data/input.txt', 'content': 'hello'}]).encode()).decode()
        sub = _execute(local_runtime, source_code='print(open("data/input.txt").read())', additional_files=files, expected_output='hello')
        assert sub.status_id == StatusId.ACCEPTED

    def test_workspace_is_removed(self, local_runtime, cfg):
        """Should leave no workspace directory behind"""
        import os
        _execute(local_runtime, source_code='print(1)')
        assert os.listdir(cfg['sandbox']['root']) == []
