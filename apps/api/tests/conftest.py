import copy, shlex, sys
import pytest
from coderun.config import DEFAULTS
from coderun.db import make_engine, make_session_factory, init_db
from coderun.models import Language
from coderun.runtime import Runtime
from coderun.sandbox import CommandResult, IsolatedExecutor, Workspace
from coderun.store import SubmissionStore

PY_LANG_ID = 101
PY_COMPILED_LANG_ID = 102
PY = shlex.quote(sys.executable)


class FakeWorkspace(Workspace):
    def __init__(self, key, sandbox):
        self.key = key
        self.root = f"/fake/{key}"
        self.sandbox = sandbox
        self.files = {}
        self.commands = []
        self.destroyed = False

    async def write_file(self, path, content):
        self.files[path] = content

    async def exec(self, command, cwd=None):
        self.commands.append(command)
        return await self.sandbox.handler(self, command)

    async def destroy(self):
        self.destroyed = True


class FakeSandbox(IsolatedExecutor):
    """Scriptable stand-in for the isolated executor."""

    def __init__(self):
        self.workspaces = []
        self.handler = self.default_handler

    async def default_handler(self, ws, command):
        return CommandResult('2\n', '', 0, 0.01)

    async def open(self, key):
        ws = FakeWorkspace(key, self)
        self.workspaces.append(ws)
        return ws


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.closed = None

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError('socket gone')
        self.sent.append(text)

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)


@pytest.fixture
def cfg(tmp_path):
    c = copy.deepcopy(DEFAULTS)
    c['database']['url'] = f"sqlite:///{tmp_path / 'test.db'}"
    c['rate_limit']['requests_per_minute'] = 10000
    c['timeouts'] = {'max_wait': 15.0, 'poll_interval': 0.05}
    c['queue']['retry_delay'] = 0.01
    c['sandbox']['root'] = str(tmp_path / 'workspaces')
    c['execution']['host'] = 'test-host'
    return c


@pytest.fixture
def session_factory(cfg):
    engine = make_engine(cfg['database']['url'])
    factory = make_session_factory(engine)
    init_db(engine, factory)
    db = factory()
    try:
        db.add(Language(id=PY_LANG_ID, name='Python (host)', compile_cmd=None,
                        run_cmd=f"{PY} solution.py", source_file='solution.py'))
        db.add(Language(id=PY_COMPILED_LANG_ID, name='Python (byte-compiled)',
                        compile_cmd=f"{PY} -m py_compile solution.py",
                        run_cmd=f"{PY} solution.py", source_file='solution.py'))
        db.commit()
    finally:
        db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SubmissionStore(session_factory)


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def runtime(cfg, session_factory, fake_sandbox):
    return Runtime(cfg, session_factory, fake_sandbox)


@pytest.fixture
def make_socket():
    return FakeSocket
