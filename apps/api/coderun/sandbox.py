"""
Isolated executor backends.

A workspace is a private directory owned by one submission. The executor can
write files into it, run shell commands inside it and finally destroy it.
Nothing here enforces limits or timeouts; that is the orchestrator's job.
"""
import asyncio, base64, logging, os, re, shutil, signal, tempfile, time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Set, Union
import httpx

log = logging.getLogger(__name__)

@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int
    duration: float
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc).replace(tzinfo=None))

class Workspace:
    key: str
    root: str
    async def write_file(self, path:str, content:Union[str,bytes]): raise NotImplementedError
    async def exec(self, command:str, cwd:Optional[str]=None)->CommandResult: raise NotImplementedError
    async def destroy(self): raise NotImplementedError

class IsolatedExecutor:
    async def open(self, key:str)->Workspace: raise NotImplementedError
    async def close(self): pass

def _safe_key(key:str)->str:
    return re.sub(r'[^A-Za-z0-9_-]', '_', key)[:64]

class LocalWorkspace(Workspace):
    def __init__(self, key:str, root:str):
        self.key=key; self.root=root; self._procs:Set[asyncio.subprocess.Process]=set()

    async def write_file(self, path:str, content:Union[str,bytes]):
        full=os.path.join(self.root, path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, 'wb') as f: f.write(content.encode('utf-8') if isinstance(content, str) else content)

    async def exec(self, command:str, cwd:Optional[str]=None)->CommandResult:
        started=datetime.now(timezone.utc).replace(tzinfo=None); t0=time.monotonic()
        proc=await asyncio.create_subprocess_shell(command, cwd=cwd or self.root, stdin=asyncio.subprocess.DEVNULL,
                                                   stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
                                                   start_new_session=True)
        self._procs.add(proc)
        try: out,err=await proc.communicate()
        finally: self._procs.discard(proc)
        code=proc.returncode
        # killed shell: report the way a parent shell would
        if code < 0: code=128 + (-code)
        return CommandResult(out.decode('utf-8', errors='replace'), err.decode('utf-8', errors='replace'), code, time.monotonic()-t0, started)

    async def destroy(self):
        for proc in list(self._procs):
            if proc.returncode is None:
                try: os.killpg(proc.pid, signal.SIGKILL)
                except (ProcessLookupError, PermissionError): log.debug("process %s already gone", proc.pid)
        self._procs.clear()
        shutil.rmtree(self.root, ignore_errors=True)

class LocalSandbox(IsolatedExecutor):
    """Runs commands as local subprocesses, one temporary directory per workspace."""
    def __init__(self, root:Optional[str]=None):
        self.root=root
        if root: os.makedirs(root, exist_ok=True)

    async def open(self, key:str)->Workspace:
        path=tempfile.mkdtemp(prefix=f"coderun-{_safe_key(key)}-", dir=self.root)
        return LocalWorkspace(key, path)

class RemoteWorkspace(Workspace):
    def __init__(self, key:str, workspace_id:str, root:str, client:httpx.AsyncClient):
        self.key=key; self.workspace_id=workspace_id; self.root=root; self.client=client

    async def write_file(self, path:str, content:Union[str,bytes]):
        raw=content.encode('utf-8') if isinstance(content, str) else content
        r=await self.client.put(f"/workspaces/{self.workspace_id}/files", json={'path': path, 'content_base64': base64.b64encode(raw).decode('ascii')})
        r.raise_for_status()

    async def exec(self, command:str, cwd:Optional[str]=None)->CommandResult:
        r=await self.client.post(f"/workspaces/{self.workspace_id}/exec", json={'command': command, 'cwd': cwd or self.root}, timeout=None)
        r.raise_for_status(); d=r.json()
        return CommandResult(d.get('stdout') or '', d.get('stderr') or '', int(d.get('exit_code', 0)), float(d.get('duration') or 0.0))

    async def destroy(self):
        r=await self.client.delete(f"/workspaces/{self.workspace_id}")
        r.raise_for_status()

class RemoteSandbox(IsolatedExecutor):
    """Client for a sandbox daemon exposing /workspaces over HTTP."""
    def __init__(self, base_url:str, client:Optional[httpx.AsyncClient]=None):
        self.client=client or httpx.AsyncClient(base_url=base_url, timeout=30)

    async def open(self, key:str)->Workspace:
        r=await self.client.post('/workspaces', json={'key': key}); r.raise_for_status(); d=r.json()
        return RemoteWorkspace(key, d['id'], d.get('root') or '/workspace', self.client)

    async def close(self):
        await self.client.aclose()

def build_sandbox(cfg:dict)->IsolatedExecutor:
    sb=cfg['sandbox']
    if sb.get('backend')=='remote': return RemoteSandbox(sb['url'])
    return LocalSandbox(sb.get('root'))
