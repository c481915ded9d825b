"""
Compile, run, aggregate and evaluate one submission against an isolated executor.

Every run races the executor against the submission's wall-time limit. The
timer winning produces a synthetic result; the abandoned execution is left to
finish on its own and whatever it returns later is dropped.
"""
import asyncio, base64, logging, math, re, shlex, weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from .errors import PathTraversalError
from .sandbox import IsolatedExecutor, Workspace, CommandResult
from .statuses import StatusId, SIGNAL_STATUS

log = logging.getLogger(__name__)

UNSAFE_ARG = re.compile(r'[^a-zA-Z0-9 \-_=./]')
TIMEOUT_EXIT_CODE = 124
TIMEOUT_SIGNAL = 9

def _now():
    return datetime.now(timezone.utc).replace(tzinfo=None)

@dataclass
class ExecutionResult:
    stdout: str = ''
    stderr: str = ''
    exit_code: int = 0
    exit_signal: Optional[int] = None
    time: float = 0.0
    wall_time: float = 0.0
    memory: int = 0
    time_limit_exceeded: bool = False
    started_at: datetime = field(default_factory=_now)
    finished_at: datetime = field(default_factory=_now)

def sanitize_arg(arg:Optional[str])->str:
    if not arg: return ''
    return UNSAFE_ARG.sub('', arg.strip())

def validate_path(path:str):
    if '..' in path: raise PathTraversalError(path, 'Path traversal is not allowed.')
    if path.startswith('/') or path.startswith('\\'): raise PathTraversalError(path, 'Absolute paths are not allowed.')

def signal_from_exit(exit_code:int)->Optional[int]:
    # shells report death by signal n as 128+n
    if 128 < exit_code <= 128+64: return exit_code-128
    return None

def _discard_late_result(task:asyncio.Future):
    if task.cancelled(): return
    exc=task.exception()
    if exc is not None: log.debug("late execution failed after timeout: %s", exc)
    else: log.debug("discarding late execution result (exit %s)", task.result().exit_code)

class ExecutionService:
    def __init__(self, sandbox:IsolatedExecutor, network_isolation:bool=False, stdin_file:str='.stdin-stdin.txt'):
        self.sandbox=sandbox; self.network_isolation=network_isolation; self.stdin_file=stdin_file
        self._staged=weakref.WeakSet()

    @asynccontextmanager
    async def workspace(self, key:str):
        ws=await self.sandbox.open(key)
        try: yield ws
        finally:
            try: await ws.destroy()
            except Exception: log.warning("failed to clean up workspace %s", key, exc_info=True)

    async def stage(self, ws:Workspace, code:str, language:Dict[str,Any], options:Dict[str,Any]):
        files=(options or {}).get('additional_files') or []
        validate_path(language['source_file'])
        for f in files: validate_path(f['path'])
        await ws.write_file(language['source_file'], code)
        for f in files:
            if f.get('content_base64'):
                await ws.write_file(f['path'], base64.b64decode(f['content_base64']))
            else: await ws.write_file(f['path'], f.get('content') or '')
        self._staged.add(ws)

    async def _ensure_staged(self, ws, code, language, options):
        if ws not in self._staged: await self.stage(ws, code, language, options)

    async def compile_if_needed(self, ws:Workspace, code:str, language:Dict[str,Any], limits:Dict[str,Any], options:Dict[str,Any])->Dict[str,Any]:
        if not language.get('compile_cmd'): return {'success': True, 'output': None, 'exit_code': 0}
        await self._ensure_staged(ws, code, language, options)
        command=self.build_command(language['compile_cmd'], limits, options, compilation=True)
        res=await ws.exec(command, ws.root)
        output=res.stderr or res.stdout or None
        if res.exit_code != 0:
            log.info("compilation failed in %s (exit %s)", ws.key, res.exit_code)
            return {'success': False, 'output': output, 'exit_code': res.exit_code}
        return {'success': True, 'output': output, 'exit_code': 0}

    async def execute_runs(self, ws:Workspace, code:str, language:Dict[str,Any], stdin:Optional[str], number_of_runs:int,
                           limits:Dict[str,Any], options:Dict[str,Any])->List[ExecutionResult]:
        await self._ensure_staged(ws, code, language, options)
        results=[]
        for _ in range(max(1, int(number_of_runs or 1))):
            results.append(await self._run_once(ws, language, stdin, limits, options))
        return results

    async def execute_test_cases(self, ws:Workspace, code:str, language:Dict[str,Any], test_cases:List[Dict[str,Any]],
                                 limits:Dict[str,Any], options:Dict[str,Any])->Dict[str,Any]:
        if not test_cases: raise ValueError('execute_test_cases needs at least one test case')
        await self._ensure_staged(ws, code, language, options)
        results=[]; cases=[]; first_failure=None
        for i,case in enumerate(test_cases):
            r=await self._run_once(ws, language, case.get('stdin'), limits, options)
            verdict=self.evaluate_results(r, case.get('expected_output'))
            ok=verdict['status_id']==StatusId.ACCEPTED
            if not ok and first_failure is None: first_failure=(i, verdict)
            results.append(r); cases.append({'index': i, 'status_id': int(verdict['status_id']), 'message': verdict['message'], 'passed': ok})
        passed=sum(1 for c in cases if c['passed']); total=len(cases)
        if first_failure is None:
            evaluation={'status_id': StatusId.ACCEPTED, 'message': f"All {total} test cases passed"}
        else:
            i,v=first_failure
            evaluation={'status_id': v['status_id'], 'message': f"Test case {i+1} failed: {v['message']} ({passed}/{total} passed)"}
        evaluation.update(passed=passed, total=total, cases=cases)
        return {'results': results, 'evaluation': evaluation}

    def aggregate_results(self, results:List[ExecutionResult])->ExecutionResult:
        if not results: raise ValueError('no execution results to aggregate')
        if len(results)==1: return results[0]
        n=len(results)
        return replace(results[0], time=sum(r.time or 0 for r in results)/n, memory=int(sum(r.memory or 0 for r in results)//n))

    def evaluate_results(self, result:ExecutionResult, expected_output:Optional[str])->Dict[str,Any]:
        # the synthetic timeout result carries exit 124 / SIGKILL, so the flag is checked before the signal table
        if result.time_limit_exceeded: return {'status_id': StatusId.TIME_LIMIT_EXCEEDED, 'message': 'Time limit exceeded'}
        if result.exit_code != 0:
            if result.exit_signal in SIGNAL_STATUS:
                status_id,message=SIGNAL_STATUS[result.exit_signal]
            elif result.exit_signal:
                status_id,message=StatusId.RUNTIME_ERROR_OTHER, f"Runtime error: signal {result.exit_signal}"
            else:
                status_id,message=StatusId.RUNTIME_ERROR_NZEC, f"Non-zero exit code: {result.exit_code}"
            return {'status_id': status_id, 'message': message}
        if expected_output is not None and (result.stdout or '').strip() != str(expected_output).strip():
            return {'status_id': StatusId.WRONG_ANSWER, 'message': 'Wrong answer'}
        return {'status_id': StatusId.ACCEPTED, 'message': 'Accepted'}

    def build_command(self, command:str, limits:Dict[str,Any], options:Dict[str,Any], compilation:bool=False, stdin_path:Optional[str]=None)->str:
        limits=limits or {}; options=options or {}
        extra=options.get('compiler_options') if compilation else options.get('command_line_arguments')
        full=' '.join(s for s in [(command or '').strip(), sanitize_arg(extra)] if s)
        if not full: raise ValueError('Execution command is empty.')
        if stdin_path: full=f"{full} < {shlex.quote(stdin_path)}"
        if options.get('redirect_stderr_to_stdout') and not compilation: full=f"{full} 2>&1"
        if compilation: return full
        ulimits=[]
        if limits.get('cpu_time_limit'): ulimits.append(f"ulimit -t {math.ceil(float(limits['cpu_time_limit']))}")
        if limits.get('max_file_size'): ulimits.append(f"ulimit -f {math.ceil(float(limits['max_file_size']))}")
        wrapped=' && '.join(ulimits + [full])
        if self.network_isolation and not options.get('enable_network'):
            wrapped=f"unshare -n -- sh -c {shlex.quote(wrapped)}"
        return wrapped

    async def _run_once(self, ws:Workspace, language:Dict[str,Any], stdin:Optional[str], limits:Dict[str,Any], options:Dict[str,Any])->ExecutionResult:
        stdin_path=None
        if stdin:
            stdin_path=self.stdin_file
            await ws.write_file(stdin_path, stdin)
        command=self.build_command(language['run_cmd'], limits, options, stdin_path=stdin_path)
        wall=float((limits or {}).get('wall_time_limit') or 10.0)
        return await self.race(ws.exec(command, ws.root), wall)

    async def race(self, execution, wall_time_limit:float)->ExecutionResult:
        started=_now()
        task=asyncio.ensure_future(execution)
        done,_=await asyncio.wait({task}, timeout=wall_time_limit)
        if task not in done:
            task.add_done_callback(_discard_late_result)
            log.info("wall time limit of %ss exceeded", wall_time_limit)
            return ExecutionResult(stdout='', stderr='Time Limit Exceeded', exit_code=TIMEOUT_EXIT_CODE, exit_signal=TIMEOUT_SIGNAL,
                                   time=wall_time_limit, wall_time=wall_time_limit, time_limit_exceeded=True,
                                   started_at=started, finished_at=_now())
        res:CommandResult=task.result()
        return ExecutionResult(stdout=res.stdout, stderr=res.stderr, exit_code=res.exit_code, exit_signal=signal_from_exit(res.exit_code),
                               time=res.duration, wall_time=res.duration, memory=0, time_limit_exceeded=False,
                               started_at=res.started_at, finished_at=res.started_at+timedelta(seconds=res.duration))
