import asyncio, logging, secrets, time
from typing import Any, Dict, List, Optional
from .config import get_config
from .dispatch import SubmissionQueue
from .encoding import b64decode_text, b64encode_text, parse_additional_files
from .errors import NotFoundError, ValidationError
from .execution import validate_path
from .statuses import is_terminal
from .store import SubmissionStore

log = logging.getLogger(__name__)

LIMIT_FIELDS = {
    'cpu_time_limit': float, 'cpu_extra_time': float, 'wall_time_limit': float, 'memory_limit': int, 'stack_limit': int,
    'max_processes_and_or_threads': int, 'max_file_size': int, 'number_of_runs': int,
}
FLAG_FIELDS = ['enable_per_process_and_thread_time_limit', 'enable_per_process_and_thread_memory_limit']
DEFAULT_FIELDS = ['stdout', 'time', 'memory', 'stderr', 'token', 'compile_output', 'message', 'status']

class SubmissionService:
    """Intake side: validation, creation, enqueueing and read formatting."""

    def __init__(self, store:SubmissionStore, queue:SubmissionQueue, cfg:Optional[dict]=None):
        self.store=store; self.queue=queue; self.cfg=cfg or get_config()

    async def create(self, body:Dict[str,Any], base64_encoded:bool=False)->Dict[str,str]:
        if not isinstance(body, dict): raise ValidationError('submission must be a JSON object', status_code=400)
        errors:Dict[str,List[str]]={}
        if not body.get('source_code'): errors['source_code']=["source_code can't be blank"]
        if not body.get('language_id'): errors['language_id']=["language_id can't be blank"]
        if errors: raise ValidationError(', '.join(m for v in errors.values() for m in v), errors)
        language=await self.store.get_language(_as_int(body['language_id'], 'language_id'))
        if language is None:
            msg=f"language with id {body['language_id']} doesn't exist"
            raise ValidationError(msg, {'language_id': [msg]})

        defaults=self.cfg['execution']
        limits={k: _coerce(body.get(k), cast, k) if body.get(k) is not None else defaults[k] for k,cast in LIMIT_FIELDS.items()}
        for k in FLAG_FIELDS: limits[k]=bool(body[k]) if body.get(k) is not None else defaults[k]
        if limits['number_of_runs'] < 1: raise ValidationError('number_of_runs must be at least 1', {'number_of_runs': ['must be at least 1']})

        source=body['source_code']; stdin=body.get('stdin'); expected=body.get('expected_output')
        if base64_encoded:
            source=b64decode_text(source, 'source_code'); stdin=b64decode_text(stdin, 'stdin'); expected=b64decode_text(expected, 'expected_output')

        additional=None
        if body.get('additional_files'):
            additional=parse_additional_files(body['additional_files'])
            for f in additional: validate_path(f['path'])

        test_cases=self._test_cases(body.get('test_cases'), base64_encoded)
        if test_cases and body.get('number_of_runs') not in (None, 1):
            raise ValidationError('test_cases cannot be combined with number_of_runs', {'test_cases': ['cannot be combined with number_of_runs']})

        sub=await self.store.create(dict(
            token=secrets.token_urlsafe(24), source_code=source, language_id=language.id, stdin=stdin,
            expected_output=expected, user_id=body.get('user_id'),
            compiler_options=body.get('compiler_options'), command_line_arguments=body.get('command_line_arguments'),
            redirect_stderr_to_stdout=bool(body.get('redirect_stderr_to_stdout', False)), enable_network=bool(body.get('enable_network', False)),
            callback_url=body.get('callback_url'), additional_files=additional, test_cases=test_cases, **limits))
        await self.queue.send(self.job_for(sub, language.as_dict()))
        log.info("submission %s queued (language %s)", sub.token, language.id)
        return {'token': sub.token}

    def job_for(self, sub, language:Dict[str,Any])->Dict[str,Any]:
        return {
            'submission_id': sub.id, 'token': sub.token, 'source_code': sub.source_code, 'stdin': sub.stdin,
            'expected_output': sub.expected_output, 'language': language, 'test_cases': sub.test_cases,
            'limits': {k: getattr(sub, k) for k in list(LIMIT_FIELDS) + FLAG_FIELDS if k != 'number_of_runs'},
            'options': {
                'number_of_runs': sub.number_of_runs, 'compiler_options': sub.compiler_options,
                'command_line_arguments': sub.command_line_arguments, 'redirect_stderr_to_stdout': sub.redirect_stderr_to_stdout,
                'enable_network': sub.enable_network, 'callback_url': sub.callback_url, 'additional_files': sub.additional_files,
            },
        }

    async def create_batch(self, submissions, base64_encoded:bool=False)->List[Dict[str,Any]]:
        if not isinstance(submissions, list):
            raise ValidationError('Invalid batch format. Expected { submissions: [...] }', status_code=400)
        max_size=self.cfg['batch']['max_size']
        if len(submissions) > max_size: raise ValidationError(f"Batch size exceeds limit of {max_size}", status_code=400)
        out=[]
        for body in submissions:
            try: out.append(await self.create(body, base64_encoded))
            except ValidationError as e: out.append(e.errors or {'error': str(e)})
        return out

    async def get(self, token:str, fields:Optional[str]=None, base64_encoded:bool=False)->Dict[str,Any]:
        sub=await self.store.get_by_token(token)
        if sub is None: raise NotFoundError('Submission not found')
        return self.format(sub, fields, base64_encoded)

    async def get_batch(self, tokens:List[str], fields:Optional[str]=None, base64_encoded:bool=False)->Dict[str,Any]:
        max_size=self.cfg['batch']['max_size']
        if len(tokens) > max_size: raise ValidationError(f"Batch size exceeds limit of {max_size}", status_code=400)
        out=[]
        for t in tokens:
            try: out.append(await self.get(t, fields, base64_encoded))
            except NotFoundError: out.append({'token': t, 'error': 'Not Found'})
        return {'submissions': out}

    async def wait_for_completion(self, token:str, base64_encoded:bool=False, max_wait:Optional[float]=None, poll_interval:Optional[float]=None)->Optional[Dict[str,Any]]:
        """Poll the store until the submission is terminal; None if it is still running after max_wait seconds."""
        max_wait=self.cfg['timeouts']['max_wait'] if max_wait is None else max_wait
        poll_interval=self.cfg['timeouts']['poll_interval'] if poll_interval is None else poll_interval
        deadline=time.monotonic()+max_wait
        while time.monotonic() < deadline:
            await asyncio.sleep(poll_interval)
            sub=await self.store.get_by_token(token)
            if sub is not None and is_terminal(sub.status_id): return self.format(sub, None, base64_encoded)
        return None

    def format(self, sub, fields:Optional[str]=None, base64_encoded:bool=False)->Dict[str,Any]:
        enc=b64encode_text if base64_encoded else (lambda v: v)
        every={
            'source_code': enc(sub.source_code), 'language_id': sub.language_id, 'stdin': enc(sub.stdin),
            'expected_output': enc(sub.expected_output), 'stdout': enc(sub.stdout), 'stderr': enc(sub.stderr),
            'status_id': sub.status_id, 'created_at': _iso(sub.created_at), 'started_at': _iso(sub.started_at),
            'finished_at': _iso(sub.finished_at), 'time': str(sub.time) if sub.time is not None else None,
            'wall_time': str(sub.wall_time) if sub.wall_time is not None else None, 'memory': sub.memory,
            'token': sub.token, 'compile_output': enc(sub.compile_output), 'exit_code': sub.exit_code,
            'exit_signal': sub.exit_signal, 'message': sub.message, 'number_of_runs': sub.number_of_runs,
            'cpu_time_limit': sub.cpu_time_limit, 'wall_time_limit': sub.wall_time_limit, 'memory_limit': sub.memory_limit,
            'callback_url': sub.callback_url,
            'status': {'id': sub.status.id, 'name': sub.status.name, 'description': sub.status.description},
            'language': {'id': sub.language.id, 'name': sub.language.name},
        }
        if fields == '*': return every
        wanted=[f.strip() for f in fields.split(',')] if fields else DEFAULT_FIELDS
        return {f: every[f] for f in wanted if f in every}

    def _test_cases(self, raw, base64_encoded:bool)->Optional[List[Dict[str,Any]]]:
        if raw is None: return None
        if not isinstance(raw, list) or not raw:
            raise ValidationError('test_cases must be a non-empty array', {'test_cases': ['must be a non-empty array']})
        if len(raw) > self.cfg['batch']['max_size']:
            raise ValidationError('too many test_cases', {'test_cases': [f"at most {self.cfg['batch']['max_size']} test cases"]})
        cases=[]
        for i,c in enumerate(raw):
            if not isinstance(c, dict): raise ValidationError('invalid test case', {'test_cases': [f"test case {i} must be an object"]})
            stdin=c.get('stdin') or ''; expected=c.get('expected_output')
            if base64_encoded: stdin=b64decode_text(stdin, 'test_cases') or ''; expected=b64decode_text(expected, 'test_cases')
            cases.append({'stdin': stdin, 'expected_output': expected})
        return cases

def _as_int(value, field:str)->int:
    return _coerce(value, int, field)

def _coerce(value, cast, field:str):
    try: v=cast(value)
    except (TypeError, ValueError): raise ValidationError(f"{field} is not a number", {field: ['is not a number']})
    if v < 0: raise ValidationError(f"{field} must be positive", {field: ['must be positive']})
    return v

def _iso(dt):
    return dt.isoformat() if dt else None
