import logging, traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from .db import SessionLocal
from .errors import InvalidTransition
from .models import Language, Status, Submission, Result
from .statuses import StatusId, is_terminal

log = logging.getLogger(__name__)

def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)

class SubmissionStore:
    """Durable submission records. Each call opens and closes its own session."""

    def __init__(self, session_factory=None):
        self.session_factory=session_factory or SessionLocal

    async def create(self, data:Dict[str,Any])->Submission:
        db=self.session_factory()
        try:
            now=utcnow()
            row=Submission(status_id=int(StatusId.IN_QUEUE), created_at=now, queued_at=now, **data)
            db.add(row); db.commit(); db.refresh(row)
            return self._load(db, row.id)
        finally: db.close()

    async def get_by_token(self, token:str)->Optional[Submission]:
        db=self.session_factory()
        try: return db.query(Submission).filter_by(token=token).first()
        finally: db.close()

    async def get_by_id(self, submission_id:int)->Optional[Submission]:
        db=self.session_factory()
        try: return self._load(db, submission_id)
        finally: db.close()

    async def get_language(self, language_id:int)->Optional[Language]:
        db=self.session_factory()
        try: return db.get(Language, language_id)
        finally: db.close()

    async def list_languages(self)->List[Language]:
        db=self.session_factory()
        try: return db.query(Language).order_by(Language.id.asc()).all()
        finally: db.close()

    async def list_statuses(self)->List[Status]:
        db=self.session_factory()
        try: return db.query(Status).order_by(Status.id.asc()).all()
        finally: db.close()

    async def mark_processing(self, submission_id:int, host:str):
        return await self._update(submission_id, StatusId.PROCESSING, started_at=utcnow(), execution_host=host)

    async def set_compile_output(self, submission_id:int, output:Optional[str]):
        return await self._update(submission_id, StatusId.PROCESSING, compile_output=output)

    async def mark_compilation_failed(self, submission_id:int, output:Optional[str], exit_code:int):
        return await self._update(submission_id, StatusId.COMPILATION_ERROR, compile_output=output, exit_code=exit_code,
                                  finished_at=utcnow(), message='Compilation failed')

    async def update_with_results(self, submission_id:int, evaluation:Dict[str,Any], result):
        return await self._update(submission_id, evaluation['status_id'], stdout=result.stdout, stderr=result.stderr,
                                  exit_code=result.exit_code, exit_signal=result.exit_signal, time=result.time,
                                  memory=result.memory, wall_time=result.wall_time, message=evaluation['message'],
                                  finished_at=utcnow())

    async def mark_internal_error(self, submission_id:int, error:BaseException)->bool:
        """Record INTERNAL_ERROR unless the submission already reached a terminal status."""
        db=self.session_factory()
        try:
            row=db.get(Submission, submission_id)
            if row is None or is_terminal(row.status_id): return False
            row.status_id=int(StatusId.INTERNAL_ERROR); row.message=str(error) or 'Internal error'
            row.stderr=''.join(traceback.format_exception(type(error), error, error.__traceback__)); row.finished_at=utcnow()
            db.commit(); return True
        finally: db.close()

    async def append_result(self, submission_id:int, stdout:Optional[str]=None, stderr:Optional[str]=None,
                            exit_code:Optional[int]=None, started_at=None, finished_at=None)->Result:
        db=self.session_factory()
        try:
            row=Result(submission_id=submission_id, stdout=stdout, stderr=stderr, exit_code=exit_code,
                       started_at=started_at or utcnow(), finished_at=finished_at or utcnow())
            db.add(row); db.commit(); return row
        finally: db.close()

    async def list_results(self, submission_id:int)->List[Result]:
        db=self.session_factory()
        try: return db.query(Result).filter_by(submission_id=submission_id).order_by(Result.id.asc()).all()
        finally: db.close()

    def _load(self, db, submission_id:int):
        return db.query(Submission).filter_by(id=submission_id).first()

    async def _update(self, submission_id:int, status_id:int, **fields):
        db=self.session_factory()
        try:
            row=db.get(Submission, submission_id)
            if row is None: raise InvalidTransition(f"submission {submission_id} does not exist")
            if is_terminal(row.status_id): raise InvalidTransition(f"submission {submission_id} is already terminal ({row.status_id})")
            if int(status_id) < row.status_id: raise InvalidTransition(f"submission {submission_id} cannot move from {row.status_id} to {int(status_id)}")
            row.status_id=int(status_id)
            for k,v in fields.items(): setattr(row, k, v)
            db.commit()
            log.debug("submission %s -> status %s", submission_id, int(status_id))
            return self._load(db, submission_id)
        finally: db.close()
