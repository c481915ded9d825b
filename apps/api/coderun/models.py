from sqlalchemy import Column, Integer, String, Float, JSON, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from .db import Base

class Language(Base):
    __tablename__='languages'
    id=Column(Integer, primary_key=True); name=Column(String, unique=True)
    compile_cmd=Column(String, nullable=True); run_cmd=Column(String); source_file=Column(String)
    def as_dict(self):
        return {'id': self.id, 'name': self.name, 'compile_cmd': self.compile_cmd, 'run_cmd': self.run_cmd, 'source_file': self.source_file}

class Status(Base):
    __tablename__='statuses'
    id=Column(Integer, primary_key=True); name=Column(String); description=Column(String)

class Submission(Base):
    __tablename__='submissions'
    id=Column(Integer, primary_key=True); token=Column(String, unique=True, index=True)
    source_code=Column(Text); language_id=Column(Integer, ForeignKey('languages.id')); stdin=Column(Text, nullable=True)
    expected_output=Column(Text, nullable=True); user_id=Column(String, nullable=True)
    status_id=Column(Integer, ForeignKey('statuses.id'), index=True)
    # limits
    number_of_runs=Column(Integer, default=1); cpu_time_limit=Column(Float); cpu_extra_time=Column(Float)
    wall_time_limit=Column(Float); memory_limit=Column(Integer); stack_limit=Column(Integer)
    max_processes_and_or_threads=Column(Integer); max_file_size=Column(Integer)
    enable_per_process_and_thread_time_limit=Column(Boolean, default=True)
    enable_per_process_and_thread_memory_limit=Column(Boolean, default=True)
    # options
    compiler_options=Column(String, nullable=True); command_line_arguments=Column(String, nullable=True)
    redirect_stderr_to_stdout=Column(Boolean, default=False); enable_network=Column(Boolean, default=False)
    callback_url=Column(String, nullable=True); additional_files=Column(JSON, nullable=True); test_cases=Column(JSON, nullable=True)
    # results
    stdout=Column(Text, nullable=True); stderr=Column(Text, nullable=True); compile_output=Column(Text, nullable=True)
    exit_code=Column(Integer, nullable=True); exit_signal=Column(Integer, nullable=True)
    time=Column(Float, nullable=True); wall_time=Column(Float, nullable=True); memory=Column(Integer, nullable=True)
    message=Column(Text, nullable=True); execution_host=Column(String, nullable=True)
    created_at=Column(DateTime); queued_at=Column(DateTime); started_at=Column(DateTime, nullable=True); finished_at=Column(DateTime, nullable=True)
    language=relationship(Language, lazy='joined'); status=relationship(Status, lazy='joined')
    results=relationship('Result', back_populates='submission', order_by='Result.id')

class Result(Base):
    __tablename__='results'
    id=Column(Integer, primary_key=True); submission_id=Column(Integer, ForeignKey('submissions.id'), index=True)
    stdout=Column(Text, nullable=True); stderr=Column(Text, nullable=True); exit_code=Column(Integer, nullable=True)
    started_at=Column(DateTime, nullable=True); finished_at=Column(DateTime, nullable=True)
    submission=relationship(Submission, back_populates='results')

class ActorState(Base):
    __tablename__='actor_state'
    id=Column(Integer, primary_key=True); actor=Column(String, index=True); key=Column(String); value=Column(JSON)
