from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from .config import get_config

Base = declarative_base()

def make_engine(url:str):
    kw={'connect_args': {'check_same_thread': False}} if url.startswith('sqlite') else {}
    return create_engine(url, **kw)

def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

engine = make_engine(get_config()['database']['url'])
SessionLocal = make_session_factory(engine)

def init_db(bind=None, session_factory=None):
    """Create tables and seed the status and language reference rows."""
    from .models import Language, Status
    from .statuses import STATUS_NAMES, LANGUAGES
    bind=bind or engine; session_factory=session_factory or SessionLocal
    Base.metadata.create_all(bind=bind)
    db=session_factory()
    try:
        for sid,name in STATUS_NAMES.items():
            if not db.get(Status, int(sid)): db.add(Status(id=int(sid), name=name, description=name))
        for lang in LANGUAGES:
            if not db.get(Language, lang['id']): db.add(Language(**lang))
        db.commit()
    finally: db.close()
