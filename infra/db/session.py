from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def create_session_factory(url: str) -> sessionmaker:
    kwargs = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        # worker coroutines and request handlers share the connection across threads
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(session_factory: sessionmaker) -> None:
    from infra.db.models import FileRecord, JobRecord
    Base.metadata.create_all(bind=session_factory.kw["bind"])
