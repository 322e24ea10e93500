import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import settings
from ..models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create a synchronous engine, preparing SQLite paths and connect args."""
    raw_url = database_url or settings.DATABASE_URL
    url = make_url(raw_url)
    connect_args = {}
    engine_kwargs = dict(kwargs)
    if url.get_backend_name().startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine_kwargs.setdefault("pool_recycle", 300)
    logger.info("Connecting to database backend %s", url.get_backend_name())
    return create_engine(raw_url, connect_args=connect_args, **engine_kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)
