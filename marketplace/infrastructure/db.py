from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from marketplace.core_settings import get_settings
from marketplace.domain.models import Base
from marketplace.core.logging_config import get_logger

logger = get_logger(__name__)

settings = get_settings()
engine = create_engine(settings.database_url, echo=False, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_models():
    Base.metadata.create_all(engine)

class UnitOfWork:
    """Explicit transaction boundary around a request session.

    Every step of a multi-step write receives the same ``UnitOfWork`` and
    goes through ``uow.session``. Leaving the block commits; an exception
    anywhere inside rolls the whole transaction back before it propagates.
    """

    def __init__(self, session: Session, name: str = "unit_of_work"):
        self.session = session
        self.name = name

    def __enter__(self) -> "UnitOfWork":
        logger.debug(f"Transaction started: {self.name}")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            logger.info(
                f"Transaction rolled back: {self.name}",
                extra={'extra_fields': {'transaction': self.name, 'error': exc_type.__name__}}
            )
            return False
        try:
            self.session.commit()
        except Exception:
            self.rollback()
            raise
        logger.debug(f"Transaction committed: {self.name}")
        return False

    def add(self, obj):
        self.session.add(obj)

    def flush(self):
        self.session.flush()

    def rollback(self):
        self.session.rollback()
