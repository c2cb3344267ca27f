import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings
from .errors import ConflictError, DependencyError, LedgerError


logger = logging.getLogger(__name__)

settings = get_settings()

# Using synchronous SQLAlchemy engine with psycopg
engine = create_engine(settings.postgres_url, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit everything flushed inside the block, or nothing.

    Service functions only flush; the caller decides where the transaction
    boundary is. Database failures come out as domain errors so routers never
    see raw SQLAlchemy exceptions.
    """
    try:
        yield db
        db.commit()
    except LedgerError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Integrity violation, rolled back: %s", exc.orig)
        raise ConflictError(
            "The write conflicts with a concurrent change; retry the request",
            details={"retryable": True},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Database operation failed, rolled back", exc_info=True)
        raise DependencyError("Database operation failed") from exc
    except Exception:
        db.rollback()
        raise
