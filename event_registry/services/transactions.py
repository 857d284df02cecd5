import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from event_registry.services.errors import InternalError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session):
    """
    Run the block as one unit of work: commit on success, roll back on any error.

    Storage failures come out as InternalError; registry errors raised inside the
    block propagate unchanged after the rollback.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Storage failure, transaction rolled back")
        raise InternalError("Internal storage error") from e
    except BaseException:
        db.rollback()
        raise
