"""Transaction boundary helpers shared by the engine services"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import ConflictError, SchedulingError, TransientStoreError

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(db: Session, action: str) -> Generator[Session, None, None]:
    """
    Run one multi-row mutation as a single transaction.

    Commits on success; on any failure rolls back every step and re-raises,
    mapping store-level failures onto the engine error taxonomy so callers can
    tell a transient store problem from a futile retry.
    """
    try:
        yield db
        db.commit()
    except SchedulingError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"{action}: integrity conflict: {e.orig}")
        raise ConflictError(f"{action} conflicts with existing data") from e
    except SQLAlchemyError as e:
        # Every other store failure, pool timeouts included
        db.rollback()
        logger.error(f"{action}: store error: {e}")
        raise TransientStoreError(f"{action} failed due to a storage error, please retry") from e
    except Exception:
        db.rollback()
        raise
