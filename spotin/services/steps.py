from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotin.services.errors import RemoteError

logger = logging.getLogger(__name__)


@contextmanager
def committed_step(db: Session, name: str) -> Iterator[None]:
    """Run one workflow step and commit it on its own.

    Steps are not grouped into an enclosing transaction: when a later step
    fails, everything committed by earlier steps stays in place. Database
    errors are rolled back for the failing step only and re-raised as
    RemoteError.
    """
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Step %s failed: %s', name, exc)
        raise RemoteError(f'{name} failed: {exc}') from exc
    except Exception:
        db.rollback()
        raise
    logger.debug('Step %s committed', name)
