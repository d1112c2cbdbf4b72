from __future__ import annotations
"""Transaction boundaries for service operations.

``atomic`` wraps one mutation: commit on success, rollback on any failure, and
translate storage level failures into domain errors. Mutations are never
retried. ``retry_read`` retries an idempotent read once on a storage failure.
"""
from contextlib import contextmanager
from functools import wraps
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from app.errors import ConcurrencyConflict, InfrastructureError


@contextmanager
def atomic(session):
    try:
        yield session
        session.commit()
    except StaleDataError as e:
        session.rollback()
        current_app.logger.info('stale write rejected: %s', e)
        raise ConcurrencyConflict() from e
    except IntegrityError as e:
        # unique collisions here are lost races (order numbers, quotes, payments)
        session.rollback()
        current_app.logger.info('integrity conflict: %s', e.orig)
        raise ConcurrencyConflict() from e
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.exception('storage failure during mutation')
        raise InfrastructureError() from e
    except Exception:
        session.rollback()
        raise


def retry_read(fn):
    """Run ``fn(session, ...)`` and retry once after rolling back on SQLAlchemyError."""
    @wraps(fn)
    def wrapper(session, *args, **kwargs):
        try:
            return fn(session, *args, **kwargs)
        except SQLAlchemyError:
            current_app.logger.warning('read %s failed, retrying once', fn.__name__)
            session.rollback()
        try:
            return fn(session, *args, **kwargs)
        except SQLAlchemyError as e:
            session.rollback()
            current_app.logger.exception('read %s failed twice', fn.__name__)
            raise InfrastructureError() from e
    return wrapper

__all__ = ['atomic', 'retry_read']
