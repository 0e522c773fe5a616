"""Transactional access to the relational store.

The lifecycle engine is handed a ``Store`` instead of reaching for the
Flask-SQLAlchemy session, so it works the same inside a request, a CLI command
or a test, and every multi-record write runs in exactly one transaction.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .errors import Conflict, FindItError, StoreError
from .extensions import db

logger = logging.getLogger(__name__)


class Store:
    def __init__(self, engine: Engine, *, owns_engine: bool = False):
        self.engine = engine
        self.owns_engine = owns_engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "Store":
        return cls(create_engine(url, **engine_kwargs), owns_engine=True)

    def create_all(self) -> None:
        # Models are imported for their side effect of registering tables
        from . import models  # noqa: F401

        db.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        db.metadata.drop_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only unit of work. Closing discards anything left pending and
        leaves loaded objects readable (detached, not expired)."""
        s = self._session_factory()
        try:
            yield s
        finally:
            s.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Run the enclosed writes atomically.

        Commits when the block exits normally and rolls back on any exception.
        Version conflicts surface as ``StaleDataError`` so callers can retry;
        integrity violations become ``Conflict``; other database failures become
        ``StoreError``. Our own error kinds pass through untouched.
        """
        s = self._session_factory()
        try:
            yield s
            s.commit()
        except (StaleDataError, FindItError):
            s.rollback()
            raise
        except IntegrityError as exc:
            s.rollback()
            logger.warning("Integrity violation: %s", exc.orig)
            raise Conflict("Conflicting modification") from exc
        except SQLAlchemyError as exc:
            s.rollback()
            logger.exception("Store failure")
            raise StoreError() from exc
        except BaseException:
            s.rollback()
            raise
        finally:
            s.close()

    def close(self) -> None:
        """Dispose the engine when this store created it (``from_url``)."""
        if self.owns_engine:
            self.engine.dispose()
