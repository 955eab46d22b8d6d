"""Router operations."""

from __future__ import annotations

import logging
import sqlite3
import uuid

from taskrouter.errors import InvalidStateError
from taskrouter.model.entities import Router
from taskrouter.storage.repositories import Repositories
from taskrouter.storage.transaction import TransactionManager

logger = logging.getLogger(__name__)


class RouterService:
    def __init__(self, tx: TransactionManager, repos: Repositories) -> None:
        self.tx = tx
        self.repos = repos

    def create(
        self, name: str | None = None, description: str | None = None, ref: str | None = None
    ) -> Router:
        router = Router(ref=ref or uuid.uuid4().hex, name=name, description=description)
        self.tx.execute_void(lambda conn: self.repos.router.insert(conn, router))
        logger.info("Router %s created", router.ref)
        return router

    def replace(self, ref: str, name: str | None = None, description: str | None = None) -> Router:
        """Create the router under ``ref``, replacing an existing one without dependents."""
        router = Router(ref=ref, name=name, description=description)

        def _replace(conn: sqlite3.Connection) -> None:
            if self.repos.router.get_or_none(conn, ref) is not None:
                self._delete(conn, ref)
            self.repos.router.insert(conn, router)

        self.tx.execute_void(_replace, router_ref=ref)
        return router

    def get(self, ref: str) -> Router:
        with self.tx.db.connect() as conn:
            return self.repos.router.get(conn, ref)

    def list_all(self) -> list[Router]:
        with self.tx.db.connect() as conn:
            return self.repos.router.list_all(conn)

    def update(self, ref: str, name: str | None = None, description: str | None = None) -> Router:
        """Change the given fields; ``None`` keeps the current value."""

        def _update(conn: sqlite3.Connection) -> Router:
            router = self.repos.router.get(conn, ref)
            if name is not None:
                router.name = name
            if description is not None:
                router.description = description
            self.repos.router.update(conn, router)
            return router

        return self.tx.execute(_update, router_ref=ref)

    def delete(self, ref: str) -> None:
        """Delete a router; fails while any queue, agent, plan or task references it."""

        def _checked_delete(conn: sqlite3.Connection) -> None:
            self.repos.router.get(conn, ref)
            self._delete(conn, ref)

        self.tx.execute_void(_checked_delete, router_ref=ref)
        logger.info("Router %s deleted", ref)

    def stats(self, ref: str) -> dict[str, int]:
        with self.tx.db.connect() as conn:
            self.repos.router.get(conn, ref)
            return self.repos.router.counts(conn, ref)

    def _delete(self, conn: sqlite3.Connection, ref: str) -> None:
        dependent = self.repos.router.first_dependent(conn, ref)
        if dependent is not None:
            raise InvalidStateError(
                f"Cannot delete or update 'router' as there is record in '{dependent}' "
                "that refer to it."
            )
        self.repos.router.delete(conn, ref)
