from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from artl_lims.infra.db import get_engine
from artl_lims.infra.events import event_bus

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One session, one commit.

    Every write made through ``session`` lands in a single transaction that is
    committed by ``commit()``; leaving the block any other way rolls it back.
    Events recorded with ``record_event`` are published only once the commit
    has succeeded, so subscribers never observe state that was rolled back.
    """

    def __init__(self) -> None:
        self._pending_events: list[tuple[str, dict[str, Any], str | None]] = []
        self._committed = False
        self.session: Session

    def __enter__(self) -> UnitOfWork:
        self.session = Session(get_engine(), expire_on_commit=False)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if exc_type is not None or not self._committed:
            self.session.rollback()
        self.session.close()

    def record_event(self, event_type: str, payload: dict[str, Any], actor_id: str | None = None) -> None:
        self._pending_events.append((event_type, payload, actor_id))

    def flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            raise

    def commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.debug("commit rolled back: %s", exc.orig)
            raise
        self._committed = True

        events, self._pending_events = self._pending_events, []
        for event_type, payload, actor_id in events:
            event_bus.publish_dict(event_type, payload, actor_id=actor_id)


def is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message
