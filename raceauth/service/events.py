from __future__ import annotations

from datetime import datetime

from raceauth.logging import get_logger
from raceauth.service.errors import ValidationError, storage_errors
from raceauth.service.store import CredentialStore
from raceauth.storage.models import Event, EventYear


class EventDirectory:
    """Populate and retire the events that API keys and slugs resolve to."""

    def __init__(self, store: CredentialStore) -> None:
        self.store = store
        self.logger = get_logger(__name__)

    def create_event(
        self,
        account_id: str,
        name: str,
        slug: str,
        access_restricted: bool = False,
    ) -> Event:
        if not slug:
            raise ValidationError("slug is required", detail={"field": "slug"})
        with storage_errors("event"):
            event = self.store.create_event(
                account_id, name, slug, access_restricted=access_restricted
            )
        self.logger.info("event_created", event_id=event.id, slug=slug)
        return event

    def soft_delete_event(self, event_id: str) -> None:
        with storage_errors("event"):
            self.store.soft_delete_event(event_id)
        self.logger.info("event_soft_deleted", event_id=event_id)

    def create_event_year(
        self, event_id: str, year: str, date_time: datetime, live: bool = False
    ) -> EventYear:
        if not year:
            raise ValidationError("year is required", detail={"field": "year"})
        if date_time.tzinfo is None:
            raise ValidationError(
                "date_time must be timezone-aware", detail={"field": "date_time"}
            )
        with storage_errors("event_year"):
            event_year = self.store.create_event_year(
                event_id, year, date_time, live=live
            )
        self.logger.info("event_year_created", event_id=event_id, year=year)
        return event_year

    def soft_delete_event_year(self, event_year_id: str) -> None:
        with storage_errors("event_year"):
            self.store.soft_delete_event_year(event_year_id)
        self.logger.info("event_year_soft_deleted", event_year_id=event_year_id)
