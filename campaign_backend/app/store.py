from __future__ import annotations

import logging
from threading import RLock
from typing import TYPE_CHECKING, Callable, Optional, TypeVar
from uuid import uuid4

from pydantic import ValidationError

from campaign_backend.app.models import StateDocument

if TYPE_CHECKING:
    from campaign_backend.app.persistence import DocumentPersistence

logger = logging.getLogger(__name__)

CALL_CENTER_KEY = "call-center-data-v3"
SMS_UPLOAD_KEY = "reactivation-sms-data"
TARGET_STATS_KEY = "reactivation-target-stats"
BUDGET_KEY = "reactivation-budget"
TRACKING_KEY = "reactivation-tracking"
TRACKED_IDS_KEY = "reactivation-tracked-ids"
CAMPAIGNS_KEY = "campaigns"

DocT = TypeVar("DocT", bound=StateDocument)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class CampaignStateStore:
    """Typed JSON documents keyed by fixed names, written wholesale.

    Missing, empty, malformed and schema-invalid payloads all resolve to the
    document's default constructor.
    """

    def __init__(self, persistence: Optional["DocumentPersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self._memory: dict[str, str] = {}

    def load(
        self,
        key: str,
        model_cls: type[DocT],
        default: Optional[Callable[[], DocT]] = None,
    ) -> DocT:
        factory = default or model_cls
        raw = self._read(key)
        if raw is None or not raw.strip():
            return factory()
        try:
            document = model_cls.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "state_document_invalid key=%s errors=%s", key, exc.error_count()
            )
            return factory()
        if document.schema_version > model_cls().schema_version:
            logger.warning(
                "state_document_newer_schema key=%s version=%s",
                key,
                document.schema_version,
            )
        return document

    def exists(self, key: str) -> bool:
        raw = self._read(key)
        return raw is not None and bool(raw.strip())

    def save(self, key: str, document: StateDocument) -> None:
        payload = document.model_dump_json(by_alias=True)
        with self._lock:
            if self.persistence:
                self.persistence.put_raw(key, payload)
            else:
                self._memory[key] = payload

    def update(
        self,
        key: str,
        model_cls: type[DocT],
        mutate: Callable[[DocT], DocT],
        default: Optional[Callable[[], DocT]] = None,
    ) -> DocT:
        # Serialized inside this process only; separate workers still race.
        with self._lock:
            document = mutate(self.load(key, model_cls, default))
            self.save(key, document)
            return document

    def delete(self, key: str) -> None:
        with self._lock:
            if self.persistence:
                self.persistence.delete(key)
            else:
                self._memory.pop(key, None)

    def ping(self) -> bool:
        if self.persistence:
            return self.persistence.ping()
        return True

    def _read(self, key: str) -> Optional[str]:
        with self._lock:
            if self.persistence:
                return self.persistence.get_raw(key)
            return self._memory.get(key)
