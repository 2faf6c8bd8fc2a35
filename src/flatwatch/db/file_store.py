from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable

from flatwatch.common.types import Endpoint, Listing, NotificationSettings
from flatwatch.db.errors import ReadOnlyStoreError
from flatwatch.db.gateway import BaseGateway


logger = logging.getLogger("db")


class FileGateway(BaseGateway):
    """Local-only seen set kept in a JSON file.

    Endpoints come from configuration and notification settings from the
    environment, so admin mutations are not available here.
    """

    durable = False

    def __init__(
        self,
        path: str,
        urls: list[str] | None = None,
        notification_settings: NotificationSettings | None = None,
    ) -> None:
        self.path = Path(path)
        self.urls = list(urls or [])
        self.notification_settings = notification_settings or NotificationSettings()
        self.load_failed = False
        self._seen: set[str] = set()

    @classmethod
    def from_settings(cls, app_settings) -> FileGateway:
        return cls(
            app_settings.seen_ads_file,
            urls=app_settings.tracker_url_list,
            notification_settings=NotificationSettings(
                send_emails=True if app_settings.send_emails is None else app_settings.send_emails,
                email_recipients=app_settings.email_recipients or "",
            ),
        )

    async def load_seen_ids(self) -> set[str]:
        self._seen = _load_ids(self.path)
        logger.info("Loaded seen ids from file: path=%s count=%s", self.path, len(self._seen))
        return set(self._seen)

    async def record_seen(self, listings: Iterable[Listing]) -> list[str]:
        recorded = [listing.id for listing in listings]
        if not recorded:
            return []
        self._seen.update(recorded)
        _save_ids(self.path, self._seen)
        return recorded

    async def list_active_endpoints(self) -> list[Endpoint]:
        return [
            Endpoint(id=index, url=url, display_name=None, is_active=True)
            for index, url in enumerate(self.urls, start=1)
        ]

    async def get_notification_settings(self) -> NotificationSettings:
        return self.notification_settings

    async def count_seen(self, search: str | None = None) -> int:
        if search:
            raise ReadOnlyStoreError("Search needs DATABASE_URL")
        return len(self._seen or _load_ids(self.path))


def _load_ids(path: Path) -> set[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return set()
    except (OSError, json.JSONDecodeError):
        logger.warning("Seen ads file unreadable, starting empty: path=%s", path, exc_info=True)
        return set()
    if isinstance(data, dict):
        data = data.get("seen_ads", [])
    if not isinstance(data, list):
        return set()
    return {str(item) for item in data}


def _save_ids(path: Path, ids: set[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(sorted(ids), f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)
