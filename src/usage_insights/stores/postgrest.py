"""Directory store that reads user records through a PostgREST endpoint."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

import httpx

from usage_insights.domain.exceptions import DirectoryLookupError
from usage_insights.domain.interfaces import IDirectoryStore
from usage_insights.domain.models import DirectoryEntry

REST_PATH = "/rest/v1"


class PostgrestDirectoryStore(IDirectoryStore):
    """Looks up ``id, name, email`` rows with ``in.(...)`` filters.

    Keys are sent in chunks so a large leaderboard never produces an
    oversized URL.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        base_url: str,
        api_key: str,
        *,
        table: str = "users",
        chunk_size: int = 100,
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        if not api_key:
            raise ValueError("api_key must be provided")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be greater than zero")
        self._http = http_client
        self._endpoint = f"{base_url.rstrip('/')}{REST_PATH}/{table}"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        self._chunk_size = chunk_size
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def find_by_ids(self, ids: Iterable[str]) -> List[DirectoryEntry]:
        return self._find("id", ids)

    def find_by_emails(self, emails: Iterable[str]) -> List[DirectoryEntry]:
        return self._find("email", emails)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _find(self, column: str, keys: Iterable[str]) -> List[DirectoryEntry]:
        unique = sorted({key for key in keys if key})
        entries: List[DirectoryEntry] = []
        for start in range(0, len(unique), self._chunk_size):
            chunk = unique[start : start + self._chunk_size]
            entries.extend(self._request(column, chunk))
        return entries

    def _request(self, column: str, chunk: Sequence[str]) -> List[DirectoryEntry]:
        params = {
            "select": "id,name,email",
            column: f"in.({','.join(_quote(key) for key in chunk)})",
        }
        try:
            response = self._http.get(
                self._endpoint,
                params=params,
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise DirectoryLookupError(
                "Directory unreachable", context={"column": column}
            ) from exc

        if response.status_code >= 400:
            raise DirectoryLookupError(
                "Directory rejected the lookup",
                context={"column": column, "status": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise DirectoryLookupError("Directory returned invalid JSON") from exc
        if not isinstance(payload, list):
            raise DirectoryLookupError("Directory returned an unexpected payload")

        entries: List[DirectoryEntry] = []
        for row in payload:
            if not isinstance(row, dict) or not row.get("id"):
                self._logger.debug("directory_row_skipped", extra={"row": row})
                continue
            entries.append(
                DirectoryEntry(
                    id=str(row["id"]), email=row.get("email"), name=row.get("name")
                )
            )
        return entries


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
