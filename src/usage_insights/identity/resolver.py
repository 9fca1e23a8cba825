"""Cross-store identity resolution: tracking id -> human display name.

Usage rows are keyed by an opaque tracking id. The same person can show up
under that id with a self-reported email, with an email stamped by the
directory-aware agent, and with a directory id, each observed many times.
The resolver collapses those observations deterministically and asks the
directory for names, degrading to emails and finally the raw id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from usage_insights.domain.interfaces import IDirectoryStore
from usage_insights.domain.models import CorrelationRow, DirectoryEntry

UNKNOWN_DISPLAY_NAME = "Unknown"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class MergedIdentity:
    """Latest known aliases for one tracking id."""

    tracking_id: str
    email: Optional[str] = None
    linked_id: Optional[str] = None


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    normalized = email.strip().casefold()
    return normalized or None


def dedupe_correlations(rows: Iterable[CorrelationRow]) -> Dict[str, MergedIdentity]:
    """Collapse repeated observations to the most recent value per field.

    Each field takes its value from the newest observation that carries it,
    so a later event without an email does not erase an earlier one. Equal
    timestamps fall back to comparing the values themselves, which keeps the
    result independent of row order.
    """

    latest: Dict[Tuple[str, str], Tuple[datetime, str]] = {}
    tracking_ids: set[str] = set()
    for row in rows:
        if not row.tracking_id:
            continue
        tracking_ids.add(row.tracking_id)
        observed = _as_aware(row.observed_at)
        for field_name in ("email", "linked_email", "linked_id"):
            value = getattr(row, field_name)
            if value is None:
                continue
            key = (row.tracking_id, field_name)
            candidate = (observed, value)
            if key not in latest or candidate > latest[key]:
                latest[key] = candidate

    def pick(tracking_id: str, field_name: str) -> Optional[str]:
        found = latest.get((tracking_id, field_name))
        return found[1] if found else None

    merged: Dict[str, MergedIdentity] = {}
    for tracking_id in sorted(tracking_ids):
        merged[tracking_id] = MergedIdentity(
            tracking_id=tracking_id,
            # Self-reported email outranks the agent-stamped one.
            email=pick(tracking_id, "email") or pick(tracking_id, "linked_email"),
            linked_id=pick(tracking_id, "linked_id"),
        )
    return merged


class DirectorySnapshot:
    """Read-only ``id -> name`` and ``email -> name`` maps for one request."""

    def __init__(
        self,
        names_by_id: Optional[Mapping[str, str]] = None,
        names_by_email: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._names_by_id = dict(names_by_id or {})
        self._names_by_email = {
            key: name
            for key, name in (
                (normalize_email(email), name)
                for email, name in (names_by_email or {}).items()
            )
            if key
        }

    @classmethod
    def from_entries(
        cls,
        id_matches: Sequence[DirectoryEntry] = (),
        email_matches: Sequence[DirectoryEntry] = (),
    ) -> "DirectorySnapshot":
        """Build maps from two lookups; matches found by id win over email matches."""

        names_by_id: Dict[str, str] = {}
        names_by_email: Dict[str, str] = {}
        for entry in id_matches:
            if not entry.name:
                continue
            names_by_id[entry.id] = entry.name
            email_key = normalize_email(entry.email)
            if email_key:
                names_by_email[email_key] = entry.name
        for entry in email_matches:
            if not entry.name:
                continue
            names_by_id.setdefault(entry.id, entry.name)
            email_key = normalize_email(entry.email)
            if email_key:
                names_by_email.setdefault(email_key, entry.name)
        return cls(names_by_id, names_by_email)

    def name_for_id(self, linked_id: Optional[str]) -> Optional[str]:
        if not linked_id:
            return None
        return self._names_by_id.get(linked_id)

    def name_for_email(self, email: Optional[str]) -> Optional[str]:
        key = normalize_email(email)
        if key is None:
            return None
        return self._names_by_email.get(key)

    def __len__(self) -> int:
        return len(self._names_by_id)


class IdentityResolver:
    """Produces a total ``tracking id -> display name`` map.

    Directory failures never propagate: a lookup that raises is logged and
    treated as empty, so affected rows fall back to an email or the raw id.
    """

    def __init__(
        self,
        directory: Optional[IDirectoryStore] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._directory = directory
        self._logger = logger or logging.getLogger(__name__)

    def resolve(
        self,
        tracking_ids: Iterable[str],
        correlations: Iterable[CorrelationRow] = (),
        row_emails: Optional[Mapping[str, Optional[str]]] = None,
    ) -> Dict[str, str]:
        ids = list(dict.fromkeys(tracking_ids))
        wanted = set(ids)
        merged = dedupe_correlations(correlations)
        row_emails = row_emails or {}

        linked_ids = sorted(
            {m.linked_id for tid, m in merged.items() if tid in wanted and m.linked_id}
        )
        emails = sorted(
            {
                email
                for email in (
                    *(merged[tid].email for tid in ids if tid in merged),
                    *(row_emails.get(tid) for tid in ids),
                )
                if email
            }
        )
        snapshot = self.load_directory(linked_ids, emails)
        return self.build_name_map(ids, merged, row_emails, snapshot)

    def load_directory(
        self, linked_ids: Sequence[str], emails: Sequence[str]
    ) -> DirectorySnapshot:
        if self._directory is None:
            return DirectorySnapshot()
        directory = self._directory
        id_matches = self._guarded_lookup("id", linked_ids, directory.find_by_ids)
        email_matches = self._guarded_lookup(
            "email", emails, directory.find_by_emails
        )
        return DirectorySnapshot.from_entries(id_matches, email_matches)

    @staticmethod
    def build_name_map(
        tracking_ids: Iterable[str],
        merged: Mapping[str, MergedIdentity],
        row_emails: Mapping[str, Optional[str]],
        snapshot: DirectorySnapshot,
    ) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for tracking_id in tracking_ids:
            identity = merged.get(tracking_id) or MergedIdentity(tracking_id)
            names[tracking_id] = display_name_for(
                tracking_id,
                linked_id=identity.linked_id,
                emails=(row_emails.get(tracking_id), identity.email),
                snapshot=snapshot,
            )
        return names

    def _guarded_lookup(
        self,
        kind: str,
        keys: Sequence[str],
        lookup: Callable[[Sequence[str]], List[DirectoryEntry]],
    ) -> List[DirectoryEntry]:
        if not keys:
            return []
        try:
            return list(lookup(keys))
        except Exception as exc:
            self._logger.warning(
                "identity_lookup_failed",
                extra={"lookup": kind, "keys": len(keys), "error": str(exc)},
                exc_info=exc,
            )
            return []


def display_name_for(
    tracking_id: str,
    *,
    linked_id: Optional[str],
    emails: Sequence[Optional[str]],
    snapshot: DirectorySnapshot,
) -> str:
    """Directory name, then any email, then the raw id, then ``Unknown``."""

    name = snapshot.name_for_id(linked_id)
    if name:
        return name
    for email in emails:
        name = snapshot.name_for_email(email)
        if name:
            return name
    for email in emails:
        if email:
            return email
    return tracking_id or UNKNOWN_DISPLAY_NAME


def _as_aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
