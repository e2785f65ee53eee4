"""Two-phase write contract: apply locally, then attempt remote persistence.

Each write reports one of three outcomes so that a failed server write is
never presented as "saved":

* ``SAVED``: local and remote writes both succeeded.
* ``SYNC_FAILED``: the local write stands, the remote write failed.
* ``LOCAL_ONLY``: no server is configured; only the local write happened.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from . import log
from .constants import NotificationKind
from .remote import ApiClient, TransportError


class SyncOutcome(str, Enum):
    """Enumerate the results of a two-phase write."""

    SAVED = "saved"
    SYNC_FAILED = "sync_failed"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class Notification:
    """User-facing message produced by an action."""

    kind: NotificationKind
    text: str


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    notification: Notification
    value: Any = None


class SyncCoordinator:
    """Run local mutations followed by their remote counterpart.

    Args:
        client (ApiClient | None): Server client; ``None`` means local-only
            mode.
    """

    def __init__(self, client: Optional[ApiClient] = None) -> None:
        self.client = client

    @property
    def is_online(self) -> bool:
        return self.client is not None

    def run(
        self,
        action: str,
        local: Callable[[], Any],
        remote: Optional[Callable[[ApiClient], Any]] = None,
    ) -> SyncResult:
        """Apply ``local`` and then push the change with ``remote``.

        Local errors (validation, persistence) propagate before any request
        is sent. Remote :class:`TransportError` is caught and reported as
        ``SYNC_FAILED``; the local change is kept.

        Args:
            action (str): Past-tense description, e.g. ``"Sale saved"``.
            local (Callable[[], Any]): Local mutation; its return value is
                carried on the result.
            remote (Callable[[ApiClient], Any] | None): Remote call, skipped
                in local-only mode or when ``None``.

        Returns:
            SyncResult: Outcome, notification and the local return value.
        """

        value = local()

        if self.client is None or remote is None:
            log.info("%s (local only)", action)
            return SyncResult(
                SyncOutcome.LOCAL_ONLY,
                Notification(NotificationKind.SUCCESS, f"{action} locally."),
                value,
            )

        try:
            remote(self.client)
        except TransportError as exc:
            log.error("%s locally but remote sync failed: %s", action, exc)
            return SyncResult(
                SyncOutcome.SYNC_FAILED,
                Notification(NotificationKind.ERROR, f"{action} locally, but syncing with the server failed: {exc}"),
                value,
            )

        log.info("%s and synced", action)
        return SyncResult(SyncOutcome.SAVED, Notification(NotificationKind.SUCCESS, f"{action}."), value)
