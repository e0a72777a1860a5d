"""Role gate: a caller must belong to at least one configured user group."""

from __future__ import annotations

import hmac
import logging

from slack_sdk.errors import SlackApiError

from insurance_tracker.errors import AuthDenied

logger = logging.getLogger(__name__)


class RoleGate:
    """Checks Slack user group membership on every call.

    Membership is looked up live; group edits take effect immediately.
    """

    def __init__(self, client, group_ids: list[str]) -> None:
        self._client = client
        self._group_ids = list(group_ids)

    def is_authorized(self, user_id: str) -> bool:
        for group_id in self._group_ids:
            try:
                response = self._client.usergroups_users_list(usergroup=group_id)
            except SlackApiError as exc:
                logger.warning("Could not read members of group %s: %s", group_id, exc)
                continue
            if user_id in response.get("users", []):
                return True
        return False

    def require(self, user_id: str) -> None:
        if not self.is_authorized(user_id):
            raise AuthDenied()


def check_removal_password(supplied: str, expected: str | None) -> None:
    """Static shared secret for deletes; always fails when none is configured."""
    if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise AuthDenied("Incorrect removal password")
