"""Video meeting identifiers for video consultations."""
import secrets
import string
import time
from typing import Protocol

from config import MEETING_BASE_URL, MEETING_PREFIX

_ALPHABET = string.ascii_lowercase + string.digits


class MeetingProvider(Protocol):
    def new_meeting(self) -> tuple[str, str]:
        """Return (meeting_id, meeting_link)."""
        ...


class JitsiMeetingProvider:
    """Public Jitsi rooms: any unguessable room name is a meeting.

    Ids look like `{prefix}-{epochMillis}-{9 random alnum}`. Uniqueness is not
    checked against existing meetings.
    """

    def __init__(self, base_url: str = MEETING_BASE_URL, prefix: str = MEETING_PREFIX):
        self.base_url = base_url.rstrip("/")
        self.prefix = prefix

    def new_meeting(self) -> tuple[str, str]:
        suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
        meeting_id = f"{self.prefix}-{int(time.time() * 1000)}-{suffix}"
        return meeting_id, f"{self.base_url}/{meeting_id}"
