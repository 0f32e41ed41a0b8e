"""
Per-user integration credentials, stored encrypted on the user row.
"""
from typing import Optional

from meeting_followup.models import User
from meeting_followup.services.contracts import CalendarCredential, ChatCredential
from meeting_followup.utils import TokenDecryptor


class CredentialStore:
    """Decrypts a user's Slack and Google tokens; a missing piece means no credential."""

    def __init__(self, decryptor: TokenDecryptor):
        self._decryptor = decryptor

    def chat_credential(self, user: Optional[User]) -> Optional[ChatCredential]:
        if user is None or not user.slack_user_id:
            return None
        token = self._decryptor.decrypt_token(user.slack_token)
        if not token:
            return None
        return ChatCredential(token=token, channel=user.slack_user_id)

    def calendar_credential(self, user: Optional[User]) -> Optional[CalendarCredential]:
        if user is None:
            return None
        token = self._decryptor.decrypt_token(user.google_access_token)
        if not token:
            return None
        return CalendarCredential(access_token=token)
