"""Schemas of the ``/api/user`` endpoints."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool

NOTIFICATION_FIELDS: dict[str, str] = {
    "emailNotifications": "email_notifications",
    "analysisCompleteEmails": "analysis_complete_emails",
    "weeklyReports": "weekly_reports",
    "marketingEmails": "marketing_emails",
}


class UserSettingsRead(BaseModel):
    """Notification preferences as returned to the client."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    email_notifications: bool = Field(alias="emailNotifications")
    analysis_complete_emails: bool = Field(alias="analysisCompleteEmails")
    weekly_reports: bool = Field(alias="weeklyReports")
    marketing_emails: bool = Field(alias="marketingEmails")


class UserSettingsUpdate(BaseModel):
    """Partial update of the notification preferences.

    ``StrictBool`` rejects ``"yes"``, ``1`` and friends so that a typo in
    the client never silently flips a preference.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    email_notifications: Optional[StrictBool] = Field(default=None, alias="emailNotifications")
    analysis_complete_emails: Optional[StrictBool] = Field(
        default=None, alias="analysisCompleteEmails"
    )
    weekly_reports: Optional[StrictBool] = Field(default=None, alias="weeklyReports")
    marketing_emails: Optional[StrictBool] = Field(default=None, alias="marketingEmails")


class DeleteHistoryRequest(BaseModel):
    """Body of ``DELETE /api/user/history``."""

    model_config = ConfigDict(populate_by_name=True)

    analysis_id: uuid.UUID = Field(..., alias="analysisId")
