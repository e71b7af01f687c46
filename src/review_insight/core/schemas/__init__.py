"""Pydantic schemas for request/response validation.

Sub-modules:
    analysis    AnalyzeRequest, AnalyzeOptions, RefreshRequest
    comparison  ComparisonRequest, CompareAppInput, ComparisonOptions
    billing     CheckoutRequest, CancelSubscriptionRequest
    user        UserSettingsRead, UserSettingsUpdate, DeleteHistoryRequest
"""

from __future__ import annotations
