"""Pydantic schemas consolidating backend API contracts."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: active

from .compliance import (
    ComplianceFactorOut,
    ComplianceHistoryOut,
    ComplianceResultOut,
    ComputeComplianceRequest,
)
from .notifications import (
    AuditLogOut,
    AuditReportItem,
    ChannelResultOut,
    NotificationLogOut,
    NotificationOut,
    NotificationPreferenceOut,
    NotificationPreferenceUpdate,
    NotificationTemplateOut,
    SendNotificationRequest,
    SendNotificationResponse,
)
from .registry import (
    ActorOut,
    ActorUpdate,
    ComplianceWarningOut,
    DocumentCreate,
    DocumentOut,
    DocumentReject,
    FavoriteCreate,
    FavoriteOut,
    InspectionCancel,
    InspectionComplete,
    InspectionCreate,
    InspectionOut,
    ReviewCreate,
    ReviewOut,
    ReviewUpdate,
    ShopCreate,
    ShopOut,
    ShopReject,
    ShopSuspend,
    ShopUpdate,
    WarningCreate,
)
