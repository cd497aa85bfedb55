"""Shared Pydantic request and response models for API endpoints.

These schemas ensure that endpoint payloads are validated and documented
in the OpenAPI specification.  Routers import from here to avoid duplication.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

PaidPlanId = Literal["developer", "startup", "team", "enterprise"]

# ---------------------------------------------------------------------------
# Plan schemas
# ---------------------------------------------------------------------------


class PlanResponse(BaseModel):
    """Static definition of one plan tier."""

    id: str
    name: str
    monthly_price_usd: float
    seats_included: int | None = None
    seat_price_usd: float | None = None
    limits: dict[str, int | None] = Field(default_factory=dict)
    automation_tier: str
    sso_tier: str | None = None
    update_frequency: str
    capabilities: list[str] = Field(default_factory=list)
    template_categories: list[str] = Field(default_factory=list)


class PlanListResponse(BaseModel):
    plans: list[PlanResponse]


# ---------------------------------------------------------------------------
# Usage schemas
# ---------------------------------------------------------------------------


class UsageLogRequest(BaseModel):
    """Counters to append to the caller's usage log."""

    counters: dict[str, int] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UsageLogResponse(BaseModel):
    id: str
    org_id: str
    created_at: str | None = None


class UsageResetRequest(BaseModel):
    org_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Billing schemas
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    plan_id: PaidPlanId
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutResponse(BaseModel):
    """Redirect target for a provider checkout or the sales contact page."""

    url: str
    provider: str
    plan: str
    contact_sales: bool = False
    updated_in_place: bool = False


class TierChangeRequest(BaseModel):
    plan_id: PaidPlanId


class TierChangeResponse(BaseModel):
    org_id: str
    provider: str
    plan: str
    previous_plan: str | None = None
    status: str | None = None
    contact_sales: bool = False
    url: str | None = None


class CancelSubscriptionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class CancelSubscriptionResponse(BaseModel):
    org_id: str
    provider: str
    plan: str
    status: str
    message: str


class CycleResetRequest(BaseModel):
    """Reset one organization, or every organization whose cycle ended."""

    org_id: str | None = None


class BatchSummaryResponse(BaseModel):
    job: str
    processed: int
    billed: int
    failed: int
    total_amount: str
    failed_org_ids: list[str] = Field(default_factory=list)


class InvoiceResponse(BaseModel):
    """Provider-neutral invoice view."""

    model_config = {"extra": "allow"}

    id: str
    provider: str
    status: str | None = None
    currency: str = "USD"
    created_at: str | None = None
    url: str | None = None


class InvoiceListResponse(BaseModel):
    invoices: list[InvoiceResponse]
    provider: str | None = None


# ---------------------------------------------------------------------------
# File schemas
# ---------------------------------------------------------------------------


class FileCreateRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=512)
    content: str = ""


class FileUpdateRequest(BaseModel):
    content: str
    message: str | None = Field(default=None, max_length=512)


class FileResponse(BaseModel):
    model_config = {"extra": "allow"}

    id: str
    filename: str
    status: str
    version: int
    deleted_at: str | None = None
    content: str | None = None


class FileVersionResponse(BaseModel):
    model_config = {"extra": "allow"}

    file_id: str
    version: int
    message: str | None = None
    from_restore: bool = False
    content: str | None = None


# ---------------------------------------------------------------------------
# Template schemas
# ---------------------------------------------------------------------------


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    content: str = Field(..., min_length=1)
    category: str = "base"
    description: str | None = None


class TemplateUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=256)
    content: str | None = None
    category: str | None = None
    description: str | None = None


class TemplateDuplicateRequest(BaseModel):
    new_name: str | None = Field(default=None, max_length=256)


class TemplateVersionSaveRequest(BaseModel):
    content: str = Field(..., min_length=1)
    change_summary: str | None = Field(default=None, max_length=512)


# ---------------------------------------------------------------------------
# AI builder schemas
# ---------------------------------------------------------------------------


class AIAnswersRequest(BaseModel):
    """Questionnaire answers.  Unknown keys are passed through to the model."""

    model_config = {"extra": "allow"}

    providers: list[str] = Field(default_factory=list)
    automation: str | None = None
    sso: str | None = None
    description: str | None = Field(default=None, max_length=10_000)


class AIBuildRequest(BaseModel):
    answers: AIAnswersRequest | None = None
    answers_id: str | None = None


class AIUpgradeFileRequest(BaseModel):
    file_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# SSO schemas
# ---------------------------------------------------------------------------


class SSOConfigRequest(BaseModel):
    sso_provider: str | None = None
    sso_config: Any = None


class SSOConfigResponse(BaseModel):
    org_id: str
    sso_provider: str | None = None
    sso_config: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Team schemas
# ---------------------------------------------------------------------------


class InviteMemberRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    role: str = "member"


class TeamMemberResponse(BaseModel):
    id: str
    email: str
    role: str
    user_id: str | None = None
    created_at: str | None = None


class TeamMembersResponse(BaseModel):
    members: list[TeamMemberResponse]
    total: int
    seats: dict[str, Any]
