"""Request payloads accepted by the webhook endpoints.

Task and lead webhooks arrive in two shapes: the bare record, or the
database-trigger wrapper ``{type, table, schema, record, old_record}``
whose ``record`` holds it. ``parse_task_payload`` and
``parse_lead_payload`` accept either.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import AutomationTask, Lead, TaskPriority, TaskStatus, TaskType, utcnow


class PayloadError(ValueError):
    """Raised when a webhook body matches none of the accepted shapes."""

    pass


class DatabaseWebhookPayload(BaseModel):
    """Database trigger wrapper around a changed row."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    table: str
    db_schema: Optional[str] = Field(None, alias="schema")
    record: dict[str, Any]
    old_record: Optional[dict[str, Any]] = None


class AutomationTaskPayload(BaseModel):
    """A task as submitted for dispatch."""

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    task_type: str = Field(..., min_length=1)
    lead_id: Optional[str] = None
    lead_ids: list[str] = Field(default_factory=list)
    business_profile_id: Optional[str] = None
    priority: int = Field(int(TaskPriority.MEDIUM), ge=1, le=3)
    max_retries: int = Field(2, ge=0)

    def to_task(self) -> AutomationTask:
        """Build an unsaved, pending AutomationTask."""
        return AutomationTask(
            id=self.id,
            user_id=self.user_id,
            task_type=self.task_type,
            lead_id=self.lead_id,
            lead_ids=list(self.lead_ids),
            business_profile_id=self.business_profile_id,
            priority=self.priority,
            status=TaskStatus.PENDING,
            items_total=0,
            items_processed=0,
            items_succeeded=0,
            items_failed=0,
            retry_count=0,
            max_retries=self.max_retries,
            created_at=utcnow(),
        )


class LeadCreatedPayload(BaseModel):
    """A newly created lead. Only the identifiers are required."""

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    company_name: str = ""
    website: Optional[str] = None
    address: Optional[str] = None
    emails: Optional[list[str]] = None

    def to_lead(self) -> Lead:
        return Lead(
            id=self.id,
            user_id=self.user_id,
            company_name=self.company_name,
            website=self.website,
            address=self.address,
            emails=list(self.emails or []),
        )


class BatchEnrichmentRequest(BaseModel):
    """Ad-hoc batch submitted by a user."""

    user_id: str = Field(..., min_length=1)
    task_type: TaskType
    lead_ids: list[str] = Field(..., min_length=1)
    business_profile_id: Optional[str] = None
    priority: int = Field(int(TaskPriority.LOW), ge=1, le=3)


def _unwrap(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise PayloadError("payload must be a JSON object")
    if "record" in body and "type" in body:
        try:
            return DatabaseWebhookPayload.model_validate(body).record
        except ValidationError as e:
            raise PayloadError(f"invalid webhook wrapper: {e}") from e
    return body


def parse_task_payload(body: Any) -> AutomationTaskPayload:
    """Parse a bare or wrapped task payload.

    Raises:
        PayloadError: If the body is not a valid task.
    """
    record = _unwrap(body)
    try:
        return AutomationTaskPayload.model_validate(record)
    except ValidationError as e:
        raise PayloadError(f"invalid task payload: {e}") from e


def parse_lead_payload(body: Any) -> LeadCreatedPayload:
    """Parse a bare or wrapped lead payload.

    Raises:
        PayloadError: If the body is not a valid lead.
    """
    record = _unwrap(body)
    try:
        return LeadCreatedPayload.model_validate(record)
    except ValidationError as e:
        raise PayloadError(f"invalid lead payload: {e}") from e
