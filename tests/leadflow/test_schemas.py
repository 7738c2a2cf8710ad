"""Tests for webhook payload parsing."""

import pytest
from pydantic import ValidationError

from leadflow.models import TaskStatus, TaskType
from leadflow.schemas import (
    BatchEnrichmentRequest,
    PayloadError,
    parse_lead_payload,
    parse_task_payload,
)

TASK_RECORD = {
    "id": "task-1",
    "user_id": "user-1",
    "task_type": "full_enrichment",
    "lead_ids": ["lead-1", "lead-2"],
    "business_profile_id": "profile-1",
    "status": "pending",
    "created_at": "2026-10-18T12:00:00Z",
}


class TestParseTaskPayload:
    """Tests for bare and trigger-wrapped task bodies."""

    def test_bare_record(self):
        """Test a bare task record; unknown fields are ignored."""
        payload = parse_task_payload(TASK_RECORD)

        assert payload.id == "task-1"
        assert payload.lead_ids == ["lead-1", "lead-2"]
        assert payload.priority == 2

    def test_wrapped_record(self):
        """Test the database trigger wrapper."""
        body = {
            "type": "INSERT",
            "table": "automation_tasks",
            "schema": "public",
            "record": TASK_RECORD,
            "old_record": None,
        }

        payload = parse_task_payload(body)

        assert payload.business_profile_id == "profile-1"

    def test_to_task_is_pending(self):
        """Test that the built task starts pending with zeroed counters."""
        task = parse_task_payload(TASK_RECORD).to_task()

        assert task.status == TaskStatus.PENDING
        assert task.items_total == 0
        assert task.retry_count == 0
        assert task.lead_ids == ["lead-1", "lead-2"]

    @pytest.mark.parametrize(
        "body",
        [
            [TASK_RECORD],
            {"user_id": "user-1", "task_type": "lead_enrichment"},
            {"id": "", "user_id": "user-1", "task_type": "lead_enrichment"},
            {"type": "INSERT", "record": "not-a-dict"},
        ],
    )
    def test_invalid_bodies(self, body):
        with pytest.raises(PayloadError):
            parse_task_payload(body)

    @pytest.mark.parametrize("priority", [0, 4, 5])
    def test_rejects_out_of_range_priority(self, priority):
        with pytest.raises(PayloadError):
            parse_task_payload({**TASK_RECORD, "priority": priority})


class TestParseLeadPayload:
    """Tests for lead-created bodies."""

    def test_minimal_lead(self):
        payload = parse_lead_payload({"id": "lead-1", "user_id": "user-1", "emails": None})

        lead = payload.to_lead()

        assert lead.id == "lead-1"
        assert lead.emails == []

    def test_wrapped_lead(self):
        body = {
            "type": "INSERT",
            "table": "leads",
            "record": {
                "id": "lead-1",
                "user_id": "user-1",
                "company_name": "Padaria Central",
                "website": "padariacentral.com.br",
            },
        }

        assert parse_lead_payload(body).to_lead().website == "padariacentral.com.br"

    def test_missing_user(self):
        with pytest.raises(PayloadError, match="invalid lead payload"):
            parse_lead_payload({"id": "lead-1"})


class TestBatchEnrichmentRequest:
    """Tests for ad-hoc batch validation."""

    def test_defaults(self):
        request = BatchEnrichmentRequest(
            user_id="user-1", task_type="email_generation", lead_ids=["lead-1"]
        )

        assert request.task_type == TaskType.EMAIL_GENERATION
        assert request.priority == 3

    @pytest.mark.parametrize(
        "overrides",
        [{"lead_ids": []}, {"task_type": "sms_blast"}, {"priority": 5}],
    )
    def test_rejects_invalid(self, overrides):
        values = {"user_id": "user-1", "task_type": "lead_enrichment", "lead_ids": ["lead-1"]}
        values.update(overrides)

        with pytest.raises(ValidationError):
            BatchEnrichmentRequest(**values)
