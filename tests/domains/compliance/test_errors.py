"""Tests for compliance error kinds and their rendered messages."""

from src.domains.compliance.errors import (
    ComplianceError,
    ErrorKind,
    already_submitted,
    approval_required,
    configuration_error,
    external_provider_failure,
    invalid_input,
    invalid_transition,
    not_found,
    operation_not_allowed,
    prohibited_jurisdiction,
)


class TestComplianceError:
    def test_str_includes_kind(self):
        error = not_found("SAR", "SAR-1")
        assert str(error) == "[not_found] SAR SAR-1 not found"
        assert isinstance(error, Exception)

    def test_to_dict(self):
        error = invalid_transition("SAR-1", "draft", "approved", reason="allowed targets: cancelled, pending_review")
        assert error.to_dict() == {
            "kind": "invalid_state_transition",
            "message": "SAR SAR-1 cannot move from draft to approved: allowed targets: cancelled, pending_review",
            "entity_id": "SAR-1",
            "transition": {"from": "draft", "to": "approved"},
            "reason": "allowed targets: cancelled, pending_review",
            "context": {},
        }

    def test_context_defaults_to_empty(self):
        assert ComplianceError(ErrorKind.INVALID_INPUT, "bad").context == {}


class TestConstructors:
    def test_configuration_error(self):
        error = configuration_error("sar.filing_deadline_days", "must be at least 1")
        assert error.kind == ErrorKind.CONFIGURATION
        assert error.entity_id == "sar.filing_deadline_days"

    def test_invalid_input_carries_field(self):
        error = invalid_input("amount", "not a number", entity_id="tx-1", raw="abc")
        assert error.context == {"field": "amount", "raw": "abc"}
        assert error.entity_id == "tx-1"

    def test_prohibited_jurisdiction(self):
        error = prohibited_jurisdiction("party-1", "KP")
        assert error.kind == ErrorKind.PROHIBITED_JURISDICTION
        assert error.context["country_code"] == "KP"
        assert "KP" in error.message

    def test_operation_not_allowed(self):
        error = operation_not_allowed("SAR-1", "approved", "update_narrative")
        assert error.kind == ErrorKind.INVALID_STATE_TRANSITION
        assert error.message == "SAR SAR-1 cannot update narrative while approved"
        assert error.transition is None

    def test_already_submitted(self):
        error = already_submitted("SAR-1", "BSA-9")
        assert error.transition == ("submitted", "cancelled")
        assert "BSA-9" in error.message

    def test_approval_required(self):
        error = approval_required("SAR-1", "different_officer", created_by="analyst-1")
        assert error.reason == "different_officer"
        assert "other than the SAR creator" in error.message
        assert error.context == {"created_by": "analyst-1"}

    def test_external_provider_failure(self):
        error = external_provider_failure("sar_repository", "save", TimeoutError("slow"), "SAR-1")
        assert error.kind == ErrorKind.EXTERNAL_PROVIDER_FAILURE
        assert error.reason == "TimeoutError"
        assert error.message == "sar_repository.save failed: slow"
