"""Compliance engine errors.

A single exception type carries a tagged ``kind`` plus the structured fields
needed to render an actionable message (entity id, attempted transition,
reason). Each kind has a plain constructor function below.
"""

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    CONFIGURATION = "configuration_error"
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    PROHIBITED_JURISDICTION = "prohibited_jurisdiction"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    ALREADY_SUBMITTED = "already_submitted"
    APPROVAL_REQUIRED = "approval_required"
    INSUFFICIENT_EVIDENCE = "insufficient_evidence"
    EXTERNAL_PROVIDER_FAILURE = "external_provider_failure"


class ComplianceError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        entity_id: str | None = None,
        transition: tuple[str, str] | None = None,
        reason: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.entity_id = entity_id
        self.transition = transition
        self.reason = reason
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "entity_id": self.entity_id,
            "transition": (
                {"from": self.transition[0], "to": self.transition[1]}
                if self.transition
                else None
            ),
            "reason": self.reason,
            "context": self.context,
        }


def configuration_error(setting: str, reason: str) -> ComplianceError:
    return ComplianceError(
        ErrorKind.CONFIGURATION,
        f"Invalid configuration for {setting}: {reason}",
        entity_id=setting,
        reason=reason,
    )


def invalid_input(
    field: str,
    reason: str,
    entity_id: str | None = None,
    **context: Any,
) -> ComplianceError:
    return ComplianceError(
        ErrorKind.INVALID_INPUT,
        f"Invalid {field}: {reason}",
        entity_id=entity_id,
        reason=reason,
        context={"field": field, **context},
    )


def not_found(entity: str, entity_id: str) -> ComplianceError:
    return ComplianceError(
        ErrorKind.NOT_FOUND,
        f"{entity} {entity_id} not found",
        entity_id=entity_id,
        context={"entity": entity},
    )


def prohibited_jurisdiction(party_id: str, country_code: str) -> ComplianceError:
    return ComplianceError(
        ErrorKind.PROHIBITED_JURISDICTION,
        f"Party {party_id} is domiciled in prohibited jurisdiction {country_code}; "
        f"relationship cannot proceed",
        entity_id=party_id,
        reason="prohibited_jurisdiction",
        context={"country_code": country_code},
    )


def invalid_transition(
    sar_id: str,
    source: str,
    target: str,
    reason: str | None = None,
    **context: Any,
) -> ComplianceError:
    message = f"SAR {sar_id} cannot move from {source} to {target}"
    if reason:
        message = f"{message}: {reason}"
    return ComplianceError(
        ErrorKind.INVALID_STATE_TRANSITION,
        message,
        entity_id=sar_id,
        transition=(source, target),
        reason=reason,
        context=context,
    )


def operation_not_allowed(sar_id: str, status: str, operation: str) -> ComplianceError:
    """A non-status-changing operation attempted in a status that forbids it."""
    return ComplianceError(
        ErrorKind.INVALID_STATE_TRANSITION,
        f"SAR {sar_id} cannot {operation.replace('_', ' ')} while {status}",
        entity_id=sar_id,
        reason=f"{operation}_not_allowed",
        context={"status": status, "operation": operation},
    )


def already_submitted(sar_id: str, filing_reference: str | None) -> ComplianceError:
    return ComplianceError(
        ErrorKind.ALREADY_SUBMITTED,
        f"SAR {sar_id} was already submitted to the authority "
        f"(filing reference {filing_reference}) and cannot be cancelled",
        entity_id=sar_id,
        transition=("submitted", "cancelled"),
        reason="already_submitted",
        context={"filing_reference": filing_reference},
    )


def approval_required(sar_id: str, requirement: str, **context: Any) -> ComplianceError:
    messages = {
        "different_officer": "approval must come from an officer other than the SAR creator",
        "compliance_officer": "SAR must be approved by a compliance officer before filing",
    }
    return ComplianceError(
        ErrorKind.APPROVAL_REQUIRED,
        f"SAR {sar_id}: {messages.get(requirement, requirement)}",
        entity_id=sar_id,
        reason=requirement,
        context=context,
    )


def insufficient_evidence(party_id: str, **context: Any) -> ComplianceError:
    return ComplianceError(
        ErrorKind.INSUFFICIENT_EVIDENCE,
        f"Monitoring result for party {party_id} is not suspicious; "
        f"a SAR cannot be raised from it",
        entity_id=party_id,
        reason="not_suspicious",
        context=context,
    )


def external_provider_failure(
    provider: str,
    operation: str,
    error: Exception,
    entity_id: str | None = None,
) -> ComplianceError:
    return ComplianceError(
        ErrorKind.EXTERNAL_PROVIDER_FAILURE,
        f"{provider}.{operation} failed: {error}",
        entity_id=entity_id,
        reason=type(error).__name__,
        context={"provider": provider, "operation": operation},
    )
