"""
Service Request State Machine

All fulfilment status changes go through this module, whether they come from
an operator or from a payment settlement. Every accepted change appends one
ServiceRequestStatusHistory row.

Operator workflow:

    payment_confirmed -> pending_contact -> team_assigned -> in_progress -> completed
            \\                  \\                 \\               \\
             +---------------> cancelled <--------+---------------+

Payment settlement moves the request independently of the operator table:
a confirmed payment marks an unconfirmed request payment_confirmed, and a
failed or refunded payment cancels it.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.core.errors import ValidationError
from bhavan.models.service_request import (
    PaymentStatus,
    ServiceRequest,
    ServiceRequestStatus,
    ServiceRequestStatusHistory,
)


# =============================================================================
# TRANSITION RULES
# =============================================================================

S = ServiceRequestStatus

# current_status -> allowed next statuses
SERVICE_REQUEST_TRANSITIONS: Dict[str, List[str]] = {
    S.PAYMENT_CONFIRMED.value: [S.PENDING_CONTACT.value, S.CANCELLED.value],
    S.PENDING_CONTACT.value: [S.TEAM_ASSIGNED.value, S.CANCELLED.value],
    S.TEAM_ASSIGNED.value: [S.IN_PROGRESS.value, S.CANCELLED.value],
    S.IN_PROGRESS.value: [S.COMPLETED.value, S.CANCELLED.value],
    S.COMPLETED.value: [],      # Terminal
    S.CANCELLED.value: [],      # Terminal
}

TERMINAL_STATUSES = (S.COMPLETED.value, S.CANCELLED.value)

# payment outcome -> (statuses it applies from, resulting status)
SETTLEMENT_TRANSITIONS: Dict[str, tuple[List[str], str]] = {
    PaymentStatus.COMPLETED.value: (
        [S.PENDING_CONTACT.value],
        S.PAYMENT_CONFIRMED.value,
    ),
    PaymentStatus.FAILED.value: (
        [S.PAYMENT_CONFIRMED.value, S.PENDING_CONTACT.value, S.TEAM_ASSIGNED.value, S.IN_PROGRESS.value],
        S.CANCELLED.value,
    ),
    # A refund cancels the request even after fulfilment completed
    PaymentStatus.REFUNDED.value: (
        [
            S.PAYMENT_CONFIRMED.value, S.PENDING_CONTACT.value, S.TEAM_ASSIGNED.value,
            S.IN_PROGRESS.value, S.COMPLETED.value,
        ],
        S.CANCELLED.value,
    ),
}


class InvalidTransitionError(ValidationError):
    """Requested status change is not in the transition table."""

    def __init__(self, current_status: str, new_status: str, message: str):
        super().__init__(message, fields={"status": message})
        self.current_status = current_status
        self.new_status = new_status


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if an operator transition is allowed."""
    return new_status in SERVICE_REQUEST_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return list(SERVICE_REQUEST_TRANSITIONS.get(current_status, []))


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current_status: str, new_status: str) -> None:
    """Raise InvalidTransitionError unless current -> new is in the table."""
    if can_transition(current_status, new_status):
        return

    if is_terminal(current_status):
        raise InvalidTransitionError(
            current_status, new_status,
            f"Service request in '{current_status}' status cannot be changed. This is a terminal state."
        )
    allowed = get_allowed_transitions(current_status)
    raise InvalidTransitionError(
        current_status, new_status,
        f"Cannot change service request from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed) or 'none'}"
    )


def settlement_target(current_status: str, payment_status: str) -> Optional[str]:
    """Status a payment outcome moves the request to, or None if it does not apply."""
    rule = SETTLEMENT_TRANSITIONS.get(payment_status)
    if rule is None:
        return None
    applies_from, target = rule
    return target if current_status in applies_from else None


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def _record_transition(
    db: AsyncSession,
    service_request: ServiceRequest,
    new_status: str,
    changed_by: Optional[uuid.UUID],
    notes: Optional[str],
) -> ServiceRequestStatusHistory:
    history = ServiceRequestStatusHistory(
        service_request_id=service_request.id,
        old_status=service_request.status,
        new_status=new_status,
        changed_by_user_id=changed_by,
        notes=notes,
    )
    service_request.status = new_status
    service_request.updated_at = datetime.now(timezone.utc)
    db.add(history)
    return history


def transition_service_request(
    db: AsyncSession,
    service_request: ServiceRequest,
    new_status: str,
    changed_by: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
) -> ServiceRequestStatusHistory:
    """
    Apply an operator transition.

    Validates against SERVICE_REQUEST_TRANSITIONS, sets the new status and
    appends the history row to the session. The caller commits and handles
    notifications.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    validate_transition(service_request.status, new_status)
    return _record_transition(db, service_request, new_status, changed_by, notes)


def apply_settlement_transition(
    db: AsyncSession,
    service_request: ServiceRequest,
    payment_status: str,
    notes: Optional[str] = None,
) -> Optional[ServiceRequestStatusHistory]:
    """Apply the status change implied by a payment outcome, if any."""
    target = settlement_target(service_request.status, payment_status)
    if target is None:
        return None
    return _record_transition(db, service_request, target, None, notes)


# =============================================================================
# DISPLAY (customer-facing copy)
# =============================================================================

STATUS_LABELS: Dict[str, str] = {
    "created": "Request Created",
    S.PAYMENT_CONFIRMED.value: "Payment Confirmed",
    S.PENDING_CONTACT.value: "Pending Contact",
    S.TEAM_ASSIGNED.value: "Team Assigned",
    S.IN_PROGRESS.value: "In Progress",
    S.COMPLETED.value: "Completed",
    S.CANCELLED.value: "Cancelled",
}

STATUS_DESCRIPTIONS: Dict[str, str] = {
    S.PAYMENT_CONFIRMED.value: "Your payment has been confirmed. Our team will reach out to you shortly.",
    S.PENDING_CONTACT.value: "Our team will reach out to you shortly.",
    S.TEAM_ASSIGNED.value: "A service provider has been assigned to your request.",
    S.IN_PROGRESS.value: "Your service request is currently being processed.",
    S.COMPLETED.value: "Your service request has been completed.",
    S.CANCELLED.value: "Your service request has been cancelled.",
}

NEXT_STEPS: Dict[str, str] = {
    S.PAYMENT_CONFIRMED.value: "Our team will contact you within 24-48 hours to discuss your requirements and next steps.",
    S.PENDING_CONTACT.value: "Our team will contact you within 24-48 hours to discuss your requirements and next steps.",
    S.TEAM_ASSIGNED.value: "Your assigned service provider will reach out to you shortly to begin working on your request.",
    S.IN_PROGRESS.value: "Your service provider is actively working on your request. They will keep you updated on progress.",
    S.COMPLETED.value: "Your service has been completed. If you have any questions, please contact our support team.",
    S.CANCELLED.value: "This request has been cancelled. If you believe this is an error, please contact our support team.",
}


def get_status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def get_status_description(status: str) -> str:
    return STATUS_DESCRIPTIONS.get(status, "Status updated")


def get_next_step(status: str) -> str:
    return NEXT_STEPS.get(status, "Please check back later for updates.")
