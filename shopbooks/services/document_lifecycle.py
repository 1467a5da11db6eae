"""
Document Lifecycle State Machine

Single place for document status transitions. Orders and invoices follow
different graphs:

    Orders   (SALES_ORDER, PURCHASE_ORDER)
        DRAFT -> CONFIRMED -> CONVERTED
          \\________\\______-> CANCELLED

    Invoices (SALE, PURCHASE)
        DRAFT -> COMPLETED -> CANCELLED

COMPLETED, CONVERTED and CANCELLED freeze items and totals. CONVERTED and
CANCELLED are terminal. Payment status is handled separately by
payment_state_machine.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from shopbooks.core.exceptions import ValidationError
from shopbooks.models.document import DocumentStatus, ORDER_KINDS


DRAFT = DocumentStatus.DRAFT.value
CONFIRMED = DocumentStatus.CONFIRMED.value
COMPLETED = DocumentStatus.COMPLETED.value
CONVERTED = DocumentStatus.CONVERTED.value
CANCELLED = DocumentStatus.CANCELLED.value


ORDER_TRANSITIONS: Dict[str, List[str]] = {
    DRAFT: [
        CONFIRMED,      # Customer accepted
        CONVERTED,      # Invoiced straight from draft
        CANCELLED,
    ],
    CONFIRMED: [
        CONVERTED,      # Invoiced
        CANCELLED,
    ],
    CONVERTED: [],      # Terminal state
    CANCELLED: [],      # Terminal state
}

INVOICE_TRANSITIONS: Dict[str, List[str]] = {
    DRAFT: [
        COMPLETED,      # Finalise
        CANCELLED,
    ],
    COMPLETED: [
        CANCELLED,
    ],
    CANCELLED: [],      # Terminal state
}

# Statuses in which items/totals may still change
EDITABLE_STATUSES = {
    "order": [DRAFT, CONFIRMED],
    "invoice": [DRAFT],
}


def _graph(document_type: str) -> Dict[str, List[str]]:
    return ORDER_TRANSITIONS if document_type in ORDER_KINDS else INVOICE_TRANSITIONS


def initial_status(document_type: str, requested: Optional[str] = None) -> str:
    """Orders start as DRAFT, invoices as COMPLETED unless saved as DRAFT."""
    graph = _graph(document_type)
    if requested:
        if requested not in graph or requested in (CANCELLED, CONVERTED):
            raise ValidationError(
                f"A new document cannot start in '{requested}' status", field="status"
            )
        return requested
    return DRAFT if document_type in ORDER_KINDS else COMPLETED


def can_transition(document_type: str, current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in _graph(document_type).get(current_status, [])


def get_allowed_transitions(document_type: str, current_status: str) -> List[str]:
    return _graph(document_type).get(current_status, [])


def validate_transition(document_type: str, current_status: str, new_status: str) -> None:
    """Raise ValidationError if the transition is not allowed."""
    if current_status == new_status:
        return

    if not can_transition(document_type, current_status, new_status):
        allowed = get_allowed_transitions(document_type, current_status)
        if not allowed:
            raise ValidationError(
                f"Document in '{current_status}' status cannot be modified. This is a terminal state.",
                error_code="INVALID_TRANSITION",
                field="status",
            )
        raise ValidationError(
            f"Cannot change document from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            error_code="INVALID_TRANSITION",
            field="status",
        )


def can_edit_items(document) -> bool:
    """Items/totals are frozen once completed, converted or cancelled."""
    if document.is_converted:
        return False
    kind = "order" if document.document_type in ORDER_KINDS else "invoice"
    return document.status in EDITABLE_STATUSES[kind]


def transition_document(document, new_status: str, actor: str) -> None:
    """
    Move a document to a new status and stamp the audit fields.

    Raises:
        ValidationError: If the transition is not allowed
    """
    validate_transition(document.document_type, document.status, new_status)

    document.status = new_status
    document.updated_by = actor

    now = datetime.now(timezone.utc)
    if new_status == CANCELLED:
        document.cancelled_at = now
        document.cancelled_by = actor
    elif new_status == CONVERTED:
        document.converted_at = now
        document.converted_by = actor
