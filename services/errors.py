"""
Workflow error taxonomy.

Every error carries the HTTP status it maps to and a stable machine code.
Component errors propagate out of the orchestrator unchanged so the caller
can tell which component refused the request.
"""


class WorkflowError(Exception):
    status_code = 500
    code = "workflow_error"
    default_message = "Workflow error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# --- Validation (400): bad input shape, rejected before any write ---

class ValidationError(WorkflowError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


# --- Authorization (404): not-found semantics, never confirm existence ---

class AuthorizationError(WorkflowError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class NotParticipant(AuthorizationError):
    default_message = "Thread not found"


class InvalidParticipant(AuthorizationError):
    default_message = "Thread not found"


class NotAParty(AuthorizationError):
    default_message = "Document not found"


class NotMessageSender(AuthorizationError):
    default_message = "Message not found"


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


# --- State conflicts (409): transition refused by a state machine ---

class StateConflictError(WorkflowError):
    status_code = 409
    code = "state_conflict"
    default_message = "Conflicting state"


class ContractNotSigned(StateConflictError):
    code = "contract_not_signed"
    default_message = "The transfer agreement must be signed before payment"


class IntentAlreadyActive(StateConflictError):
    code = "intent_already_active"
    default_message = "A payment for this deal is already in progress"


class AlreadyTerminal(StateConflictError):
    code = "already_terminal"
    default_message = "This item is already finalized"


class NotARequiredSigner(StateConflictError):
    code = "not_a_required_signer"
    default_message = "You are not a required signer of this document"


class NdaNotSigned(StateConflictError):
    code = "nda_not_signed"
    default_message = "The NDA must be signed first"


class DealClosed(StateConflictError):
    code = "deal_closed"
    default_message = "This deal is closed"


class ImmutableMessage(StateConflictError):
    code = "immutable_message"
    default_message = "This message cannot be deleted"


# --- External dependencies (502/504): the only retryable kind ---

class ExternalDependencyError(WorkflowError):
    status_code = 502
    code = "external_dependency_error"
    default_message = "Payment processor unavailable"


class ProcessorTimeout(ExternalDependencyError):
    status_code = 504
    code = "processor_timeout"
    default_message = "Payment processor timed out"


class WebhookVerificationError(WorkflowError):
    status_code = 400
    code = "webhook_verification_failed"
    default_message = "Webhook signature verification failed"


# --- Integrity (500): a paired write would be half applied ---

class IntegrityViolation(WorkflowError):
    status_code = 500
    code = "integrity_violation"
    default_message = "Request aborted to preserve data integrity"


# --- Role refusals (403): a participant asking for another party's action ---

class ActionNotPermitted(WorkflowError):
    status_code = 403
    code = "action_not_permitted"
    default_message = "This action is not permitted for your role in the thread"
