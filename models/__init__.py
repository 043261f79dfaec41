from models.base import Base, POSTGRESQL_SCHEMA
from models.listing import Listing
from models.thread import Thread, ThreadParticipant, ParticipantRole, DealClosure
from models.message import Message, MessageKind
from models.contracts import ContractDocument, DocumentType, DocumentStatus
from models.signatures import ContractSignature
from models.nda import NDAAcceptance
from models.payment import PaymentIntent, PaymentStatus, ACTIVE_PAYMENT_STATUSES, TERMINAL_PAYMENT_STATUSES

__all__ = [
    "Base",
    "POSTGRESQL_SCHEMA",
    "Listing",
    "Thread",
    "ThreadParticipant",
    "ParticipantRole",
    "DealClosure",
    "Message",
    "MessageKind",
    "ContractDocument",
    "DocumentType",
    "DocumentStatus",
    "ContractSignature",
    "NDAAcceptance",
    "PaymentIntent",
    "PaymentStatus",
    "ACTIVE_PAYMENT_STATUSES",
    "TERMINAL_PAYMENT_STATUSES",
]
