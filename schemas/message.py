import uuid
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field
from typing_extensions import Annotated

from models.message import Message, MessageKind


# --- Content union, discriminated on "kind" ---

class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    kind: Literal["image"] = "image"
    path: str


class ContractRefContent(BaseModel):
    kind: Literal["contract_ref"] = "contract_ref"
    document_id: uuid.UUID


class SystemContent(BaseModel):
    kind: Literal["system"] = "system"
    event: str
    text: str


class DeletedContent(BaseModel):
    kind: Literal["deleted"] = "deleted"


MessageContent = Annotated[
    Union[TextContent, ImageContent, ContractRefContent, SystemContent, DeletedContent],
    Field(discriminator="kind"),
]

# What a participant may send directly; contract refs and system notices come from the workflow.
OutgoingContent = Annotated[Union[TextContent, ImageContent], Field(discriminator="kind")]


class MessageCreate(BaseModel):
    content: OutgoingContent
    client_token: Optional[str] = Field(default=None, max_length=64)


class MessageResponse(BaseModel):
    id: uuid.UUID
    thread_id: uuid.UUID
    seq: int
    sender_id: Optional[uuid.UUID]
    is_system: bool
    content: MessageContent
    client_token: Optional[str]
    is_deleted: bool
    created_at: datetime


class MessagePage(BaseModel):
    messages: List[MessageResponse]
    next_cursor: Optional[int]


def message_content(message: Message):
    """Tagged content for a stored message; soft-deleted rows render as a tombstone."""
    if message.is_deleted:
        return DeletedContent()
    if message.kind == MessageKind.TEXT:
        return TextContent(text=message.text or "")
    if message.kind == MessageKind.IMAGE:
        return ImageContent(path=message.media_path or "")
    if message.kind == MessageKind.CONTRACT_REF:
        return ContractRefContent(document_id=message.contract_id)
    if message.kind == MessageKind.SYSTEM:
        return SystemContent(event=message.system_event or "", text=message.text or "")
    raise ValueError(f"Unhandled message kind: {message.kind}")


def message_to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        thread_id=message.thread_id,
        seq=message.seq,
        sender_id=message.sender_id,
        is_system=message.is_system,
        content=message_content(message),
        client_token=message.client_token,
        is_deleted=message.is_deleted,
        created_at=message.created_at,
    )
