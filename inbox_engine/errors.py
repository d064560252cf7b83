from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class InboxError(Exception):
    message: str
    code: str = "inbox_error"
    transient: bool = False
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


class ConfigError(InboxError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="config_error", transient=False, details=details)


class TransportError(InboxError):
    def __init__(self, message: str, *, transient: bool = True, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="transport_error", transient=transient, details=details)


class CollaboratorError(InboxError):
    def __init__(
        self,
        message: str,
        *,
        collaborator: str,
        status_code: Optional[int] = None,
        transient: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        merged_details: dict[str, Any] = {"collaborator": collaborator}
        if status_code is not None:
            merged_details["status_code"] = status_code
        if details:
            merged_details.update(details)
        super().__init__(message=message, code="collaborator_error", transient=transient, details=merged_details)

    @property
    def status_code(self) -> Optional[int]:
        return (self.details or {}).get("status_code")


class FrameDecodeError(InboxError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="frame_decode_error", transient=False, details=details)


class ConversationNotFoundError(InboxError):
    def __init__(self, contact_id: str):
        super().__init__(
            message=f"Conversa não encontrada: {contact_id}",
            code="conversation_not_found",
            transient=False,
            details={"contact_id": contact_id},
        )


class MessageNotFoundError(InboxError):
    def __init__(self, contact_id: str, message_id: str):
        super().__init__(
            message=f"Mensagem não encontrada: {message_id}",
            code="message_not_found",
            transient=False,
            details={"contact_id": contact_id, "message_id": message_id},
        )
