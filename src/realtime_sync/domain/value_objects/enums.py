from __future__ import annotations

from enum import StrEnum


class NotificationType(StrEnum):
    POSTULATION_CREATED = "postulation_created"
    POSTULATION_ACCEPTED = "postulation_accepted"
    POSTULATION_REJECTED = "postulation_rejected"
    POSTULATION_STATE_CHANGED = "postulation_state_changed"
    PETITION_CLOSED = "petition_closed"
    NEW_POSTULATION = "new_postulation"
    GENERIC = "generic"


class PushEventType(StrEnum):
    CREATION = "creation"
    UPDATE = "update"
    DELETION = "deletion"
    CONNECTION_ACK = "connection_ack"


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ChannelCommand(StrEnum):
    MARK_AS_READ = "mark_as_read"
    GET_UNREAD_COUNT = "get_unread_count"
