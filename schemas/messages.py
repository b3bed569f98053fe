"""Wire schema for the signaling protocol.

Every frame is a JSON object tagged by ``type``. Frames are decoded once, at the
websocket boundary, into one of the models below; anything that does not match
a known variant is rejected with a :class:`MessageDecodeError`.
"""
import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

JOIN = "join"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
RAISE_HAND = "raise-hand"
MUTE_EVERYONE = "mute-everyone"
MUTE_USER = "mute-user"
CHAT_MESSAGE = "chat-message"

MESSAGE_KINDS = (JOIN, OFFER, ANSWER, ICE_CANDIDATE, RAISE_HAND, MUTE_EVERYONE, MUTE_USER, CHAT_MESSAGE)


class MessageDecodeError(ValueError):
    """Raised when an inbound frame cannot be turned into a known message."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class SignalMessage(BaseModel):
    # Control fields go out exactly as received or are rejected
    model_config = ConfigDict(populate_by_name=True, strict=True)

    room_id: str = Field("", alias="roomId")

    def outbound(self, room_id: str) -> dict:
        """Frame to forward to other members: the fields the sender supplied, stamped with ``roomId``."""
        payload = self.model_dump(by_alias=True, exclude_unset=True, exclude={"room_id"})
        payload.pop("type", None)
        return {"type": self.type, **payload, "roomId": room_id}


class JoinMessage(SignalMessage):
    type: Literal["join"]
    username: Optional[str] = None


class OfferMessage(SignalMessage):
    type: Literal["offer"]
    sdp: str


class AnswerMessage(SignalMessage):
    type: Literal["answer"]
    sdp: str


class IceCandidateMessage(SignalMessage):
    type: Literal["ice-candidate"]
    # Opaque to the relay: a candidate string or the browser's RTCIceCandidate JSON
    candidate: Any
    sdp_mid: Any = Field(None, alias="sdpMid")
    sdp_m_line_index: Any = Field(None, alias="sdpMLineIndex")


class RaiseHandMessage(SignalMessage):
    type: Literal["raise-hand"]
    username: str
    hand_raised: bool = Field(alias="handRaised")


class MuteEveryoneMessage(SignalMessage):
    type: Literal["mute-everyone"]
    muted: bool


class MuteUserMessage(SignalMessage):
    type: Literal["mute-user"]
    username: str
    muted: bool


class ChatMessage(SignalMessage):
    type: Literal["chat-message"]
    username: str
    message: str


Message = Annotated[
    Union[
        JoinMessage,
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
        RaiseHandMessage,
        MuteEveryoneMessage,
        MuteUserMessage,
        ChatMessage,
    ],
    Field(discriminator="type"),
]

message_adapter = TypeAdapter(Message)


def decode_message(raw: str) -> Message:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MessageDecodeError("invalid_json", str(e)) from e

    if not isinstance(data, dict):
        raise MessageDecodeError("not_object", type(data).__name__)

    kind = data.get("type")
    if not isinstance(kind, str):
        raise MessageDecodeError("missing_type")
    if kind not in MESSAGE_KINDS:
        raise MessageDecodeError("unknown_type", kind)

    try:
        return message_adapter.validate_python(data)
    except ValidationError as e:
        raise MessageDecodeError("invalid_fields", f"{kind}: {e.error_count()} error(s)") from e
