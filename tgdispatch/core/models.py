from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .commands import is_command_text, parse_command
from .errors import UpdateParseError


# Order matters: animation messages also carry a "document" field.
MEDIA_FIELDS: Tuple[str, ...] = (
    "animation",
    "photo",
    "video",
    "video_note",
    "voice",
    "audio",
    "document",
    "location",
    "venue",
    "contact",
    "poll",
    "dice",
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ChatRef(_Frozen):
    id: int
    type: str = "private"
    title: Optional[str] = None
    username: Optional[str] = None


class UserRef(_Frozen):
    id: int
    is_bot: bool = False
    username: Optional[str] = None
    first_name: Optional[str] = None


class CommandPayload(_Frozen):
    kind: Literal["command"] = "command"
    name: str
    args: Tuple[str, ...] = ()
    mention: Optional[str] = None
    text: str


class TextPayload(_Frozen):
    kind: Literal["text"] = "text"
    text: str


class StickerPayload(_Frozen):
    kind: Literal["sticker"] = "sticker"
    file_id: str
    emoji: Optional[str] = None


class MediaPayload(_Frozen):
    kind: Literal["media"] = "media"
    media_type: str
    caption: Optional[str] = None


class CallbackPayload(_Frozen):
    kind: Literal["callback"] = "callback"
    callback_id: str
    data: Optional[str] = None
    message_id: Optional[int] = None


class OtherPayload(_Frozen):
    """Update kinds that are received but not modelled (edits, channel posts, polls...)."""

    kind: Literal["other"] = "other"
    update_type: str


Payload = Annotated[
    Union[CommandPayload, TextPayload, StickerPayload, MediaPayload, CallbackPayload, OtherPayload],
    Field(discriminator="kind"),
]


class Update(_Frozen):
    update_id: int
    payload: Payload
    chat: Optional[ChatRef] = None
    sender: Optional[UserRef] = None
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def kind(self) -> str:
        return self.payload.kind

    @property
    def chat_id(self) -> Optional[int]:
        return self.chat.id if self.chat is not None else None


def _message_payload(msg: Dict[str, Any]) -> Union[CommandPayload, TextPayload, StickerPayload, MediaPayload, OtherPayload]:
    text = msg.get("text")
    if isinstance(text, str):
        if is_command_text(text, msg.get("entities")):
            pc = parse_command(text)
            return CommandPayload(name=pc.cmd, args=tuple(pc.args), mention=pc.mention, text=text)
        return TextPayload(text=text)
    sticker = msg.get("sticker")
    if isinstance(sticker, dict):
        return StickerPayload(file_id=str(sticker.get("file_id", "")), emoji=sticker.get("emoji"))
    for name in MEDIA_FIELDS:
        if name in msg:
            return MediaPayload(media_type=name, caption=msg.get("caption"))
    return OtherPayload(update_type="message")


def parse_update(data: Any) -> Update:
    """Build an :class:`Update` from a decoded Bot API update object.

    Raises UpdateParseError when the object is not an update (no integer
    ``update_id``) or when a nested field has the wrong shape.
    """
    if not isinstance(data, dict):
        raise UpdateParseError(f"update must be a JSON object, got {type(data).__name__}")
    uid = data.get("update_id")
    if not isinstance(uid, int) or isinstance(uid, bool):
        raise UpdateParseError("update_id missing or not an integer")
    try:
        chat: Optional[ChatRef] = None
        sender: Optional[UserRef] = None
        payload: Any
        msg = data.get("message")
        cbq = data.get("callback_query")
        if isinstance(msg, dict):
            payload = _message_payload(msg)
            if msg.get("chat") is not None:
                chat = ChatRef.model_validate(msg["chat"])
            if msg.get("from") is not None:
                sender = UserRef.model_validate(msg["from"])
        elif isinstance(cbq, dict):
            cb_msg = cbq.get("message") or {}
            payload = CallbackPayload(
                callback_id=str(cbq.get("id", "")),
                data=cbq.get("data"),
                message_id=cb_msg.get("message_id"),
            )
            if cb_msg.get("chat") is not None:
                chat = ChatRef.model_validate(cb_msg["chat"])
            if cbq.get("from") is not None:
                sender = UserRef.model_validate(cbq["from"])
        else:
            other = next((k for k in data if k != "update_id"), "unknown")
            payload = OtherPayload(update_type=other)
        return Update(update_id=uid, payload=payload, chat=chat, sender=sender, raw=data)
    except (ValueError, TypeError, AttributeError) as e:
        # pydantic.ValidationError is a ValueError
        raise UpdateParseError(f"malformed update {uid}: {e}") from e


def parse_update_json(body: bytes | str) -> Update:
    try:
        data = json.loads(body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise UpdateParseError(f"body is not decodable JSON: {e}") from e
    return parse_update(data)
