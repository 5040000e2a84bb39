"""Wire vocabulary and message helpers for the Teams third-party device API.

Inbound frames are a loose union: exactly which optional field is present
tells a token refresh, a command acknowledgement and a meeting update
apart. Outbound frames carry an action, an optional parameters object and
a request id.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any
from urllib.parse import quote, urlencode

from .errors import TeamsMessageError

PROTOCOL_VERSION = "2.0.0"
SUCCESS_RESPONSE = "Success"


class TeamsAction(Enum):
    """Actions understood by the meeting application."""

    TOGGLE_MUTE = "toggle-mute"
    TOGGLE_VIDEO = "toggle-video"
    TOGGLE_HAND = "toggle-hand"
    LEAVE = "leave-call"
    QUERY_STATE = "query-state"
    TOGGLE_BACKGROUND_BLUR = "toggle-background-blur"
    TOGGLE_UI = "toggle-ui"
    STOP_SHARING = "stop-sharing"
    SEND_REACTION = "send-reaction"


class TeamsActionModifier(Enum):
    """Values for the ``type`` parameter of toggle-ui and send-reaction."""

    CHAT = "chat"
    SHARE_TRAY = "share-tray"
    APPLAUSE = "applause"
    LOVE = "love"
    LAUGH = "laugh"
    WOW = "wow"
    LIKE = "like"


class InboundKind(Enum):
    """Classification of an inbound frame."""

    TOKEN_REFRESH = "token_refresh"
    ACKNOWLEDGEMENT = "acknowledgement"
    MEETING_UPDATE = "meeting_update"
    REJECTION = "rejection"
    UNKNOWN = "unknown"


def _wire(name: str) -> Any:
    return field(default=False, metadata={"wire": name})


def _parse_flags(cls: type, data: Any, section: str) -> dict[str, bool]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TeamsMessageError(f"{section} must be an object")
    values: dict[str, bool] = {}
    for item in fields(cls):
        raw = data.get(item.metadata["wire"])
        if raw is None:
            continue
        if not isinstance(raw, bool):
            raise TeamsMessageError(
                f"{section}.{item.metadata['wire']} must be a boolean"
            )
        values[item.name] = raw
    return values


@dataclass(frozen=True, slots=True)
class MeetingState:
    """Current meeting status flags."""

    is_muted: bool = _wire("isMuted")
    is_video_on: bool = _wire("isVideoOn")
    is_hand_raised: bool = _wire("isHandRaised")
    is_in_meeting: bool = _wire("isInMeeting")
    is_recording_on: bool = _wire("isRecordingOn")
    is_background_blurred: bool = _wire("isBackgroundBlurred")
    is_sharing: bool = _wire("isSharing")
    has_unread_messages: bool = _wire("hasUnreadMessages")

    @classmethod
    def from_dict(cls, data: Any) -> MeetingState:
        return cls(**_parse_flags(cls, data, "meetingState"))


@dataclass(frozen=True, slots=True)
class MeetingPermissions:
    """Which toggles the meeting currently allows."""

    can_toggle_mute: bool = _wire("canToggleMute")
    can_toggle_video: bool = _wire("canToggleVideo")
    can_toggle_hand: bool = _wire("canToggleHand")
    can_toggle_blur: bool = _wire("canToggleBlur")
    can_leave: bool = _wire("canLeave")
    can_react: bool = _wire("canReact")
    can_toggle_share_tray: bool = _wire("canToggleShareTray")
    can_toggle_chat: bool = _wire("canToggleChat")
    can_stop_sharing: bool = _wire("canStopSharing")
    can_pair: bool = _wire("canPair")

    @classmethod
    def from_dict(cls, data: Any) -> MeetingPermissions:
        return cls(**_parse_flags(cls, data, "meetingPermissions"))


@dataclass(frozen=True, slots=True)
class MeetingUpdate:
    """State and permissions pushed by the meeting application."""

    state: MeetingState = field(default_factory=MeetingState)
    permissions: MeetingPermissions = field(default_factory=MeetingPermissions)

    @classmethod
    def from_dict(cls, data: Any) -> MeetingUpdate:
        if not isinstance(data, dict):
            raise TeamsMessageError("meetingUpdate must be an object")
        return cls(
            state=MeetingState.from_dict(data.get("meetingState")),
            permissions=MeetingPermissions.from_dict(data.get("meetingPermissions")),
        )


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """Decoded inbound frame."""

    token_refresh: str | None = None
    meeting_update: MeetingUpdate | None = None
    request_id: int | None = None
    response: str | None = None

    @property
    def kind(self) -> InboundKind:
        """Classify the frame. The first matching field wins.

        Order: token refresh, success acknowledgement, meeting update,
        then any other response as a rejection.
        """
        if self.token_refresh:
            return InboundKind.TOKEN_REFRESH
        if self.succeeded:
            return InboundKind.ACKNOWLEDGEMENT
        if self.meeting_update is not None:
            return InboundKind.MEETING_UPDATE
        if self.response is not None:
            return InboundKind.REJECTION
        return InboundKind.UNKNOWN

    @property
    def succeeded(self) -> bool:
        return self.response == SUCCESS_RESPONSE


@dataclass(frozen=True, slots=True)
class OutboundCommand:
    """Single command headed for the meeting application."""

    action: str
    request_id: int
    parameters: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON object sent on the socket."""
        payload: dict[str, Any] = {"action": self.action}
        if self.parameters is not None:
            payload["parameters"] = self.parameters
        payload["requestId"] = self.request_id
        return payload


def build_command(
    action: TeamsAction | str,
    request_id: int,
    modifier: TeamsActionModifier | str | None = None,
) -> OutboundCommand:
    """Build an outbound command, adding ``{"type": modifier}`` when given."""
    action_name = action.value if isinstance(action, TeamsAction) else action
    if not action_name:
        raise ValueError("action is required")
    parameters: dict[str, Any] | None = None
    if modifier:
        modifier_name = (
            modifier.value if isinstance(modifier, TeamsActionModifier) else modifier
        )
        parameters = {"type": modifier_name}
    return OutboundCommand(
        action=action_name, request_id=request_id, parameters=parameters
    )


def parse_inbound(data: Any) -> InboundMessage:
    """Parse a decoded JSON frame into an InboundMessage.

    Raises:
        TeamsMessageError: If the frame is not an object or a field has the
            wrong type
    """
    if not isinstance(data, dict):
        raise TeamsMessageError("Inbound frame must be a JSON object")

    token = data.get("tokenRefresh")
    if token is not None and not isinstance(token, str):
        raise TeamsMessageError("tokenRefresh must be a string")

    request_id = data.get("requestId")
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, int)
    ):
        raise TeamsMessageError("requestId must be an integer")

    response = data.get("response")
    if response is not None and not isinstance(response, str):
        raise TeamsMessageError("response must be a string")

    update_raw = data.get("meetingUpdate")
    update = MeetingUpdate.from_dict(update_raw) if update_raw is not None else None

    return InboundMessage(
        token_refresh=token or None,
        meeting_update=update,
        request_id=request_id,
        response=response,
    )


def build_endpoint_uri(
    host: str,
    port: int,
    *,
    manufacturer: str,
    device: str,
    app: str,
    app_version: str,
    token: str | None = None,
) -> str:
    """Build the ws:// URI including the identification query parameters."""
    params = {
        "protocol-version": PROTOCOL_VERSION,
        "manufacturer": manufacturer,
        "device": device,
        "app": app,
        "app-version": app_version,
    }
    if token:
        params["token"] = token
    return f"ws://{host}:{port}/?{urlencode(params, quote_via=quote)}"


def mask_token(token: str | None) -> str:
    """Return a log-safe rendering of a token."""
    if not token:
        return "<none>"
    if len(token) <= 4:
        return "****"
    return f"****{token[-4:]}"
