"""
JSON-RPC pub-sub wire format: the ``logsSubscribe`` request and the four
kinds of inbound frame, decoded once at the stream boundary.
"""

import json
from dataclasses import dataclass, field
from typing import Any

LOGS_SUBSCRIBE = "logsSubscribe"
LOGS_NOTIFICATION = "logsNotification"


class FrameDecodeError(ValueError):
    """Inbound frame is not valid JSON."""


def build_subscribe_request(
    request_id: int, address: str, commitment: str = "finalized"
) -> dict:
    # One address per request; providers reject multi-address mentions.
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": LOGS_SUBSCRIBE,
        "params": [{"mentions": [address]}, {"commitment": commitment}],
    }


@dataclass(frozen=True)
class SubscriptionAck:
    request_id: int
    subscription_id: int
    raw: dict = field(repr=False, compare=False)


@dataclass(frozen=True)
class SubscriptionError:
    request_id: int
    error: Any
    raw: dict = field(repr=False, compare=False)


@dataclass(frozen=True)
class LogNotification:
    signature: str | None
    slot: int | None
    logs: tuple[str, ...]
    err: Any = None
    subscription: int | None = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_params(cls, params: dict, raw: dict) -> "LogNotification":
        result = params.get("result") if isinstance(params, dict) else None
        result = result if isinstance(result, dict) else {}
        context = result.get("context") or {}
        value = result.get("value") or {}
        if not isinstance(value, dict):
            value = {}
        logs = value.get("logs")
        if not isinstance(logs, list):
            logs = []
        return cls(
            signature=value.get("signature") or None,
            slot=context.get("slot") if isinstance(context, dict) else None,
            logs=tuple(line for line in logs if isinstance(line, str)),
            err=value.get("err"),
            subscription=params.get("subscription") if isinstance(params, dict) else None,
            raw=raw,
        )


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


StreamMessage = SubscriptionAck | SubscriptionError | LogNotification | Unrecognized


def decode_frame(raw: str | bytes) -> StreamMessage:
    """Classify a frame; first matching rule wins."""
    try:
        msg = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise FrameDecodeError(str(exc)) from exc

    if not isinstance(msg, dict):
        return Unrecognized(msg)

    rid = msg.get("id")
    if rid is not None and msg.get("result") is not None:
        return SubscriptionAck(rid, msg["result"], msg)
    if rid is not None and msg.get("error") is not None:
        return SubscriptionError(rid, msg["error"], msg)
    if msg.get("method") == LOGS_NOTIFICATION and msg.get("params"):
        return LogNotification.from_params(msg["params"], msg)
    return Unrecognized(msg)
