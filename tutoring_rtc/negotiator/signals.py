"""Signal messages exchanged through the relay.

Wire shape::

    {"type": "offer", "sdp": "...", "sessionId": "abc123", "sender": "volunteer",
     "timestamp": "2024-05-01T10:00:00.000001Z"}
    {"type": "ice-candidate", "candidate": {"candidate": "candidate:...",
     "sdpMid": "0", "sdpMLineIndex": 0}, ...}

Browser clients post descriptions nested as ``{"offer": {"type", "sdp"}}``;
that form is accepted on input and normalised.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class IceCandidatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


class _SignalBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    sender: Optional[str] = None
    timestamp: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class _DescriptionSignal(_SignalBase):
    sdp: str

    @model_validator(mode="before")
    @classmethod
    def _lift_nested_description(cls, data: Any) -> Any:
        if isinstance(data, dict) and "sdp" not in data:
            nested = data.get(data.get("type"))
            if isinstance(nested, dict) and "sdp" in nested:
                data = {**data, "sdp": nested["sdp"]}
        return data


class OfferSignal(_DescriptionSignal):
    type: Literal["offer"] = "offer"


class AnswerSignal(_DescriptionSignal):
    type: Literal["answer"] = "answer"


class IceCandidateSignal(_SignalBase):
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: IceCandidatePayload


Signal = Annotated[Union[OfferSignal, AnswerSignal, IceCandidateSignal], Field(discriminator="type")]

_SIGNAL_ADAPTER: TypeAdapter = TypeAdapter(Signal)


def parse_signal(data: Dict[str, Any]) -> Union[OfferSignal, AnswerSignal, IceCandidateSignal]:
    """Validate one wire dict; raises pydantic.ValidationError on bad input."""
    return _SIGNAL_ADAPTER.validate_python(data)


def parse_signals(items: List[Dict[str, Any]]) -> List[Union[OfferSignal, AnswerSignal, IceCandidateSignal]]:
    return [parse_signal(item) for item in items]


__all__ = [
    "IceCandidatePayload",
    "OfferSignal",
    "AnswerSignal",
    "IceCandidateSignal",
    "Signal",
    "parse_signal",
    "parse_signals",
]
