"""
Pydantic schemas mirroring the signaling REST contract.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Scalar = Union[str, int, float, bool, None]


class SessionDescriptionModel(BaseModel):
    kind: str = Field(validation_alias=AliasChoices("kind", "type"))
    payload: str = Field(validation_alias=AliasChoices("payload", "sdp"))

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: object) -> str:
        result = str(value or "").strip().lower()
        if result not in {"offer", "answer"}:
            raise ValueError("kind must be 'offer' or 'answer'")
        return result


class CallDocumentModel(BaseModel):
    offer: Optional[SessionDescriptionModel] = None
    answer: Optional[SessionDescriptionModel] = None


class DocumentCreated(BaseModel):
    id: str


class DocumentModel(BaseModel):
    id: str
    rev: int
    fields: Dict[str, Any] = Field(default_factory=dict)


class SetFieldsRequest(BaseModel):
    fields: Dict[str, Any]
    only_if_absent: bool = Field(
        default=False,
        validation_alias=AliasChoices("only_if_absent", "onlyIfAbsent"),
        serialization_alias="onlyIfAbsent",
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("fields")
    @classmethod
    def _require_fields(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("fields must not be empty")
        return value


class AppendRequest(BaseModel):
    fields: Dict[str, Scalar] = Field(default_factory=dict)


class EntryModel(BaseModel):
    id: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class EntryPage(BaseModel):
    entries: List[EntryModel] = Field(default_factory=list)
    next: int = 0
