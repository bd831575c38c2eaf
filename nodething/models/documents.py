"""
Pydantic models for the documents exchanged through the shared store.

Wire keys are camelCase (commandName, lastModified); the Python attributes
are snake_case and both spellings are accepted on input.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommandDocument(BaseModel):
    """One command invocation and, once the Device answers, its result.

    ``pending`` starts True and flips to False exactly once, when ``result``
    (or ``error``) is written. A document is never reused.
    """

    id: Optional[str] = None
    command_name: str = Field(alias="commandName")
    arguments: List[Any] = Field(default_factory=list)
    pending: bool = True
    result: Any = None
    error: Optional[str] = None
    last_modified: datetime = Field(alias="lastModified", default_factory=utcnow)

    class Config:
        populate_by_name = True

    def to_document(self) -> Dict[str, Any]:
        """Store representation. ``error`` is only written when set."""
        data = self.model_dump(by_alias=True, exclude={"id"})
        if data.get("error") is None:
            data.pop("error", None)
        return data


class PropertyDocument(BaseModel):
    """Current value of one named Device property"""

    id: Optional[str] = None
    property: str
    value: Any = None
    last_modified: datetime = Field(alias="lastModified", default_factory=utcnow)

    class Config:
        populate_by_name = True


def completion_fields(result: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    """Fields written back when a command leaves the pending state"""
    fields = {"result": result, "pending": False, "lastModified": utcnow()}
    if error is not None:
        fields["error"] = error
    return fields
