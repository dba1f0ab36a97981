"""Shared data models for the Zotero sync client."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class ApiMessage:
    """Parsed response from the Zotero Web API."""
    ok: bool
    status_code: int
    data: Any = None
    version: Optional[int] = None
    error: Optional[str] = None


@dataclass
class FailedRequest:
    """
    Diagnostic record of a write that the server did not accept.

    Batch failures carry the status code and the serialized item data,
    upload failures carry the name of the file that could not be sent.
    """
    message: str
    code: Optional[int] = None
    data: Optional[str] = None
    filename: Optional[str] = None


class FailedWrite(BaseModel):
    """A single rejected object inside a batch write result."""
    key: Optional[str] = None
    code: int
    message: str


class BatchWriteResult(BaseModel):
    """Body of a successful POST items response, keyed by batch index."""
    success: Dict[int, str] = Field(default_factory=dict)
    unchanged: Dict[int, str] = Field(default_factory=dict)
    failed: Dict[int, FailedWrite] = Field(default_factory=dict)


class UploadAuthorization(BaseModel):
    """Response to an upload registration request."""
    model_config = ConfigDict(populate_by_name=True)

    exists: bool = False
    url: Optional[str] = None
    content_type: Optional[str] = Field(default=None, alias="contentType")
    prefix: str = ""
    suffix: str = ""
    upload_key: Optional[str] = Field(default=None, alias="uploadKey")
