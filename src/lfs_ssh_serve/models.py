"""Wire models for the serve protocol.

Every frame on the wire is one of these documents serialised as JSON. Field
names follow the protocol's camelCase spelling directly so no aliasing is
needed.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .store import validate_oid


class Method(str, Enum):
    """Every method name a client may send."""

    EXIT = "Exit"
    BATCH = "Batch"
    UPLOAD_CHECK = "UploadCheck"
    UPLOAD = "Upload"
    DOWNLOAD_CHECK = "DownloadCheck"
    DOWNLOAD = "Download"

    @property
    def streams_bytes(self) -> bool:
        """Success is a raw byte stream, so errors cannot be sent as JSON."""
        return self is Method.DOWNLOAD

    @classmethod
    def lookup(cls, name: str) -> Optional["Method"]:
        try:
            return cls(name)
        except ValueError:
            return None


# ============= Envelope =============

class Request(BaseModel):
    """One client request frame."""

    id: int
    method: str
    # Checked per method, so a malformed value is a recoverable error
    params: Optional[Any] = None


class Response(BaseModel):
    """One server response frame: a result or an error, never both."""

    id: int
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, request_id: int, result: BaseModel) -> "Response":
        return cls(id=request_id, result=result.model_dump(mode="json"))

    @classmethod
    def failure(cls, request_id: int, message: str) -> "Response":
        return cls(id=request_id, error=message)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


# ============= Params =============

class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ObjectParams(_Params):
    """An object the client is asking about (oid plus declared size)."""

    oid: str
    size: int = Field(default=0, ge=0)

    @field_validator("oid")
    @classmethod
    def check_oid(cls, v: str) -> str:
        return validate_oid(v)


class UploadParams(ObjectParams):
    size: int = Field(ge=0)


class DownloadCheckParams(_Params):
    oid: str

    @field_validator("oid")
    @classmethod
    def check_oid(cls, v: str) -> str:
        return validate_oid(v)


class DownloadParams(ObjectParams):
    size: int = Field(ge=0)


class BatchParams(_Params):
    objects: List[ObjectParams] = Field(default_factory=list)


# ============= Results =============

class UploadResult(BaseModel):
    okToSend: bool


class UploadCompleteResult(BaseModel):
    receivedOk: bool


class DownloadCheckResult(BaseModel):
    size: int  # -1 when the object is absent


class BatchAction(str, Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


class BatchResultObject(BaseModel):
    oid: str
    action: BatchAction
    size: int


class BatchResult(BaseModel):
    results: List[BatchResultObject] = Field(default_factory=list)
