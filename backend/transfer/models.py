"""Pydantic models for the LocalSend wire protocol and transfer state."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from config import LOCALSEND_PORT, PROTOCOL_VERSION


class WireModel(BaseModel):
    """Base for JSON payloads that use camelCase names on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class DeviceInfo(WireModel):
    """Describes the local peer; sent with every handshake."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    alias: str
    version: str = PROTOCOL_VERSION
    device_model: str | None = Field(default=None, alias="deviceModel")
    device_type: str | None = Field(default=None, alias="deviceType")
    fingerprint: str
    port: int = LOCALSEND_PORT
    protocol: str = "https"
    download: bool = False


class FileMetadata(WireModel):
    """Per-file entry of a manifest."""
    id: str
    file_name: str = Field(alias="fileName")
    size: int = Field(ge=0)
    file_type: str = Field(default="", alias="fileType")
    sha256: str | None = None
    preview: str | None = None


class PrepareUploadRequest(WireModel):
    """The manifest as it travels on the wire."""
    info: DeviceInfo
    files: dict[str, FileMetadata]


class PrepareUploadResponse(WireModel):
    session_id: str = Field(alias="sessionId")
    files: dict[str, str]


class TransferState(str, Enum):
    """All possible states for a single file transfer."""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


class TransferInfo(BaseModel):
    """Full state of a single file transfer, handed to progress sinks."""
    transfer_id: str
    session_id: str
    file_id: str
    file_name: str
    file_size: int
    transferred_bytes: int = 0
    state: TransferState = TransferState.PENDING
    direction: TransferDirection
    peer: str
    progress_percent: float = 0.0
    error_message: str | None = None

    @property
    def finished(self) -> bool:
        return self.state in (
            TransferState.COMPLETED,
            TransferState.FAILED,
            TransferState.CANCELLED,
        )


class SendRequestBody(BaseModel):
    """API body for initiating a send from the local control API."""
    host: str
    path: str
    port: int = LOCALSEND_PORT
    preview: bool = False
