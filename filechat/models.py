from pydantic import BaseModel, Field, validator
from typing import Dict, List, Literal, Optional


class ConversationTurn(BaseModel):
    """One earlier turn of the conversation."""
    role: Literal["user", "model"]
    text: str


class ChatRequest(BaseModel):
    """Question about one file, a list of files, or every active file."""
    question: str = Field(..., max_length=10000)
    file_id: Optional[str] = None
    file_ids: Optional[List[str]] = None
    conversation_history: Optional[List[ConversationTurn]] = None

    @validator('question')
    def validate_question(cls, v):
        """Ensure question is not just whitespace."""
        if not v.strip():
            raise ValueError("Question is required")
        return v.strip()

    @validator('file_id')
    def validate_file_id(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @validator('file_ids')
    def validate_file_ids(cls, v):
        """Drop blank entries; an all-blank list means no explicit files."""
        if v is None:
            return None
        cleaned = [ref.strip() for ref in v if ref.strip()]
        return cleaned or None


class ChatResponse(BaseModel):
    """Generated answer and the files it was grounded on."""
    response: str
    file_id: Optional[str] = None
    file_ids_used: List[str]
    model: str


class FileStatus(BaseModel):
    """Activation record. Absent record means active."""
    file_id: Optional[str] = None
    active: bool = True
    deactivated_at: Optional[str] = None
    reactivated_at: Optional[str] = None


class FileInfo(BaseModel):
    """Upstream metadata for a stored file."""
    id: str
    name: str
    display_name: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    state: Optional[str] = None
    create_time: Optional[str] = None
    update_time: Optional[str] = None
    expiration_time: Optional[str] = None
    uri: Optional[str] = None


class FileListItem(FileInfo):
    is_active: bool
    status: FileStatus


class ListFilesResponse(BaseModel):
    files: List[FileListItem]
    count: int
    total: int
    active: int
    inactive: int


class UploadResponse(BaseModel):
    file: FileInfo
    message: str = "File uploaded successfully"


class ActivationResponse(BaseModel):
    file_id: str
    active: bool
    status: FileStatus
    message: str


class DeleteFileResponse(BaseModel):
    file_id: str
    message: str
    success: bool


class TestKeyRequest(BaseModel):
    api_key: Optional[str] = None


class TestKeyResponse(BaseModel):
    success: bool
    message: str


class ConfigStatusResponse(BaseModel):
    has_api_key: bool
    configured: bool


class ModelUsage(BaseModel):
    current: str
    available: List[str]
    calls: Dict[str, int]
    fallbacks: int


class FilesUsage(BaseModel):
    total: int = 0
    active: int = 0
    processing: int = 0
    failed: int = 0
    total_size: int = 0
    deactivated: int = 0


class UsageResponse(BaseModel):
    api_key: Dict
    model: ModelUsage
    files: FilesUsage
    limits: Dict
    timestamp: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    api_key_configured: bool
    current_model: Optional[str] = None
