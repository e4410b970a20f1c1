"""
API Module - Black Box Interface

Purpose: HTTP request/response contracts for the staff-session surface
Interface: Pydantic models consumed by main.py
Hidden: Wire naming (camelCase aliases), validation rules

The API module only describes data - it contains no business logic.
"""

from .models import (
    AdminCredentialRequest,
    AdminCredentialResponse,
    CheckSessionRequest,
    CheckSessionResponse,
    CreateCredentialRequest,
    CredentialRequest,
    CredentialStatusResponse,
    ErrorResponse,
    StartSessionRequest,
    StartSessionResponse,
    SuccessResponse,
    TransferSessionRequest,
    TransferSessionResponse,
    VerifyCredentialResponse,
    WriteAccessResponse,
)

__all__ = [
    "StartSessionRequest",
    "CheckSessionRequest",
    "CredentialRequest",
    "TransferSessionRequest",
    "CreateCredentialRequest",
    "AdminCredentialRequest",
    "StartSessionResponse",
    "CheckSessionResponse",
    "TransferSessionResponse",
    "SuccessResponse",
    "CredentialStatusResponse",
    "VerifyCredentialResponse",
    "AdminCredentialResponse",
    "WriteAccessResponse",
    "ErrorResponse",
]
