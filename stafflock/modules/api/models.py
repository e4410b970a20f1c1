"""
Stafflock HTTP data models.

Wire names are camelCase (``deviceId``, ``endTime``); Python attributes are
snake_case and populated through aliases. Timestamps are epoch milliseconds.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for models exchanged with clients."""

    model_config = ConfigDict(populate_by_name=True)


# Request Models (API Input)


class StartSessionRequest(WireModel):
    """Request to start a staff session on a device."""

    password: str = Field(..., description="Staff elevation credential", min_length=1)
    device_id: str = Field(
        ..., alias="deviceId", description="Requesting device identifier", min_length=1, max_length=200
    )


class CheckSessionRequest(WireModel):
    """Request to check the session from a device."""

    device_id: Optional[str] = Field(
        None, alias="deviceId", description="Calling device identifier", max_length=200
    )


class CredentialRequest(WireModel):
    """Request carrying only the elevation credential (End, EndAll, verify, delete)."""

    password: str = Field(..., description="Staff elevation credential", min_length=1)


class TransferSessionRequest(WireModel):
    """Request to move the live session to another device."""

    password: str = Field(..., description="Staff elevation credential", min_length=1)
    new_device_id: str = Field(
        ..., alias="newDeviceId", description="Device to receive the session", min_length=1, max_length=200
    )


class CreateCredentialRequest(WireModel):
    """Request to set or replace the caller's elevation credential."""

    password: str = Field(..., description="New credential")
    current_password: Optional[str] = Field(
        None, alias="currentPassword", description="Existing credential, required when replacing"
    )


class AdminCredentialRequest(WireModel):
    """Owner request to set another identity's credential."""

    password: str = Field(..., description="New credential for the target identity")


# Response Models (API Output)


class StartSessionResponse(WireModel):
    success: bool = True
    end_time: int = Field(..., alias="endTime", description="Session expiry (epoch ms)")
    duration: int = Field(..., description="Session length in ms")


class CheckSessionResponse(WireModel):
    """Discriminated Check result; absent fields are omitted."""

    active: bool
    device_id: Optional[str] = Field(None, alias="deviceId")
    end_time: Optional[int] = Field(None, alias="endTime")
    remaining_time: Optional[int] = Field(None, alias="remainingTime")
    expired: Optional[bool] = None
    transfer_requested: Optional[bool] = Field(None, alias="transferRequested")
    transfer_requested_by_device_id: Optional[str] = Field(None, alias="transferRequestedByDeviceId")
    transfer_available: Optional[bool] = Field(None, alias="transferAvailable")
    existing_device_id: Optional[str] = Field(None, alias="existingDeviceId")
    existing_end_time: Optional[int] = Field(None, alias="existingEndTime")
    message: Optional[str] = None


class TransferSessionResponse(WireModel):
    success: bool = True
    end_time: int = Field(..., alias="endTime")
    remaining_time: int = Field(..., alias="remainingTime")


class SuccessResponse(WireModel):
    success: bool = True


class CredentialStatusResponse(WireModel):
    has_password: bool = Field(..., alias="hasPassword")


class VerifyCredentialResponse(WireModel):
    success: bool = True
    role: str = Field(..., description="Highest staff role held, or 'none'")


class AdminCredentialResponse(WireModel):
    success: bool = True
    roles: List[str]


class WriteAccessResponse(WireModel):
    allowed: bool
    reason: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human readable message")
    details: Dict[str, Any] = Field(default_factory=dict, description="Additional error details")
