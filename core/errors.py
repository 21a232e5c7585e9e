"""
core/errors.py: Error Codes & Exceptions
==========================================
One flat list of error codes shared with the client, plus the exception
types raised by route handlers and by the chain / IPFS / email wrappers.

Route handlers raise ApiError (an HTTPException) for expected failures.
Service wrappers raise DeedChainError subclasses; main.py turns both into
the {success, message, code} envelope.
"""

import enum
from typing import Optional

from fastapi import HTTPException, status


class ErrorCode(str, enum.Enum):
    # Wallet
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    WRONG_NETWORK = "WRONG_NETWORK"
    TRANSACTION_REJECTED = "TRANSACTION_REJECTED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"

    # Property
    PROPERTY_NOT_FOUND = "PROPERTY_NOT_FOUND"
    PROPERTY_ALREADY_REGISTERED = "PROPERTY_ALREADY_REGISTERED"
    PROPERTY_NOT_VERIFIED = "PROPERTY_NOT_VERIFIED"
    PROPERTY_ALREADY_VERIFIED = "PROPERTY_ALREADY_VERIFIED"
    INVALID_PROPERTY_DATA = "INVALID_PROPERTY_DATA"
    TRANSFER_NOT_FOUND = "TRANSFER_NOT_FOUND"

    # User
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Validation
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_WALLET_ADDRESS = "INVALID_WALLET_ADDRESS"
    INVALID_COORDINATES = "INVALID_COORDINATES"

    # Files
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    UPLOAD_FAILED = "UPLOAD_FAILED"

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"

    # System
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    CONTRACT_ERROR = "CONTRACT_ERROR"


ERROR_MESSAGES = {
    ErrorCode.WALLET_NOT_CONNECTED: "Please connect your wallet to continue",
    ErrorCode.WRONG_NETWORK: "Please switch to the correct network",
    ErrorCode.TRANSACTION_REJECTED: "Transaction was rejected by user",
    ErrorCode.TRANSACTION_FAILED: "Transaction failed on the blockchain",
    ErrorCode.INSUFFICIENT_FUNDS: "Insufficient funds for transaction",
    ErrorCode.PROPERTY_NOT_FOUND: "Property not found",
    ErrorCode.PROPERTY_ALREADY_REGISTERED: "Property is already registered",
    ErrorCode.PROPERTY_NOT_VERIFIED: "Property is not verified",
    ErrorCode.PROPERTY_ALREADY_VERIFIED: "Property is already verified",
    ErrorCode.INVALID_PROPERTY_DATA: "Invalid property data provided",
    ErrorCode.TRANSFER_NOT_FOUND: "Transfer not found",
    ErrorCode.UNAUTHORIZED: "You are not authorized to perform this action",
    ErrorCode.FORBIDDEN: "Access to this resource is forbidden",
    ErrorCode.USER_NOT_FOUND: "User not found",
    ErrorCode.INVALID_INPUT: "Invalid input provided",
    ErrorCode.MISSING_REQUIRED_FIELD: "Required field is missing",
    ErrorCode.INVALID_EMAIL: "Invalid email address",
    ErrorCode.INVALID_WALLET_ADDRESS: "Invalid wallet address",
    ErrorCode.INVALID_COORDINATES: "Invalid coordinates provided",
    ErrorCode.FILE_TOO_LARGE: "File size exceeds maximum limit",
    ErrorCode.INVALID_FILE_TYPE: "File type is not supported",
    ErrorCode.UPLOAD_FAILED: "File upload failed",
    ErrorCode.NETWORK_ERROR: "Network connection error",
    ErrorCode.TIMEOUT: "Request timeout",
    ErrorCode.RATE_LIMITED: "Too many requests from this IP, please try again later.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred",
    ErrorCode.DATABASE_ERROR: "Database operation failed",
    ErrorCode.CONTRACT_ERROR: "Smart contract interaction failed",
}


def message_for(code: ErrorCode) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN_ERROR])


class ApiError(HTTPException):
    """HTTPException that also carries one of the ErrorCode values."""

    def __init__(self, status_code: int, message: str, code: ErrorCode = ErrorCode.UNKNOWN_ERROR):
        super().__init__(status_code=status_code, detail=message)
        self.code = code

    @classmethod
    def bad_request(cls, message: str, code: ErrorCode = ErrorCode.INVALID_INPUT) -> "ApiError":
        return cls(status.HTTP_400_BAD_REQUEST, message, code)

    @classmethod
    def unauthorized(cls, message: str, code: ErrorCode = ErrorCode.UNAUTHORIZED) -> "ApiError":
        return cls(status.HTTP_401_UNAUTHORIZED, message, code)

    @classmethod
    def forbidden(cls, message: str, code: ErrorCode = ErrorCode.FORBIDDEN) -> "ApiError":
        return cls(status.HTTP_403_FORBIDDEN, message, code)

    @classmethod
    def not_found(cls, message: str, code: ErrorCode) -> "ApiError":
        return cls(status.HTTP_404_NOT_FOUND, message, code)


# ── Service-level failures ────────────────────────────────────────────────────
class DeedChainError(Exception):
    code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ChainError(DeedChainError):
    code = ErrorCode.CONTRACT_ERROR


class IPFSError(DeedChainError):
    code = ErrorCode.UPLOAD_FAILED


class EmailError(DeedChainError):
    code = ErrorCode.NETWORK_ERROR
