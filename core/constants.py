"""
core/constants.py: Roles, statuses and platform limits
"""

import enum


class UserRole(str, enum.Enum):
    CITIZEN = "CITIZEN"
    VERIFIER = "VERIFIER"
    ADMIN = "ADMIN"


class PropertyStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    TRANSFERRING = "TRANSFERRING"


class TransferStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


ALLOWED_FILE_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/jpg",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

WALLET_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"

# Queue and job names
VERIFICATION_QUEUE = "property verification"
TRANSFER_QUEUE = "property transfer"
IPFS_QUEUE = "ipfs upload"

VERIFY_PROPERTY_JOB = "verify-property"
EXECUTE_TRANSFER_JOB = "execute-transfer"
UPLOAD_TO_IPFS_JOB = "upload-to-ipfs"

TRANSFER_CONFIRM_MESSAGE = "Confirm property transfer: {property_id}"
