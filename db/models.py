"""
db/models.py: Database Table Definitions
==========================================
Each class = one table.
Rows are never deleted; a property's lifecycle lives in its status column.
The chain holds the deed NFT, IPFS holds the metadata; the DB holds the
index that ties wallets, properties, verifications and transfers together.
"""

import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, Boolean, Text, Float, ForeignKey, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from db.session import Base
from core.constants import UserRole, PropertyStatus, TransferStatus


def new_uuid():
    return str(uuid.uuid4())


# ── 1. Users ──────────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    wallet_address: Mapped[str] = mapped_column(String(42), unique=True, index=True, nullable=False)  # lowercase
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, native_enum=False), default=UserRole.CITIZEN)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owned_properties: Mapped[list["Property"]] = relationship(back_populates="owner")
    verifications: Mapped[list["Verification"]] = relationship(back_populates="verifier")
    sent_transfers: Mapped[list["Transfer"]] = relationship(
        back_populates="from_user", foreign_keys="Transfer.from_user_id"
    )
    received_transfers: Mapped[list["Transfer"]] = relationship(
        back_populates="to_user", foreign_keys="Transfer.to_user_id"
    )


# ── 2. Properties ─────────────────────────────────────────────────────────────
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    coordinates: Mapped[str] = mapped_column(String(100), nullable=False)   # "lat,lng"
    size: Mapped[float] = mapped_column(Float, nullable=False)
    ipfs_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # metadata CID
    token_id: Mapped[Optional[str]] = mapped_column(String(78), nullable=True)    # deed NFT id (uint256)
    status: Mapped[PropertyStatus] = mapped_column(
        Enum(PropertyStatus, native_enum=False), default=PropertyStatus.PENDING, index=True
    )
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner: Mapped["User"] = relationship(back_populates="owned_properties")
    verifications: Mapped[list["Verification"]] = relationship(
        back_populates="property", order_by="Verification.created_at.desc()"
    )
    transfers: Mapped[list["Transfer"]] = relationship(
        back_populates="property", order_by="Transfer.created_at.desc()"
    )


# ── 3. Verifications ──────────────────────────────────────────────────────────
class Verification(Base):
    __tablename__ = "verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), nullable=False, index=True)
    verifier_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="verifications")
    verifier: Mapped["User"] = relationship(back_populates="verifications")


# ── 4. Transfers ──────────────────────────────────────────────────────────────
class Transfer(Base):
    __tablename__ = "transfers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    property_id: Mapped[str] = mapped_column(ForeignKey("properties.id"), nullable=False, index=True)
    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[TransferStatus] = mapped_column(
        Enum(TransferStatus, native_enum=False), default=TransferStatus.PENDING
    )
    tx_hash: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    property: Mapped["Property"] = relationship(back_populates="transfers")
    from_user: Mapped["User"] = relationship(back_populates="sent_transfers", foreign_keys=[from_user_id])
    to_user: Mapped["User"] = relationship(back_populates="received_transfers", foreign_keys=[to_user_id])
