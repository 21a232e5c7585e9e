"""
scripts/seed.py: Development Data
===================================
Fills the database with a small DeedChain to click around in: an admin, two
verifiers, two citizens, four properties, their verifications and two
transfers. Re-running updates the same rows instead of adding new ones.

    python -m scripts.seed
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy import func, select

from config import settings
from core.constants import PropertyStatus, TransferStatus, UserRole
from db.models import Property, Transfer, User, Verification
from db.session import init_db, session_scope

logger = logging.getLogger("deedchain.seed")

VERIFIER_1 = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
VERIFIER_2 = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
CITIZEN_1 = "0x90f79bf6eb2c4f870365e785982e1f101e93b906"
CITIZEN_2 = "0x15d34aaf54267db7d7c367839aaf71a00a2c6a65"

VERIFIED_COMMENT = "All documents verified and property boundaries confirmed. Title deed is authentic."


async def _upsert_user(db, wallet_address: str, name: str, email: str, role: UserRole) -> User:
    wallet_address = wallet_address.lower()
    result = await db.execute(select(User).where(User.wallet_address == wallet_address))
    user = result.scalars().first()
    if user is None:
        user = User(wallet_address=wallet_address)
        db.add(user)
    user.name, user.email, user.role = name, email, role
    await db.flush()
    return user


async def _upsert_property(db, owner: User, **fields) -> Property:
    result = await db.execute(select(Property).where(Property.title == fields["title"]))
    prop = result.scalars().first()
    if prop is None:
        prop = Property(title=fields["title"], owner_id=owner.id)
        db.add(prop)
    for key, value in fields.items():
        setattr(prop, key, value)
    prop.owner_id = owner.id
    await db.flush()
    return prop


async def _ensure_verification(db, prop: Property, verifier: User):
    result = await db.execute(
        select(Verification).where(
            Verification.property_id == prop.id, Verification.verifier_id == verifier.id
        )
    )
    if result.scalars().first() is None:
        db.add(Verification(
            property_id=prop.id, verifier_id=verifier.id, approved=True, comments=VERIFIED_COMMENT,
        ))


async def _upsert_transfer(db, transfer_id: str, prop: Property, sender: User, recipient: User, **fields):
    transfer = await db.get(Transfer, transfer_id)
    if transfer is None:
        transfer = Transfer(id=transfer_id)
        db.add(transfer)
    transfer.property_id = prop.id
    transfer.from_user_id = sender.id
    transfer.to_user_id = recipient.id
    for key, value in fields.items():
        setattr(transfer, key, value)


async def seed() -> dict:
    async with session_scope() as db:
        admin = await _upsert_user(
            db, settings.ADMIN_WALLET_ADDRESS, "DeedChain Admin", "admin@deedchain.com", UserRole.ADMIN
        )
        verifier = await _upsert_user(
            db, VERIFIER_1, "Land Verification Officer 1", "verifier1@deedchain.com", UserRole.VERIFIER
        )
        await _upsert_user(
            db, VERIFIER_2, "Land Verification Officer 2", "verifier2@deedchain.com", UserRole.VERIFIER
        )
        john = await _upsert_user(db, CITIZEN_1, "John Property Owner", "john@example.com", UserRole.CITIZEN)
        sarah = await _upsert_user(db, CITIZEN_2, "Sarah Land Investor", "sarah@example.com", UserRole.CITIZEN)

        karen = await _upsert_property(
            db, john,
            title="Residential Plot - Karen",
            description="Residential plot in Karen with a clear title deed, ready for a family home.",
            location="Karen, Nairobi, Kenya",
            coordinates="-1.3192,36.7117",
            size=1000,
            ipfs_hash="QmSampleHash1KarenResidential",
            token_id="1001",
            status=PropertyStatus.VERIFIED,
        )
        await _upsert_property(
            db, john,
            title="Commercial Land - Westlands",
            description="Commercial land for office development in the Westlands business district.",
            location="Westlands, Nairobi, Kenya",
            coordinates="-1.2659,36.8060",
            size=500,
            ipfs_hash="QmSampleHash2WestlandsCommercial",
            token_id=None,
            status=PropertyStatus.PENDING,
        )
        # Sarah has offered this one to John; the transfer below is still pending
        kiambu = await _upsert_property(
            db, sarah,
            title="Agricultural Land - Kiambu",
            description="Fertile agricultural land with water access.",
            location="Kiambu County, Kenya",
            coordinates="-1.1667,36.8333",
            size=5000,
            ipfs_hash="QmSampleHash3KiambuAgricultural",
            token_id="1002",
            status=PropertyStatus.TRANSFERRING,
        )
        await _upsert_property(
            db, admin,
            title="Beach Plot - Diani",
            description="Beachfront property with ocean views.",
            location="Diani Beach, Kwale County, Kenya",
            coordinates="-4.3000,39.5833",
            size=800,
            ipfs_hash="QmSampleHash4DianiBeach",
            token_id=None,
            status=PropertyStatus.PENDING,
        )

        await _ensure_verification(db, karen, verifier)
        await _ensure_verification(db, kiambu, verifier)

        # John bought the Karen plot from Sarah
        await _upsert_transfer(
            db, "sample-transfer-1", karen, sarah, john,
            status=TransferStatus.COMPLETED,
            tx_hash="0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef",
            completed_at=datetime(2024, 1, 15),
        )
        await _upsert_transfer(
            db, "sample-transfer-2", kiambu, sarah, john,
            status=TransferStatus.PENDING,
            tx_hash=None,
            completed_at=None,
        )
        await db.flush()

        counts = {}
        for label, model in (("users", User), ("properties", Property),
                             ("verifications", Verification), ("transfers", Transfer)):
            counts[label] = (await db.execute(select(func.count(model.id)))).scalar_one()

    logger.info(f"Database seeded: {counts}")
    return counts


async def main():
    await init_db()
    await seed()


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    asyncio.run(main())
