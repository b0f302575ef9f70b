import uuid

from loguru import logger
from sqlmodel import Session, select
from app.db.core import engine
from app.db.schema import Supplier, UserProfile, VerificationTier


# 1. Demo suppliers. Category labels must match MatchingConfig.category_map values.
DEMO_SUPPLIERS = [
    {
        "name": "Harare Building Supplies",
        "location": "Harare",
        "physical_address": "45 Seke Road, Graniteside, Harare",
        "material_categories": ["Cement & Concrete", "Bricks & Blocks", "Aggregates & Sand"],
        "verification_status": VerificationTier.TRUSTED,
        "rating": 4.5,
        "contact_email": "sales@hbs.example.co.zw",
        "contact_phone": "+263771000001",
    },
    {
        "name": "Msasa Hardware",
        "location": "Harare",
        "physical_address": "12 Mutare Road, Msasa, Harare",
        "material_categories": ["Cement & Concrete", "Hardware & Fasteners", "Steel & Metal"],
        "verification_status": VerificationTier.VERIFIED,
        "rating": 4.0,
        "contact_email": "quotes@msasa.example.co.zw",
        "contact_phone": "+263771000002",
    },
    {
        "name": "Bulawayo Roofing & Timber",
        "location": "Bulawayo",
        "physical_address": "8 Khami Road, Belmont, Bulawayo",
        "material_categories": ["Roofing Materials", "Timber & Wood"],
        "verification_status": VerificationTier.PREMIUM,
        "rating": 4.8,
        "contact_email": "orders@brt.example.co.zw",
        "contact_phone": "+263771000003",
    },
    {
        "name": "Chitungwiza Sand & Stone",
        "location": "Chitungwiza",
        "physical_address": "Unit L, Chitungwiza",
        "material_categories": ["Aggregates & Sand"],
        "verification_status": VerificationTier.PENDING,
        "rating": None,
        "contact_email": None,
        "contact_phone": "+263771000004",
    },
]


def seed_suppliers(session: Session):
    """Creates demo suppliers (and a linked account profile each) if they don't exist."""
    logger.info("--- Seeding Suppliers ---")

    for data in DEMO_SUPPLIERS:
        supplier = session.exec(
            select(Supplier).where(Supplier.name == data["name"])).first()
        if supplier:
            logger.info(f"Existing Supplier: {data['name']}")
            continue

        user_id = uuid.uuid4()
        session.add(UserProfile(
            id=user_id,
            full_name=data["name"],
            email=data["contact_email"],
            phone_number=data["contact_phone"],
            notify_email=data["contact_email"] is not None,
            notify_whatsapp=True,
        ))
        session.add(Supplier(user_id=user_id, **data))
        session.flush()
        logger.info(f"Created Supplier: {data['name']}")


def main():
    # Ensure tables exist (if not using Alembic)
    # SQLModel.metadata.create_all(engine)

    with Session(engine) as session:
        try:
            seed_suppliers(session)

            session.commit()
            logger.info("Database seeding completed successfully.")

        except Exception as e:
            session.rollback()
            logger.error(f"Seeding failed: {e}")
            raise e


if __name__ == "__main__":
    main()
