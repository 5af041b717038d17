"""Database connection and session management."""
import logging
import os
from datetime import datetime, timedelta
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from config import DATABASE_URL
from models import Base, Category, Coupon, Product, User

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_catalog(db: Session) -> None:
    """Insert demo categories, products and a welcome coupon into an empty store."""
    if db.query(Product).count() > 0:
        return

    electronics = Category(name="Electronics", slug="electronics", description="Gadgets and devices")
    furniture = Category(name="Furniture", slug="furniture", description="Home office furniture")
    db.add_all([electronics, furniture])
    db.flush()

    catalog = [
        ("Laptop", 999.99, 50, electronics),
        ("Smartphone", 599.99, 100, electronics),
        ("Headphones", 99.99, 200, electronics),
        ("Desk Chair", 199.99, 30, furniture),
        ("Monitor", 299.99, 75, electronics),
        ("Keyboard", 79.99, 150, electronics),
    ]
    db.add_all([
        Product(
            name=name,
            slug=name.lower().replace(" ", "-"),
            sku=f"SKU-{index:04d}",
            price=price,
            stock=stock,
            category_id=category.id,
            is_featured=index < 3,
        )
        for index, (name, price, stock, category) in enumerate(catalog)
    ])

    now = datetime.utcnow()
    db.add(Coupon(
        code="WELCOME10",
        description="10% off your first order",
        discount_type="percentage",
        discount_value=10,
        usage_per_customer=1,
        valid_from=now,
        valid_until=now + timedelta(days=365),
    ))
    db.commit()
    logger.info("Seeded database with sample catalog")


def seed_admin(db: Session) -> None:
    """Create the bootstrap administrator from ADMIN_EMAIL / ADMIN_PASSWORD."""
    from auth import hash_password

    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        return
    if db.query(User).filter(User.email == email.lower()).first():
        return

    db.add(User(
        name="Administrator",
        email=email.lower(),
        password_hash=hash_password(password),
        role="admin",
        email_verified=True
    ))
    db.commit()
    logger.info("Created bootstrap administrator", extra={"email": email.lower()})


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_catalog(db)
        seed_admin(db)
    finally:
        db.close()
