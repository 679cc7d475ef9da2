"""Database connection and session management."""
import logging
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.auth import hash_password
from storefront.config import Settings
from storefront.models import (
    Base,
    Category,
    Product,
    ProductImage,
    ProductVariant,
    Role,
    User,
)

logger = logging.getLogger(__name__)


def create_db_engine(settings: Settings) -> Engine:
    """
    Create the SQLAlchemy engine for the configured database.

    SQLite is used by the test suite; an in-memory database has to share a
    single connection across threads or every session would see an empty
    database.

    Args:
        settings: Service settings

    Returns:
        Engine bound to ``settings.database_url``
    """
    url = settings.database_url
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            # SQLite ignores ON DELETE rules unless asked
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,
        pool_timeout=30,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory used for every request."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine, session_factory: sessionmaker, settings: Settings) -> None:
    """
    Verify connectivity, create tables and optionally seed demo data.

    Raises:
        sqlalchemy.exc.OperationalError: If the database is unreachable
    """
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")

    if settings.seed_demo_data:
        seed_demo_data(session_factory)


def seed_demo_data(session_factory: sessionmaker) -> None:
    """Seed a small catalog and an admin account into an empty database."""
    db = session_factory()
    try:
        if db.query(Product).count() > 0:
            return

        electronics = Category(name="Electronics", slug="electronics", icon="laptop")
        fashion = Category(name="Fashion", slug="fashion", icon="shirt")
        home = Category(name="Home & Living", slug="home-living", icon="home")
        db.add_all([electronics, fashion, home])
        db.flush()

        products = [
            Product(name="Laptop Pro 14", slug="laptop-pro-14", base_price=15999000,
                    stock=50, category_id=electronics.id, is_featured=True,
                    description="14-inch laptop with all-day battery"),
            Product(name="Wireless Headphones", slug="wireless-headphones", base_price=899000,
                    stock=200, category_id=electronics.id,
                    description="Noise-cancelling over-ear headphones"),
            Product(name="Mechanical Keyboard", slug="mechanical-keyboard", base_price=749000,
                    stock=150, category_id=electronics.id),
            Product(name="Cotton T-Shirt", slug="cotton-t-shirt", base_price=129000,
                    stock=300, category_id=fashion.id, is_featured=True,
                    description="Everyday crew-neck tee"),
            Product(name="Ceramic Mug", slug="ceramic-mug", base_price=59000,
                    stock=120, category_id=home.id),
        ]
        db.add_all(products)
        db.flush()

        tshirt = products[3]
        db.add_all([
            ProductVariant(product_id=tshirt.id, name="Size", value=size,
                           price_modifier=modifier, stock=100, sku=f"TS-{size}")
            for size, modifier in (("M", 0), ("L", 0), ("XL", 10000))
        ])
        db.add_all([
            ProductImage(product_id=product.id, url=f"https://picsum.photos/seed/{product.slug}/600/600",
                         position=0, is_primary=True)
            for product in products
        ])

        if db.query(User).filter(User.email == "admin@nexora.id").first() is None:
            db.add(User(
                email="admin@nexora.id",
                name="Store Admin",
                password_hash=hash_password("admin123", rounds=12),
                role=Role.ADMIN.value,
            ))

        db.commit()
        logger.info("Seeded database with demo catalog", extra={
            "product_count": len(products)
        })
    finally:
        db.close()
