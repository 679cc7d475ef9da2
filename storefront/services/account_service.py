"""User accounts, addresses and reviews."""
import logging
from typing import Any, Dict, List, Optional, Tuple

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from storefront.auth import Identity, check_password, create_access_token, hash_password
from storefront.config import Settings
from storefront.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from storefront.models import Address, Product, Review, Role, User
from storefront.monitoring import auth_attempts_counter, auth_failures_counter
from storefront.services.catalog_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, page_count
from storefront.services.identity_provider import GoogleUserInfo

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("label", "name", "phone", "street", "city", "state", "postal_code", "country")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    """Service for registration, login and everything hanging off a user."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.tracer = trace.get_tracer(__name__)

    # --- Authentication ---

    def register(self, db: Session, name: str, email: str, password: str) -> Tuple[User, str]:
        """
        Create a password account.

        Args:
            db: Database session
            name: Display name
            email: Login email, must be unused
            password: Plain-text password, at least 6 characters

        Returns:
            The new user and a bearer token for it

        Raises:
            ValidationError: If the password is too short
            ConflictError: If the email is already registered
        """
        email = normalize_email(email)
        if len(password) < 6:
            raise ValidationError("Password must be at least 6 characters", field="password")

        if self._find_by_email(db, email) is not None:
            raise ConflictError("Email already registered")

        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password, rounds=self.settings.bcrypt_rounds),
            role=Role.CUSTOMER.value,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email already registered")

        logger.info("User registered", extra={"user_id": user.id})
        return user, create_access_token(user, self.settings)

    def login(self, db: Session, email: str, password: str) -> Tuple[User, str]:
        """
        Check credentials and issue a token.

        Raises:
            AuthenticationError: If the credentials don't match, or the
                account only signs in with Google
        """
        auth_attempts_counter.add(1, {"type": "password"})
        user = self._find_by_email(db, normalize_email(email))
        if user is None:
            auth_failures_counter.add(1, {"reason": "unknown_email"})
            raise AuthenticationError("Invalid email or password")

        if not user.password_hash:
            auth_failures_counter.add(1, {"reason": "google_only"})
            raise AuthenticationError("Please sign in with Google")

        if not check_password(password, user.password_hash):
            auth_failures_counter.add(1, {"reason": "bad_password"})
            logger.warning("Login failed: bad password", extra={"user_id": user.id})
            raise AuthenticationError("Invalid email or password")

        logger.info("User logged in", extra={"user_id": user.id})
        return user, create_access_token(user, self.settings)

    def google_login(self, db: Session, info: GoogleUserInfo) -> Tuple[User, str]:
        """
        Sign in with a verified Google profile.

        Looks the user up by Google id, then by email (linking the Google
        account to an existing password account), and creates a customer
        otherwise. Name and avatar are refreshed from Google each time.

        Returns:
            The user and a bearer token for it
        """
        auth_attempts_counter.add(1, {"type": "google"})
        user = db.execute(select(User).where(User.google_id == info.id)).scalars().first()
        if user is None:
            user = self._find_by_email(db, normalize_email(info.email))
            if user is not None:
                user.google_id = info.id
                logger.info("Linked Google account to existing user", extra={"user_id": user.id})

        if user is None:
            user = User(
                email=normalize_email(info.email),
                name=info.name,
                avatar=info.picture,
                google_id=info.id,
                role=Role.CUSTOMER.value,
            )
            db.add(user)
            logger.info("Creating user from Google profile", extra={"google_id": info.id})
        else:
            user.name = info.name or user.name
            user.avatar = info.picture or user.avatar

        db.commit()
        return user, create_access_token(user, self.settings)

    def get_user(self, db: Session, identity: Identity) -> User:
        user = db.get(User, identity.user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    def refresh_token(self, db: Session, identity: Identity) -> str:
        """Issue a fresh token carrying the user's current role."""
        return create_access_token(self.get_user(db, identity), self.settings)

    def update_profile(
        self,
        db: Session,
        identity: Identity,
        name: Optional[str] = None,
        avatar: Optional[str] = None
    ) -> User:
        user = self.get_user(db, identity)
        if name:
            user.name = name.strip()
        if avatar is not None:
            user.avatar = avatar
        db.commit()
        return user

    def _find_by_email(self, db: Session, email: str) -> Optional[User]:
        return db.execute(
            select(User).where(func.lower(User.email) == email)
        ).scalars().first()

    # --- Addresses ---

    def list_addresses(self, db: Session, identity: Identity) -> List[Address]:
        return db.execute(
            select(Address)
            .where(Address.user_id == identity.user_id)
            .order_by(Address.is_default.desc(), Address.created_at)
        ).scalars().all()

    def create_address(self, db: Session, identity: Identity, data: Dict[str, Any]) -> Address:
        """Add an address; a new default clears the previous one."""
        if data.get("is_default"):
            self._clear_default(db, identity.user_id)

        address = Address(
            user_id=identity.user_id,
            is_default=bool(data.get("is_default")),
            **{field: data[field] for field in ADDRESS_FIELDS if data.get(field)},
        )
        db.add(address)
        db.commit()
        return address

    def update_address(self, db: Session, identity: Identity, address_id: str, data: Dict[str, Any]) -> Address:
        address = self._get_owned_address(db, identity, address_id)
        for field in ADDRESS_FIELDS:
            if data.get(field):
                setattr(address, field, data[field])
        if data.get("is_default") is True:
            self._clear_default(db, identity.user_id)
            address.is_default = True
        elif data.get("is_default") is False:
            address.is_default = False
        db.commit()
        return address

    def delete_address(self, db: Session, identity: Identity, address_id: str) -> None:
        address = self._get_owned_address(db, identity, address_id)
        db.delete(address)
        db.commit()

    def _get_owned_address(self, db: Session, identity: Identity, address_id: str) -> Address:
        address = db.execute(
            select(Address).where(Address.id == address_id, Address.user_id == identity.user_id)
        ).scalars().first()
        if address is None:
            raise NotFoundError("Address")
        return address

    def _clear_default(self, db: Session, user_id: str) -> None:
        db.execute(
            update(Address)
            .where(Address.user_id == user_id, Address.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )

    # --- Reviews ---

    def create_review(
        self,
        db: Session,
        identity: Identity,
        product_id: str,
        rating: int,
        comment: Optional[str] = ""
    ) -> Review:
        """
        Review a product, once per user.

        Raises:
            ValidationError: If the rating is outside 1..5
            NotFoundError: If the product doesn't exist
            ConflictError: If the user already reviewed it
        """
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating")
        if db.get(Product, product_id) is None:
            raise NotFoundError("Product")

        existing = db.execute(
            select(Review.id).where(Review.user_id == identity.user_id, Review.product_id == product_id)
        ).first()
        if existing is not None:
            raise ConflictError("You have already reviewed this product")

        review = Review(user_id=identity.user_id, product_id=product_id, rating=rating, comment=comment or "")
        db.add(review)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("You have already reviewed this product")

        logger.info("Review created", extra={
            "user_id": identity.user_id,
            "product_id": product_id,
            "rating": rating
        })
        return db.execute(
            select(Review).where(Review.id == review.id).options(selectinload(Review.user))
        ).scalars().one()

    # --- Admin ---

    def list_users(self, db: Session, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        total = db.execute(select(func.count()).select_from(User)).scalar_one()
        users = db.execute(
            select(User).order_by(User.created_at.desc(), User.id).offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        return {
            "users": users,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": page_count(total, limit),
        }

    def update_role(self, db: Session, user_id: str, role: str) -> User:
        """
        Change a user's role (admin).

        Raises:
            ValidationError: If the role isn't ``customer`` or ``admin``
            NotFoundError: If the user doesn't exist
        """
        try:
            new_role = Role(role)
        except ValueError:
            raise ValidationError("Invalid role", field="role")

        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        user.role = new_role.value
        db.commit()
        logger.info("User role updated", extra={"user_id": user.id, "role": new_role.value})
        return user
