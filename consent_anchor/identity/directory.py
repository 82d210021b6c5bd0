"""
User directory for consent-anchor
Maps user ids and emails to the ledger addresses used at activation
"""

from typing import Dict, Optional
from datetime import datetime, UTC
import structlog
from pydantic import BaseModel, Field
from sqlalchemy import create_engine, Column, String, DateTime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from ..config import get_config
from ..exceptions import ValidationError
from ..utils.ids import generate_user_id
from ..utils.validators import validate_email, validate_user_id, validate_wallet_address, is_email_like

logger = structlog.get_logger(__name__)

Base = declarative_base()


class UserRecord(BaseModel):
    """Directory entry for a participant"""
    id: str = Field(default_factory=generate_user_id)
    email: str
    wallet_address: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class UserDB(Base):
    """SQLAlchemy model for directory entries"""
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    wallet_address = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class UserDirectory:
    """Identity resolver backed by the relational store"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_config().database_url
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    def _from_db_model(self, row: UserDB) -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            wallet_address=row.wallet_address,
            created_at=row.created_at,
        )

    def _store_user(self, user: UserRecord) -> None:
        with self.SessionLocal() as session:
            session.add(UserDB(
                id=user.id,
                email=user.email,
                wallet_address=user.wallet_address,
                created_at=user.created_at,
            ))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ValidationError("email is already registered", field="email")

    def register_user(self, email: str, wallet_address: str,
                      user_id: Optional[str] = None) -> UserRecord:
        """Add a participant to the directory"""
        user = UserRecord(
            email=validate_email(email),
            wallet_address=validate_wallet_address(wallet_address),
        )
        if user_id is not None:
            user.id = validate_user_id(user_id)

        self._store_user(user)

        logger.info("Registered user", user_id=user.id)
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Look up a user by id"""
        with self.SessionLocal() as session:
            row = session.query(UserDB).filter_by(id=user_id).first()
            return self._from_db_model(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        """Look up a user by (case-insensitive) email"""
        with self.SessionLocal() as session:
            row = session.query(UserDB).filter_by(email=email.strip().lower()).first()
            return self._from_db_model(row) if row else None

    def find_user(self, ref: str) -> Optional[UserRecord]:
        """Resolve a partner reference given as an email or a user id"""
        if not ref or not ref.strip():
            return None
        if is_email_like(ref):
            return self.get_user_by_email(ref)
        return self.get_user(ref.strip())

    def resolve_address(self, user_id: str) -> Optional[str]:
        """Ledger address for a user, or None if the user is unknown"""
        user = self.get_user(user_id)
        return user.wallet_address if user else None


class InMemoryUserDirectory(UserDirectory):
    """In-memory directory for testing"""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}

    def _store_user(self, user: UserRecord) -> None:
        if user.id in self.users or self.get_user_by_email(user.email):
            raise ValidationError("email is already registered", field="email")
        self.users[user.id] = user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.strip().lower()
        for user in self.users.values():
            if user.email == email:
                return user
        return None
