"""Seller account management.

Accounts hold the encrypted marketplace API token that the adapters use.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from creative_rotator.adapters.marketplace.base import MarketplaceAdapter
from creative_rotator.adapters.marketplace.stub import StubMarketplaceAdapter
from creative_rotator.adapters.marketplace.wildberries import WildberriesAdapter
from creative_rotator.config import settings
from creative_rotator.db.models import AccountModel
from creative_rotator.domain.errors import NotFoundError, ValidationError
from creative_rotator.logging import get_logger
from creative_rotator.services.encryption import decrypt_token, encrypt_token

logger = get_logger(__name__)


class AccountNotFoundError(NotFoundError):
    """Raised when an account is not found."""

    pass


class AccountError(ValidationError):
    """Raised for invalid account operations."""

    pass


def create_account(session: Session, label: str, api_token: str) -> AccountModel:
    """Store a seller account with its API token encrypted.

    Raises:
        AccountError: If the label is blank or already used, or the token is empty.
    """
    label = label.strip()
    if not label:
        raise AccountError("Account label must not be empty")
    if not api_token.strip():
        raise AccountError("API token must not be empty")

    existing = session.execute(
        select(AccountModel).where(AccountModel.label == label)
    ).scalar_one_or_none()
    if existing:
        raise AccountError(f"Account with label '{label}' already exists")

    account = AccountModel(
        label=label,
        encrypted_api_token=encrypt_token(api_token.strip()),
        is_active=True,
    )
    session.add(account)
    session.flush()

    logger.info("account_created", account_id=str(account.id), label=label)
    return account


def get_account_by_id(session: Session, account_id: UUID) -> AccountModel:
    account = session.get(AccountModel, account_id)
    if account is None:
        raise AccountNotFoundError(f"Account not found: {account_id}")
    return account


def get_account_by_label(session: Session, label: str) -> AccountModel:
    account = session.execute(
        select(AccountModel).where(AccountModel.label == label)
    ).scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(f"Account not found: {label}")
    return account


def list_accounts(session: Session, active_only: bool = False) -> list[AccountModel]:
    query = select(AccountModel).order_by(AccountModel.created_at)
    if active_only:
        query = query.where(AccountModel.is_active.is_(True))
    return list(session.execute(query).scalars().all())


def deactivate_account(session: Session, account_id: UUID) -> AccountModel:
    account = get_account_by_id(session, account_id)
    account.is_active = False
    logger.info("account_deactivated", account_id=str(account_id))
    return account


def build_marketplace_adapter(
    session: Session,
    account_id: UUID,
    provider: str | None = None,
) -> MarketplaceAdapter:
    """Create the configured marketplace adapter for an account.

    Raises:
        AccountNotFoundError: Unknown account.
        AccountError: Account is deactivated.
        EncryptionError: Stored token cannot be decrypted.
    """
    provider = provider or settings.marketplace_provider
    account = get_account_by_id(session, account_id)
    if not account.is_active:
        raise AccountError(f"Account {account_id} is deactivated")

    if provider == "stub":
        return StubMarketplaceAdapter()
    if provider == "wildberries":
        return WildberriesAdapter(api_token=decrypt_token(account.encrypted_api_token))
    raise ValueError(f"Unknown marketplace provider: {provider}")
