"""Account identity resolution and sync-mode selection."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.aggregator.client import AggregatorClient
from ledgersync.models.bank_account import BankAccount
from ledgersync.models.base import utcnow
from ledgersync.repositories.bank_account import BankAccountRepository
from ledgersync.schemas.aggregator import ProviderAccount
from ledgersync.schemas.internal import AccountSyncResult, DuplicateCheck, SyncModeResolution

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_SCOPE = "balances:read accounts:read"
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


class AccountResolver:
    """Decide how to sync a user and whether incoming accounts already exist."""

    def __init__(self, db: AsyncSession, client: AggregatorClient | None = None):
        self.db = db
        self.client = client
        self.accounts = BankAccountRepository(db)

    async def resolve_sync_mode(
        self,
        user_id: UUID,
        credentials_id: str | None = None,
        is_consent_refresh: bool = False,
    ) -> SyncModeResolution:
        """Pick new_connection, token_refresh or consent_refresh.

        For a consent refresh, the accounts under ``credentials_id`` (all of
        the user's accounts when it is not given) are returned together with
        the latest ``last_refreshed_at`` among them.
        """
        if is_consent_refresh:
            if credentials_id:
                existing = await self.accounts.list_by_credentials(user_id, credentials_id)
            else:
                existing = await self.accounts.list_by_user(user_id)
            refreshed = [a.last_refreshed_at for a in existing if a.last_refreshed_at is not None]
            resolution = SyncModeResolution(
                mode="consent_refresh",
                existing_accounts=existing,
                last_sync_date=max(refreshed) if refreshed else None,
            )
        elif await self.accounts.count_by_user(user_id) > 0:
            resolution = SyncModeResolution(mode="token_refresh")
        else:
            resolution = SyncModeResolution(mode="new_connection")

        logger.info(
            "Resolved sync mode",
            extra={
                "user_id": str(user_id),
                "mode": resolution.mode,
                "existing_accounts": len(resolution.existing_accounts),
            },
        )
        return resolution

    async def detect_duplicate(
        self,
        user_id: UUID,
        incoming: ProviderAccount,
        credentials_id: str | None = None,
        is_consent_refresh: bool = False,
    ) -> DuplicateCheck:
        """Find an existing account for ``incoming``, checking rules in priority order."""
        existing = await self.accounts.find_by_external_id(user_id, incoming.id)
        if existing is not None:
            return DuplicateCheck(is_duplicate=True, existing_account=existing, reason="same_tink_account")

        if incoming.financial_institution_id and incoming.iban:
            existing = await self.accounts.find_by_institution_and_iban(
                user_id, incoming.financial_institution_id, incoming.iban
            )
            if existing is not None:
                return DuplicateCheck(
                    is_duplicate=True,
                    existing_account=existing,
                    reason="same_institution_and_identifiers",
                )

        # Accounts legitimately share credentials during onboarding
        if is_consent_refresh and credentials_id:
            existing = await self.accounts.find_by_credentials_and_external_id(
                user_id, credentials_id, incoming.id
            )
            if existing is not None:
                return DuplicateCheck(is_duplicate=True, existing_account=existing, reason="same_credentials")

        return DuplicateCheck(is_duplicate=False)

    async def sync_accounts(
        self,
        user_id: UUID,
        access_token: str,
        scope: str | None = None,
        expires_in: int | None = None,
        credentials_id: str | None = None,
        is_consent_refresh: bool = False,
        now: datetime | None = None,
        resolution: SyncModeResolution | None = None,
    ) -> AccountSyncResult:
        """Fetch the provider's accounts and create or update local rows.

        Args:
            user_id: Owner of the accounts
            access_token: User token for the aggregator
            scope: Token scope to record
            expires_in: Token lifetime in seconds, if the token endpoint gave one
            credentials_id: Aggregator credentials the accounts were linked with
            is_consent_refresh: Whether this follows a consent renewal
            now: Current time (for tests)
            resolution: Mode already resolved by the caller, if any

        Returns:
            AccountSyncResult with the mode and the stored accounts
        """
        if self.client is None:
            raise ValueError("AccountResolver needs an AggregatorClient to sync accounts")

        now = now or utcnow()
        if resolution is None:
            resolution = await self.resolve_sync_mode(user_id, credentials_id, is_consent_refresh)
        provider_accounts = await self.client.list_accounts(access_token)
        result = AccountSyncResult(mode=resolution.mode)

        for incoming in provider_accounts:
            check = await self.detect_duplicate(user_id, incoming, credentials_id, is_consent_refresh)
            if check.is_duplicate:
                account = check.existing_account
                self._apply_provider_fields(account, incoming, access_token, scope, credentials_id)
                if expires_in:
                    account.token_expires_at = now + timedelta(seconds=expires_in)
                result.updated += 1
                logger.info(
                    "Updated existing account",
                    extra={"account_id": str(account.id), "reason": check.reason},
                )
            else:
                account = BankAccount(user_id=user_id, external_account_id=incoming.id)
                self._apply_provider_fields(account, incoming, access_token, scope, credentials_id)
                account.last_refreshed_at = incoming.last_refreshed
                account.token_expires_at = now + (
                    timedelta(seconds=expires_in) if expires_in else DEFAULT_TOKEN_LIFETIME
                )
                self.db.add(account)
                result.created += 1
            result.accounts.append(account)

        await self.db.flush()
        await self.db.commit()
        logger.info(
            "Accounts synced",
            extra={"user_id": str(user_id), "created_count": result.created, "updated_count": result.updated},
        )
        return result

    @staticmethod
    def _apply_provider_fields(
        account: BankAccount,
        incoming: ProviderAccount,
        access_token: str,
        scope: str | None,
        credentials_id: str | None,
    ) -> None:
        account.account_name = incoming.name or account.account_name or incoming.id
        account.account_type = incoming.type or account.account_type or "UNDEFINED"
        if incoming.financial_institution_id:
            account.institution_id = incoming.financial_institution_id
        if incoming.iban:
            account.iban = incoming.iban
        if credentials_id:
            account.credentials_id = credentials_id
        elif incoming.credentials_id:
            account.credentials_id = incoming.credentials_id

        balance = incoming.booked_balance
        if balance is not None:
            account.balance = balance.to_minor_units()
            account.currency = balance.currency_code
        elif account.currency is None:
            account.currency = "EUR"

        account.access_token = access_token
        account.token_scope = scope or DEFAULT_TOKEN_SCOPE
