"""Plaid API client.

This module implements the UpstreamClient protocol on top of the
plaid-python SDK: account listing, item status, the cursor-based
``/transactions/sync`` change feed, institution lookup and access
revocation.

Every call goes through ``_retry_request``: transient failures (transport
errors, 429, 5xx) are retried with exponential backoff, authorization
failures are raised immediately as ``ProviderAuthError``.
"""

import json
import logging
import time
from decimal import Decimal

from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_balance_get_request import AccountsBalanceGetRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_request import InstitutionsGetRequest
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions
from urllib3.exceptions import HTTPError as TransportError

from config import settings
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
)
from integrations.provider_protocol import (
    AccountType,
    ProviderAccount,
    ProviderBalance,
    ProviderInstitution,
    ProviderItem,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

# Error codes meaning the access token can no longer be used as-is.
_AUTH_ERROR_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_ACCESS_TOKEN",
        "ACCESS_NOT_GRANTED",
        "ITEM_NOT_FOUND",
        "USER_PERMISSION_REVOKED",
    }
)

_INSTITUTIONS_PAGE_SIZE = 500


def _to_dict(obj) -> dict:
    """Convert an SDK model (or plain mapping) into a plain dict."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _enum_value(value) -> str | None:
    """Return the string behind an SDK enum model (or the value itself)."""
    if value is None:
        return None
    return str(getattr(value, "value", value))


class PlaidClient:
    """Wrapper around the Plaid API.

    Implements the UpstreamClient protocol used by the transaction source,
    the sync service and the link service.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT
        self._max_retries = max(1, max_retries or settings.UPSTREAM_MAX_RETRIES)
        self._retry_base_delay = (
            settings.UPSTREAM_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        """Return the provider name for logging and errors."""
        return PROVIDER_NAME

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # UpstreamClient protocol
    # ------------------------------------------------------------------

    def list_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch the accounts reachable through an Item."""
        api = self._get_api()
        response = self._retry_request(
            lambda: api.accounts_get(AccountsGetRequest(access_token=access_token)),
            "accounts_get",
        )

        accounts: list[ProviderAccount] = []
        for acct in response.get("accounts", []) or []:
            acct_id = acct.get("account_id", "")
            if not acct_id:
                continue
            accounts.append(ProviderAccount(
                id=acct_id,
                name=acct.get("name") or acct.get("official_name") or "Plaid Account",
                type=AccountType.from_upstream(_enum_value(acct.get("type"))),
                mask=acct.get("mask"),
            ))
        return accounts

    def get_balances(self, access_token: str) -> list[ProviderBalance]:
        """Fetch real-time balances for an Item's accounts.

        ``/accounts/balance/get`` contacts the institution, so this call is
        slower than :meth:`list_accounts`.
        """
        api = self._get_api()
        response = self._retry_request(
            lambda: api.accounts_balance_get(
                AccountsBalanceGetRequest(access_token=access_token)
            ),
            "accounts_balance_get",
        )

        balances: list[ProviderBalance] = []
        for acct in response.get("accounts", []) or []:
            acct_id = acct.get("account_id", "")
            if not acct_id:
                continue
            amounts = acct.get("balances") or {}
            balances.append(ProviderBalance(
                account_id=acct_id,
                name=acct.get("name") or acct.get("official_name") or "Plaid Account",
                type=AccountType.from_upstream(_enum_value(acct.get("type"))),
                available=_to_decimal(amounts.get("available")),
                current=_to_decimal(amounts.get("current")),
                currency=(
                    amounts.get("iso_currency_code")
                    or amounts.get("unofficial_currency_code")
                ),
            ))
        return balances

    def get_item(self, access_token: str) -> ProviderItem:
        """Fetch the Item's status, including any error blocking it."""
        api = self._get_api()
        response = self._retry_request(
            lambda: api.item_get(ItemGetRequest(access_token=access_token)),
            "item_get",
        )
        item = response.get("item") or {}
        error = item.get("error") or {}
        return ProviderItem(
            item_id=item.get("item_id", ""),
            institution_id=item.get("institution_id"),
            error_code=error.get("error_code") or None,
            error_message=error.get("error_message") or None,
        )

    def sync_transactions(
        self, access_token: str, cursor: str | None, count: int
    ) -> dict:
        """Fetch one page of the ``/transactions/sync`` change feed.

        Returns:
            Dict with ``added``/``modified`` (raw transaction dicts),
            ``removed`` (dicts with ``transaction_id``), ``next_cursor``
            and ``has_more``.
        """
        api = self._get_api()
        kwargs = {
            "access_token": access_token,
            "count": count,
            "options": TransactionsSyncRequestOptions(
                include_personal_finance_category=True,
            ),
        }
        if cursor:
            kwargs["cursor"] = cursor
        request = TransactionsSyncRequest(**kwargs)

        response = self._retry_request(
            lambda: api.transactions_sync(request),
            "transactions_sync",
        )
        return {
            "added": [_to_dict(t) for t in response.get("added", []) or []],
            "modified": [_to_dict(t) for t in response.get("modified", []) or []],
            "removed": [_to_dict(t) for t in response.get("removed", []) or []],
            "next_cursor": response.get("next_cursor"),
            "has_more": response.get("has_more"),
        }

    def list_institutions(self, country_codes: list[str]) -> list[ProviderInstitution]:
        """Fetch all institutions for the given country codes."""
        api = self._get_api()
        codes = [CountryCode(code) for code in country_codes]

        institutions: list[ProviderInstitution] = []
        offset = 0
        total = None
        while True:
            request = InstitutionsGetRequest(
                count=_INSTITUTIONS_PAGE_SIZE,
                offset=offset,
                country_codes=codes,
            )
            response = self._retry_request(
                lambda: api.institutions_get(request),
                "institutions_get",
            )
            if total is None:
                total = response.get("total", 0) or 0

            page = response.get("institutions", []) or []
            for ins in page:
                ins_id = ins.get("institution_id")
                if ins_id:
                    institutions.append(
                        ProviderInstitution(id=ins_id, name=ins.get("name") or ins_id)
                    )

            offset += len(page)
            if not page or offset >= total:
                break

        return institutions

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token by calling Plaid's /item/remove endpoint."""
        api = self._get_api()
        self._retry_request(
            lambda: api.item_remove(ItemRemoveRequest(access_token=access_token)),
            "item_remove",
        )

    # ------------------------------------------------------------------
    # Retry & error mapping
    # ------------------------------------------------------------------

    def _retry_request(self, fn, operation: str):
        """Call fn(), retrying transient failures with exponential backoff.

        Raises:
            ProviderAuthError: Immediately, for invalid credentials.
            ProviderError: When retries are exhausted or the error is permanent.
        """
        for attempt in range(self._max_retries):
            try:
                return fn()
            except ApiException as exc:
                error = self._map_plaid_error(exc)
            except TransportError as exc:
                error = ProviderConnectionError(
                    f"Plaid {operation} failed: {exc}", provider_name=PROVIDER_NAME
                )

            if not error.retriable or attempt == self._max_retries - 1:
                raise error
            delay = self._retry_base_delay * (2 ** attempt)
            logger.warning(
                "Plaid %s failed (attempt %d/%d), retrying in %.1fs: %s",
                operation, attempt + 1, self._max_retries, delay, error,
            )
            time.sleep(delay)

        raise ProviderError(f"Plaid {operation}: max retries exceeded", PROVIDER_NAME)

    @staticmethod
    def _map_plaid_error(exc: ApiException) -> ProviderError:
        """Map a Plaid ApiException to a typed ProviderError."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (TypeError, ValueError, AttributeError):
            logger.debug("Plaid error body is not JSON: %r", exc.body)

        if status in (401, 403) or error_code in _AUTH_ERROR_CODES:
            return ProviderAuthError(message, provider_name=PROVIDER_NAME, error_code=error_code)
        return ProviderAPIError(
            message,
            provider_name=PROVIDER_NAME,
            status_code=status or None,
            error_code=error_code,
        )
