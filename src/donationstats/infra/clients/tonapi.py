from __future__ import annotations

from dataclasses import dataclass, field
import http.client
import json
import socket
import time
from typing import Any, Self
import urllib.error
import urllib.parse
import urllib.request

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from donationstats.core.config import DonationConfig

NANOTONS_PER_TON = 1_000_000_000
DEFAULT_PAGE_SIZE = 50
DEFAULT_TIMEOUT_SECONDS = 15.0
_READ_CHUNK_BYTES = 64 * 1024


class LedgerClientError(Exception):
    """Base error for transaction feed failures."""


class LedgerTimeoutError(LedgerClientError):
    """The request did not complete within the configured timeout."""


class LedgerNetworkError(LedgerClientError):
    """The request could not reach the upstream API."""


class LedgerHttpError(LedgerClientError):
    """The upstream API answered with a non-success status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"TonAPI error ({status}): {body}")
        self.status = status
        self.body = body


class LedgerInvalidResponseError(LedgerClientError):
    """The upstream API answered with a body that is not JSON."""


class TonapiBaseModel(BaseModel):
    """Shared base for TonAPI payload models; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class DecodedBody(TonapiBaseModel):
    comment: str | None = None


class TransactionRef(TonapiBaseModel):
    hash: str | None = None


class InMessage(TonapiBaseModel):
    value: int | str | None = None
    amount: int | str | None = None
    message: str | None = None
    decoded: DecodedBody | None = None


class TonapiTransaction(TonapiBaseModel):
    hash: str | None = None
    transaction_id: TransactionRef | None = None
    lt: int | str | None = None
    utime: int | None = None
    now: int | None = None
    in_msg: InMessage | None = None
    value: int | str | None = None
    message: str | None = None

    @property
    def identifier(self) -> str | None:
        if self.hash:
            return self.hash
        if self.transaction_id and self.transaction_id.hash:
            return self.transaction_id.hash
        if self.lt not in (None, ""):
            return str(self.lt)
        return None

    @property
    def is_incoming(self) -> bool:
        return self.in_msg is not None

    @property
    def occurred_at(self) -> int:
        return self.utime or self.now or 0

    @property
    def value_nano(self) -> int:
        """First positive of ``in_msg.value``, ``in_msg.amount``, ``value``."""
        candidates: list[int | str | None] = []
        if self.in_msg is not None:
            candidates.extend([self.in_msg.value, self.in_msg.amount])
        candidates.append(self.value)
        for raw in candidates:
            amount = _as_int(raw)
            if amount > 0:
                return amount
        return 0

    @property
    def amount_ton(self) -> float:
        return self.value_nano / NANOTONS_PER_TON

    @property
    def comment(self) -> str | None:
        if self.in_msg is not None:
            if self.in_msg.decoded and self.in_msg.decoded.comment:
                return self.in_msg.decoded.comment
            if self.in_msg.message:
                return self.in_msg.message
        return self.message or None


def _as_int(raw: int | str | None) -> int:
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return raw
    try:
        return int(raw.strip())
    except ValueError:
        return 0


@dataclass(frozen=True, slots=True)
class TransactionPage:
    """One fetched page.

    ``raw_count`` is the number of items upstream returned, including the
    ones dropped as malformed, so paging decisions see the true page length.
    """

    transactions: list[TonapiTransaction] = field(default_factory=list)
    raw_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.raw_count == 0


def _payload_items(payload: Any) -> list[Any]:
    if not isinstance(payload, dict):
        return []
    items = payload.get("transactions")
    if items is None:
        items = payload.get("items")
    if not isinstance(items, list):
        return []
    return items


def parse_transactions_page(payload: Any) -> TransactionPage:
    """Parse a response body into a page, keeping the upstream item count."""
    items = _payload_items(payload)
    return TransactionPage(
        transactions=_parse_items(items), raw_count=len(items)
    )


def parse_transactions_payload(payload: Any) -> list[TonapiTransaction]:
    """Extract transactions from ``{transactions: [...]}`` or ``{items: [...]}``.

    Any other shape is treated as an empty page. Items that do not validate
    are dropped.
    """
    return _parse_items(_payload_items(payload))


def _parse_items(items: list[Any]) -> list[TonapiTransaction]:
    transactions: list[TonapiTransaction] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.bind(index=index).warning("Dropping non-object feed item {}", index)
            continue
        try:
            transactions.append(TonapiTransaction.parse(item))
        except ValidationError as e:
            logger.bind(index=index).warning(
                "Dropping malformed feed item {}: {}", index, e.error_count()
            )
    return transactions


class TonapiClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = "https://tonapi.io",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: DonationConfig) -> TonapiClient:
        return cls(
            api_key=config.tonapi_key,
            base_url=config.tonapi_base_url,
            timeout=config.request_timeout_seconds,
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _parse_json_response(self, body: str) -> Any:
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise LedgerInvalidResponseError(
                f"Failed to parse TonAPI response as JSON: {e}"
            ) from e

    def _timed_out(self) -> LedgerTimeoutError:
        return LedgerTimeoutError(f"TonAPI request timed out after {self._timeout}s")

    def _read_body(self, resp: Any, deadline: float) -> bytes:
        """Read the body in chunks; fail once the whole-request deadline passes."""
        chunks: list[bytes] = []
        while True:
            chunk = resp.read1(_READ_CHUNK_BYTES)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)
            if time.monotonic() > deadline:
                raise self._timed_out()

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}?{urllib.parse.urlencode(params)}"
        req = urllib.request.Request(  # noqa: S310
            url,
            headers=self._headers(),
            method="GET",
        )

        # The socket timeout bounds each read; the deadline bounds the request.
        deadline = time.monotonic() + self._timeout
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                body = self._read_body(resp, deadline).decode("utf-8", "replace")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            raise LedgerHttpError(e.code, err_body) from e
        except (TimeoutError, socket.timeout) as e:
            raise self._timed_out() from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                raise self._timed_out() from e
            raise LedgerNetworkError(f"Network error calling TonAPI: {e}") from e
        except (OSError, http.client.HTTPException) as e:
            raise LedgerNetworkError(f"Network error calling TonAPI: {e!r}") from e

        return self._parse_json_response(body)

    def fetch_page(
        self,
        account: str,
        page_index: int,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        """Return one offset-addressed page of the account's transactions."""
        account_path = urllib.parse.quote(account, safe=":")
        path = f"/v2/blockchain/accounts/{account_path}/transactions"
        payload = self._get(
            path, {"limit": page_size, "offset": page_index * page_size}
        )
        return parse_transactions_page(payload)
