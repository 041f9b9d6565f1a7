import logging
from typing import List, Optional, Protocol

import httpx
from pydantic import BaseModel

from app.core.config import settings

logger = logging.getLogger(__name__)


class IndexerError(Exception):
    """The indexer could not be queried or returned something unusable."""


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


class ChainTransfer(BaseModel):
    hash: str
    source: Optional[str] = None
    destination: Optional[str] = None
    value: int  # base units (nanoTON)
    memo: Optional[str] = None
    timestamp: int  # epoch seconds


class ChainIndexer(Protocol):
    async def list_recent_transfers(self, address: str, limit: int) -> List[ChainTransfer]:
        ...


class TonApiIndexer:
    """
    Reads incoming transfers for an account from tonapi.io.

    Only the inbound message of each transaction matters here: its value, its
    source/destination and its text comment.
    """

    def __init__(
        self,
        base_url: str = settings.TON_API_URL,
        api_key: str = settings.TON_API_KEY,
        timeout: float = settings.TON_API_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
        )

    async def list_recent_transfers(self, address: str, limit: int = 10) -> List[ChainTransfer]:
        try:
            response = await self.client.get(
                f"/blockchain/accounts/{address}/transactions",
                params={"limit": limit, "sort_order": "desc"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise IndexerError(
                f"TON API returned {e.response.status_code} for {address}"
            ) from e
        except httpx.HTTPError as e:
            raise IndexerError(f"TON API request failed for {address}: {e!r}") from e
        except ValueError as e:
            raise IndexerError(f"TON API returned invalid JSON for {address}") from e

        if not isinstance(payload, dict):
            raise IndexerError(f"TON API returned an unexpected body for {address}")
        transactions = payload.get("transactions") or []
        if not isinstance(transactions, list):
            raise IndexerError(f"TON API returned an unexpected body for {address}")

        transfers = []
        for tx in transactions:
            transfer = self._parse_transaction(tx)
            if transfer is not None:
                transfers.append(transfer)
        return transfers

    @staticmethod
    def _parse_transaction(tx) -> Optional[ChainTransfer]:
        """Transfer carried by the inbound message, or None when there is none or it is malformed."""
        if not isinstance(tx, dict):
            logger.warning("Skipping malformed transaction %r", tx)
            return None
        in_msg = _as_dict(tx.get("in_msg"))
        value = in_msg.get("value")
        if not tx.get("hash") or value is None:
            return None

        memo = None
        body = _as_dict(in_msg.get("decoded_body"))
        if in_msg.get("decoded_op_name") == "text_comment" or "text" in body:
            memo = body.get("text")

        try:
            return ChainTransfer(
                hash=tx["hash"],
                source=_as_dict(in_msg.get("source")).get("address"),
                destination=_as_dict(in_msg.get("destination")).get("address"),
                value=int(value),
                memo=memo,
                timestamp=int(tx.get("utime") or 0),
            )
        except (TypeError, ValueError):
            logger.warning("Skipping malformed transaction %s", tx.get("hash"))
            return None

    async def close(self):
        await self.client.aclose()
