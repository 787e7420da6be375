"""Swap-routing API client (Enso shortcuts)."""
import logging
from dataclasses import dataclass
from typing import Any

from web3 import Web3

from rebalancer.collectors.http import JsonHttpClient
from rebalancer.core.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteQuote:
    """Ready-to-sign route transaction returned by the routing API."""
    to: str
    data: str
    value: int
    amount_out: int | None


class RouteClient:
    """Requests route transactions for cross-asset legs."""

    ROUTE_PATH = "/api/v1/shortcuts/route"

    def __init__(
        self,
        base_url: str,
        chain_id: int,
        api_key: str | None = None,
        http: JsonHttpClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self.api_key = api_key
        self.http = http or JsonHttpClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def quote(
        self,
        from_address: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        slippage_bps: int,
    ) -> RouteQuote:
        """Get a route transaction swapping amount_in of token_in to token_out.

        Raises:
            TransportError: On HTTP failure or a malformed response
        """
        params = {
            "chainId": self.chain_id,
            "fromAddress": from_address,
            "receiver": from_address,
            "spender": from_address,
            "tokenIn": token_in,
            "tokenOut": token_out,
            "amountIn": str(amount_in),
            "slippage": str(slippage_bps),
            "routingStrategy": "router",
        }

        response = await self.http.get_json(
            f"{self.base_url}{self.ROUTE_PATH}", params=params, headers=self._headers()
        )
        return self._parse(response)

    def _parse(self, response: Any) -> RouteQuote:
        tx = response.get("tx") if isinstance(response, dict) else None
        if not isinstance(tx, dict) or not tx.get("to") or not tx.get("data"):
            raise TransportError(f"Routing API returned no transaction: {response!r}")

        try:
            amount_out = response.get("amountOut")
            quote = RouteQuote(
                to=Web3.to_checksum_address(tx["to"]),
                data=tx["data"],
                value=int(tx.get("value") or 0),
                amount_out=int(amount_out) if amount_out is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise TransportError(f"Malformed routing API response: {e}", e) from e

        logger.debug(
            "TRANSFORM: Route quote parsed",
            extra={
                "extra_data": {
                    "action": "route_quote",
                    "to": quote.to,
                    "amount_out": quote.amount_out,
                }
            },
        )
        return quote
