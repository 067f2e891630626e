"""scalper.execution.gateway

Swap execution boundary.

The lifecycle manager only ever sees ``ExecutionGateway``. The live adapter
below talks to an aggregator over HTTP (quote, then swap transaction) and
hands the unsigned transaction to an injected ``TransactionSigner``. Key
custody stays outside this package.

Prices in a ``SwapFill`` are always base units per instrument unit, whichever
direction the swap went.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from scalper.core.client import VenueClient
from scalper.core.config import VenueConfig
from scalper.core.exceptions import InvalidRequestError, OrderRejectedError
from scalper.core.types import SwapFill

logger = logging.getLogger(__name__)


@runtime_checkable
class ExecutionGateway(Protocol):
    async def swap(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapFill: ...


class TransactionSigner(Protocol):
    async def sign_and_send(self, transaction_b64: str) -> str:
        """Sign, submit and confirm. Returns the transaction signature."""
        ...


def _atomic(amount: float, decimals: int) -> int:
    return int(round(float(amount) * (10**decimals)))


def _from_atomic(raw: Any, decimals: int) -> float | None:
    try:
        return float(raw) / (10**decimals)
    except (TypeError, ValueError):
        return None


class VenueSwapGateway:
    """Quote + swap over HTTP, signing delegated to ``signer``."""

    def __init__(self, *, client: VenueClient, venue: VenueConfig, signer: TransactionSigner, base_asset: str) -> None:
        self.client = client
        self.venue = venue
        self.signer = signer
        self.base_asset = base_asset

    async def quote(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> dict[str, Any]:
        params = {
            "inputMint": input_asset,
            "outputMint": output_asset,
            "amount": str(_atomic(amount, self.venue.decimals)),
            "slippageBps": str(int(slippage_bps)),
        }
        data = await self.client.request_json("GET", f"{self.venue.quote_url}/quote", params=params, expected=dict)
        if not data.get("outAmount"):
            raise OrderRejectedError(f"no route {input_asset} -> {output_asset}")
        return data

    async def swap(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapFill:
        if amount <= 0:
            raise InvalidRequestError("amount must be > 0")
        if not self.venue.user_public_key:
            raise InvalidRequestError("venue.user_public_key is not configured")

        quote = await self.quote(input_asset, output_asset, amount, slippage_bps)
        body = {"quoteResponse": quote, "userPublicKey": self.venue.user_public_key, "wrapAndUnwrapSol": True}
        tx = await self.client.request_json("POST", f"{self.venue.quote_url}/swap", json=body, expected=dict)
        encoded = tx.get("swapTransaction")
        if not isinstance(encoded, str) or not encoded:
            raise OrderRejectedError("swap response missing transaction")

        signature = await self.signer.sign_and_send(encoded)

        amount_out = _from_atomic(quote.get("outAmount"), self.venue.decimals)
        fill_price: float | None = None
        if amount_out:
            fill_price = float(amount) / amount_out if input_asset == self.base_asset else amount_out / float(amount)

        logger.info(
            "swap_submitted",
            extra={"input": input_asset, "output": output_asset, "amount": amount, "slippage_bps": slippage_bps, "signature": signature},
        )
        return SwapFill(fill_price=fill_price, amount_out=amount_out, venue_ref=signature or None)


@dataclass(frozen=True, slots=True)
class SwapCall:
    input_asset: str
    output_asset: str
    amount: float
    slippage_bps: int


class InMemorySwapGateway:
    """Test-double gateway: fills at a settable price, can be told to fail.

    ``fail_next`` holds exceptions raised (in order) before any fill happens.
    ``fills`` holds canned fills returned in order before falling back to the
    price-based fill.
    """

    def __init__(self, *, base_asset: str, prices: dict[str, float] | None = None) -> None:
        self.base_asset = base_asset
        self.prices: dict[str, float] = dict(prices or {})
        self.calls: list[SwapCall] = []
        self.fail_next: list[BaseException] = []
        self.fills: list[SwapFill] = []

    async def swap(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapFill:
        self.calls.append(SwapCall(input_asset, output_asset, float(amount), int(slippage_bps)))
        if self.fail_next:
            raise self.fail_next.pop(0)
        if self.fills:
            return self.fills.pop(0)

        buying = input_asset == self.base_asset
        instrument = output_asset if buying else input_asset
        price = self.prices.get(instrument)
        if price is None:
            raise OrderRejectedError(f"no price for {instrument}")
        out = float(amount) / price if buying else float(amount) * price
        return SwapFill(fill_price=price, amount_out=out, venue_ref=f"mem-{uuid.uuid4().hex[:12]}")
