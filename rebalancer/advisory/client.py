"""Decision oracle client."""
import asyncio
import json
import logging
from typing import Any

from rebalancer.advisory.prompt import build_prompt
from rebalancer.collectors.http import JsonHttpClient
from rebalancer.core.errors import (
    AdvisoryError,
    AdvisoryErrorKind,
    RequestTimeout,
    TransportError,
)
from rebalancer.models import Action, Decision, MarketSignal, PositionSnapshot

logger = logging.getLogger(__name__)


def parse_amount(value: Any) -> int:
    """Parse a non-negative integer amount from an int or digit string.

    Raises:
        ValueError: If the amount is missing, negative or not integral
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"amount missing or invalid: {value!r}")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError(f"amount is not a non-negative integer: {value!r}")
    if amount < 0:
        raise ValueError(f"amount is negative: {amount}")
    return amount


def parse_decision(response: Any) -> Decision:
    """Validate the oracle response and convert it to a Decision.

    The response must be a JSON array whose first element carries a
    recognized ``action`` and a parseable ``amount``. Nothing is defaulted.

    Raises:
        AdvisoryError: INVALID_RESPONSE on any validation failure
    """
    if not isinstance(response, list) or not response:
        raise AdvisoryError(
            AdvisoryErrorKind.INVALID_RESPONSE, f"expected a non-empty array, got {response!r}"
        )

    first = response[0]
    if not isinstance(first, dict):
        raise AdvisoryError(
            AdvisoryErrorKind.INVALID_RESPONSE, f"first element is not an object: {first!r}"
        )

    raw_action = first.get("action")
    try:
        action = Action(str(raw_action).strip().lower()) if raw_action is not None else None
    except ValueError:
        action = None
    if action is None:
        raise AdvisoryError(
            AdvisoryErrorKind.INVALID_RESPONSE, f"unrecognized action: {raw_action!r}"
        )

    try:
        amount = parse_amount(first.get("amount"))
    except ValueError as e:
        raise AdvisoryError(AdvisoryErrorKind.INVALID_RESPONSE, str(e), e) from e

    text = first.get("text")
    text = str(text) if text is not None else None

    if action is Action.HOLD:
        if amount:
            logger.warning(f"Oracle returned hold with amount {amount}; amount ignored")
        return Decision.hold(text)

    if amount == 0:
        raise AdvisoryError(
            AdvisoryErrorKind.INVALID_RESPONSE, f"{action.value} requires a positive amount"
        )
    return Decision(action, amount, text)


class AdvisoryClient:
    """Submits position and market context to the oracle and returns a Decision.

    The oracle is eventually consistent: after the response arrives the
    client waits up to ``settle_seconds`` before treating it as final.
    The wait ends early when the session's stop event is set.
    """

    def __init__(
        self,
        url: str,
        suggested_amounts: dict[str, int],
        http: JsonHttpClient | None = None,
        response_timeout: float = 60.0,
        settle_seconds: float = 15.0,
        user_id: str = "user",
        user_name: str = "User",
    ):
        self.url = url
        self.suggested_amounts = suggested_amounts
        self.response_timeout = response_timeout
        self.settle_seconds = settle_seconds
        self.user_id = user_id
        self.user_name = user_name
        self.http = http or JsonHttpClient(timeout=response_timeout)

    async def _settle(self, stop_event: asyncio.Event | None) -> None:
        if self.settle_seconds <= 0:
            return
        if stop_event is None:
            await asyncio.sleep(self.settle_seconds)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.settle_seconds)
            logger.debug("Settle wait interrupted by stop request")
        except asyncio.TimeoutError:
            pass

    async def decide(
        self,
        snapshot: PositionSnapshot,
        signal: MarketSignal,
        stop_event: asyncio.Event | None = None,
    ) -> Decision:
        """Ask the oracle for a decision.

        Raises:
            AdvisoryError: TIMEOUT, TRANSPORT or INVALID_RESPONSE
        """
        prompt = build_prompt(snapshot, signal, self.suggested_amounts)
        body = {
            "text": json.dumps(prompt, indent=2),
            "userId": self.user_id,
            "userName": self.user_name,
        }

        logger.debug(
            "STEP 1/2: Submitting prompt to oracle",
            extra={"extra_data": {"action": "advisory_submit", "url": self.url}},
        )

        try:
            response = await self.http.post_json(self.url, body, timeout=self.response_timeout)
        except RequestTimeout as e:
            raise AdvisoryError(AdvisoryErrorKind.TIMEOUT, str(e), e) from e
        except TransportError as e:
            raise AdvisoryError(AdvisoryErrorKind.TRANSPORT, str(e), e) from e

        await self._settle(stop_event)

        decision = parse_decision(response)

        logger.info(f"Oracle decision: {decision.describe()}")
        logger.debug(
            "STEP 2/2: Oracle decision parsed",
            extra={
                "extra_data": {
                    "action": "advisory_decision",
                    "decision": decision.action.value,
                    "amount": decision.amount,
                }
            },
        )
        return decision
