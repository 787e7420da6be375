"""Market signal fetcher for the volatility prediction service."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from rebalancer.collectors.http import JsonHttpClient
from rebalancer.core.errors import SignalFetchError, TransportError
from rebalancer.models import MarketSignal

logger = logging.getLogger(__name__)


# Field aliases accepted from the prediction service, first match wins
VOLATILITY_KEYS = ("volatility", "volatility_prediction", "prediction")
CLASSIFICATION_KEYS = ("classification", "market_status", "state")
DESCRIPTION_KEYS = ("classification_description", "market_status_description", "description")
TIMESTAMP_KEYS = ("timestamp", "predicted_at", "timestamp_utc", "predicted_at_utc")


def _first(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def parse_timestamp(value: Any) -> datetime:
    """Parse epoch seconds/milliseconds or an ISO 8601 string."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        # Epoch milliseconds are > 1e11 for any date after 1973
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"Invalid timestamp: {value!r}")


def parse_signal(volatility_payload: Any, state_payload: Any) -> MarketSignal:
    """Combine the volatility and state responses into a MarketSignal.

    Raises:
        ValueError: If a required field is missing or malformed
    """
    if isinstance(volatility_payload, list) and volatility_payload:
        volatility_payload = volatility_payload[0]
    if isinstance(state_payload, list) and state_payload:
        state_payload = state_payload[0]
    if not isinstance(volatility_payload, dict) or not isinstance(state_payload, dict):
        raise ValueError("Signal responses must be JSON objects")

    volatility = _first(volatility_payload, VOLATILITY_KEYS)
    if volatility is None or isinstance(volatility, bool):
        raise ValueError("Volatility prediction missing from response")
    volatility = float(volatility)

    classification = _first(state_payload, CLASSIFICATION_KEYS)
    if not classification:
        raise ValueError("Market state classification missing from response")

    description = _first(state_payload, DESCRIPTION_KEYS) or ""

    raw_ts = _first(volatility_payload, TIMESTAMP_KEYS)
    if raw_ts is None:
        raw_ts = _first(state_payload, TIMESTAMP_KEYS)
    timestamp = parse_timestamp(raw_ts) if raw_ts is not None else datetime.now(timezone.utc)

    return MarketSignal(
        volatility=volatility,
        classification=str(classification),
        description=str(description),
        timestamp=timestamp,
        raw={"volatility": volatility_payload, "state": state_payload},
    )


class MarketSignalFetcher:
    """Fetches volatility prediction and market state concurrently."""

    def __init__(
        self,
        volatility_url: str,
        state_url: str,
        http: JsonHttpClient | None = None,
        timeout: float = 30.0,
    ):
        self.volatility_url = volatility_url
        self.state_url = state_url
        self.timeout = timeout
        self.http = http or JsonHttpClient(timeout=timeout)

    async def fetch(self) -> MarketSignal:
        """Fetch the current market signal.

        Raises:
            SignalFetchError: On transport failure or malformed payload
        """
        try:
            volatility_payload, state_payload = await asyncio.gather(
                self.http.get_json(self.volatility_url, timeout=self.timeout),
                self.http.get_json(self.state_url, timeout=self.timeout),
            )
        except TransportError as e:
            logger.error(f"Error fetching market signal: {e}")
            raise SignalFetchError(f"Market signal fetch failed: {e}", e) from e

        try:
            signal = parse_signal(volatility_payload, state_payload)
        except (ValueError, TypeError) as e:
            raise SignalFetchError(f"Malformed market signal: {e}", e) from e

        logger.debug(
            "TRANSFORM: Market signal parsed",
            extra={
                "extra_data": {
                    "action": "signal_parsed",
                    "volatility": signal.volatility,
                    "classification": signal.classification,
                }
            },
        )
        return signal
