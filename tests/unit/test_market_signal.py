"""Tests for the market signal fetcher."""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock
import pytest


VOLATILITY_RESPONSE = {
    "volatility": 0.0123,
    "timestamp": 1735689600000,
}

STATE_RESPONSE = {
    "classification": "lowvol",
    "classification_description": "Low volatility regime",
}


@pytest.fixture
def mock_http():
    from rebalancer.collectors.http import JsonHttpClient

    http = Mock(spec=JsonHttpClient)
    http.get_json = AsyncMock(side_effect=[VOLATILITY_RESPONSE, STATE_RESPONSE])
    return http


def test_parse_signal():
    from rebalancer.collectors.market_signal import parse_signal

    signal = parse_signal(VOLATILITY_RESPONSE, STATE_RESPONSE)

    assert signal.volatility == pytest.approx(0.0123)
    assert signal.classification == "lowvol"
    assert signal.description == "Low volatility regime"
    assert signal.timestamp == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_parse_signal_alias_keys_and_lists():
    from rebalancer.collectors.market_signal import parse_signal

    signal = parse_signal(
        [{"prediction": "0.5", "predicted_at": "2025-01-01T00:00:00Z"}],
        [{"market_status": "highvol", "market_status_description": "Choppy"}],
    )

    assert signal.volatility == 0.5
    assert signal.classification == "highvol"
    assert signal.description == "Choppy"
    assert signal.timestamp == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_parse_timestamp_seconds_and_millis():
    from rebalancer.collectors.market_signal import parse_timestamp

    assert parse_timestamp(1735689600) == parse_timestamp(1735689600000)


def test_parse_signal_missing_volatility():
    from rebalancer.collectors.market_signal import parse_signal

    with pytest.raises(ValueError, match="Volatility"):
        parse_signal({"timestamp": 1}, STATE_RESPONSE)


def test_parse_signal_missing_classification():
    from rebalancer.collectors.market_signal import parse_signal

    with pytest.raises(ValueError, match="classification"):
        parse_signal(VOLATILITY_RESPONSE, {"foo": "bar"})


@pytest.mark.asyncio
async def test_fetch(mock_http):
    from rebalancer.collectors.market_signal import MarketSignalFetcher

    fetcher = MarketSignalFetcher(
        "https://signals.test/volatility_prediction",
        "https://signals.test/state_recognize",
        http=mock_http,
    )

    signal = await fetcher.fetch()

    assert signal.classification == "lowvol"
    assert mock_http.get_json.await_count == 2


@pytest.mark.asyncio
async def test_fetch_transport_error(mock_http):
    from rebalancer.collectors.market_signal import MarketSignalFetcher
    from rebalancer.core.errors import SignalFetchError, TransportError

    cause = TransportError("HTTP 503")
    mock_http.get_json = AsyncMock(side_effect=cause)
    fetcher = MarketSignalFetcher("https://a.test", "https://b.test", http=mock_http)

    with pytest.raises(SignalFetchError) as exc_info:
        await fetcher.fetch()

    assert exc_info.value.cause is cause


@pytest.mark.asyncio
async def test_fetch_malformed_payload(mock_http):
    from rebalancer.collectors.market_signal import MarketSignalFetcher
    from rebalancer.core.errors import SignalFetchError

    mock_http.get_json = AsyncMock(side_effect=[{"volatility": "high"}, STATE_RESPONSE])
    fetcher = MarketSignalFetcher("https://a.test", "https://b.test", http=mock_http)

    with pytest.raises(SignalFetchError, match="Malformed"):
        await fetcher.fetch()
