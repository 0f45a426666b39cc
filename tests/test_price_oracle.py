"""
tests/test_price_oracle.py - Price feed client against a mocked HTTP transport.
"""

import httpx
import pytest

from models import PriceQuote
from services.price_oracle import (
    PriceOracleClient,
    Quote,
    get_price_last_updated,
    get_price_snapshot,
    price_map,
    save_price_snapshot,
)
from factories import BONK, POPCAT, WIF


def make_client(handler):
    transport = httpx.MockTransport(handler)
    http = httpx.Client(transport=transport, base_url="https://feed.test")
    return PriceOracleClient("https://feed.test", client=http)


class Recorder:
    def __init__(self, responder):
        self.responder = responder
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.responder(request)


class TestGetPrices:
    def test_bulk_request(self):
        def responder(request):
            assert request.url.path == "/defi/multi_price"
            return httpx.Response(200, json={
                "success": True,
                "data": {
                    BONK: {"value": 0.00002, "updateUnixTime": 1700000001},
                    WIF: {"value": 2.5, "updateUnixTime": 1700000002},
                },
            })

        recorder = Recorder(responder)
        quotes = make_client(recorder).get_prices([BONK, WIF])

        assert quotes == [
            Quote(BONK, 0.00002, 1700000001),
            Quote(WIF, 2.5, 1700000002),
        ]
        assert len(recorder.requests) == 1
        assert recorder.requests[0].url.params["list_address"] == f"{BONK},{WIF}"

    def test_bulk_failure_falls_back_per_token(self):
        def responder(request):
            if request.url.path == "/defi/multi_price":
                return httpx.Response(500, json={"success": False})
            address = request.url.params["address"]
            return httpx.Response(200, json={
                "success": True,
                "data": {"value": 1.0 if address == BONK else 2.0, "updateUnixTime": 1700000000},
            })

        recorder = Recorder(responder)
        quotes = make_client(recorder).get_prices([BONK, WIF])

        assert [(q.token, q.value) for q in quotes] == [(BONK, 1.0), (WIF, 2.0)]
        assert [r.url.path for r in recorder.requests] == [
            "/defi/multi_price", "/defi/price", "/defi/price"
        ]

    def test_single_failure_yields_zero_quote(self):
        def responder(request):
            if request.url.path == "/defi/multi_price":
                raise httpx.ConnectError("down", request=request)
            if request.url.params["address"] == WIF:
                return httpx.Response(429, text="rate limited")
            return httpx.Response(200, json={"success": True, "data": {"value": 3.0}})

        quotes = make_client(Recorder(responder)).get_prices([BONK, WIF])

        assert [(q.token, q.value) for q in quotes] == [(BONK, 3.0), (WIF, 0.0)]

    def test_partial_bulk_only_refetches_missing(self):
        def responder(request):
            if request.url.path == "/defi/multi_price":
                return httpx.Response(200, json={"success": True, "data": {BONK: {"value": 1.0}}})
            return httpx.Response(200, json={"success": True, "data": {"value": 7.0}})

        recorder = Recorder(responder)
        quotes = make_client(recorder).get_prices([BONK, POPCAT])

        assert [(q.token, q.value) for q in quotes] == [(BONK, 1.0), (POPCAT, 7.0)]
        assert recorder.requests[-1].url.params["address"] == POPCAT
        assert len(recorder.requests) == 2

    def test_malformed_payload_never_raises(self):
        quotes = make_client(Recorder(lambda request: httpx.Response(200, text="<html>"))).get_prices([BONK])
        assert quotes[0].value == 0.0

    def test_empty_input_makes_no_request(self):
        recorder = Recorder(lambda request: pytest.fail("unexpected request"))

        assert make_client(recorder).get_prices([]) == []
        assert recorder.requests == []


def test_price_map_drops_zero_quotes():
    quotes = [Quote(BONK, 0.0, 1), Quote(WIF, 2.0, 1)]
    assert price_map(quotes) == {WIF: 2.0}


class TestSnapshot:
    def test_replaced_wholesale(self, db):
        save_price_snapshot([Quote(BONK, 1.0, 10), Quote(WIF, 2.0, 20)], db)
        db.commit()
        save_price_snapshot([Quote(POPCAT, 3.0, 30)], db)
        db.commit()

        snapshot = get_price_snapshot(db)

        assert [(q.token_name, q.value) for q in snapshot] == [("POPCAT", 3.0)]
        assert db.query(PriceQuote).count() == 1
        assert get_price_last_updated(db) == 30

    def test_empty(self, db):
        assert get_price_snapshot(db) == []
        assert get_price_last_updated(db) is None
