"""
HTTP tests for the execution simulation service.
"""
import inspect

import pytest
from fastapi.testclient import TestClient

import main


@pytest.fixture
def client():
    with TestClient(main.app) as test_client:
        yield test_client


def _body(rows, **overrides):
    body = {"method": "TWAP", "side": "buy", "quantity": 30, "slices": 3, "orderBook": rows}
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.parametrize("path", ["/execution/simulate", "/api/v1/execution/simulate"])
def test_twap_scenario(client, scenario_rows, path):
    response = client.post(path, json=_body(scenario_rows))

    assert response.status_code == 200
    body = response.json()
    assert [s["price"] for s in body["perSlice"]] == [100.0, 102.0, 101.0]
    assert body["summary"]["avgPrice"] == 101.0
    assert body["summary"]["benchmarkPrice"] == 101.0
    assert body["summary"]["slippageBps"] == 0.0
    assert len(body["slippageCurve"]) == 3


def test_market_scenario(client, scenario_rows):
    response = client.post("/execution/simulate", json=_body(scenario_rows, method="market", slices=None))

    assert response.status_code == 200
    summary = response.json()["summary"]
    assert summary["fills"] == 1
    assert summary["avgPrice"] == 100.0
    assert summary["slippageBps"] == pytest.approx(-99.0099, abs=1e-4)


def test_csv_order_book_string(client):
    text = "time,price,size\n2024-01-02T09:30:00Z,100,10\n2024-01-02T09:31:00Z,102,10\n"

    response = client.post("/execution/simulate", json=_body(text, quantity="20", slices=2))

    assert response.status_code == 200
    assert response.json()["summary"]["totalQty"] == 20.0


def test_csv_response_format(client, scenario_rows):
    response = client.post("/execution/simulate?format=csv", json=_body(scenario_rows))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0] == "t,qty,price,cost,cumCost"


def test_unknown_format(client, scenario_rows):
    response = client.post("/execution/simulate?format=xml", json=_body(scenario_rows))

    assert response.status_code == 400


def test_empty_order_book(client):
    response = client.post("/execution/simulate", json=_body([]))

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "EmptyTapeError"


@pytest.mark.parametrize("quantity", [0, -1, "lots"])
def test_invalid_quantity(client, scenario_rows, quantity):
    response = client.post("/execution/simulate", json=_body(scenario_rows, quantity=quantity))

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "InvalidInputError"


def test_zero_slices(client, scenario_rows):
    response = client.post("/execution/simulate", json=_body(scenario_rows, slices=0))

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "InvalidSliceCountError"


def test_unparseable_order_book(client):
    response = client.post("/execution/simulate", json=_body('[{"t": 1, "price": '))

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "ParseError"


def test_too_many_slices(client, scenario_rows):
    response = client.post("/execution/simulate", json=_body(scenario_rows, slices=main.limits.max_slices + 1))

    assert response.status_code == 413
    assert response.json()["detail"]["error"] == "ComputeTimeoutError"


def test_normalize_csv_upload(client):
    body = "Timestamp,Last Price,Trade Size\n2024-01-02T09:31:00Z,101,x\n2024-01-02T09:30:00Z,100,7\n,0,1\n"

    response = client.post("/execution/tape/normalize", content=body, headers={"content-type": "text/csv"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["rows"] == 2
    assert payload["dropped"] == 1
    assert payload["repaired"] == 1
    assert payload["columns"] == {"time": "Timestamp", "price": "Last Price", "volume": "Trade Size"}
    assert payload["orderBook"][0] == {"t": "2024-01-02T09:30:00Z", "price": 100.0, "volume": 7.0}


def test_normalized_order_book_can_be_simulated(client):
    body = "t\tprice\tvolume\n2024-01-02T09:30:00Z\t100\t10\n2024-01-02T09:31:00Z\t102\t10\n2024-01-02T09:32:00Z\t101\t10\n"
    normalized = client.post("/api/v1/execution/tape/normalize", content=body).json()

    response = client.post("/execution/simulate", json=_body(normalized["orderBook"]))

    assert response.status_code == 200
    assert response.json()["summary"]["slippageBps"] == 0.0


def test_normalize_invalid_json(client):
    response = client.post("/execution/tape/normalize", content='{"data": ')

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "ParseError"


def test_metrics_count_simulations(client, scenario_rows):
    client.post("/execution/simulate", json=_body(scenario_rows))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "execution_simulations_total" in response.text


def test_exponent_slice_count_fails_fast(client, scenario_rows):
    response = client.post("/execution/simulate", json=_body(scenario_rows, slices="1e20000000"))

    assert response.status_code == 413
    assert response.json()["detail"]["error"] == "ComputeTimeoutError"


def test_oversized_quantity_is_invalid_input(client, scenario_rows):
    response = client.post("/execution/simulate", json=_body(scenario_rows, quantity="1e999999"))

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "InvalidInputError"


def test_oversized_csv_price_is_dropped(client):
    text = "t,price,volume\n2024-01-02T09:30:00Z,1e400,1\n2024-01-02T09:31:00Z,100,1\n"

    response = client.post("/execution/simulate", json=_body(text, method="MARKET"))

    assert response.status_code == 200
    assert response.json()["perSlice"][0]["price"] == 100.0


def test_only_oversized_prices_is_empty_tape(client):
    text = "t,price,volume\n2024-01-02T09:30:00Z,1e400,1\n"

    response = client.post("/execution/simulate", json=_body(text, method="MARKET"))

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "EmptyTapeError"


@pytest.mark.parametrize("wrapper", ["data", "rows"])
def test_wrapped_order_book_object(client, scenario_rows, wrapper):
    response = client.post("/execution/simulate", json=_body({wrapper: scenario_rows}))

    assert response.status_code == 200
    assert response.json()["summary"]["avgPrice"] == 101.0


def test_non_object_rows_use_error_detail(client):
    response = client.post("/execution/simulate", json=_body([[1, 100, 10]]))

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "ParseError"


def test_simulate_runs_off_the_event_loop():
    # FastAPI runs plain def endpoints in its threadpool
    assert not inspect.iscoroutinefunction(main.simulate_execution)
