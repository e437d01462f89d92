import httpx
import pytest

from src.fieldroute.errors import ProviderError
from src.fieldroute.models.domain import Coordinate
from src.fieldroute.services.routing.osrm_client import OSRMClient, decode_polyline
from src.fieldroute.services.routing.travel import (
    UNREACHABLE_MINUTES,
    OSRMTravelProvider,
    StraightLineTravelProvider,
    call_with_timeout,
)

BASE = Coordinate(40.0, -75.0)
STOPS = [Coordinate(40.01, -75.0), Coordinate(40.02, -75.01)]


def _provider(handler, **kwargs) -> OSRMTravelProvider:
    client = OSRMClient(
        base_url="http://osrm.test",
        transport=httpx.MockTransport(handler),
        backoff_seconds=0.0,
        **kwargs,
    )
    return OSRMTravelProvider(client)


def test_osrm_table_is_converted_to_minutes():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["annotations"] = request.url.params.get("annotations")
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                "durations": [[0, 120, 240], [120, 0, 60], [240, 60, 0]],
                "distances": [[0, 1000, 2000], [1000, 0, 500], [2000, 500, 0]],
            },
        )

    table = _provider(handler).matrix([BASE, *STOPS])

    assert seen["path"] == "/table/v1/driving/-75.0,40.0;-75.0,40.01;-75.01,40.02"
    assert seen["annotations"] == "duration,distance"
    assert table.size == 3
    assert table.durations[0][1] == pytest.approx(2.0)
    assert table.leg(1, 2).distance_meters == pytest.approx(500.0)


def test_unreachable_pairs_are_penalised():
    def handler(request):
        return httpx.Response(
            200,
            json={"code": "Ok", "durations": [[0, None], [60, 0]], "distances": [[0, None], [800, 0]]},
        )

    table = _provider(handler).matrix([BASE, STOPS[0]])

    assert table.durations[0][1] == UNREACHABLE_MINUTES
    assert table.durations[1][0] == pytest.approx(1.0)


def test_osrm_error_code_raises_provider_error():
    def handler(request):
        return httpx.Response(200, json={"code": "InvalidQuery", "message": "bad coordinates"})

    with pytest.raises(ProviderError):
        _provider(handler).matrix([BASE, *STOPS])


def test_network_errors_are_retried_then_reported():
    attempts = {"count": 0}

    def handler(request):
        attempts["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError):
        _provider(handler, max_retries=2).matrix([BASE, *STOPS])
    assert attempts["count"] == 3


def test_transient_server_error_recovers_on_retry():
    attempts = {"count": 0}

    def handler(request):
        attempts["count"] += 1
        if attempts["count"] == 1:
            return httpx.Response(503, json={"code": "Unavailable"})
        return httpx.Response(200, json={"code": "Ok", "durations": [[0, 60], [60, 0]], "distances": [[0, 1], [1, 0]]})

    table = _provider(handler, max_retries=1).matrix([BASE, STOPS[0]])

    assert attempts["count"] == 2
    assert table.durations[0][1] == pytest.approx(1.0)


def test_each_attempt_gets_a_share_of_the_call_timeout():
    seen = []

    def handler(request):
        seen.append(request.extensions["timeout"]["read"])
        return httpx.Response(200, json={"code": "Ok", "durations": [[0, 60], [60, 0]], "distances": [[0, 1], [1, 0]]})

    _provider(handler, max_retries=2, timeout=3.0).matrix([BASE, STOPS[0]])

    assert len(seen) == 1
    assert 0 < seen[0] <= 1.0


def test_retries_stop_when_backoff_would_overrun_the_call_timeout():
    attempts = {"count": 0}

    def handler(request):
        attempts["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = OSRMClient(
        base_url="http://osrm.test",
        transport=httpx.MockTransport(handler),
        timeout=0.5,
        max_retries=3,
        backoff_seconds=5.0,
    )

    with pytest.raises(ProviderError):
        OSRMTravelProvider(client).matrix([BASE, *STOPS])
    assert attempts["count"] == 1


def test_osrm_route_returns_legs_and_geometry():
    def handler(request):
        assert request.url.path.startswith("/route/v1/driving/")
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                "routes": [
                    {
                        "duration": 600,
                        "geometry": "_p~iF~ps|U_ulLnnqC_mqNvxq`@",
                        "legs": [
                            {"duration": 120, "distance": 1000},
                            {"duration": 180, "distance": 1500},
                            {"duration": 300, "distance": 2500},
                        ],
                    }
                ],
            },
        )

    estimate = _provider(handler).route(BASE, STOPS)

    assert [leg.duration_minutes for leg in estimate.legs] == pytest.approx([2.0, 3.0, 5.0])
    assert estimate.total_duration_minutes == pytest.approx(10.0)
    assert estimate.total_distance_meters == pytest.approx(5000.0)
    assert estimate.geometry[0] == Coordinate(38.5, -120.2)


def test_decode_polyline():
    points = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")

    assert [lat for lat, _ in points] == pytest.approx([38.5, 40.7, 43.252])
    assert [lon for _, lon in points] == pytest.approx([-120.2, -120.95, -126.453])


def test_client_requires_base_url(monkeypatch):
    from src.fieldroute.services.routing import osrm_client

    monkeypatch.setattr(osrm_client.settings, "osrm_base_url", None)
    with pytest.raises(ValueError):
        OSRMClient()


def test_straight_line_route_closes_the_tour():
    provider = StraightLineTravelProvider(average_speed_kmh=60)

    estimate = provider.route(BASE, STOPS)
    open_estimate = provider.route(BASE, STOPS, return_to_base=False)

    assert len(estimate.legs) == 3
    assert len(open_estimate.legs) == 2
    # 60 km/h: one minute per kilometre
    first = estimate.legs[0]
    assert first.duration_minutes == pytest.approx(first.distance_meters / 1000.0)
    assert provider.route(BASE, []).legs == ()


def test_straight_line_matrix_has_zero_diagonal():
    table = StraightLineTravelProvider().matrix([BASE, *STOPS])

    assert all(table.durations[i][i] == 0.0 for i in range(table.size))
    assert table.durations[0][1] == pytest.approx(table.durations[1][0])


def test_call_with_timeout_wraps_failures():
    assert call_with_timeout(lambda: 42, timeout=1.0) == 42

    def boom():
        raise RuntimeError("kaput")

    with pytest.raises(ProviderError):
        call_with_timeout(boom, timeout=1.0)
