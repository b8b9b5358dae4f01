from datetime import UTC, date, datetime

import pytest
import pytest_asyncio
from freezegun import freeze_time
from httpx import ASGITransport, AsyncClient

from roster.api import create_app
from roster.config import Settings
from roster.models import Doctor, DutyAssignment, Shift
from roster.store import RosterStore


def _p(msg: str) -> None:
    # pytest captures stdout unless you run with -s
    print(msg, flush=True)


def _banner(name: str) -> None:
    _p("\n" + "=" * 88)
    _p(f"test: {name}")
    _p("=" * 88)


def _dump_roster(app) -> None:
    store: RosterStore = app.state.store
    _p("db duties:")
    for d in store.list_duties():
        _p(f"  - {d.id} | {d.date} {d.shift} | doctor={d.doctor_id}")
    _p("db swaps:")
    for s in store.list_swaps():
        _p(
            f"  - {s.id} | {s.requestor_id}:{s.requestor_duty_id} <-> "
            f"{s.target_id}:{s.target_duty_id} | status={s.status}"
        )


@pytest_asyncio.fixture
async def client():
    app = create_app(Settings(facility_timezone="UTC"))
    app.state.now_fn = lambda: datetime.now(UTC)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest_asyncio.fixture
async def setup_test_data(client: AsyncClient):
    app = client._transport.app
    store: RosterStore = app.state.store

    for doctor in [
        Doctor(id="dr-a", name="Amal Haddad"),
        Doctor(id="dr-b", name="Bilal Saeed"),
        Doctor(id="dr-c", name="Chen Wu"),
        Doctor(id="dr-d", name="Dana Okafor"),
    ]:
        store.put_doctor(doctor)

    store.put_duty(
        DutyAssignment(
            id="b-morning",
            doctor_id="dr-b",
            date=date(2026, 1, 6),
            shift=Shift.MORNING,
        )
    )
    store.put_duty(
        DutyAssignment(
            id="c-evening",
            doctor_id="dr-c",
            date=date(2026, 1, 6),
            shift=Shift.EVENING,
            is_referral_duty=True,
        )
    )


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    _banner("health_check returns ok")
    resp = await client.get("/health")
    _p(f"GET /health -> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_unknown_swap_is_404(client: AsyncClient) -> None:
    _banner("unknown swap id returns 404 with error code")
    resp = await client.post("/swaps/nope/approve", json={})
    _p(f"POST /swaps/nope/approve -> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"
    assert "not found" in resp.json()["detail"].lower()


@pytest.mark.asyncio
async def test_peer_swap_scenario(client: AsyncClient, setup_test_data) -> None:
    _banner("dr-b offers tomorrow's morning for dr-c's evening, dr-c accepts")
    app = client._transport.app

    with freeze_time("2026-01-05 10:00:00", real_asyncio=True):
        resp = await client.get("/swaps/available-targets/b-morning")
        _p(f"available targets -> {resp.json()}")
        assert resp.status_code == 200
        assert [t["doctor"]["id"] for t in resp.json()] == ["dr-c"]

        resp = await client.post(
            "/swaps/request",
            json={
                "requestor_id": "dr-b",
                "requestor_duty_id": "b-morning",
                "target_id": "dr-c",
                "target_duty_id": "c-evening",
                "reason": "school run",
            },
        )
        _p(f"propose -> status={resp.status_code}, body={resp.json()}")
        assert resp.status_code == 200
        swap_id = resp.json()["id"]
        assert resp.json()["status"] == "pending"

        resp = await client.get("/swaps/my-requests/dr-c")
        assert [s["id"] for s in resp.json()["received"]] == [swap_id]

        resp = await client.post(
            f"/swaps/{swap_id}/accept", json={"doctor_id": "dr-c"}
        )
        _p(f"accept -> status={resp.status_code}, body={resp.json()}")
        _dump_roster(app)

        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"

        morning = (await client.get("/duties/b-morning")).json()
        evening = (await client.get("/duties/c-evening")).json()
        assert morning["doctor_id"] == "dr-c"
        assert evening["doctor_id"] == "dr-b"

        resp = await client.post(
            f"/swaps/{swap_id}/decline", json={"doctor_id": "dr-c"}
        )
        _p(f"decline after accept -> status={resp.status_code}, body={resp.json()}")
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_transition"

        resp = await client.get("/swaps/all", params={"status": "pending"})
        assert resp.json() == []


@pytest.mark.asyncio
async def test_swap_actor_checks(client: AsyncClient, setup_test_data) -> None:
    _banner("only the target may accept, only owners may offer")

    with freeze_time("2026-01-05 10:00:00", real_asyncio=True):
        resp = await client.post(
            "/swaps/request",
            json={
                "requestor_id": "dr-a",
                "requestor_duty_id": "b-morning",
                "target_id": "dr-c",
                "target_duty_id": "c-evening",
            },
        )
        _p(f"propose someone else's duty -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 403
        assert resp.json()["error"] == "duty_not_owned"

        resp = await client.post(
            "/swaps/request",
            json={
                "requestor_id": "dr-b",
                "requestor_duty_id": "b-morning",
                "target_id": "dr-c",
                "target_duty_id": "c-evening",
            },
        )
        swap_id = resp.json()["id"]

        resp = await client.post(
            f"/swaps/{swap_id}/accept", json={"doctor_id": "dr-d"}
        )
        _p(f"accept by outsider -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 403
        assert resp.json()["error"] == "not_permitted"


@pytest.mark.asyncio
async def test_swap_on_started_shift_is_refused(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("duties whose shift has begun cannot be offered")

    with freeze_time("2026-01-06 08:00:00", real_asyncio=True):
        resp = await client.post(
            "/swaps/request",
            json={
                "requestor_id": "dr-b",
                "requestor_duty_id": "b-morning",
                "target_id": "dr-c",
                "target_duty_id": "c-evening",
            },
        )
        _p(f"propose at 08:00 -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 409
        assert resp.json()["error"] == "duty_not_eligible"


@pytest.mark.asyncio
async def test_leave_flow_and_cap(client: AsyncClient, setup_test_data) -> None:
    _banner("leave: submit, warn, approve, cap, balance, calendar")

    with freeze_time("2026-01-05 10:00:00", real_asyncio=True):
        ids = {}
        for doctor, start, end in [
            ("dr-a", "2026-01-10", "2026-01-12"),
            ("dr-b", "2026-01-11", "2026-01-11"),
            ("dr-c", "2026-01-11", "2026-01-11"),
        ]:
            resp = await client.post(
                "/leaves/request",
                json={
                    "doctor_id": doctor,
                    "type": "annual",
                    "start_date": start,
                    "end_date": end,
                },
            )
            _p(f"submit {doctor} -> {resp.status_code} {resp.json()}")
            assert resp.status_code == 200
            ids[doctor] = resp.json()["leave"]["id"]

        # two pending requests on Jan 11 already make a third look crowded
        assert resp.json()["conflict"]["has_conflict"] is True

        for doctor in ("dr-a", "dr-b"):
            resp = await client.post(
                f"/leaves/{ids[doctor]}/approve", json={"notes": "ok"}
            )
            assert resp.status_code == 200
            assert resp.json()["status"] == "approved"

        resp = await client.post(f"/leaves/{ids['dr-c']}/approve", json={})
        _p(f"third approval -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 409
        assert resp.json()["error"] == "concurrency_cap_exceeded"

        resp = await client.get(f"/leaves/{ids['dr-c']}")
        assert resp.json()["status"] == "pending"

        resp = await client.get("/leaves/balance/dr-a")
        _p(f"balance dr-a -> {resp.json()}")
        assert resp.json() == {
            "doctor_id": "dr-a",
            "total_days": 45,
            "used_days": 3,
            "remaining": 42,
        }

        resp = await client.get("/leaves/calendar/2026/1")
        _p(f"calendar -> {resp.json()}")
        assert resp.json()["2026-01-11"] == ["dr-a", "dr-b"]
        assert resp.json()["2026-01-10"] == ["dr-a"]

        resp = await client.post(
            "/leaves/check-conflicts",
            json={"start_date": "2026-01-11", "end_date": "2026-01-11"},
        )
        assert resp.json()["has_conflict"] is True

        resp = await client.post(
            f"/leaves/{ids['dr-c']}/cancel", json={"doctor_id": "dr-a"}
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"/leaves/{ids['dr-c']}/cancel", json={"doctor_id": "dr-c"}
        )
        assert resp.json()["status"] == "cancelled"

        resp = await client.get("/leaves/statistics", params={"year": 2026})
        _p(f"statistics -> {resp.json()}")
        assert resp.json()["approved"] == 2
        assert resp.json()["cancelled"] == 1


@pytest.mark.asyncio
async def test_retroactive_leave_is_422(client: AsyncClient) -> None:
    _banner("leave cannot start in the past")

    with freeze_time("2026-01-05 10:00:00", real_asyncio=True):
        resp = await client.post(
            "/leaves/request",
            json={
                "doctor_id": "dr-a",
                "type": "sick",
                "start_date": "2026-01-01",
                "end_date": "2026-01-02",
            },
        )
        _p(f"retroactive submit -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_failed"


@pytest.mark.asyncio
async def test_overlapping_leave_and_yearly_plan(client: AsyncClient) -> None:
    _banner("a doctor cannot book the same days twice; yearly plan rolls up")

    with freeze_time("2026-01-05 10:00:00", real_asyncio=True):
        body = {
            "doctor_id": "dr-a",
            "type": "annual",
            "start_date": "2026-03-02",
            "end_date": "2026-03-04",
        }
        resp = await client.post("/leaves/request", json=body)
        leave_id = resp.json()["leave"]["id"]
        await client.post(f"/leaves/{leave_id}/approve", json={})

        resp = await client.post("/leaves/request", json=body)
        _p(f"same days again -> {resp.status_code} {resp.json()}")
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_failed"

        resp = await client.get("/leaves/yearly-plan/2026")
        _p(f"yearly plan march -> {resp.json()['months']['3']}")
        assert resp.status_code == 200
        assert resp.json()["total_leaves"] == 1
        assert resp.json()["months"]["3"]["total_days"] == 3
        assert resp.json()["months"]["4"]["summary"] == []
