"""Client-side reconciler tests.

Learn: FakeContactsApi stands in for ContactApiClient and holds the
"server" state. Tests mutate it directly, push envelopes into the
reconciler (or don't, to simulate a dropped push), and assert that the
local view converges to what a re-fetch would return.
"""

import asyncio
import copy
import uuid

import httpx
import pytest
import pytest_asyncio

from techflow.client.reconciler import (
    CONNECTED,
    DISCONNECTED,
    ContactReconciler,
    RepeatingTimer,
)

OWNER = str(uuid.UUID(int=1))
OTHER = str(uuid.UUID(int=2))


def make_contact(name="Jane Doe", owner=OWNER, status="new"):
    return {
        "id": uuid.uuid4().hex,
        "name": name,
        "email": "jane@example.com",
        "subject": "general",
        "message": "Please get back to me soon",
        "status": status,
        "is_read": False,
        "user_id": owner,
    }


class FakeContactsApi:
    def __init__(self, contacts=None):
        self.contacts = list(contacts or [])
        self.list_calls = 0
        self.stats_calls = 0
        self.fail = False

    def _check(self):
        if self.fail:
            raise httpx.ConnectError("server unreachable")

    async def list_contacts(self, page=1, limit=50, status=None, search=None):
        self.list_calls += 1
        self._check()
        return {"data": copy.deepcopy(self.contacts[:limit]), "pagination": {}}

    async def get_stats(self):
        self.stats_calls += 1
        self._check()
        by_status = {s: 0 for s in ("new", "read", "replied", "archived")}
        for c in self.contacts:
            by_status[c["status"]] += 1
        unread = sum(1 for c in self.contacts if not c["is_read"])
        return {
            "total": len(self.contacts),
            **by_status,
            "unread": unread,
            "last_30_days": len(self.contacts),
        }

    async def update_status(self, contact_id, status):
        for c in self.contacts:
            if c["id"] == contact_id:
                c["status"] = status
                return copy.deepcopy(c)
        raise httpx.HTTPStatusError(
            "not found", request=httpx.Request("PATCH", "http://test"),
            response=httpx.Response(404),
        )

    async def delete_contact(self, contact_id):
        self.contacts = [c for c in self.contacts if c["id"] != contact_id]

    async def export_csv(self):
        return "Name,Email,Subject,Message,Status,Created At\n"

    # Server-side mutations a test can make "behind the reconciler's back"
    def server_create(self, contact):
        self.contacts.insert(0, contact)
        return {"type": "created", "contact": copy.deepcopy(contact), "timestamp": "t"}

    def server_update(self, contact_id, **changes):
        for c in self.contacts:
            if c["id"] == contact_id:
                c.update(changes)
                return {"type": "updated", "contact": copy.deepcopy(c), "timestamp": "t"}
        raise KeyError(contact_id)

    def server_delete(self, contact_id):
        self.contacts = [c for c in self.contacts if c["id"] != contact_id]
        return {"type": "deleted", "contact_id": contact_id, "timestamp": "t"}


async def _converged(reconciler, api, stats=True):
    """Local list (and, once a stats fetch has landed, the counts) match the server."""
    await reconciler.drain()
    assert [c["id"] for c in reconciler.contacts] == [c["id"] for c in api.contacts]
    assert reconciler.contacts == api.contacts
    if stats:
        assert reconciler.stats == await api.get_stats()


@pytest_asyncio.fixture()
async def loaded():
    api = FakeContactsApi([make_contact("Existing Sender")])
    reconciler = ContactReconciler(api, poll_interval=60, account_id=OWNER)
    await reconciler.refetch()
    yield api, reconciler
    await reconciler.close()


# ═══════════════════════════════════════════════════════════
# Envelopes
# ═══════════════════════════════════════════════════════════


async def test_created_prepends_and_bumps_stats(loaded):
    api, reconciler = loaded
    payload = api.server_create(make_contact("New Sender"))

    assert reconciler.apply("contact:created", payload) is True
    assert reconciler.contacts[0]["name"] == "New Sender"
    assert reconciler.stats["total"] == 2
    assert reconciler.stats["new"] == 2
    assert reconciler.stats["last_30_days"] == 2
    await _converged(reconciler, api, stats=False)


async def test_duplicate_created_is_ignored(loaded):
    """A push racing a re-fetch must not produce a duplicate row."""
    api, reconciler = loaded
    payload = api.server_create(make_contact("Raced Sender"))
    await reconciler.refetch()

    assert reconciler.apply("contact:created", payload) is False
    assert len(reconciler.contacts) == 2
    assert reconciler.stats["total"] == 2


async def test_own_scope_ignores_other_owners(loaded):
    _, reconciler = loaded
    foreign = {"type": "created", "contact": make_contact(owner=OTHER), "timestamp": "t"}
    unowned = {"type": "created", "contact": make_contact(owner=None), "timestamp": "t"}

    assert reconciler.apply("contact:created", foreign) is False
    assert reconciler.apply("contact:created", unowned) is False
    assert len(reconciler.contacts) == 1


async def test_all_scope_accepts_unowned():
    api = FakeContactsApi()
    reconciler = ContactReconciler(api, account_id=OWNER, scope="all")
    await reconciler.refetch()
    payload = api.server_create(make_contact(owner=None))
    assert reconciler.apply("contact:created", payload) is True
    await _converged(reconciler, api, stats=False)


async def test_updated_replaces_record_and_refreshes_stats(loaded):
    """Scenario: new → replied shows up in the row and in the counts."""
    api, reconciler = loaded
    contact_id = api.contacts[0]["id"]
    payload = api.server_update(contact_id, status="replied")
    stats_calls = api.stats_calls

    assert reconciler.apply("contact:updated", payload) is True
    assert reconciler.contacts[0]["status"] == "replied"

    await reconciler.drain()
    assert api.stats_calls == stats_calls + 1
    assert reconciler.stats["replied"] == 1
    assert reconciler.stats["new"] == 0
    await _converged(reconciler, api)


async def test_updated_for_unknown_contact_is_ignored(loaded):
    _, reconciler = loaded
    payload = {"type": "updated", "contact": make_contact(), "timestamp": "t"}
    assert reconciler.apply("contact:updated", payload) is False
    assert len(reconciler.contacts) == 1


async def test_deleted_removes_record(loaded):
    api, reconciler = loaded
    payload = api.server_delete(api.contacts[0]["id"])

    assert reconciler.apply("contact:deleted", payload) is True
    assert reconciler.contacts == []
    await _converged(reconciler, api)

    # Absent id: no-op
    assert reconciler.apply("contact:deleted", payload) is False


async def test_unknown_event_ignored(loaded):
    _, reconciler = loaded
    assert reconciler.apply("contact:exploded", {}) is False


async def test_two_tabs_and_an_offline_tab_converge():
    """Two connected tabs drop the row on the push; a disconnected one
    picks the deletion up on its next poll."""
    contact = make_contact()
    api = FakeContactsApi([contact])
    tab1 = ContactReconciler(api, account_id=OWNER)
    tab2 = ContactReconciler(api, account_id=OWNER)
    offline = ContactReconciler(api, poll_interval=0.01, account_id=OWNER)
    for tab in (tab1, tab2):
        await tab.refetch()
        await tab.on_connected()
    await offline.start()
    assert offline.timer.running

    payload = api.server_delete(contact["id"])
    tab1.apply("contact:deleted", payload)
    tab2.apply("contact:deleted", payload)
    assert tab1.contacts == [] and tab2.contacts == []

    for _ in range(100):
        if not offline.contacts:
            break
        await asyncio.sleep(0.01)
    assert offline.contacts == []

    for tab in (tab1, tab2, offline):
        await _converged(tab, api)
        await tab.close()


async def test_dropped_push_heals_on_reconnect(loaded):
    api, reconciler = loaded
    api.server_create(make_contact("Missed While Offline"))
    api.server_update(api.contacts[1]["id"], status="archived", is_read=True)

    await reconciler.on_connected()
    await _converged(reconciler, api)


class SlowStatsApi(FakeContactsApi):
    """get_stats snapshots the server, then waits for the test to release it."""

    def __init__(self, contacts=None):
        super().__init__(contacts)
        self.gate = asyncio.Event()

    async def get_stats(self):
        snapshot = await super().get_stats()
        if not self.gate.is_set():
            await self.gate.wait()
        return snapshot


async def test_stale_stats_response_does_not_undo_created_bump():
    api = SlowStatsApi([make_contact("Existing Sender")])
    api.gate.set()
    reconciler = ContactReconciler(api, poll_interval=60, account_id=OWNER)
    await reconciler.refetch()
    api.gate.clear()

    # The update's stats request snapshots one contact and stalls...
    reconciler.apply("contact:updated", api.server_update(api.contacts[0]["id"], status="read"))
    await asyncio.sleep(0)
    # ...then a creation lands and bumps the local total to two.
    reconciler.apply("contact:created", api.server_create(make_contact("New Sender")))
    assert reconciler.stats["total"] == 2

    api.gate.set()
    await _converged(reconciler, api)
    assert reconciler.stats["total"] == 2
    await reconciler.close()


# ═══════════════════════════════════════════════════════════
# Connection state and polling
# ═══════════════════════════════════════════════════════════


async def test_starts_disconnected_and_polling():
    api = FakeContactsApi()
    reconciler = ContactReconciler(api, poll_interval=60)
    assert reconciler.state == DISCONNECTED
    assert reconciler.status_label == "Offline"

    await reconciler.start()
    assert reconciler.timer.running
    assert api.list_calls == 1
    await reconciler.close()
    assert not reconciler.timer.running


async def test_connect_stops_polling_and_refetches():
    api = FakeContactsApi()
    reconciler = ContactReconciler(api, poll_interval=60)
    await reconciler.start()

    await reconciler.on_connected()
    assert reconciler.state == CONNECTED
    assert reconciler.status_label == "Live"
    assert not reconciler.timer.running
    assert api.list_calls == 2

    reconciler.on_disconnected()
    assert reconciler.state == DISCONNECTED
    assert reconciler.timer.running
    await reconciler.close()


async def test_polling_picks_up_changes():
    api = FakeContactsApi()
    reconciler = ContactReconciler(api, poll_interval=0.01, account_id=OWNER)
    await reconciler.start()

    api.server_create(make_contact("Polled Sender"))
    for _ in range(100):
        if reconciler.contacts:
            break
        await asyncio.sleep(0.01)
    assert reconciler.contacts[0]["name"] == "Polled Sender"
    await reconciler.close()


async def test_all_scope_keeps_polling_while_connected():
    api = FakeContactsApi()
    reconciler = ContactReconciler(api, poll_interval=0.01, account_id=OWNER, scope="all")
    await reconciler.start()
    await reconciler.on_connected()
    assert reconciler.state == CONNECTED
    assert reconciler.timer.running

    # Another account's submission is only pushed to that account's room.
    api.server_create(make_contact("Someone Else's Lead", owner=OTHER))
    for _ in range(100):
        if reconciler.contacts:
            break
        await asyncio.sleep(0.01)
    assert reconciler.contacts[0]["name"] == "Someone Else's Lead"
    await reconciler.close()


async def test_refetch_failure_keeps_state_and_reports_error(loaded):
    api, reconciler = loaded
    before = copy.deepcopy(reconciler.contacts)
    api.fail = True

    assert await reconciler.refetch() is False
    assert reconciler.error
    assert reconciler.contacts == before

    api.fail = False
    assert await reconciler.refresh() is True
    assert reconciler.error is None


async def test_on_change_callback():
    seen = []
    api = FakeContactsApi([make_contact()])
    reconciler = ContactReconciler(api, on_change=lambda r: seen.append(len(r.contacts)))
    await reconciler.refetch()
    assert seen == [1]


def test_unknown_scope_rejected():
    with pytest.raises(ValueError):
        ContactReconciler(FakeContactsApi(), scope="team")


async def test_timer_start_is_idempotent():
    ticks = []

    async def tick():
        ticks.append(1)

    timer = RepeatingTimer(0.01, tick)
    timer.start()
    first = timer._task
    timer.start()
    assert timer._task is first

    await asyncio.sleep(0.05)
    timer.stop()
    timer.stop()
    assert not timer.running
    assert ticks


async def test_timer_survives_failing_callback():
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    timer = RepeatingTimer(0.01, flaky)
    timer.start()
    await asyncio.sleep(0.05)
    assert timer.running
    assert len(calls) >= 2
    timer.stop()


# ═══════════════════════════════════════════════════════════
# Dashboard actions
# ═══════════════════════════════════════════════════════════


async def test_update_status_action_updates_row(loaded):
    api, reconciler = loaded
    contact_id = api.contacts[0]["id"]
    result = await reconciler.update_status(contact_id, "read")
    assert result["status"] == "read"
    assert reconciler.contacts[0]["status"] == "read"


async def test_delete_action_removes_row(loaded):
    api, reconciler = loaded
    await reconciler.delete_contact(api.contacts[0]["id"])
    assert reconciler.contacts == []
    assert api.contacts == []


async def test_failed_action_propagates(loaded):
    _, reconciler = loaded
    with pytest.raises(httpx.HTTPStatusError):
        await reconciler.update_status("missing", "read")
