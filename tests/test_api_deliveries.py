"""Tests for the delivery API endpoints.

Tests cover:
- Caller identity headers
- Lifecycle and reschedule endpoints end to end
- Mapping of domain errors to HTTP statuses and error bodies
- Listing, statistics and dashboard alert endpoints
- Request correlation ids
"""

from uuid import uuid4

import pytest

from locofit.db.models import DeliveryStatus, RescheduleStatus
from tests.factories import actor_headers, create_order_payload, tomorrow, yesterday

BASE = "/api/deliveries"


class TestHealth:
    """Tests for the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        """Test that the service reports healthy."""
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestCallerIdentity:
    """Tests for gateway identity headers."""

    @pytest.mark.asyncio
    async def test_missing_headers(self, api_client):
        """Test that requests without identity are rejected."""
        response = await api_client.get(f"{BASE}/trainer")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("actor_id", "role"),
        [("not-a-uuid", "trainer"), (str(uuid4()), "superuser")],
    )
    async def test_malformed_headers(self, api_client, actor_id, role):
        """Test that unknown roles and bad ids are rejected."""
        response = await api_client.get(
            f"{BASE}/trainer",
            headers={"X-Actor-Id": actor_id, "X-Actor-Role": role},
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid caller identity"


class TestCreateForOrder:
    """Tests for POST /deliveries/orders/{order_id}."""

    @pytest.mark.asyncio
    async def test_creates_deliveries(self, api_client, order_creator, trainer, client, notifier):
        """Test that the order creator registers one delivery per item."""
        payload = create_order_payload(trainer.actor_id, client.actor_id, item_count=3)

        response = await api_client.post(
            f"{BASE}/orders/{uuid4()}", json=payload, headers=actor_headers(order_creator)
        )

        assert response.status_code == 201
        body = response.json()
        assert body["count"] == 3
        assert {item["status"] for item in body["items"]} == {"pending"}
        assert [item["quantity"] for item in body["items"]] == [1, 2, 3]
        notifier.notify_parties.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retried_order_returns_same_deliveries(
        self, api_client, order_creator, trainer, client
    ):
        """Test that posting the same order twice does not duplicate deliveries."""
        payload = create_order_payload(trainer.actor_id, client.actor_id, item_count=2)
        url = f"{BASE}/orders/{uuid4()}"

        first = await api_client.post(url, json=payload, headers=actor_headers(order_creator))
        second = await api_client.post(url, json=payload, headers=actor_headers(order_creator))
        listed = await api_client.get(f"{BASE}/trainer", headers=actor_headers(trainer))

        first_ids = [item["delivery_id"] for item in first.json()["items"]]
        assert [item["delivery_id"] for item in second.json()["items"]] == first_ids
        assert listed.json()["count"] == 2

    @pytest.mark.asyncio
    async def test_empty_order(self, api_client, order_creator):
        """Test that an order without items is a validation error."""
        payload = create_order_payload(item_count=0)

        response = await api_client.post(
            f"{BASE}/orders/{uuid4()}", json=payload, headers=actor_headers(order_creator)
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert response.json()["detail"] == {"field": "items"}

    @pytest.mark.asyncio
    async def test_trainer_cannot_create(self, api_client, trainer, client):
        """Test that only the order creator may register deliveries."""
        payload = create_order_payload(trainer.actor_id, client.actor_id)

        response = await api_client.post(
            f"{BASE}/orders/{uuid4()}", json=payload, headers=actor_headers(trainer)
        )

        assert response.status_code == 404


class TestDeliveryFlow:
    """Tests for a delivery moving through its lifecycle over HTTP."""

    @pytest.mark.asyncio
    async def test_deliver_confirm_and_conflict(self, api_client, make_delivery, trainer, client):
        """Test hand-off, confirmation, and the second confirmation conflict."""
        delivery = await make_delivery(trainer, client, quantity=2)
        url = f"{BASE}/{delivery.delivery_id}"

        delivered = await api_client.post(
            f"{url}/delivered", json={"method": "in_person"}, headers=actor_headers(trainer)
        )
        confirmed = await api_client.post(f"{url}/confirm", headers=actor_headers(client))
        again = await api_client.post(f"{url}/confirm", headers=actor_headers(client))

        assert delivered.status_code == 200
        assert delivered.json()["new_status"] == "delivered"
        assert delivered.json()["delivery"]["delivered_at"] is not None
        assert confirmed.status_code == 200
        assert confirmed.json()["delivery"]["status"] == "confirmed"
        assert confirmed.json()["delivery"]["confirmed_at"] is not None
        assert again.status_code == 409
        assert again.json()["error"] == "state_conflict"
        assert again.json()["detail"] == {"current_status": "confirmed"}

    @pytest.mark.asyncio
    async def test_mark_ready(self, api_client, make_delivery, trainer, client):
        """Test staging a delivery."""
        delivery = await make_delivery(trainer, client)

        response = await api_client.post(
            f"{BASE}/{delivery.delivery_id}/ready", headers=actor_headers(trainer)
        )

        assert response.status_code == 200
        assert response.json()["previous_status"] == "pending"
        assert response.json()["new_status"] == "ready"
        assert response.json()["event_id"]

    @pytest.mark.asyncio
    async def test_report_issue(self, api_client, make_delivery, trainer, client):
        """Test the short-notes rejection and a valid dispute."""
        delivery = await make_delivery(trainer, client, status=DeliveryStatus.DELIVERED)
        url = f"{BASE}/{delivery.delivery_id}/issue"

        short = await api_client.post(url, json={"notes": "box"}, headers=actor_headers(client))
        valid = await api_client.post(
            url, json={"notes": "Box was empty on arrival"}, headers=actor_headers(client)
        )

        assert short.status_code == 400
        assert short.json()["detail"] == {"field": "notes"}
        assert valid.status_code == 200
        assert valid.json()["delivery"]["status"] == "disputed"
        assert valid.json()["delivery"]["dispute_reason"] == "Box was empty on arrival"

    @pytest.mark.asyncio
    async def test_invalid_method(self, api_client, make_delivery, trainer, client):
        """Test that an unknown method is a validation error, not a 422."""
        delivery = await make_delivery(trainer, client)

        response = await api_client.post(
            f"{BASE}/{delivery.delivery_id}/delivered",
            json={"method": "pigeon"},
            headers=actor_headers(trainer),
        )

        assert response.status_code == 400
        assert "in_person" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_schedule_and_resolve(self, api_client, make_delivery, trainer, client, manager):
        """Test scheduling by the trainer and resolution by a manager."""
        pending = await make_delivery(trainer, client)
        disputed = await make_delivery(trainer, client, status=DeliveryStatus.DISPUTED)

        scheduled = await api_client.post(
            f"{BASE}/{pending.delivery_id}/schedule",
            json={"scheduled_date": tomorrow().isoformat()},
            headers=actor_headers(trainer),
        )
        resolved = await api_client.post(
            f"{BASE}/{disputed.delivery_id}/resolve",
            json={"resolution_type": "redeliver", "notes": "Sending a new tub"},
            headers=actor_headers(manager),
        )

        assert scheduled.status_code == 200
        assert scheduled.json()["delivery"]["scheduled_date"] == tomorrow().isoformat()
        assert resolved.status_code == 200
        assert resolved.json()["delivery"]["status"] == "disputed"
        assert resolved.json()["delivery"]["resolution_type"] == "redeliver"


class TestRescheduleEndpoints:
    """Tests for reschedule negotiation over HTTP."""

    @pytest.mark.asyncio
    async def test_request_and_approve(self, api_client, make_delivery, trainer, client):
        """Test a rejected past date, a valid request and its approval."""
        delivery = await make_delivery(trainer, client)
        url = f"{BASE}/{delivery.delivery_id}/reschedule"

        past = await api_client.post(
            url,
            json={"proposed_date": yesterday().isoformat(), "reason": "conflict"},
            headers=actor_headers(client),
        )
        requested = await api_client.post(
            url,
            json={"proposed_date": tomorrow().isoformat(), "reason": "conflict"},
            headers=actor_headers(client),
        )
        approved = await api_client.post(f"{url}/approve", headers=actor_headers(trainer))

        assert past.status_code == 400
        assert requested.status_code == 200
        assert requested.json()["reschedule_outcome"] == RescheduleStatus.PENDING.value
        assert approved.status_code == 200
        assert approved.json()["reschedule_outcome"] == "approved"
        assert approved.json()["delivery"]["scheduled_date"] == tomorrow().isoformat()
        assert approved.json()["delivery"]["reschedule_status"] is None

    @pytest.mark.asyncio
    async def test_reject_with_note(self, api_client, make_delivery, trainer, client):
        """Test rejecting with a note."""
        delivery = await make_delivery(trainer, client)
        url = f"{BASE}/{delivery.delivery_id}/reschedule"
        await api_client.post(
            url,
            json={"proposed_date": tomorrow().isoformat(), "reason": "Visiting family"},
            headers=actor_headers(client),
        )

        response = await api_client.post(
            f"{url}/reject", json={"note": "Can't that week"}, headers=actor_headers(trainer)
        )

        assert response.status_code == 200
        assert response.json()["reschedule_outcome"] == "rejected"
        assert response.json()["delivery"]["trainer_notes"].endswith("Can't that week")

    @pytest.mark.asyncio
    async def test_approve_without_request(self, api_client, make_delivery, trainer, client):
        """Test that approving nothing is a conflict."""
        delivery = await make_delivery(trainer, client)

        response = await api_client.post(
            f"{BASE}/{delivery.delivery_id}/reschedule/approve", headers=actor_headers(trainer)
        )

        assert response.status_code == 409


class TestNotFoundOrForbidden:
    """Tests for the indistinguishable 404 response."""

    @pytest.mark.asyncio
    async def test_missing_and_foreign_bodies_match(
        self, api_client, make_delivery, trainer, client, other_trainer
    ):
        """Test that a missing delivery and someone else's look the same."""
        delivery = await make_delivery(trainer, client)

        missing = await api_client.post(
            f"{BASE}/{uuid4()}/ready", headers=actor_headers(other_trainer)
        )
        foreign = await api_client.post(
            f"{BASE}/{delivery.delivery_id}/ready", headers=actor_headers(other_trainer)
        )

        assert missing.status_code == foreign.status_code == 404
        missing_body = missing.json()
        foreign_body = foreign.json()
        missing_body.pop("request_id")
        foreign_body.pop("request_id")
        assert missing_body == foreign_body
        assert "detail" not in foreign_body

    @pytest.mark.asyncio
    async def test_wrong_role_is_not_found(self, api_client, make_delivery, trainer, client):
        """Test that a client cannot stage a delivery."""
        delivery = await make_delivery(trainer, client)

        response = await api_client.post(
            f"{BASE}/{delivery.delivery_id}/ready", headers=actor_headers(client)
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestListings:
    """Tests for listing and statistics endpoints."""

    @pytest.mark.asyncio
    async def test_trainer_list_and_filter(self, api_client, make_delivery, trainer, client):
        """Test the trainer list with a status filter."""
        await make_delivery(trainer, client)
        ready = await make_delivery(trainer, client, status=DeliveryStatus.READY)

        everything = await api_client.get(f"{BASE}/trainer", headers=actor_headers(trainer))
        filtered = await api_client.get(
            f"{BASE}/trainer", params={"status": "ready"}, headers=actor_headers(trainer)
        )

        assert everything.json()["count"] == 2
        assert [d["delivery_id"] for d in filtered.json()["items"]] == [str(ready.delivery_id)]

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, api_client, trainer):
        """Test that page sizes are bounded."""
        response = await api_client.get(
            f"{BASE}/trainer", params={"limit": 0}, headers=actor_headers(trainer)
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_client_list(self, api_client, make_delivery, trainer, client, other_client):
        """Test that a client only sees their deliveries."""
        mine = await make_delivery(trainer, client)
        await make_delivery(trainer, other_client)

        response = await api_client.get(f"{BASE}/client", headers=actor_headers(client))

        assert [d["delivery_id"] for d in response.json()["items"]] == [str(mine.delivery_id)]

    @pytest.mark.asyncio
    async def test_pending_and_stats(self, api_client, make_delivery, trainer, client):
        """Test the open list and the per-status counts."""
        await make_delivery(trainer, client)
        await make_delivery(trainer, client, status=DeliveryStatus.READY)
        await make_delivery(trainer, client, status=DeliveryStatus.CONFIRMED)

        pending = await api_client.get(f"{BASE}/trainer/pending", headers=actor_headers(trainer))
        stats = await api_client.get(f"{BASE}/trainer/stats", headers=actor_headers(trainer))

        assert pending.json()["count"] == 2
        assert stats.json() == {
            "total": 3,
            "pending": 1,
            "ready": 1,
            "delivered": 0,
            "confirmed": 1,
            "disputed": 0,
        }

    @pytest.mark.asyncio
    async def test_reschedule_requests(self, api_client, make_delivery, trainer, client):
        """Test that open requests are listed for the trainer."""
        delivery = await make_delivery(trainer, client)
        await make_delivery(trainer, client)
        await api_client.post(
            f"{BASE}/{delivery.delivery_id}/reschedule",
            json={"proposed_date": tomorrow().isoformat(), "reason": "Gym closed"},
            headers=actor_headers(client),
        )

        response = await api_client.get(
            f"{BASE}/trainer/reschedule-requests", headers=actor_headers(trainer)
        )

        assert [d["delivery_id"] for d in response.json()["items"]] == [
            str(delivery.delivery_id)
        ]

    @pytest.mark.asyncio
    async def test_manager_view(self, api_client, make_delivery, trainer, client, manager):
        """Test that only managers reach the manager view."""
        await make_delivery(trainer, client)

        as_manager = await api_client.get(f"{BASE}/manage", headers=actor_headers(manager))
        as_trainer = await api_client.get(f"{BASE}/manage", headers=actor_headers(trainer))

        assert as_manager.json()["count"] == 1
        assert as_trainer.status_code == 404


class TestAlerts:
    """Tests for dashboard alert endpoints."""

    @pytest.mark.asyncio
    async def test_dismiss_alert(self, api_client, make_delivery, trainer, client):
        """Test that a dismissed alert is no longer listed."""
        delivery = await make_delivery(trainer, client, scheduled_date=tomorrow())

        before = await api_client.get(f"{BASE}/trainer/alerts", headers=actor_headers(trainer))
        dismissed = await api_client.post(
            f"{BASE}/trainer/alerts/{delivery.delivery_id}/dismiss",
            headers=actor_headers(trainer),
        )
        after = await api_client.get(f"{BASE}/trainer/alerts", headers=actor_headers(trainer))

        assert before.json()["count"] == 1
        assert dismissed.status_code == 204
        assert after.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_client_cannot_dismiss(self, api_client, client):
        """Test that alerts are a trainer feature."""
        response = await api_client.post(
            f"{BASE}/trainer/alerts/{uuid4()}/dismiss", headers=actor_headers(client)
        )

        assert response.status_code == 404


class TestRequestID:
    """Tests for request correlation ids."""

    @pytest.mark.asyncio
    async def test_generated_request_id(self, api_client):
        """Test that a request id is generated when none is sent."""
        response = await api_client.get("/health")

        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_echoed_in_errors(self, api_client):
        """Test that a supplied id comes back in the header and error body."""
        response = await api_client.get(
            f"{BASE}/trainer", headers={"X-Request-ID": "req-abc-123"}
        )

        assert response.headers["X-Request-ID"] == "req-abc-123"
        assert response.json()["request_id"] == "req-abc-123"

    @pytest.mark.asyncio
    async def test_oversized_request_id_replaced(self, api_client):
        """Test that overly long ids are not echoed."""
        response = await api_client.get("/health", headers={"X-Request-ID": "x" * 500})

        assert response.headers["X-Request-ID"] != "x" * 500
