import pytest

from consultbook.models.booking import BookingStatus


@pytest.fixture
def confirmed(make_booking):
    return make_booking(status=BookingStatus.CONFIRMED)


@pytest.fixture
def opened(client, auth_headers, client_user, confirmed):
    response = client.post(
        "/api/v1/disputes",
        json={"booking_id": confirmed.id, "description": "Professional was late"},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 201
    return response.json()


def test_raise_and_read_back(client, auth_headers, client_user, professional_user, opened):
    assert opened["status"] == "OPEN"
    assert opened["type"] == "BOOKING"

    mine = client.get("/api/v1/disputes/mine", headers=auth_headers(client_user))
    assert [d["id"] for d in mine.json()["items"]] == [opened["id"]]

    seen_by_professional = client.get(
        f"/api/v1/disputes/{opened['id']}", headers=auth_headers(professional_user)
    )
    assert seen_by_professional.status_code == 200


def test_blank_description_rejected(client, auth_headers, client_user, confirmed):
    response = client.post(
        "/api/v1/disputes",
        json={"booking_id": confirmed.id, "description": "   "},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 422


def test_only_moderators_resolve(client, auth_headers, client_user, opened):
    response = client.post(
        f"/api/v1/disputes/{opened['id']}/resolve",
        json={"approved": False},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Only moderators can resolve disputes"


def test_moderator_queue_and_resolution(client, auth_headers, moderator_user, opened):
    queue = client.get(
        "/api/v1/disputes", params={"status": "OPEN"}, headers=auth_headers(moderator_user)
    )
    assert queue.json()["total"] == 1

    resolved = client.post(
        f"/api/v1/disputes/{opened['id']}/resolve",
        json={"approved": False, "note": "Within tolerance"},
        headers=auth_headers(moderator_user),
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "CLOSED"
    assert resolved.json()["resolution_note"] == "Within tolerance"

    again = client.post(
        f"/api/v1/disputes/{opened['id']}/resolve",
        json={"approved": True},
        headers=auth_headers(moderator_user),
    )
    assert again.status_code == 422


def test_reschedule_request_resolution(
    client, auth_headers, client_user, moderator_user, confirmed
):
    opened = client.post(
        "/api/v1/disputes",
        json={
            "booking_id": confirmed.id,
            "description": "Please move to ten",
            "type": "RESCHEDULE_REQUEST",
            "metadata": {
                "newStartTime": "2025-03-03T04:00:00+00:00",
                "newEndTime": "2025-03-03T05:00:00+00:00",
            },
        },
        headers=auth_headers(client_user),
    ).json()
    assert opened["metadata"]["newStartTime"] == "2025-03-03T04:00:00+00:00"

    resolved = client.post(
        f"/api/v1/disputes/{opened['id']}/resolve",
        json={"approved": True},
        headers=auth_headers(moderator_user),
    )
    assert resolved.json()["status"] == "RESOLVED"

    booking = client.get(f"/api/v1/bookings/{confirmed.id}", headers=auth_headers(client_user))
    assert booking.json()["start_time"].startswith("2025-03-03T04:00:00")
