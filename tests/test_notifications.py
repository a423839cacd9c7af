from datetime import datetime, timezone

import pytest

from tablewise.services.notifications.base import BookingNotice, OfferNotice
from tablewise.services.notifications.mock import MockNotificationService

from conftest import BOOKING_DAY, DINNER


@pytest.fixture
def mock_service():
    return MockNotificationService(failure_rate=0, latency=(0, 0))


def offer(**overrides):
    data = dict(
        entry_id=12,
        restaurant_name="Test Bistro",
        customer_name="Bob",
        customer_phone="555-000-3333",
        customer_email=None,
        requested_date=BOOKING_DAY,
        requested_time=DINNER,
        party_size=4,
        expires_at=datetime(2030, 6, 7, 18, 15, tzinfo=timezone.utc),
        confirm_url="http://testserver/api/waitlist/12/confirm",
    )
    data.update(overrides)
    return OfferNotice(**data)


async def test_confirmation_goes_to_sms_and_email(mock_service):
    notice = BookingNotice(
        booking_id=3,
        restaurant_name="Test Bistro",
        customer_name="Ada",
        customer_phone="555-000-1111",
        customer_email="ada@example.com",
        booking_date=BOOKING_DAY,
        booking_time=DINNER,
        party_size=2,
        table_number="T1",
    )
    result = await mock_service.send_booking_confirmation(notice)

    assert result.success
    assert [m["channel"] for m in mock_service.sent] == ["sms", "email"]
    assert "#3" in mock_service.sent[0]["summary"]


async def test_offer_text_carries_link_and_deadline(mock_service):
    result = await mock_service.send_waitlist_offer(offer())

    assert result.success
    (sms,) = mock_service.sent
    assert sms["to"] == "555-000-3333"
    text = offer().sms_text()
    assert "http://testserver/api/waitlist/12/confirm" in text
    assert "18:15 UTC" in text


async def test_simulated_failures_are_reported():
    failing = MockNotificationService(failure_rate=1, latency=(0, 0))
    result = await failing.send_waitlist_offer(offer())
    assert not result.success
    assert failing.sent == []


def test_waitlist_confirmation_mentions_the_wait():
    notice = BookingNotice(
        booking_id=4,
        restaurant_name="Test Bistro",
        customer_name="Bob",
        customer_phone="555-000-3333",
        customer_email=None,
        booking_date=BOOKING_DAY,
        booking_time=DINNER,
        party_size=4,
        was_on_waitlist=True,
    )
    assert notice.sms_text().startswith("Hi Bob! Good news!")
