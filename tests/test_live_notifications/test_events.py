"""
Tests for the OrderEvent wire codec and event factories.
"""

import json
from datetime import datetime
from decimal import Decimal

import pytest

from live_notifications.events import (
    EventDecodeError,
    decode_order_event,
    encode_order_event,
    message_key,
    order_cancelled,
    order_created,
    order_event,
)

SCENARIO_PAYLOAD = (
    b'{"orderId":42,"userId":7,"restaurantId":3,"totalAmount":18.50,'
    b'"status":"NEW","deliveryAddress":"1 Main St","eventType":"ORDER_CREATED"}'
)


class TestDecode:
    """Tests for decoding raw bus payloads."""

    def test_decode_scenario_payload(self):
        event = decode_order_event(SCENARIO_PAYLOAD)

        assert event.order_id == 42
        assert event.user_id == 7
        assert event.total_amount == Decimal("18.50")
        assert event.event_type == "ORDER_CREATED"

    def test_decode_str(self):
        assert decode_order_event(SCENARIO_PAYLOAD.decode()).order_id == 42

    def test_decode_created_at(self):
        raw = json.loads(SCENARIO_PAYLOAD)
        raw["createdAt"] = "2024-05-01T12:00:00"

        event = decode_order_event(json.dumps(raw))

        assert event.created_at == datetime(2024, 5, 1, 12, 0)

    def test_unknown_event_type_decodes(self):
        raw = json.loads(SCENARIO_PAYLOAD)
        raw["eventType"] = "ORDER_REFUNDED"

        assert decode_order_event(json.dumps(raw)).known_type is None

    @pytest.mark.parametrize("raw", [
        b"not json",
        b"\xff\xfe",
        b"[1, 2, 3]",
        b'"ORDER_CREATED"',
        b"{}",
        b'{"orderId": "forty-two", "userId": 7}',
    ])
    def test_poison_payloads(self, raw):
        with pytest.raises(EventDecodeError) as exc_info:
            decode_order_event(raw)

        assert exc_info.value.raw == raw

    def test_error_names_missing_fields(self):
        with pytest.raises(EventDecodeError) as exc_info:
            decode_order_event(b'{"orderId": 42}')

        assert "userId" in str(exc_info.value)


class TestEncode:
    """Tests for encoding events for the topic."""

    def test_encode_shape(self, order_fields):
        record = json.loads(encode_order_event(order_created(**order_fields)))

        assert record == {
            "orderId": 42,
            "userId": 7,
            "restaurantId": 3,
            "totalAmount": "18.50",
            "status": "NEW",
            "deliveryAddress": "1 Main St",
            "createdAt": None,
            "eventType": "ORDER_CREATED",
        }

    def test_encoded_event_decodes_back(self, order_fields):
        event = order_created(**order_fields, created_at=datetime(2024, 5, 1, 12, 0))

        assert decode_order_event(encode_order_event(event)) == event

    def test_message_key_is_user_id(self, order_fields):
        assert message_key(order_created(**order_fields)) == b"7"


class TestFactories:

    def test_created_status_defaults_to_new(self, order_fields):
        assert order_created(**order_fields).status == "NEW"

    def test_status_defaults_to_tag_suffix(self, order_fields):
        assert order_cancelled(**order_fields).status == "CANCELLED"

    def test_status_override(self, order_fields):
        assert order_cancelled(**order_fields, status="REJECTED").status == "REJECTED"

    def test_arbitrary_tag(self):
        event = order_event("ORDER_REFUNDED", order_id=1, user_id=2, total_amount=5)

        assert event.event_type == "ORDER_REFUNDED"
        assert event.total_amount == Decimal("5")
