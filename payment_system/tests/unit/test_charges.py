"""
Unit tests for charge event decoding at the webhook boundary.
"""

import json
import uuid

import pytest

from payment_system.domain.charges import (
    CHARGE_FAILED,
    CHARGE_SUCCESS,
    ChargeDecodeError,
    MultiOrderCharge,
    SingleOrderCharge,
    charge_target_for,
    decode_charge_event,
    decode_event_type,
    decode_target,
)

ORDER_A = "0f8fad5b-d9cb-469f-a165-70867728950e"
ORDER_B = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


def body(event=CHARGE_SUCCESS, **data):
    payload = {"reference": "pay_cs_1", "amount": 10000, "currency": "ghs", "status": "success", "metadata": {"orderId": ORDER_A}}
    payload.update(data)
    return {"event": event, "data": payload}


@pytest.mark.unit
class TestDecodeTarget:
    def test_single_order(self):
        target = decode_target({"orderId": ORDER_A})

        assert target == SingleOrderCharge(order_id=ORDER_A)
        assert target.order_ids == (ORDER_A,)

    def test_order_id_is_normalised(self):
        target = decode_target({"orderId": ORDER_A.upper().replace("-", "")})
        assert target.order_id == ORDER_A

    def test_multi_order(self):
        target = decode_target({"orderIds": [ORDER_A, ORDER_B], "checkoutSessionId": "cs_9"})

        assert isinstance(target, MultiOrderCharge)
        assert target.order_ids == (ORDER_A, ORDER_B)
        assert target.checkout_session_id == "cs_9"

    def test_multi_order_wins_over_order_id(self):
        target = decode_target({"orderId": ORDER_A, "orderIds": [ORDER_A, ORDER_B], "checkoutSessionId": "cs_9"})
        assert isinstance(target, MultiOrderCharge)

    @pytest.mark.parametrize(
        "metadata",
        [
            {},
            {"orderIds": [], "checkoutSessionId": "cs_9"},
            {"orderIds": f"{ORDER_A},{ORDER_B}", "checkoutSessionId": "cs_9"},
            {"orderIds": [ORDER_A]},
            "orderId=1",
            {"orderId": "not-a-uuid"},
            {"orderId": 7},
            {"orderIds": [ORDER_A, "42"], "checkoutSessionId": "cs_9"},
        ],
    )
    def test_rejects_malformed_metadata(self, metadata):
        with pytest.raises(ChargeDecodeError):
            decode_target(metadata)


@pytest.mark.unit
class TestChargeTargetFor:
    def test_round_trip_through_metadata(self):
        first, second = uuid.UUID(ORDER_A), uuid.UUID(ORDER_B)
        single = charge_target_for([first], "cs_1")
        multi = charge_target_for([first, second], "cs_1")

        assert single.to_metadata() == {"orderId": ORDER_A}
        assert multi.to_metadata() == {"orderIds": [ORDER_A, ORDER_B], "checkoutSessionId": "cs_1"}
        assert decode_target(multi.to_metadata()) == multi


@pytest.mark.unit
class TestDecodeChargeEvent:
    def test_success_event(self):
        event = decode_charge_event(body())

        assert event.is_success
        assert event.reference == "pay_cs_1"
        assert event.amount_minor == 10000
        assert event.currency == "GHS"
        assert event.target == SingleOrderCharge(order_id=ORDER_A)

    def test_failed_event(self):
        event = decode_charge_event(body(event=CHARGE_FAILED, status="failed"))

        assert not event.is_success
        assert event.gateway_status == "failed"

    def test_metadata_as_json_string(self):
        metadata = json.dumps({"orderIds": [ORDER_A, ORDER_B], "checkoutSessionId": "cs_2"})
        event = decode_charge_event(body(metadata=metadata))
        assert event.target.order_ids == (ORDER_A, ORDER_B)

    def test_string_amount_is_accepted(self):
        assert decode_charge_event(body(amount="2500")).amount_minor == 2500

    @pytest.mark.parametrize(
        "overrides",
        [
            {"reference": ""},
            {"amount": None},
            {"amount": "ten"},
            {"amount": 10000.9},
            {"amount": 10000.0},
            {"amount": "100.5"},
            {"amount": True},
            {"metadata": "{not json"},
        ],
    )
    def test_rejects_bad_data(self, overrides):
        with pytest.raises(ChargeDecodeError):
            decode_charge_event(body(**overrides))

    def test_rejects_missing_data(self):
        with pytest.raises(ChargeDecodeError):
            decode_charge_event({"event": CHARGE_SUCCESS})


@pytest.mark.unit
class TestDecodeEventType:
    def test_reads_event_name(self):
        event, parsed = decode_event_type(json.dumps(body()).encode())

        assert event == CHARGE_SUCCESS
        assert parsed["data"]["reference"] == "pay_cs_1"

    @pytest.mark.parametrize("payload", [b"", b"not json", b"[]", b'{"data": {}}', b'{"event": 5}'])
    def test_rejects_malformed_body(self, payload):
        with pytest.raises(ChargeDecodeError):
            decode_event_type(payload)
