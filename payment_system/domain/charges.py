"""
Gateway charge events, decoded once at the webhook boundary.

The charge metadata names either one order (``orderId``) or several orders
paid together (``orderIds`` + ``checkoutSessionId``). Both shapes are turned
into a tagged ``ChargeTarget`` here so the reconciliation code never inspects
payload shapes.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, Union

CHARGE_SUCCESS = "charge.success"
CHARGE_FAILED = "charge.failed"
HANDLED_EVENTS = (CHARGE_SUCCESS, CHARGE_FAILED)


class ChargeDecodeError(ValueError):
    """Webhook body is not a well-formed charge event."""


@dataclass(frozen=True)
class SingleOrderCharge:
    order_id: str

    @property
    def order_ids(self) -> Tuple[str, ...]:
        return (self.order_id,)

    def to_metadata(self) -> Dict[str, Any]:
        return {"orderId": self.order_id}


@dataclass(frozen=True)
class MultiOrderCharge:
    order_ids: Tuple[str, ...]
    checkout_session_id: str

    def to_metadata(self) -> Dict[str, Any]:
        return {"orderIds": list(self.order_ids), "checkoutSessionId": self.checkout_session_id}


ChargeTarget = Union[SingleOrderCharge, MultiOrderCharge]


@dataclass(frozen=True)
class ChargeEvent:
    event: str
    reference: str
    amount_minor: int
    currency: str
    target: ChargeTarget
    gateway_status: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_success(self) -> bool:
        return self.event == CHARGE_SUCCESS


def charge_target_for(order_ids, checkout_session_id: str) -> ChargeTarget:
    """Target used when opening a charge: single order or a multi-store session."""
    order_ids = tuple(str(order_id) for order_id in order_ids)
    if len(order_ids) == 1:
        return SingleOrderCharge(order_id=order_ids[0])
    return MultiOrderCharge(order_ids=order_ids, checkout_session_id=checkout_session_id)


def _order_id(value: Any) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError as e:
        raise ChargeDecodeError(f"order id {value!r} is not a valid UUID") from e


def _amount_minor(value: Any) -> int:
    # Minor units are whole numbers; never round a fractional or boolean amount
    if isinstance(value, bool):
        raise ChargeDecodeError("data.amount must be an integer amount in minor units")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    raise ChargeDecodeError("data.amount must be an integer amount in minor units")


def decode_target(metadata: Dict[str, Any]) -> ChargeTarget:
    if not isinstance(metadata, dict):
        raise ChargeDecodeError("metadata must be an object")

    if "orderIds" in metadata:
        order_ids = metadata.get("orderIds")
        session_id = metadata.get("checkoutSessionId")
        if not isinstance(order_ids, list) or not order_ids:
            raise ChargeDecodeError("orderIds must be a non-empty list")
        if not session_id:
            raise ChargeDecodeError("checkoutSessionId is required with orderIds")
        return MultiOrderCharge(order_ids=tuple(_order_id(o) for o in order_ids), checkout_session_id=str(session_id))

    order_id = metadata.get("orderId")
    if not order_id:
        raise ChargeDecodeError("metadata must carry orderId or orderIds")
    return SingleOrderCharge(order_id=_order_id(order_id))


def decode_event_type(payload: bytes) -> Tuple[str, Dict[str, Any]]:
    try:
        body = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ChargeDecodeError(f"Invalid JSON body: {e}") from e
    if not isinstance(body, dict) or not isinstance(body.get("event"), str):
        raise ChargeDecodeError("Body must be an object with an 'event' field")
    return body["event"], body


def decode_charge_event(body: Dict[str, Any]) -> ChargeEvent:
    """Decode a ``charge.*`` body (already parsed) into a ChargeEvent."""
    data = body.get("data")
    if not isinstance(data, dict):
        raise ChargeDecodeError("'data' must be an object")

    reference = data.get("reference")
    if not reference:
        raise ChargeDecodeError("data.reference is required")

    amount_minor = _amount_minor(data.get("amount"))

    metadata = data.get("metadata") or {}
    if isinstance(metadata, str):
        # Some gateways send metadata as a JSON string
        try:
            metadata = json.loads(metadata)
        except ValueError as e:
            raise ChargeDecodeError("data.metadata is not valid JSON") from e

    return ChargeEvent(
        event=body["event"],
        reference=str(reference),
        amount_minor=amount_minor,
        currency=str(data.get("currency") or "").upper(),
        target=decode_target(metadata),
        gateway_status=str(data.get("status") or ""),
        raw=data,
    )
