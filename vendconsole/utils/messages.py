import json
from dataclasses import dataclass
from typing import Optional

from .logger import relay_logger as logger

# Dispense relay message builders (JSON text frames)

DISPENSE = "dispense"
DISPENSE_ACK = "dispense-ack"
ERROR = "error"

# Inbound frames that are not JSON objects or carry an unknown type are
# dropped without a notification or state change.
IGNORE_UNKNOWN_MESSAGE = "ignore-unknown-message"

INBOUND_TYPES = (DISPENSE_ACK, ERROR)


@dataclass(frozen=True)
class InboundMessage:
    type: str
    slot_number: Optional[int] = None
    error: Optional[str] = None
    request_id: Optional[str] = None


def build_dispense(
    machine_id: str,
    machine_code: str,
    slot_number: int,
    request_id: Optional[str] = None,
    legacy_alias: bool = True,
) -> str:
    payload = {
        "type": DISPENSE,
        "machineId": machine_id,
        "machineCode": machine_code,
        "slotNumber": slot_number,
    }
    if legacy_alias:
        # Deployed relays still read the machine code from "machineid"
        payload["machineid"] = machine_code
    if request_id:
        payload["requestId"] = request_id
    return json.dumps(payload)


def build_ack(slot_number: int, request_id: Optional[str] = None) -> str:
    payload = {"type": DISPENSE_ACK, "slotNumber": slot_number}
    if request_id:
        payload["requestId"] = request_id
    return json.dumps(payload)


def build_error(error: str, request_id: Optional[str] = None) -> str:
    payload = {"type": ERROR, "error": error}
    if request_id:
        payload["requestId"] = request_id
    return json.dumps(payload)


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_inbound(frame) -> Optional[InboundMessage]:
    """
    Decode one relay frame.
    Returns None for anything the ignore-unknown-message policy drops.
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Dropping undecodable frame ({IGNORE_UNKNOWN_MESSAGE})")
            return None

    try:
        message = json.loads(frame)
    except (TypeError, ValueError):
        logger.debug(f"Dropping non-JSON frame ({IGNORE_UNKNOWN_MESSAGE})")
        return None

    if not isinstance(message, dict):
        logger.debug(f"Dropping non-object frame ({IGNORE_UNKNOWN_MESSAGE})")
        return None

    kind = message.get("type")
    if kind not in INBOUND_TYPES:
        logger.debug(f"Dropping frame of type {kind!r} ({IGNORE_UNKNOWN_MESSAGE})")
        return None

    request_id = message.get("requestId")
    if request_id is not None:
        request_id = str(request_id)

    if kind == DISPENSE_ACK:
        return InboundMessage(
            type=kind,
            slot_number=_as_int(message.get("slotNumber")),
            request_id=request_id,
        )

    error = message.get("error")
    return InboundMessage(
        type=kind,
        error=str(error) if error else None,
        slot_number=_as_int(message.get("slotNumber")),
        request_id=request_id,
    )
