"""Control-protocol message set shared by the OSC and HTTP sinks."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from systemosc.models import CpuSnapshot

# OSC type tags
FLOAT = "f"
INT = "i"
STRING = "s"


@dataclass(slots=True, frozen=True)
class ControlMessage:
    """A single addressed, typed value."""

    address: str
    value: float | int | str
    type_tag: str


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_messages(snapshot: CpuSnapshot) -> list[ControlMessage]:
    """
    Map a snapshot to its ordered message batch.

    The order is part of the wire contract: aggregate usage, CPU info, one load
    per core in ascending index order, then the timestamp as the batch marker.
    """
    usage = snapshot.aggregate
    messages = [
        ControlMessage("/cpu/usage/total", usage.total, FLOAT),
        ControlMessage("/cpu/usage/user", usage.user, FLOAT),
        ControlMessage("/cpu/usage/system", usage.system, FLOAT),
        ControlMessage("/cpu/usage/idle", usage.idle, FLOAT),
        ControlMessage("/cpu/info/model", snapshot.hardware.model, STRING),
        ControlMessage("/cpu/info/cores", snapshot.hardware.core_count, INT),
    ]
    messages.extend(
        ControlMessage(f"/cpu/core/{core.index}/load", core.load, FLOAT)
        for core in snapshot.per_core
    )
    messages.append(
        ControlMessage("/cpu/timestamp", format_timestamp(snapshot.captured_at), STRING)
    )
    return messages


def to_json_entries(messages: list[ControlMessage]) -> list[dict[str, Any]]:
    """Render messages as the HTTP endpoint's ``{name, value}`` array."""
    return [{"name": m.address, "value": m.value} for m in messages]
