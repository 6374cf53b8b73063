"""Command framing and notification reassembly for the NUS session."""

from __future__ import annotations

from dataclasses import dataclass

OPEN = "OPEN"
STATUS = "STATUS"
PING = "PING"
AUTH = "AUTH"

COMMANDS = (OPEN, AUTH, STATUS, PING)


def auth_command(pin: str) -> str:
    return f"{AUTH} {pin}"


def encode_command(command: str) -> bytes:
    return command.encode("utf-8")


def render_bytes(payload: bytes) -> str:
    """Hex rendering for payloads that are not text, grouped by 4 bytes."""
    return f"<{payload.hex(' ', -4)}>"


@dataclass(frozen=True)
class Reassembly:
    lines: tuple[str, ...]
    last_message: str | None
    is_text: bool = True


def demux_notification(payload: bytes) -> Reassembly:
    """Split one notification into logical lines.

    Only the final line becomes the last message; every line is kept for the
    log. Payloads that are not UTF-8 text fall back to a hex rendering.
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        text = ""

    if text:
        lines = tuple(line for line in text.splitlines() if line)
        return Reassembly(lines=lines, last_message=lines[-1] if lines else None)

    rendered = render_bytes(payload)
    return Reassembly(lines=(rendered,), last_message=rendered, is_text=False)
