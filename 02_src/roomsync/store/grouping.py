"""Display grouping of consecutive messages."""

from dataclasses import dataclass
from datetime import timedelta

from ..models import Message

DEFAULT_GROUP_GAP = timedelta(minutes=5)


@dataclass(frozen=True)
class DisplayHints:
    """Whether to render the sender label and timestamp for one entry."""

    show_sender: bool
    show_time: bool


def continues_run(
    previous: Message | None, current: Message, gap: timedelta = DEFAULT_GROUP_GAP
) -> bool:
    """True when current belongs to the same run as previous."""
    if previous is None:
        return False
    return (
        previous.sender_id == current.sender_id
        and current.created_at - previous.created_at <= gap
    )


def display_hints(
    messages: list[Message], gap: timedelta = DEFAULT_GROUP_GAP
) -> list[DisplayHints]:
    """Sender label on the first entry of a run, timestamp on the last."""
    hints = []
    for i, message in enumerate(messages):
        previous = messages[i - 1] if i > 0 else None
        following = messages[i + 1] if i + 1 < len(messages) else None
        hints.append(
            DisplayHints(
                show_sender=not continues_run(previous, message, gap),
                show_time=following is None or not continues_run(message, following, gap),
            )
        )
    return hints
