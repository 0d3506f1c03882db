"""
Message Renderer - broadcast to WhatsApp text template.

The rendered template keeps a literal `{name}` token. The dispatch engine
substitutes it per recipient, so one template serves every recipient of a
broadcast.
"""

from ..domain.models import (
    AnnouncementBroadcast,
    AnnouncementCategory,
    Broadcast,
    CheckInBroadcast,
    PollBroadcast,
    PollType,
    Priority,
)

NAME_TOKEN = "{name}"

CATEGORY_EMOJI = {
    AnnouncementCategory.GENERAL: "📢",
    AnnouncementCategory.URGENT: "🚨",
    AnnouncementCategory.CELEBRATION: "🎉",
    AnnouncementCategory.POLICY: "📋",
    AnnouncementCategory.EVENT: "📅",
}

PRIORITY_BANNER = {
    Priority.URGENT: "🚨 *URGENT* 🚨",
    Priority.HIGH: "⚠️ *HIGH PRIORITY* ⚠️",
}

POLL_CLOSING = "Hi {name}, your participation helps us improve! 🙏"
ANNOUNCEMENT_CLOSING = "Hi {name}, this announcement is from your organization. 📢"


def render(broadcast: Broadcast) -> str:
    """Render a broadcast into a message template containing `{name}`."""
    if isinstance(broadcast, PollBroadcast):
        return render_poll(broadcast)
    if isinstance(broadcast, AnnouncementBroadcast):
        return render_announcement(broadcast)
    if isinstance(broadcast, CheckInBroadcast):
        # Check-in text is composed by HR when the check-in is created
        return broadcast.message
    raise TypeError(f"Unsupported broadcast type: {type(broadcast).__name__}")


def render_poll(poll: PollBroadcast) -> str:
    lines = [f"📊 *{poll.title}*", "", poll.question, ""]

    if poll.poll_type is PollType.MULTIPLE_CHOICE:
        lines.append("Please choose one:")
        lines.extend(f"{index}. {option}" for index, option in enumerate(poll.options, start=1))
    elif poll.poll_type is PollType.YES_NO:
        lines.extend(["Please reply:", "1. Yes", "2. No"])
    elif poll.poll_type is PollType.RATING:
        lines.append(f"Please rate from 1 to {poll.rating_scale or 10}:")
    else:
        lines.append("Please share your thoughts:")

    lines.extend(["", POLL_CLOSING])
    return "\n".join(lines)


def render_announcement(announcement: AnnouncementBroadcast) -> str:
    emoji = CATEGORY_EMOJI.get(announcement.category, "📢")
    lines = []

    banner = PRIORITY_BANNER.get(announcement.priority)
    if banner:
        lines.extend([banner, ""])

    lines.extend([
        f"{emoji} *{announcement.title}*",
        "",
        announcement.content,
        "",
        ANNOUNCEMENT_CLOSING,
    ])
    return "\n".join(lines)


def personalize(template: str, name: str) -> str:
    """Substitute every `{name}` token. Other braces are left alone."""
    return template.replace(NAME_TOKEN, name)
