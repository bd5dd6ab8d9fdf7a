"""Message content for the starting-soon host notification."""

from datetime import datetime

STARTING_SOON = "starting_soon"

DEFAULT_NOTIFICATION_TEMPLATES = {
    STARTING_SOON: (
        "Reminder: your tournament \"{tournament_name}\" starts in about "
        "{minutes} minutes ({start_time} UTC). Create the room a few minutes "
        "early and share the room ID and password with participants."
    ),
}


def render_template(
    template_body: str,
    **kwargs,
) -> str:
    """
    Render a message template with placeholders.

    Supports: {tournament_name}, {start_time}, {minutes}

    Unknown placeholders are left as-is (not crash).
    """
    try:
        return template_body.format_map(
            {k: v for k, v in kwargs.items() if v is not None}
        )
    except KeyError:
        # If template has placeholders we don't have values for,
        # do a safe partial render
        result = template_body
        for key, value in kwargs.items():
            if value is not None:
                result = result.replace(f"{{{key}}}", str(value))
        return result


def render_starting_soon(tournament_name: str, start_time: datetime, lead_minutes: int) -> str:
    return render_template(
        DEFAULT_NOTIFICATION_TEMPLATES[STARTING_SOON],
        tournament_name=tournament_name,
        start_time=start_time.strftime("%a %b %d, %H:%M"),
        minutes=lead_minutes,
    )
