"""Human-readable formatting of Strava activity data for tool results."""

from datetime import datetime
from typing import Any

STRAVA_ACTIVITY_URL = "https://www.strava.com/activities/{id}"


def format_distance(meters: float) -> str:
    return f"{meters / 1000:.2f} km"


def format_duration(seconds: int) -> str:
    """Format seconds as e.g. '1h 5m 3s' (zero parts omitted)."""
    seconds = int(seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_pace(meters_per_second: float) -> str:
    """Format a speed as minutes per kilometre."""
    if not meters_per_second:
        return "-- /km"
    minutes_per_km = 60 / (meters_per_second * 3.6)
    minutes = int(minutes_per_km)
    seconds = round((minutes_per_km - minutes) * 60)
    if seconds == 60:
        minutes, seconds = minutes + 1, 0
    return f"{minutes}:{seconds:02d} /km"


def format_elevation(meters: float) -> str:
    return f"{round(meters)} m"


def activity_url(activity_id) -> str:
    return STRAVA_ACTIVITY_URL.format(id=activity_id)


def format_start_date(value: str) -> str:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%b %d, %Y %H:%M")
    except (AttributeError, ValueError):
        return str(value)


def activity_as_document(activity: dict[str, Any]) -> str:
    """Render a detailed activity as a markdown document."""
    lines = [
        f"# {activity.get('name', 'Untitled activity')}",
        "",
        f"**Activity Type:** {activity.get('sport_type', 'Unknown')}",
        f"**Date:** {format_start_date(activity.get('start_date', ''))}",
        "",
        "## Key Metrics",
        "",
        f"- **Distance:** {format_distance(activity.get('distance', 0))}",
        f"- **Duration:** {format_duration(activity.get('moving_time', 0))}",
        f"- **Elapsed Time:** {format_duration(activity.get('elapsed_time', 0))}",
    ]

    if activity.get("average_speed", 0) > 0:
        lines.append(f"- **Average Pace:** {format_pace(activity['average_speed'])}")
        lines.append(f"- **Max Speed:** {format_pace(activity.get('max_speed', 0))}")
    if activity.get("total_elevation_gain", 0) > 0:
        lines.append(f"- **Elevation Gain:** {format_elevation(activity['total_elevation_gain'])}")
    lines.append("")

    if activity.get("has_heartrate") and activity.get("average_heartrate"):
        lines += ["## Heart Rate", "", f"- **Average HR:** {activity['average_heartrate']} bpm"]
        if activity.get("max_heartrate"):
            lines.append(f"- **Max HR:** {activity['max_heartrate']} bpm")
        lines.append("")

    if activity.get("device_watts") and activity.get("average_watts"):
        lines += ["## Power", "", f"- **Average Power:** {activity['average_watts']}W"]
        if activity.get("kilojoules"):
            lines.append(f"- **Energy:** {activity['kilojoules']} kJ")
        lines.append("")

    if activity.get("description"):
        lines += ["## Description", "", activity["description"], ""]

    lines += [
        "## Activity Details",
        "",
        f"- **Trainer Activity:** {'Yes' if activity.get('trainer') else 'No'}",
        f"- **Commute:** {'Yes' if activity.get('commute') else 'No'}",
        f"- **Manual Entry:** {'Yes' if activity.get('manual') else 'No'}",
    ]
    if activity.get("device_name"):
        lines.append(f"- **Recorded With:** {activity['device_name']}")
    gear = activity.get("gear")
    if gear:
        lines.append(f"- **Gear:** {gear.get('name')} ({format_distance(gear.get('distance', 0))} total)")
    lines.append("")

    lines += [
        "## Social",
        "",
        f"- **Kudos:** {activity.get('kudos_count', 0)}",
        f"- **Comments:** {activity.get('comment_count', 0)}",
        f"- **Achievements:** {activity.get('achievement_count', 0)}",
    ]
    return "\n".join(lines)
