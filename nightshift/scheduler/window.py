"""
Window evaluation and user-activity tracking.

Pure functions of (state, config, now). Two window paths are checked in
order and the first match wins:

1. Trigger window: opens ``good_night_buffer_minutes`` after a detected
   good-night phrase and runs to the next configured end-of-window clock
   time. A morning greeting inside that span closes it outright.
2. Clock window: the configured ``start``/``end`` times of day, wrapping
   midnight when ``start > end``.

Clock times are read in the agent's timezone.
"""

from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nightshift.config.loader import NightShiftConfig
from nightshift.scheduler.models import AgentState, parse_timestamp


def resolve_zone(name: str | None, fallback: str) -> tzinfo:
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return ZoneInfo("UTC")


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def in_clock_window(minutes: int, start: int, end: int) -> bool:
    """Membership test on minutes-after-midnight; ``start > end`` wraps midnight."""
    if start > end:
        return minutes >= start or minutes < end
    return start <= minutes < end


def trigger_window_bounds(
    good_night_time: datetime, config: NightShiftConfig, zone: tzinfo
) -> tuple[datetime, datetime]:
    """
    Compute ``(office_start, office_end)`` for a good-night trigger.

    ``office_end`` is the configured end clock time on ``office_start``'s
    local calendar day, rolled to the next day when that is not after
    ``office_start``.
    """
    office_start = good_night_time + timedelta(
        minutes=config.schedule.good_night_buffer_minutes
    )
    local_start = office_start.astimezone(zone)
    end_minutes = config.schedule.default_office_hours.end_minutes
    local_end = local_start.replace(
        hour=end_minutes // 60, minute=end_minutes % 60, second=0, microsecond=0
    )
    if local_end <= local_start:
        local_end = local_end + timedelta(days=1)
    return office_start, local_end.astimezone(office_start.tzinfo)


def is_in_window(state: AgentState, config: NightShiftConfig, now: datetime) -> bool:
    """True when queued work may run for this agent at ``now``."""
    hours = config.schedule.default_office_hours
    zone = resolve_zone(state.timezone, hours.timezone)

    good_night = parse_timestamp(state.good_night_time)
    if good_night is not None:
        office_start, office_end = trigger_window_bounds(good_night, config, zone)
        morning = parse_timestamp(state.last_morning_greeting)
        if morning is not None and office_start < morning < office_end:
            return False
        if office_start <= now < office_end:
            return True

    return in_clock_window(
        minute_of_day(now.astimezone(zone)), hours.start_minutes, hours.end_minutes
    )


def is_user_active(state: AgentState, config: NightShiftConfig, now: datetime) -> bool:
    """True iff activity was recorded less than the threshold ago."""
    last_activity = parse_timestamp(state.last_user_activity)
    if last_activity is None:
        return False
    threshold = timedelta(minutes=config.schedule.user_active_threshold_minutes)
    return now - last_activity < threshold
