import enum
import re
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta, timezone

from tokenlens.errors import InvalidTimestampError
from tokenlens.models import DEFAULT_PROJECT

# fields that may carry a project path, in priority order
PROJECT_PATH_FIELDS: "tuple[str, ...]" = ("projectPath", "project")
SESSION_ID_FIELD = "sessionId"
SESSION_ID_DELIMITER = "-"
# session ids encode the working directory, e.g. D--working-AI-Study-Name;
# the project name starts at this segment
SESSION_ID_PROJECT_OFFSET = 4

_PATH_SEPARATORS = re.compile(r"[/\\]")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_ONLY = re.compile(r"^\d{4}-\d{2}$")


class Granularity(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def parse_timestamp(value: "object") -> "datetime":
    """
    parses a timestamp into an aware UTC datetime. Accepts datetime
    and date objects, 'YYYY-MM-DD', 'YYYY-MM' and ISO-8601 strings
    (a trailing 'Z' is accepted). Naive values are read as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if _MONTH_ONLY.match(text):
            text = f"{text}-01"
        try:
            if _DATE_ONLY.match(text):
                parsed = datetime.combine(date.fromisoformat(text), time.min)
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except (ValueError, OverflowError) as e:
            raise InvalidTimestampError(f"unparseable timestamp: {value!r}") from e
    else:
        raise InvalidTimestampError(f"unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as e:
        raise InvalidTimestampError(f"timestamp out of range: {value!r}") from e


def _as_utc_date(value: "datetime | date | str") -> "date":
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_timestamp(value).date()


def week_start(day: "date") -> "date":
    """
    returns the Monday on or before the given date (ISO-8601 week start).
    """
    return day - timedelta(days=day.isoweekday() - 1)


def month_start(day: "date") -> "date":
    return day.replace(day=1)


def bucket_key(
    timestamp: "datetime | date | str",
    granularity: "Granularity | str",
) -> "str":
    """
    maps a timestamp to its calendar-aligned bucket key (YYYY-MM-DD),
    interpreting the timestamp in UTC.
    """
    granularity = Granularity(granularity)
    day = _as_utc_date(timestamp)

    if granularity is Granularity.WEEK:
        day = week_start(day)
    elif granularity is Granularity.MONTH:
        day = month_start(day)

    return day.isoformat()


def project_name_from_path(path: "object") -> "str | None":
    """
    returns the final segment of a '/' or '\\' separated path, or
    None when the path has no usable final segment.
    """
    if not isinstance(path, str):
        return None
    name = _PATH_SEPARATORS.split(path)[-1].strip()
    return name or None


def project_name_from_session_id(session_id: "object") -> "str | None":
    """
    extracts the project name from a dash-encoded session id. Empty
    segments produced by doubled separators are dropped before the
    offset is applied.
    """
    if not isinstance(session_id, str):
        return None
    segments = [s for s in session_id.split(SESSION_ID_DELIMITER) if s]
    name = SESSION_ID_DELIMITER.join(segments[SESSION_ID_PROJECT_OFFSET:]).strip()
    return name or None


def project_key(raw: "Mapping[str, object]") -> "str":
    """
    derives the project key of a raw record: project path first,
    then the session id convention, then the default project.
    """
    for field_name in PROJECT_PATH_FIELDS:
        name = project_name_from_path(raw.get(field_name))
        if name:
            return name

    name = project_name_from_session_id(raw.get(SESSION_ID_FIELD))
    if name:
        return name

    return DEFAULT_PROJECT
