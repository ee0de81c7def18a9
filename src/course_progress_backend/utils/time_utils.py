from datetime import datetime, timezone

from course_progress_backend.utils.base_types import IsoTimestamp


def now_iso_timestamp() -> IsoTimestamp:
    return IsoTimestamp(datetime.now(timezone.utc).isoformat())
