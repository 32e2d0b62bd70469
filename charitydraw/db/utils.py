import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_RELATIVE_SQLITE = re.compile(r"^(sqlite(?:\+\w+)?:///)\./(.*)$")


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Anchor a relative SQLite URL (``sqlite:///./x.db``) at ``project_root``.

    Driver-qualified forms such as ``sqlite+pysqlite:///./x.db`` are handled
    too; every other URL is returned unchanged.
    """
    match = _RELATIVE_SQLITE.match(url)
    if match is None:
        return url
    prefix, rel = match.groups()
    return f"{prefix}{(project_root / rel).resolve()}"


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Render ``dt`` as ISO 8601 in UTC for activity details and reports.

    SQLite hands back naive datetimes; those are taken to be UTC already.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()
