"""Sessions previously exported by this service (or a streamystats-v2 backup)."""

from typing import Any

from pydantic.alias_generators import to_snake

from ..models import Session


def map_backup(record: dict[str, Any], server_id: int) -> Session | None:
    """Re-target an exported session at ``server_id``. None without an id.

    Backups written by other tools use camelCase keys; both spellings load.
    """
    # Nulls fall back to the model defaults
    data = {to_snake(key): value for key, value in record.items() if value is not None}
    if not data.get("id"):
        return None
    data["server_id"] = server_id
    if not isinstance(data.get("raw_data"), dict):
        data["raw_data"] = {}
    return Session.model_validate(data)
