"""
Backup Module

Export and import of the whole cooperative as one JSON document. Imports
also accept documents whose keys are camelCase, as written by the earlier
browser-based version of the application.
"""

import json
import logging
import re
from typing import Any, Dict, Union

from .activity import ActivityType
from .errors import InvalidBackupFormat
from .notifications import NotificationKind
from .state import CooperativeState
from .storage import COLLECTIONS

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
REQUIRED_OBJECTS = ("config",)
REQUIRED_ARRAYS = ("members", "loans", "contributions")
OPTIONAL_ARRAYS = ("expenses", "transactions", "refunds", "activities")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake_keys(value: Any) -> Any:
    """Recursively convert camelCase dictionary keys to snake_case"""
    if isinstance(value, dict):
        return {_CAMEL_BOUNDARY.sub(r"_\1", k).lower(): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def export_document(coop) -> Dict[str, Any]:
    """Snapshot of every collection plus export metadata"""
    document = coop.state.to_collections()
    document["export_date"] = coop.clock.now().isoformat()
    document["version"] = BACKUP_VERSION
    return document


def export_json(coop, indent: int = 2) -> str:
    return json.dumps(export_document(coop), indent=indent)


def validate_document(document: Dict[str, Any]) -> None:
    """
    Structure check

    Raises:
        InvalidBackupFormat: a required collection is missing or has the
            wrong shape
    """
    if not isinstance(document, dict):
        raise InvalidBackupFormat("Backup must be a JSON object")
    for name in REQUIRED_OBJECTS:
        if not isinstance(document.get(name), dict):
            raise InvalidBackupFormat(f"Backup is missing the '{name}' object")
    for name in REQUIRED_ARRAYS:
        if not isinstance(document.get(name), list):
            raise InvalidBackupFormat(f"Backup is missing the '{name}' array")
    for name in OPTIONAL_ARRAYS:
        if document.get(name) is not None and not isinstance(document[name], list):
            raise InvalidBackupFormat(f"Backup field '{name}' must be an array")


def parse_document(document: Union[str, bytes, Dict[str, Any]]) -> CooperativeState:
    """Validate a backup and build the state it describes"""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise InvalidBackupFormat(f"Backup is not valid JSON: {e}") from e

    validate_document(document)
    document = _snake_keys(document)

    data = {name: document.get(name) for name in COLLECTIONS}
    for name in OPTIONAL_ARRAYS:
        data[name] = data[name] or []
    data["cashbox"] = data["cashbox"] or 0

    try:
        return CooperativeState.from_collections(data)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidBackupFormat(f"Backup contains an invalid record: {e}") from e


def import_document(coop, document: Union[str, bytes, Dict[str, Any]]) -> CooperativeState:
    """Replace the cooperative's data with the backup's content"""
    new_state = parse_document(document)

    with coop.atomic():
        coop.state.restore(new_state)
        coop.activity.log(
            ActivityType.DATA_IMPORT, "Data imported from backup",
            details={
                "members": len(new_state.members),
                "loans": len(new_state.loans),
                "transactions": len(new_state.transactions)
            }
        )

    logger.info("Backup imported: %d members, %d loans", len(new_state.members), len(new_state.loans))
    coop.notify(NotificationKind.SUCCESS, "Data imported",
                f"{len(new_state.members)} members and {len(new_state.loans)} loans restored")
    return coop.state
