import json
import logging
from datetime import datetime, timezone

from config import BACKUP_VERSION
from errors import MalformedBackupError, ValidationError
from portfolio import normalize_state

logger = logging.getLogger(__name__)


def export_document(store, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    return {
        "state":   store.state,
        "journal": store.journal,
        "meta": {
            "version":     BACKUP_VERSION,
            "exported_at": now.isoformat(),
        },
    }


def backup_filename(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"zentrade_backup_{now.date().isoformat()}.json"


def dumps(document: dict) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def loads(text: str) -> dict:
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedBackupError(f"Backup is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise MalformedBackupError("Backup must be a JSON object")
    return document


def validate_document(document: dict) -> tuple[dict, list]:
    """
    Check and normalize a backup document without touching any store.
    Both `state` and `journal` must be present.
    """
    if not isinstance(document, dict):
        raise MalformedBackupError("Backup must be an object")
    missing = [k for k in ("state", "journal") if document.get(k) is None]
    if missing:
        raise MalformedBackupError(f"Backup is missing: {', '.join(missing)}")
    if not isinstance(document["journal"], list):
        raise MalformedBackupError("Backup journal must be a list")
    if not all(isinstance(e, dict) for e in document["journal"]):
        raise MalformedBackupError("Backup journal entries must be objects")
    try:
        state = normalize_state(document["state"])
    except ValidationError as exc:
        raise MalformedBackupError(f"Backup state is invalid ({exc.field}): {exc.message}") from exc
    return state, document["journal"]


def import_document(store, document: dict) -> None:
    """Replace the store's state and journal with the backup, all or nothing."""
    state, journal = validate_document(document)
    store.replace_all(state, journal)
    logger.info(
        "Imported backup version %s",
        (document.get("meta") or {}).get("version", "unknown"),
    )
