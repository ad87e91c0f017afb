import json
import logging

from utils.time_utils import utc_now


def log_structured(event: str, **fields):
    payload = {
        "event": event,
        "ts": utc_now().isoformat(timespec="seconds").replace("+00:00", "Z")
    }
    payload.update(fields)
    logging.info(json.dumps(payload, ensure_ascii=False, default=str))
