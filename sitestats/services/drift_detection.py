from typing import Any, Dict, Type

from pydantic import BaseModel
from sitestats.core.logging_config import get_logger

logger = get_logger("drift_detection")


def detect_drift(payload: Dict[str, Any], model: Type[BaseModel], source_name: str) -> bool:
    """
    Checks if the incoming record has keys that differ from the expected Pydantic model.
    Logs a warning if drift is detected. Never blocks ingestion.
    """
    if not isinstance(payload, dict):
        logger.warning("potential_schema_drift", source=source_name, model=model.__name__,
                       message="Record is not an object", record_type=type(payload).__name__)
        return True

    incoming_keys = set(payload.keys())
    expected_keys = set(model.model_fields.keys())
    required_keys = {name for name, field in model.model_fields.items() if field.is_required()}

    unexpected = incoming_keys - expected_keys
    missing = required_keys - incoming_keys

    if unexpected or missing:
        logger.warning(
            "potential_schema_drift",
            source=source_name,
            model=model.__name__,
            unexpected_keys=sorted(unexpected),
            missing_keys=sorted(missing),
        )
        return True
    return False
