import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, and special types to plain
    Python data that the SQL template step can render.

    It handles:
    - Pydantic BaseModel instances (dumped by alias, in JSON mode)
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (processing each item)
    - Pydantic URL types (converting to strings)

    Args:
        data: The data to convert

    Returns:
        The converted data
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        return prepare_for_storage(data.model_dump(mode="json", by_alias=True))

    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, list):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, tuple):
        return tuple(prepare_for_storage(item) for item in data)

    if isinstance(data, set):
        return [prepare_for_storage(item) for item in data]

    if data.__class__.__module__.startswith("pydantic"):
        return str(data)

    return data


def prepare_row(data: Any) -> Dict[str, Any]:
    """Convert one record payload into a column -> value dict."""
    prepared = prepare_for_storage(data)
    if not isinstance(prepared, Mapping):
        raise ValueError(
            f"Record data must be a mapping, pydantic model or dataclass, "
            f"got {type(data).__name__}"
        )
    return dict(prepared)
