from dataclasses import asdict
from datetime import datetime

import orjson


def fill_none_converter(obj):
    if hasattr(obj, "__dataclass_fields__"):
        return {k: v for k, v in asdict(obj).items() if v is not None}
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def to_json(obj, *, pretty: bool = False) -> str:
    option = orjson.OPT_INDENT_2 if pretty else 0
    return orjson.dumps(obj, default=fill_none_converter, option=option).decode("utf-8")


def from_json(data: str | bytes):
    return orjson.loads(data)


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
