"""Variable typing rules shared by local and cloud evaluation."""

from __future__ import annotations

import enum
import json
import random
from typing import Any, Optional

__all__ = [
    "VERSION",
    "VariableType",
    "sdk_key_is_valid",
    "convert_default_value",
    "variable_type_from_value",
    "compare_types",
    "exponential_backoff",
    "sdk_variable_value",
]

VERSION = "2.10.4"

_SERVER_KEY_PREFIXES = ("server", "dvc_server")


class VariableType(str, enum.Enum):
    """The kinds of value a variable can hold."""

    BOOLEAN = "Boolean"
    NUMBER = "Number"
    STRING = "String"
    JSON = "JSON"

    def __str__(self) -> str:
        return self.value


def sdk_key_is_valid(key: str) -> bool:
    """Return whether the key looks like a server SDK key."""
    return key.startswith(_SERVER_KEY_PREFIXES)


def convert_default_value(value: Any) -> Any:
    """Widen integer defaults to floats so they compare with numeric variables.

    Booleans are left alone even though they are integers in Python.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return float(value)
    return value


def variable_type_from_value(key: str, value: Any, allow_nil: bool) -> Optional[VariableType]:
    """Infer the variable type from a (converted) default value.

    Returns None for a None default when ``allow_nil`` is true; raises
    TypeError for any value that is not a boolean, number, string or dict.
    """
    if isinstance(value, bool):
        return VariableType.BOOLEAN
    if isinstance(value, float):
        return VariableType.NUMBER
    if isinstance(value, str):
        return VariableType.STRING
    if isinstance(value, dict):
        return VariableType.JSON
    if value is None and allow_nil:
        return None
    raise TypeError(
        f"the default value for variable {key} is not of type Boolean, Number, String, or JSON"
    )


def compare_types(value1: Any, value2: Any) -> bool:
    """Return whether both values have exactly the same type."""
    return type(value1) is type(value2)


def exponential_backoff(attempt: int) -> float:
    """Delay in milliseconds before retry ``attempt``, with up to 20% jitter."""
    delay = (2 ** attempt) * 100.0
    return delay + delay * 0.2 * random.random()


def sdk_variable_value(
    variable_type: VariableType | str,
    bool_value: bool,
    double_value: float,
    string_value: str,
) -> Any:
    """Pick the value matching the variable's type from an evaluated result.

    JSON values are parsed from the string value; unparseable JSON and
    unknown types yield None.
    """
    try:
        kind = VariableType(variable_type)
    except ValueError:
        return None
    if kind is VariableType.BOOLEAN:
        return bool_value
    if kind is VariableType.NUMBER:
        return double_value
    if kind is VariableType.STRING:
        return string_value
    try:
        return json.loads(string_value)
    except (TypeError, ValueError):
        return None