"""Metadata values — a constrained key-value union.

Processes, apps and file nodes each carry a free-form metadata bag
(environment variables, crash details, app settings).  Instead of
accepting *anything*, values are restricted to what survives a JSON
round trip through the entity store:

    str | int | float | bool | None | list[value] | dict[str, value]

``validate_metadata`` walks a bag and rejects anything else, so bad
values are caught at the boundary rather than when the store tries to
serialise them.
"""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from typing import TypeAlias

from omni_os.errors import InvalidArgumentError

MetadataValue: TypeAlias = (
    "str | int | float | bool | None | list[MetadataValue] | dict[str, MetadataValue]"
)
Metadata: TypeAlias = "dict[str, MetadataValue]"

_SCALARS = (str, int, float, bool, type(None))


def _check(value: object, where: str) -> None:
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, list):
        for i, item in enumerate(value):  # pyright: ignore[reportUnknownVariableType, reportUnknownArgumentType]
            _check(item, f"{where}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():  # pyright: ignore[reportUnknownVariableType]
            if not isinstance(key, str):
                msg = f"Metadata key at {where} must be a string, got {type(key).__name__}"  # pyright: ignore[reportUnknownArgumentType]
                raise InvalidArgumentError(msg)
            _check(item, f"{where}.{key}")
        return
    msg = f"Unsupported metadata value at {where}: {type(value).__name__}"
    raise InvalidArgumentError(msg)


def validate_metadata(bag: Mapping[str, object] | None, *, name: str = "metadata") -> Metadata:
    """Return a private copy of *bag* after checking every value.

    Args:
        bag: The mapping to validate (``None`` means empty).
        name: Label used in error messages.

    Raises:
        InvalidArgumentError: If a key is not a string or a value falls
            outside the supported union.

    """
    if bag is None:
        return {}
    _check(dict(bag), name)
    return deepcopy(dict(bag))  # pyright: ignore[reportReturnType]
