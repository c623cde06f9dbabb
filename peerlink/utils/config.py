"""Read and write TOML configuration files backed by Pydantic models."""
from __future__ import annotations

import pathlib
import sys
from typing import BinaryIO
from typing import TypeVar

import tomli_w
from pydantic import BaseModel

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    import tomllib
else:  # pragma: <3.11 cover
    import tomli as tomllib

ModelT = TypeVar('ModelT', bound=BaseModel)


def dump(
    model: BaseModel,
    fp: BinaryIO,
    *,
    exclude_none: bool = True,
) -> None:
    """Write a config model as TOML to a binary file-like object.

    Args:
        model: Config model instance to write.
        fp: File-like bytes stream to write to.
        exclude_none: Skip attributes set to `None` because TOML has no
            null value.
    """
    tomli_w.dump(model.model_dump(exclude_none=exclude_none), fp)


def load(model: type[ModelT], fp: BinaryIO) -> ModelT:
    """Parse TOML from a binary file into a config model.

    Args:
        model: Config model type to validate the TOML with.
        fp: File-like bytes stream to read.

    Returns:
        Validated model instance.
    """
    return loads(model, fp.read().decode())


def loads(model: type[ModelT], data: str) -> ModelT:
    """Parse a TOML string into a config model.

    Args:
        model: Config model type to validate the TOML with.
        data: TOML string to parse.

    Returns:
        Validated model instance.
    """
    return model.model_validate(tomllib.loads(data), strict=True)


def load_path(model: type[ModelT], filepath: str | pathlib.Path) -> ModelT:
    """Parse a TOML file at `filepath` into a config model."""
    with open(filepath, 'rb') as f:
        return load(model, f)
