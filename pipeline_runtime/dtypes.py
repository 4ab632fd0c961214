"""Closed tag sets: buffer element types, usage flags, scalar argument kinds."""

from __future__ import annotations

from enum import Enum
from typing import Iterable

import numpy as np

from pipeline_runtime.errors import InvalidArgument


class ElementType(Enum):
    """Element type of a device buffer."""
    BYTE = "byte"
    INT = "int"
    FLOAT = "float"
    DOUBLE = "double"

    @property
    def dtype(self) -> np.dtype:
        return _ELEMENT_DTYPES[self]

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    @classmethod
    def parse(cls, value) -> ElementType:
        """Accept a member, its string value or a matching numpy dtype."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        if value is not None:
            try:
                dtype = np.dtype(value)
            except TypeError:
                dtype = None
            for member, member_dtype in _ELEMENT_DTYPES.items():
                if dtype == member_dtype:
                    return member
        raise InvalidArgument(
            f"Unsupported element type {value!r}; expected one of {[m.value for m in cls]}"
        )


_ELEMENT_DTYPES = {
    ElementType.BYTE: np.dtype(np.int8),
    ElementType.INT: np.dtype(np.int32),
    ElementType.FLOAT: np.dtype(np.float32),
    ElementType.DOUBLE: np.dtype(np.float64),
}


class Usage(Enum):
    """Declared memory intent of a buffer. Passed through to the backend unchanged."""
    READ_ONLY = "readonly"
    READ_WRITE = "readwrite"
    WRITE_ONLY = "writeonly"
    ALLOCATE = "allocate"
    COPY = "copy"
    USE = "use"

    @classmethod
    def parse_flags(cls, usage) -> frozenset[Usage]:
        """Normalize a single flag or a sequence of flags. Empty means READ_WRITE."""
        if usage is None:
            return frozenset({cls.READ_WRITE})
        items: Iterable = [usage] if isinstance(usage, (str, cls)) else usage
        flags = set()
        for item in items:
            if isinstance(item, cls):
                flags.add(item)
                continue
            try:
                flags.add(cls(item))
            except ValueError:
                raise InvalidArgument(f"Unknown buffer usage {item!r}") from None
        return frozenset(flags) if flags else frozenset({cls.READ_WRITE})


class ScalarKind(Enum):
    """Numeric kind of a scalar kernel argument."""
    INT = "int"
    FLOAT = "float"
    DOUBLE = "double"

    def cast(self, value):
        return _SCALAR_TYPES[self](value)

    @classmethod
    def parse(cls, value) -> ScalarKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgument(
                f"Invalid scalar argument kind {value!r}; expected one of {[m.value for m in cls]}"
            ) from None


_SCALAR_TYPES = {
    ScalarKind.INT: np.int32,
    ScalarKind.FLOAT: np.float32,
    ScalarKind.DOUBLE: np.float64,
}
