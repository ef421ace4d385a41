"""Result monad for graph loading and validation.

Used only by the loader and registry for file I/O and schema validation.
Graph execution reports through ExecutionResult instead.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class LoadStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class LoadResult(Generic[T]):  # noqa: UP046
    """
    Outcome of loading a graph (or a directory of graphs).

    Usage:
        result = load_workflow_from_file(path)
        if result:
            graph = result.unwrap()
        else:
            logger.warning(result.error)
    """

    status: LoadStatus
    value: T | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.status == LoadStatus.SUCCESS and self.value is None:
            raise ValueError("Success result must have a value")
        if self.status == LoadStatus.FAILED and not self.error:
            raise ValueError("Failed result must have an error message")

    @property
    def is_success(self) -> bool:
        return self.status == LoadStatus.SUCCESS

    @classmethod
    def success(cls, value: T, metadata: dict[str, Any] | None = None) -> "LoadResult[T]":
        return cls(status=LoadStatus.SUCCESS, value=value, metadata=metadata or {})

    @classmethod
    def failure(cls, error: str, metadata: dict[str, Any] | None = None) -> "LoadResult[T]":
        return cls(status=LoadStatus.FAILED, error=error, metadata=metadata or {})

    def __bool__(self) -> bool:
        return self.is_success

    def unwrap(self) -> T:
        """Get value or raise ValueError if loading failed."""
        if not self.is_success or self.value is None:
            raise ValueError(f"Cannot unwrap failed result: {self.error}")
        return self.value
