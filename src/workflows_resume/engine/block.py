"""
Pydantic base models for block handler params and outputs.

- BlockInput: strict validation of a block's params (extra="forbid").
  Params are authored in camelCase (humanOperation, timeValue, ...);
  snake_case names are accepted too.
- BlockOutput: flexible (extra="allow") so handlers can add fields and
  resume triggers can overwrite a wait block's output with trigger data.
  Dumped with camelCase keys; that is what <block.path> references see.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BlockInput(BaseModel):
    """Base class for block params validation."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class BlockOutput(BaseModel):
    """Base class for block outputs."""

    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    def to_output(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
