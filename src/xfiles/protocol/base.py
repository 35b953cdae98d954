from typing import Any, Self

from pydantic import BaseModel, ConfigDict

# 10 MiB
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class ProtocolModel(BaseModel):
    """Base class for everything that crosses the wire.

    Python attributes are snake_case; the wire uses the camelCase aliases
    declared on each field.
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_protocol(self) -> dict[str, Any]:
        """Convert to the JSON-ready wire representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_protocol(cls, data: dict[str, Any]) -> Self:
        """Build a model from its wire representation.

        Raises:
            pydantic.ValidationError: If the data doesn't match the model.
        """
        return cls.model_validate(data)
