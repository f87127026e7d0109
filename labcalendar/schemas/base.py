"""Shared pydantic base for models exchanged with the lab API (camelCase on the wire)."""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class LabModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "from_attributes": True}

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, JSON-safe values, no nulls."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
