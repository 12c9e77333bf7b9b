"""Base model for persisted records."""

from pydantic import BaseModel, ConfigDict


class RecordModel(BaseModel):
    """Immutable record with camelCase aliases for persistence."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    def to_record(self) -> dict:
        """Serialize to the JSON-ready camelCase payload stored by record stores."""
        return self.model_dump(mode="json", by_alias=True)
