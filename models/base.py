from pydantic import BaseModel


class CamelModel(BaseModel):
    """Base model for records persisted as camelCase JSON"""

    model_config = {
        "populate_by_name": True,
        "validate_assignment": True,
        "extra": "ignore",
    }

    def to_json_dict(self) -> dict:
        """Dump using the camelCase aliases the stored artifacts use"""
        return self.model_dump(by_alias=True, mode="json")
