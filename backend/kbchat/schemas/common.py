from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Base model accepting both field names and camelCase aliases."""

    model_config = ConfigDict(
        from_attributes=True, protected_namespaces=(), populate_by_name=True
    )
