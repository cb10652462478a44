"""Base class for domain entities."""

from pydantic import BaseModel, ConfigDict


class Entity(BaseModel):
    """Mutable pydantic model with identity.

    Assignments are validated so state transitions cannot smuggle in bad values.
    """

    model_config = ConfigDict(validate_assignment=True)
