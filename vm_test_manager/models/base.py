"""Base model for everything read from or written to the config file."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Immutable model that rejects unknown keys, so config typos fail loudly."""

    model_config = ConfigDict(frozen=True, extra="forbid")
