"""Generation and conversation settings."""

import os
from typing import Optional

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Settings shared by the engine and the LLM providers.

    Provider credentials are not part of the config; each provider reads its
    own API key environment variable, as the provider SDKs do.
    """

    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: Optional[int] = Field(default=None, gt=0)
    system_prompt: str = "You are a helpful assistant."
    history_limit: int = Field(default=40, ge=0)
    include_date: bool = True
    welcome_message: Optional[str] = None

    @classmethod
    def from_env(cls, prefix: str = "CHATBRANCH_", **overrides) -> "Config":
        """Builds a config from ``<prefix><FIELD>`` environment variables.

        Explicit keyword overrides win over the environment. Values are
        validated (and coerced from strings) by pydantic.

        Examples
        --------
        >>> os.environ["CHATBRANCH_HISTORY_LIMIT"] = "10"
        >>> Config.from_env().history_limit
        10
        """
        values = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
