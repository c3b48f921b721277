from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from memoria.errors import InvalidOptionsError
from memoria.expiration import CacheExpiration


class MemoizeOptions(BaseModel):
    """Options shared by ``wrap``, ``Memoize`` and ``memoize_method``.

    Without ``cache_expiration`` entries live as long as the wrapper does. It
    may also be given as ``cacheExpiration``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_expiration: CacheExpiration | None = Field(
        default=None,
        validation_alias=AliasChoices("cache_expiration", "cacheExpiration"),
    )

    @classmethod
    def parse(
        cls, options: "MemoizeOptions | Mapping[str, Any] | None"
    ) -> "MemoizeOptions":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(options)
        except ValidationError as exc:
            raise InvalidOptionsError(f"invalid memoize options: {exc}") from exc
