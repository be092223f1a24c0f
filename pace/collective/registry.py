import dataclasses
from typing import Callable, Dict, Generic, Optional, Tuple, Type, TypeVar

import dacite


T = TypeVar("T")
TT = TypeVar("TT", bound=Type)

_ENTRY_KEYS = frozenset(["type", "config"])


class Registry(Generic[T]):
    """
    Selects one of several configuration dataclasses by name.

    A configuration entry is a dict with a "type" key naming the registered
    dataclass and a "config" key holding its fields, loaded with strict dacite
    so misspelled fields are errors. Either key may be left out: "config"
    defaults to no fields, and "type" to the registry's default type.

    Examples:

        >>> import dataclasses
        >>> from pace.collective.registry import Registry
        >>> registry = Registry(default_type="fixed")
        >>> @registry.register("fixed")
        ... @dataclasses.dataclass
        ... class FixedSize:
        ...     size: int = 1
        >>> registry.resolve({"config": {"size": 4}})
        ('fixed', FixedSize(size=4))
    """

    def __init__(self, default_type: Optional[str] = None):
        """
        Args:
            default_type: type name used for entries without a "type" key,
                which are an error if this is None
        """
        self._types: Dict[str, Type[T]] = {}
        self.default_type = default_type

    @property
    def type_names(self):
        return list(self._types)

    def register(self, type_name: str) -> Callable[[TT], TT]:
        """Class decorator selecting the decorated dataclass by type_name."""

        def register_func(cls: TT) -> TT:
            if not dataclasses.is_dataclass(cls):
                raise TypeError(f"only dataclasses can be registered, got {cls}")
            self._types[type_name] = cls
            return cls

        return register_func

    def resolve(self, entry: dict) -> Tuple[str, T]:
        """
        Build the dataclass an entry selects, without modifying the entry.

        Returns:
            the selected type name and the dataclass instance

        Raises:
            dacite.UnexpectedDataError: if entry has keys other than "type"
                and "config", or config has fields the dataclass lacks
            ValueError: if the type name is not registered
        """
        extra_keys = set(entry) - _ENTRY_KEYS
        if extra_keys:
            raise dacite.UnexpectedDataError(keys=extra_keys)
        type_name = entry.get("type", self.default_type)
        if type_name is None:
            raise ValueError(
                f"entry needs a 'type' key, one of {self.type_names}: {entry}"
            )
        if type_name not in self._types:
            raise ValueError(
                f"Received unexpected type {type_name}, "
                f"expected one of {self.type_names}"
            )
        # "config:" with nothing after it loads from yaml as None
        fields = entry.get("config") or {}
        instance = dacite.from_dict(
            data_class=self._types[type_name],
            data=fields,
            config=dacite.Config(strict=True),
        )
        return type_name, instance

    def from_dict(self, entry: dict) -> T:
        """Build the dataclass an entry selects."""
        return self.resolve(entry)[1]
