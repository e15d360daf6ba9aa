"""
Property Bag
============

Props accumulated by a host request before they are sent to the renderer.
Keys are always strings; values must be JSON-serializable.
"""

from typing import Any, Dict, Iterator, Mapping, Optional, Union
from collections.abc import MutableMapping


def _stringify_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _stringify_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify_keys(item) for item in value]
    return value


class PropsBag(MutableMapping):
    """Ordered, string-keyed props for one render request."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._props: Dict[str, Any] = {}
        if initial:
            self.add_prop(initial)

    def add_prop(self, key_or_mapping: Union[str, Mapping[str, Any]], value: Any = None) -> None:
        """
        Add a single prop, or merge a mapping of props.

        A mapping is merged with its keys stringified recursively; any other
        key is converted with ``str`` and assigned ``value``.
        """
        if value is None and isinstance(key_or_mapping, Mapping):
            self._props.update(_stringify_keys(key_or_mapping))
        else:
            self._props[str(key_or_mapping)] = value

    def push_prop(self, key: str, value: Any) -> None:
        """
        Append to a prop treated as a list.

        A missing prop becomes an empty list and a scalar becomes the first
        element. A list ``value`` is concatenated, anything else appended.
        """
        prop_key = str(key)
        current = self._props.get(prop_key)

        if current is None:
            self._props[prop_key] = []
        elif not isinstance(current, list):
            self._props[prop_key] = [current]

        if isinstance(value, list):
            self._props[prop_key].extend(value)
        else:
            self._props[prop_key].append(value)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._props)

    def __getitem__(self, key: str) -> Any:
        return self._props[str(key)]

    def __setitem__(self, key: str, value: Any) -> None:
        self._props[str(key)] = value

    def __delitem__(self, key: str) -> None:
        del self._props[str(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._props)

    def __len__(self) -> int:
        return len(self._props)

    def __repr__(self) -> str:
        return f"PropsBag({self._props!r})"
