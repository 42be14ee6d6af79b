"""YAML loading for ``manager.yaml``.

Two tightenings over ``yaml.safe_load()``:

* a mapping with the same key twice is an error instead of "last one
  wins", so two ``gateway_command:`` lines cannot silently shadow each
  other;
* raw file bytes must be UTF-8.

Both problems raise ``ValueError``; YAML syntax errors stay
``yaml.YAMLError``.
"""

from __future__ import annotations

from collections.abc import Hashable
from typing import Union

import yaml


class _ManagerYamlLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
            seen: dict = {}
            for key_node, _value_node in node.value:
                key = self.construct_object(key_node, deep=deep)
                if not isinstance(key, Hashable):
                    # the base constructor reports unhashable keys
                    continue
                if key in seen:
                    raise ValueError(
                        f"Duplicate YAML key: {key!r} (line "
                        f"{key_node.start_mark.line + 1}, first seen on line "
                        f"{seen[key] + 1})"
                    )
                seen[key] = key_node.start_mark.line
        return super().construct_mapping(node, deep=deep)


def safe_yaml_load(data: Union[str, bytes]) -> object:
    """Parse one YAML document with :class:`_ManagerYamlLoader`.

    Raises:
        ValueError: On duplicate keys or non-UTF-8 bytes.
        yaml.YAMLError: On malformed YAML or unsafe tags.
    """
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return yaml.load(data, Loader=_ManagerYamlLoader)
