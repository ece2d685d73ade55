"""Native file writer flags of a storage connector.

A flat settings object: each supported file format can switch its native
writer off through a dotted property key. Every flag defaults to enabled.

Example:
    >>> config = NativeWriterConfig.from_properties({"csv.native-writer.enabled": "false"})
    >>> config.csv_native_writer_enabled
    False
    >>> config.to_properties()["avro.native-writer.enabled"]
    'true'
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from stax.common import StaxError

_TRUE = "true"
_FALSE = "false"


@dataclass(frozen=True)
class NativeWriterConfig:
    """Whether the native writer is used for each file format.

    Attributes:
        avro_native_writer_enabled: ``avro.native-writer.enabled``
        csv_native_writer_enabled: ``csv.native-writer.enabled``
        json_native_writer_enabled: ``json.native-writer.enabled``
        openx_json_native_writer_enabled: ``openx-json.native-writer.enabled``
        text_file_native_writer_enabled: ``text-file.native-writer.enabled``
        sequence_file_native_writer_enabled: ``sequence-file.native-writer.enabled``
    """

    avro_native_writer_enabled: bool = True
    csv_native_writer_enabled: bool = True
    json_native_writer_enabled: bool = True
    openx_json_native_writer_enabled: bool = True
    text_file_native_writer_enabled: bool = True
    sequence_file_native_writer_enabled: bool = True

    @staticmethod
    def property_key(field_name: str) -> str:
        """Dotted property key of a flag, e.g. ``text-file.native-writer.enabled``."""
        file_format = field_name.removesuffix("_native_writer_enabled").replace("_", "-")
        return f"{file_format}.native-writer.enabled"

    @classmethod
    def property_keys(cls) -> dict[str, str]:
        """Mapping from property key to field name."""
        return {cls.property_key(f.name): f.name for f in fields(cls)}

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> NativeWriterConfig:
        """Build a configuration from string properties.

        Unset keys keep their default.

        Raises:
            StaxError: If a key is unknown or a value is not exactly "true" or "false"
        """
        keys = cls.property_keys()

        unknown = sorted(set(properties) - set(keys))
        if unknown:
            raise StaxError(f"Unknown native writer properties: {unknown}. Supported: {sorted(keys)}")

        values: dict[str, Any] = {}
        for key, value in properties.items():
            if value == _TRUE:
                values[keys[key]] = True
            elif value == _FALSE:
                values[keys[key]] = False
            else:
                raise StaxError(f"Invalid value for {key}: {value!r}, expected 'true' or 'false'")

        return cls(**values)

    def to_properties(self) -> dict[str, str]:
        return {key: _TRUE if getattr(self, name) else _FALSE for key, name in self.property_keys().items()}
