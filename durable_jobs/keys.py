"""Idempotency key schemas."""

from typing import Dict, Sequence


class KeySchema:
    """
    Composite idempotency key built from named parts.

    Usage:
        LIFECYCLE_KEY.compose(correlation_id="c1", stage="s1")  # "c1:s1"
    """

    def __init__(self, name: str, fields: Sequence[str], separator: str = ":"):
        if not fields:
            raise ValueError("A key schema needs at least one field")
        if not separator:
            raise ValueError("Key separator must not be empty")
        self.name = name
        self.fields = tuple(fields)
        self.separator = separator

    def compose(self, **parts) -> str:
        unknown = set(parts) - set(self.fields)
        if unknown:
            raise ValueError(
                f"Unknown fields for key schema {self.name}: {', '.join(sorted(unknown))}"
            )

        values = []
        for field in self.fields:
            value = parts.get(field)
            if value is None or str(value).strip() == "":
                raise ValueError(f"Key schema {self.name} requires {field}")
            value = str(value).strip()
            if self.separator in value:
                raise ValueError(
                    f"{field} must not contain the separator {self.separator!r}"
                )
            values.append(value)

        return self.separator.join(values)

    def parse(self, key: str) -> Dict[str, str]:
        values = key.split(self.separator)
        if len(values) != len(self.fields):
            raise ValueError(f"Key {key!r} does not match schema {self.name}")
        return dict(zip(self.fields, values))

    def __repr__(self) -> str:
        return f"KeySchema({self.name!r}, {self.fields!r})"


# Multi-stage lifecycle jobs sharing a correlation id
LIFECYCLE_KEY = KeySchema("lifecycle", ("correlation_id", "stage"))

# Inbound integration events
EVENT_KEY = KeySchema("event", ("organization_id", "event_id", "event_type"))
