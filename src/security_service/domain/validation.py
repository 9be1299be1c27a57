from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from security_service.errors import ValidationError


@dataclass(frozen=True)
class FieldRule:
    max_len: int | None = None
    required: bool = False


# field name -> rule; checked in declaration order, first violation wins
SCHEMAS: dict[str, dict[str, FieldRule]] = {
    "application": {
        "name": FieldRule(max_len=255, required=True),
        "status": FieldRule(max_len=15, required=True),
    },
    "organization": {
        "name": FieldRule(max_len=255, required=True),
        "name_key": FieldRule(max_len=255, required=True),
        "status": FieldRule(max_len=15, required=True),
        "type": FieldRule(max_len=25, required=True),
    },
    "directory": {
        "name": FieldRule(max_len=255, required=True),
        "status": FieldRule(max_len=15, required=True),
    },
    "group": {
        "name": FieldRule(max_len=50, required=True),
        "status": FieldRule(max_len=15, required=True),
    },
    "account": {
        "username": FieldRule(max_len=100),
        "password": FieldRule(max_len=255, required=True),
        "email": FieldRule(max_len=255, required=True),
        "title": FieldRule(max_len=5),
        "given_name": FieldRule(max_len=64, required=True),
        "middle_name": FieldRule(max_len=64),
        "surname": FieldRule(max_len=64, required=True),
        "address1": FieldRule(max_len=255),
        "address2": FieldRule(max_len=255),
        "city": FieldRule(max_len=50),
        "state": FieldRule(max_len=2),
        "postal_code": FieldRule(max_len=15),
        "country": FieldRule(max_len=2),
        "phone": FieldRule(max_len=25),
        "timezone": FieldRule(max_len=25),
        "status": FieldRule(max_len=15, required=True),
    },
}


def validate_entity(kind: str, entity: BaseModel | dict[str, Any]) -> None:
    """Check `entity` against the schema registered for `kind`.

    Raises ValidationError for the first violated field. Runs before any
    write so nothing is partially persisted.
    """
    schema = SCHEMAS[kind]
    for field, rule in schema.items():
        if isinstance(entity, dict):
            value = entity.get(field)
        else:
            value = getattr(entity, field, None)

        if value is None or value == "":
            if rule.required:
                raise ValidationError(f"{field} is required")
            continue

        if rule.max_len is not None and len(value) > rule.max_len:
            raise ValidationError(f"{field} cannot have string length greater than {rule.max_len}")
