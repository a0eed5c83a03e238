"""Form payload validation.

The login, signup, and book forms are validated client-side before any
request is made. Pydantic's errors are flattened into a
:class:`~shelfcache.exceptions.ValidationError` that carries the first
message per field, the way a form shows one message under each input.
"""

from __future__ import annotations

from typing import Any, Mapping, TypeVar

import pydantic

from shelfcache.exceptions import ValidationError

FormT = TypeVar("FormT", bound=pydantic.BaseModel)


def parse_form(model: type[FormT], data: Mapping[str, Any]) -> FormT:
    """Validate *data* against *model*.

    Raises:
        ValidationError: With ``errors`` mapping each failing field (or
            ``"form"`` for whole-form rules such as matching passwords) to
            its first message.
    """
    try:
        return model.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        # Error locations use aliases (firstName); report field names.
        names = {f.alias: name for name, f in model.model_fields.items() if f.alias}
        errors: dict[str, str] = {}
        for item in exc.errors():
            loc = item.get("loc") or ()
            field_name = names.get(str(loc[0]), str(loc[0])) if loc else "form"
            message = str(item.get("msg", "Invalid value"))
            # Pydantic prefixes messages raised from validators.
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.setdefault(field_name, message)
        summary = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
        raise ValidationError(f"Invalid {model.__name__}: {summary}", errors) from exc
