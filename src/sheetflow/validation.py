"""Row validation against a fixed rule catalog.

Rules are given per field as ``"required|email"`` or a list, with an
optional parameter after the first colon (``"min:3"``, ``"in:a,b"``,
``"regex:/^[A-Z]+$/"``, ``"date:%d/%m/%Y"``). Every rule is evaluated
independently; each failure contributes one message. Unknown rule names
pass.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError

__all__ = ["Validator", "parse_rules", "check_rule", "RULES", "DEFAULT_MESSAGE"]

DEFAULT_MESSAGE = "The {field} field failed the {rule} validation."

_EMAIL = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$")
_INTEGER = re.compile(r"^[+-]?\d+$")

# Formats tried by the "date" rule when no explicit format is given
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%B %d, %Y",
)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value).strip())
    except ValueError:
        return False
    return bool(str(value).strip())


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, int):
        return True
    return bool(_INTEGER.match(str(value).strip()))


def _compile_regex(param: str) -> "re.Pattern[str]":
    # Accept delimited patterns like /^x$/i as well as bare ones
    flags = 0
    pattern = param
    if len(param) >= 2 and param[0] == "/" and "/" in param[1:]:
        end = param.rindex("/")
        pattern = param[1:end]
        for flag in param[end + 1:]:
            if flag == "i":
                flags |= re.IGNORECASE
            elif flag == "m":
                flags |= re.MULTILINE
            elif flag == "s":
                flags |= re.DOTALL
            elif flag == "x":
                flags |= re.VERBOSE
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise ConfigurationError(f"Invalid regex rule {param!r}: {exc}") from exc


def _is_date(value: Any, fmt: Optional[str]) -> bool:
    if isinstance(value, (dt.date, dt.datetime)):
        return True
    text = _as_text(value).strip()
    if not text:
        return False
    formats = (fmt,) if fmt else _DATE_FORMATS
    for candidate in formats:
        try:
            dt.datetime.strptime(text, candidate)
            return True
        except ValueError:
            continue
    if not fmt:
        try:
            dt.datetime.fromisoformat(text)
            return True
        except ValueError:
            pass
    return False


def _min(value, param):
    return _is_numeric(value) and float(value) >= float(param)


def _max(value, param):
    return _is_numeric(value) and float(value) <= float(param)


RULES: Dict[str, Callable[[Any, Optional[str]], bool]] = {
    "required": lambda v, p: not _is_empty(v),
    "email": lambda v, p: bool(_EMAIL.match(_as_text(v))),
    "numeric": lambda v, p: _is_numeric(v),
    "integer": lambda v, p: _is_integer(v),
    "min": _min,
    "max": _max,
    "min_length": lambda v, p: len(_as_text(v)) >= int(p),
    "max_length": lambda v, p: len(_as_text(v)) <= int(p),
    "in": lambda v, p: v is not None and str(v) in (p or "").split(","),
    "regex": lambda v, p: _compile_regex(p or "").search(_as_text(v)) is not None,
    "date": _is_date,
}

_NEEDS_PARAM = {"min", "max", "min_length", "max_length", "in", "regex"}


def parse_rules(spec: Union[str, Sequence[str]]) -> List[Tuple[str, Optional[str]]]:
    """Split ``"required|min:3"`` (or a list) into ``(name, param)`` pairs."""
    items = spec.split("|") if isinstance(spec, str) else list(spec)
    parsed: List[Tuple[str, Optional[str]]] = []
    for item in items:
        item = item.strip()
        if not item:
            continue
        name, sep, param = item.partition(":")
        name = name.strip()
        if name in _NEEDS_PARAM and not sep:
            raise ConfigurationError(f"Rule {name!r} needs a parameter, e.g. '{name}:value'")
        parsed.append((name, param if sep else None))
    return parsed


def check_rule(name: str, value: Any, param: Optional[str] = None) -> bool:
    """True if ``value`` passes rule ``name``; unknown rules pass."""
    check = RULES.get(name)
    if check is None:
        return True
    try:
        return bool(check(value, param))
    except (TypeError, ValueError):
        return False


@dataclass
class Validator:
    """Validate mapped records field by field.

    Args:
        rules: Field name to rule string or list
        messages: Overrides keyed ``"field.rule"``
        custom: Extra check returning a list of messages for a record
    """

    rules: Mapping[str, Union[str, Sequence[str]]]
    messages: Optional[Mapping[str, str]] = None
    custom: Optional[Callable[[Mapping[Any, Any]], Sequence[str]]] = None

    def __post_init__(self):
        self._compiled = {name: parse_rules(spec) for name, spec in self.rules.items()}
        self.messages = dict(self.messages or {})
        # Compile regex params up front so a bad pattern fails at configuration time
        for field_rules in self._compiled.values():
            for name, param in field_rules:
                if name == "regex":
                    _compile_regex(param or "")

    def message_for(self, field: str, rule: str) -> str:
        return self.messages.get(f"{field}.{rule}", DEFAULT_MESSAGE.format(field=field, rule=rule))

    def validate(self, record: Mapping[Any, Any]) -> List[str]:
        """Return all failure messages for ``record`` (empty when valid)."""
        errors: List[str] = []
        for field, field_rules in self._compiled.items():
            value = record.get(field)
            for name, param in field_rules:
                if not check_rule(name, value, param):
                    errors.append(self.message_for(field, name))
        if self.custom is not None:
            errors.extend(self.custom(record) or [])
        return errors
