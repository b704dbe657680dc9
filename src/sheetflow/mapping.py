"""Row mappers.

A mapper is any callable ``record -> record | None``; returning None skips
the row. Closures work in-process and with the fork driver. The process
driver starts a fresh interpreter per worker, so its mapper has to be
picklable: use ``FieldMapper`` (declarative rename/cast rules) or
``MapperRef`` (a module-level function resolved by import path).
"""

from __future__ import annotations

import datetime as dt
import importlib
import pickle
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import ConfigurationError, MapperError

__all__ = ["FieldRule", "FieldMapper", "MapperRef", "ensure_portable", "CASTS"]

Record = Dict[Any, Any]

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off", ""}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    return int(str(value).strip())


def _to_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value).strip())


def _to_datetime(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)
    return dt.datetime.fromisoformat(str(value).strip())


CASTS: Dict[str, Callable[[Any], Any]] = {
    "str": str,
    "strip": lambda v: str(v).strip(),
    "lower": lambda v: str(v).strip().lower(),
    "upper": lambda v: str(v).strip().upper(),
    "int": _to_int,
    "float": lambda v: float(str(v).strip()) if not isinstance(v, (int, float)) else float(v),
    "bool": _to_bool,
    "date": _to_date,
    "datetime": _to_datetime,
}


@dataclass(frozen=True)
class FieldRule:
    """Copy ``source`` to ``target`` (default: same name), optionally cast.

    Empty values (None or blank text) are replaced by ``default`` and not cast.
    """
    source: Any
    target: Optional[Any] = None
    cast: Optional[str] = None
    default: Any = None

    def __post_init__(self):
        if self.cast is not None and self.cast not in CASTS:
            raise ConfigurationError(
                f"Unknown cast {self.cast!r}; expected one of {', '.join(sorted(CASTS))}"
            )

    @property
    def output_name(self) -> Any:
        return self.source if self.target is None else self.target


@dataclass(frozen=True)
class FieldMapper:
    """Declarative, picklable mapper built from ``FieldRule`` entries.

    Args:
        rules: Field rules applied in order
        keep_unmapped: Carry over source columns no rule mentions
        skip_when_empty: Output fields that, when empty, skip the row
    """
    rules: Tuple[FieldRule, ...] = ()
    keep_unmapped: bool = False
    skip_when_empty: Tuple[Any, ...] = field(default=())

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "skip_when_empty", tuple(self.skip_when_empty))

    @classmethod
    def rename(cls, mapping: Dict[Any, Any], **kwargs) -> "FieldMapper":
        return cls(tuple(FieldRule(src, dst) for src, dst in mapping.items()), **kwargs)

    def __call__(self, record: Record) -> Optional[Record]:
        out: Record = {}
        if self.keep_unmapped:
            used = {rule.source for rule in self.rules}
            out.update((k, v) for k, v in record.items() if k not in used)

        for rule in self.rules:
            value = record.get(rule.source)
            if value is None or (isinstance(value, str) and not value.strip()):
                out[rule.output_name] = rule.default
                continue
            if rule.cast is not None:
                try:
                    value = CASTS[rule.cast](value)
                except (TypeError, ValueError) as exc:
                    raise MapperError(
                        f"Cannot cast {rule.source!r} value {value!r} to {rule.cast}"
                    ) from exc
            out[rule.output_name] = value

        for name in self.skip_when_empty:
            value = out.get(name)
            if value is None or value == "":
                return None
        return out


@dataclass(frozen=True)
class MapperRef:
    """A module-level mapper named as ``"package.module:function"``.

    Resolved lazily in whichever process calls it, so only the name
    crosses the process boundary.
    """
    target: str

    def __post_init__(self):
        module, sep, attr = self.target.partition(":")
        if not sep or not module or not attr:
            raise ConfigurationError(
                f"Mapper reference {self.target!r} must look like 'package.module:function'"
            )

    def resolve(self) -> Callable[[Record], Optional[Record]]:
        module_name, _, attr = self.target.partition(":")
        try:
            obj = importlib.import_module(module_name)
            for part in attr.split("."):
                obj = getattr(obj, part)
        except (ImportError, AttributeError) as exc:
            raise ConfigurationError(f"Cannot resolve mapper {self.target!r}: {exc}") from exc
        if not callable(obj):
            raise ConfigurationError(f"Mapper {self.target!r} is not callable")
        return obj

    def __call__(self, record: Record) -> Optional[Record]:
        return self.resolve()(record)


def ensure_portable(obj: Optional[Any], what: str = "mapper") -> None:
    """Raise ConfigurationError unless ``obj`` survives pickling.

    ``what`` names the capability in the error message.
    """
    if obj is None:
        return
    if isinstance(obj, MapperRef):
        obj.resolve()
        return
    try:
        pickle.dumps(obj)
    except (pickle.PicklingError, AttributeError, TypeError) as exc:
        raise ConfigurationError(
            f"The process driver needs a picklable {what} (FieldMapper, MapperRef "
            "or module-level functions); use the fork driver for closures"
        ) from exc
