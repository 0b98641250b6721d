# ABOUTME: Filter expression parsing and compilation
# ABOUTME: Turns JSON or flat key=value search trees into SQLAlchemy criteria over model columns

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple
from urllib.parse import parse_qsl

from sqlalchemy import and_, not_, or_

logger = logging.getLogger(__name__)

# Longest first so "_not_eq" wins over "_eq"
PREDICATES = (
    "not_cont", "not_null", "not_eq", "not_in",
    "present", "blank", "false", "start", "gteq", "lteq", "cont", "null", "true",
    "end", "eq", "gt", "lt", "in",
)

GROUP_KEYS = ("and", "or", "not", "g", "m", "s")

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}
_FALSY = {"0", "false", "f", "no", "n", "off"}

# Signed 64-bit, the widest integer the database drivers bind
INT_MIN = -(2 ** 63)
INT_MAX = 2 ** 63 - 1


@dataclass(frozen=True)
class FilterParseResult:
    """Outcome of reading the `q` parameter. source is "json", "flat" or "empty"."""
    tree: dict
    source: str
    error: Optional[str] = None


@dataclass(frozen=True)
class _JsonAttempt:
    ok: bool
    value: Any = None
    error: Optional[str] = None


def _try_json(raw: str) -> _JsonAttempt:
    try:
        value = json.loads(raw)
    except ValueError as exc:
        return _JsonAttempt(ok=False, error=str(exc))
    if not isinstance(value, dict):
        return _JsonAttempt(ok=False, error="filter JSON must be an object")
    return _JsonAttempt(ok=True, value=value)


def parse_flat(raw: str) -> dict:
    """Parse "name_cont=foo&status_in=a&status_in=b"; repeated keys collect into lists."""
    tree: dict = {}
    for key, value in parse_qsl(raw, keep_blank_values=True):
        if key in tree:
            existing = tree[key]
            tree[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            tree[key] = value
    return tree


def parse_filter(raw: Optional[str]) -> FilterParseResult:
    """
    Read a filter expression.

    JSON objects are preferred. Anything that is not a JSON object is read
    as the flat key=value form instead of failing the request.
    """
    if raw is None or not raw.strip():
        return FilterParseResult(tree={}, source="empty")

    attempt = _try_json(raw)
    if attempt.ok:
        return FilterParseResult(tree=attempt.value, source="json")

    logger.debug("Filter is not a JSON object (%s), reading flat form", attempt.error)
    return FilterParseResult(tree=parse_flat(raw), source="flat", error=attempt.error)


def split_predicate(key: str) -> Optional[Tuple[str, str]]:
    """Split "owner_name_not_eq" into ("owner_name", "not_eq")."""
    for predicate in PREDICATES:
        suffix = "_" + predicate
        if key.endswith(suffix) and len(key) > len(suffix):
            return key[: -len(suffix)], predicate
    return None


def truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def coerce(value: Any, python_type: Optional[type]) -> Any:
    """
    Convert a filter value to the column's Python type.

    Raises ValueError when the value cannot represent that type.
    """
    if python_type is None or value is None:
        return value
    if python_type is bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUTHY:
                return True
            if lowered in _FALSY:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if isinstance(value, (bool, int)):
            return bool(value)
        raise ValueError(f"not a boolean: {value!r}")
    if python_type is int:
        if isinstance(value, bool):
            raise ValueError("boolean is not an integer")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(f"not an integer: {value!r}")
            value = int(value)
        number = value if isinstance(value, int) else int(str(value).strip())
        if not INT_MIN <= number <= INT_MAX:
            raise ValueError(f"integer out of range: {number}")
        return number
    if python_type is float:
        return float(value)
    if python_type is Decimal:
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"not a decimal: {value!r}") from None
    if python_type is datetime:
        return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if python_type is date:
        return value if isinstance(value, date) else date.fromisoformat(str(value))
    if python_type is str:
        if isinstance(value, (dict, list)):
            raise ValueError("structured value for a text column")
        return str(value)
    return value


def _python_type(attr) -> Optional[type]:
    try:
        return attr.property.columns[0].type.python_type
    except (AttributeError, IndexError, NotImplementedError):
        return None


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [value]


def predicate_clause(attr, predicate: str, value: Any):
    """Build the SQL criterion for one predicate. Raises ValueError on bad values."""
    python_type = _python_type(attr)

    if predicate in ("null", "not_null"):
        wants_null = truthy(value) == (predicate == "null")
        return attr.is_(None) if wants_null else attr.is_not(None)
    if predicate in ("present", "blank"):
        present = or_(attr.is_(None), attr == "") if predicate == "blank" else and_(attr.is_not(None), attr != "")
        return present if truthy(value) else not_(present)
    if predicate in ("true", "false"):
        return attr.is_(truthy(value) == (predicate == "true"))
    if predicate in ("cont", "not_cont", "start", "end"):
        if isinstance(value, (dict, list)):
            raise ValueError("pattern predicates take a scalar")
        if python_type is not None and python_type is not str:
            raise ValueError("pattern predicates apply to text columns")
        text = str(value)
        if predicate == "cont":
            return attr.contains(text, autoescape=True)
        if predicate == "not_cont":
            return not_(attr.contains(text, autoescape=True))
        if predicate == "start":
            return attr.startswith(text, autoescape=True)
        return attr.endswith(text, autoescape=True)
    if predicate in ("in", "not_in"):
        values = [coerce(item, python_type) for item in _as_list(value)]
        return attr.in_(values) if predicate == "in" else attr.not_in(values)

    coerced = coerce(value, python_type)
    if predicate == "eq":
        return attr.is_(None) if coerced is None else attr == coerced
    if predicate == "not_eq":
        return attr.is_not(None) if coerced is None else attr != coerced
    if predicate == "lt":
        return attr < coerced
    if predicate == "lteq":
        return attr <= coerced
    if predicate == "gt":
        return attr > coerced
    if predicate == "gteq":
        return attr >= coerced
    raise ValueError(f"unknown predicate {predicate}")


class FilterCompiler:
    """
    Compiles a filter tree for one resource as seen by one API key.

    Predicates may reference any mapped column, visible to the key or not.
    Column permissions limit what is rendered, while the row scope applied by
    the query plan limits which records can match. Predicates on unknown
    attributes or unreadable associations, unknown predicates and
    uncoercible values are dropped rather than failing the request.
    """

    def __init__(self, descriptor, ability, registry):
        self.descriptor = descriptor
        self.ability = ability
        self.registry = registry

    def compile(self, tree: Any) -> List[Any]:
        if not isinstance(tree, dict):
            return []

        clauses = []
        for key, value in tree.items():
            if key in GROUP_KEYS:
                group = self._compile_group(key, value)
                if group is not None:
                    clauses.append(group)
                continue
            clause = self._compile_predicate(str(key), value)
            if clause is not None:
                clauses.append(clause)

        if str(tree.get("m", "and")).lower() == "or" and len(clauses) > 1:
            return [or_(*clauses)]
        return clauses

    def _compile_group(self, key: str, value: Any):
        if key in ("m", "s"):
            return None
        if key == "not":
            inner = self.compile(value)
            return not_(and_(*inner)) if inner else None

        subtrees = value if isinstance(value, list) else [value]
        compiled = [and_(*inner) for inner in (self.compile(sub) for sub in subtrees) if inner]
        if not compiled:
            return None
        return or_(*compiled) if key == "or" else and_(*compiled)

    def _compile_predicate(self, key: str, value: Any):
        split = split_predicate(key)
        if split is None:
            logger.debug("Dropping filter key without predicate: %s", key)
            return None
        attribute, predicate = split

        try:
            if self.descriptor.has_column(attribute):
                return predicate_clause(self.descriptor.column_attr(attribute), predicate, value)
            return self._association_clause(attribute, predicate, value)
        except (ValueError, TypeError) as exc:
            logger.debug("Dropping filter %s: %s", key, exc)
            return None

    def _association_clause(self, attribute: str, predicate: str, value: Any):
        """Filter through one association level, e.g. owner_name_eq."""
        for association, target_model in self.descriptor.associations.items():
            prefix = association + "_"
            if not attribute.startswith(prefix):
                continue
            target = self.registry.for_model(target_model)
            if target is None or not self.ability.can("read", target):
                continue
            column = attribute[len(prefix):]
            if not target.has_column(column):
                continue

            criterion = predicate_clause(target.column_attr(column), predicate, value)
            scope = self.ability.row_scope(target)
            if scope is not None:
                criterion = and_(criterion, scope)

            relationship = self.descriptor.association_attr(association)
            if relationship.property.uselist:
                return relationship.any(criterion)
            return relationship.has(criterion)

        logger.debug("Dropping filter on unknown or unreadable attribute: %s", attribute)
        return None
