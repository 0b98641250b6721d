# ABOUTME: Resource registry and resolution
# ABOUTME: Maps allow-listed resource names to SQLAlchemy models, columns, associations and methods

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import inspect

from apiscope.exceptions import BadRequest, NotFound

_RESOURCE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

# Paths served by fixed routes
RESERVED_NAMES = frozenset({"admin", "health", "resources"})


def normalize_name(name: str) -> str:
    return name.strip().lower().replace("-", "_")


@dataclass(frozen=True)
class ResourceDescriptor:
    """Everything the query pipeline needs to know about one exposed model."""
    name: str
    model: type
    columns: Tuple[str, ...]
    primary_key: str
    associations: Dict[str, type] = field(default_factory=dict)
    methods: Tuple[str, ...] = ()
    default_sort: Tuple[Tuple[str, str], ...] = ()

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def column_attr(self, name: str):
        return getattr(self.model, name)

    def association_attr(self, name: str):
        return getattr(self.model, name)


class ResourceRegistry:
    """
    Closed set of resources exposed by the API.

    Resources are registered at startup; resolve() never falls back to
    looking a name up anywhere else.
    """

    def __init__(self):
        self._resources: Dict[str, ResourceDescriptor] = {}
        self._aliases: Dict[str, str] = {}

    def register(
        self,
        model: type,
        name: Optional[str] = None,
        aliases: Iterable[str] = (),
        methods: Iterable[str] = (),
        default_sort: Optional[str] = None,
    ) -> ResourceDescriptor:
        """
        Expose a declarative model as a resource.

        Args:
            model: SQLAlchemy declarative model class
            name: Resource name used in URLs (defaults to the table name)
            aliases: Extra names resolving to the same resource (e.g. the singular form)
            methods: Attribute names callers may request through `include`
            default_sort: Sort applied when the caller gives none, e.g. "created_at desc"

        Returns:
            The registered ResourceDescriptor
        """
        mapper = inspect(model)
        resource_name = normalize_name(name or model.__tablename__)
        if resource_name in RESERVED_NAMES:
            raise ValueError(f"Resource name '{resource_name}' is reserved")
        if resource_name in self._resources or resource_name in self._aliases:
            raise ValueError(f"Resource '{resource_name}' is already registered")

        columns = tuple(attr.key for attr in mapper.column_attrs)
        primary_keys = [mapper.get_property_by_column(col).key for col in mapper.primary_key]
        associations = {rel.key: rel.mapper.class_ for rel in mapper.relationships}

        descriptor = ResourceDescriptor(
            name=resource_name,
            model=model,
            columns=columns,
            primary_key=primary_keys[0],
            associations=associations,
            methods=tuple(m for m in methods if m not in columns and m not in associations),
            default_sort=tuple(parse_sort(default_sort or "", columns)),
        )
        self._resources[resource_name] = descriptor
        for alias in aliases:
            self._aliases[normalize_name(alias)] = resource_name
        return descriptor

    def all(self) -> List[ResourceDescriptor]:
        return list(self._resources.values())

    def for_model(self, model: type) -> Optional[ResourceDescriptor]:
        for descriptor in self._resources.values():
            if descriptor.model is model:
                return descriptor
        return None

    def resolve(self, name: str) -> ResourceDescriptor:
        """Resolve a URL resource name. Malformed names are a 400, unknown names a 404."""
        if not name or not _RESOURCE_NAME.match(name):
            raise BadRequest("Malformed resource name")

        key = normalize_name(name)
        key = self._aliases.get(key, key)
        descriptor = self._resources.get(key)
        if descriptor is None:
            raise NotFound(f"Resource '{name}' not found")
        return descriptor

    def resolve_nested(self, descriptor: ResourceDescriptor, nested_name: str) -> Tuple[str, ResourceDescriptor]:
        """
        Resolve an association of a resource to the descriptor of its target.

        The association must be declared on the model and its target model must
        itself be a registered resource.
        """
        if not nested_name or not _RESOURCE_NAME.match(nested_name):
            raise BadRequest("Malformed resource name")

        association = normalize_name(nested_name)
        target_model = descriptor.associations.get(association)
        target = self.for_model(target_model) if target_model is not None else None
        if target is None:
            raise NotFound(f"Resource '{descriptor.name}' has no association '{nested_name}'")
        return association, target


def parse_sort(raw: str, columns: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Parse "name desc, id" into [("name", "desc"), ("id", "asc")].

    Unknown columns and directions are dropped.
    """
    allowed = set(columns)
    sort = []
    for part in raw.split(","):
        tokens = part.split()
        if not tokens or tokens[0] not in allowed:
            continue
        direction = tokens[1].lower() if len(tokens) > 1 else "asc"
        if direction not in ("asc", "desc"):
            continue
        sort.append((tokens[0], direction))
    return sort


registry = ResourceRegistry()
