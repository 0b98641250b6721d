# ABOUTME: Query plan compilation
# ABOUTME: Composes guarded filters, sort, projection, includes and authorization scope into a Select

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.orm import load_only, selectinload, with_parent

from apiscope.context import RequestContext
from apiscope.exceptions import UnvalidatedQueryError
from apiscope.services.filters import FilterCompiler
from apiscope.services.injection_guard import GuardedFilter
from apiscope.services.resources import ResourceDescriptor, parse_sort


@dataclass(frozen=True)
class IncludedAssociation:
    name: str
    target: ResourceDescriptor
    columns: Tuple[str, ...]
    scope: Any = None


@dataclass(frozen=True)
class Projection:
    """Columns, associations and methods to render, already intersected with the caller's scope."""
    columns: Tuple[str, ...]
    associations: Tuple[IncludedAssociation, ...] = ()
    methods: Tuple[str, ...] = ()
    explicit_select: bool = False


@dataclass(frozen=True)
class ParentScope:
    """The loaded record a nested listing hangs off."""
    record: Any
    descriptor: ResourceDescriptor
    association: str


def split_names(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


def build_projection(
    ctx: RequestContext,
    descriptor: ResourceDescriptor,
    raw_select: Optional[str] = None,
    raw_include: Optional[str] = None,
) -> Projection:
    """
    Parse `select` and `include` for one resource.

    Every requested name that is unknown or not permitted is dropped. Include
    names are routed to associations or methods by association-set membership.
    """
    ability = ctx.ability
    permitted_columns = ability.permitted_columns(descriptor)
    permitted_includes = ability.permitted_includes(descriptor)

    requested = split_names(raw_select)
    if requested:
        columns = tuple(dict.fromkeys(c for c in requested if descriptor.has_column(c) and c in permitted_columns))
    else:
        columns = tuple(c for c in descriptor.columns if c in permitted_columns)

    associations = []
    methods = []
    for name in dict.fromkeys(split_names(raw_include)):
        if name not in permitted_includes:
            continue
        if name in descriptor.associations:
            target = ctx.registry.for_model(descriptor.associations[name])
            if target is None or not ability.can("read", target):
                continue
            target_columns = tuple(c for c in target.columns if c in ability.permitted_columns(target))
            associations.append(IncludedAssociation(
                name=name, target=target, columns=target_columns, scope=ability.row_scope(target),
            ))
        elif name in descriptor.methods:
            methods.append(name)

    return Projection(
        columns=columns,
        associations=tuple(associations),
        methods=tuple(methods),
        explicit_select=bool(requested),
    )


@dataclass(frozen=True)
class QueryPlan:
    """Everything needed to fetch one page of one resource. Built once per request."""
    descriptor: ResourceDescriptor
    filters: Tuple[Any, ...]
    sort: Tuple[Tuple[str, str], ...]
    projection: Projection
    scope: Any = None
    parent: Optional[ParentScope] = None

    def _filtered(self) -> Select:
        stmt = select(self.descriptor.model)
        if self.parent is not None:
            relationship = self.parent.descriptor.association_attr(self.parent.association)
            stmt = stmt.where(with_parent(self.parent.record, relationship))
        if self.scope is not None:
            stmt = stmt.where(self.scope)
        for clause in self.filters:
            stmt = stmt.where(clause)
        return stmt

    def count_statement(self) -> Select:
        return select(func.count()).select_from(self._filtered().subquery())

    def statement(self) -> Select:
        stmt = self._filtered()

        order = [
            getattr(self.descriptor.column_attr(column), direction)()
            for column, direction in self.sort
        ]
        # Stable pages need a total order
        if self.descriptor.primary_key not in {column for column, _ in self.sort}:
            order.append(self.descriptor.column_attr(self.descriptor.primary_key).asc())
        stmt = stmt.order_by(*order)

        return stmt.options(*loader_options(self.descriptor, self.projection))


def loader_options(descriptor: ResourceDescriptor, projection: Projection) -> List[Any]:
    options = []
    # Methods and association loading may need columns outside the projection
    if projection.columns and not projection.associations and not projection.methods:
        options.append(load_only(*(descriptor.column_attr(c) for c in projection.columns)))
    for included in projection.associations:
        relationship = descriptor.association_attr(included.name)
        if included.scope is not None:
            relationship = relationship.and_(included.scope)
        options.append(selectinload(relationship))
    return options


def _check_validated(ctx: RequestContext, descriptor: ResourceDescriptor, guarded: Any, projection: Any) -> None:
    if not isinstance(guarded, GuardedFilter):
        raise UnvalidatedQueryError("filter must pass the injection guard before compilation")
    if not isinstance(projection, Projection):
        raise UnvalidatedQueryError("projection must be built with build_projection()")
    if not set(projection.columns) <= ctx.ability.permitted_columns(descriptor):
        raise UnvalidatedQueryError("projection exceeds the caller's permitted columns")
    if not {a.name for a in projection.associations} | set(projection.methods) <= ctx.ability.permitted_includes(descriptor):
        raise UnvalidatedQueryError("projection exceeds the caller's permitted includes")


def compile_plan(
    ctx: RequestContext,
    descriptor: ResourceDescriptor,
    guarded: GuardedFilter,
    projection: Projection,
    sort: Optional[str] = None,
    parent: Optional[ParentScope] = None,
) -> QueryPlan:
    """
    Compose a QueryPlan.

    Args:
        ctx: Request context carrying the caller's ability
        descriptor: Resource being listed
        guarded: Filter tree returned by injection_guard.guard_filter()
        projection: Projection returned by build_projection()
        sort: Caller sort override ("name desc, id"); the filter's "s" key is used when absent
        parent: Loaded record and association for nested listings

    Returns:
        An immutable QueryPlan
    """
    _check_validated(ctx, descriptor, guarded, projection)

    ability = ctx.ability
    filters = FilterCompiler(descriptor, ability, ctx.registry).compile(guarded.tree)

    raw_sort = sort if sort else guarded.tree.get("s")
    if isinstance(raw_sort, list):
        raw_sort = ",".join(str(part) for part in raw_sort)
    sort_spec = parse_sort(str(raw_sort or ""), descriptor.columns)

    return QueryPlan(
        descriptor=descriptor,
        filters=tuple(filters),
        sort=tuple(sort_spec) or descriptor.default_sort,
        projection=projection,
        scope=ability.row_scope(descriptor),
        parent=parent,
    )


def record_statement(descriptor: ResourceDescriptor, record_id: Any, projection: Projection) -> Select:
    """Select one record by primary key. Row scope is checked on the loaded record instead."""
    return (
        select(descriptor.model)
        .where(descriptor.column_attr(descriptor.primary_key) == record_id)
        .options(*loader_options(descriptor, projection))
    )
