# ABOUTME: Generic resource endpoints
# ABOUTME: Lists, shows, and nests any registered resource with filtering, projection, and pagination

from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from apiscope.config import get_settings
from apiscope.context import RequestContext
from apiscope.dependencies import GuardedQuery, get_db, get_request_context, guard_query_params
from apiscope.exceptions import Forbidden, NotFound
from apiscope.models.errors import AUTH_REQUIRED, SCOPED_RESOURCE
from apiscope.services.authorization import READ
from apiscope.services.filters import coerce
from apiscope.services.pagination import clamp_per_page, paginate, parse_page
from apiscope.services.query_compiler import (
    ParentScope, Projection, build_projection, compile_plan, record_statement,
)
from apiscope.services.resources import ResourceDescriptor
from apiscope.services.serializer import serialize_record

router = APIRouter()

_LIST_EXAMPLE = {
    "data": [{"id": 11, "status": "open"}, {"id": 12, "status": "open"}],
    "meta": {
        "total": 12, "total_pages": 2, "last_page": True,
        "previous_page": "http://api.example.com/widgets?q=%7B%22status_eq%22%3A%22open%22%7D&page=1",
        "next_page": None, "out_of_bounds": False, "offset": 10, "page": 2, "per_page": 10,
    }
}


def load_record(
    db: Session,
    ctx: RequestContext,
    descriptor: ResourceDescriptor,
    record_id: str,
    projection: Projection,
) -> Any:
    """
    Load one record by primary key and check the caller may read it.

    Raises NotFound when no record has that key, Forbidden when the record
    exists but lies outside the caller's scope.
    """
    pk_attr = descriptor.column_attr(descriptor.primary_key)
    try:
        python_type = pk_attr.property.columns[0].type.python_type
    except NotImplementedError:
        python_type = None

    try:
        key = coerce(record_id, python_type)
    except ValueError:
        raise NotFound(f"{descriptor.name} {record_id} not found")

    record = db.execute(record_statement(descriptor, key, projection)).scalars().first()
    if record is None:
        raise NotFound(f"{descriptor.name} {record_id} not found")

    ctx.ability.authorize(READ, descriptor, record)
    return record


@router.get("/resources", responses={
    200: {"description": "Resources readable by the API key", "content": {"application/json": {"example": {
        "data": [{"name": "widgets", "columns": ["id", "status"], "includes": ["owner"], "default_sort": []}],
        "meta": {"count": 1}
    }}}},
    **AUTH_REQUIRED,
})
async def list_exposed_resources(ctx: RequestContext = Depends(get_request_context)):
    """Returns the registered resources this API key may read, with its visible columns and includes."""
    data = []
    for descriptor in ctx.registry.all():
        if not ctx.ability.can(READ, descriptor):
            continue
        columns = ctx.ability.permitted_columns(descriptor)
        includes = ctx.ability.permitted_includes(descriptor)
        data.append({
            "name": descriptor.name,
            "columns": [c for c in descriptor.columns if c in columns],
            "includes": [i for i in tuple(descriptor.associations) + descriptor.methods if i in includes],
            "default_sort": [f"{column} {direction}" for column, direction in descriptor.default_sort],
        })

    return {
        "data": data,
        "meta": {"count": len(data)}
    }


@router.get("/{resource}", responses={
    200: {"description": "One page of matching records", "content": {"application/json": {"example": _LIST_EXAMPLE}}},
    **SCOPED_RESOURCE,
})
async def list_resource(
    resource: str,
    page: Optional[str] = Query(default=None),
    per_page: Optional[str] = Query(default=None),
    params: GuardedQuery = Depends(guard_query_params),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Returns a page of records with filtering (q), projection (select, include), sorting, and pagination."""
    settings = get_settings()
    descriptor = ctx.registry.resolve(resource)
    ctx.ability.authorize(READ, descriptor)

    projection = build_projection(ctx, descriptor, params.select, params.include)
    plan = compile_plan(ctx, descriptor, params.filter, projection, sort=params.sort)

    result = paginate(
        db, plan, parse_page(page),
        clamp_per_page(per_page, settings.default_per_page, settings.max_per_page),
        ctx.url,
    )
    return {
        "data": result.records,
        "meta": result.meta()
    }


@router.get("/{resource}/{record_id}", responses=SCOPED_RESOURCE)
async def show_resource(
    resource: str,
    record_id: str,
    params: GuardedQuery = Depends(guard_query_params),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Returns a single record by primary key, with optional projection (select, include)."""
    descriptor = ctx.registry.resolve(resource)
    ctx.ability.authorize(READ, descriptor)

    projection = build_projection(ctx, descriptor, params.select, params.include)
    record = load_record(db, ctx, descriptor, record_id, projection)

    return {
        "data": serialize_record(record, projection),
        "meta": {
            "resource": descriptor.name,
            "id": getattr(record, descriptor.primary_key)
        }
    }


@router.get("/{resource}/{record_id}/{nested}", responses={
    200: {"description": "One page of the record's associated records",
          "content": {"application/json": {"example": _LIST_EXAMPLE}}},
    **SCOPED_RESOURCE,
})
async def list_nested_resource(
    resource: str,
    record_id: str,
    nested: str,
    page: Optional[str] = Query(default=None),
    per_page: Optional[str] = Query(default=None),
    params: GuardedQuery = Depends(guard_query_params),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Returns a page of the records reachable through one association of a single record."""
    settings = get_settings()
    descriptor = ctx.registry.resolve(resource)
    ctx.ability.authorize(READ, descriptor)

    association, target = ctx.registry.resolve_nested(descriptor, nested)
    if association not in ctx.ability.permitted_includes(descriptor):
        raise Forbidden(f"You are not allowed to read {descriptor.name} {association}")

    parent = load_record(db, ctx, descriptor, record_id, build_projection(ctx, descriptor))
    ctx.ability.authorize(READ, target)

    projection = build_projection(ctx, target, params.select, params.include)
    plan = compile_plan(
        ctx, target, params.filter, projection,
        sort=params.sort,
        parent=ParentScope(record=parent, descriptor=descriptor, association=association),
    )

    result = paginate(
        db, plan, parse_page(page),
        clamp_per_page(per_page, settings.default_per_page, settings.max_per_page),
        ctx.url,
    )
    return {
        "data": result.records,
        "meta": result.meta()
    }
