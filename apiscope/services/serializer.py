# ABOUTME: Record serialization
# ABOUTME: Renders ORM records as dicts limited to a projection, with included associations and methods

from typing import Any, Dict

from apiscope.services.query_compiler import Projection


def serialize_record(record: Any, projection: Projection) -> Dict[str, Any]:
    """Render one record with only the projected columns, associations and methods."""
    data = {column: getattr(record, column) for column in projection.columns}

    for included in projection.associations:
        value = getattr(record, included.name)
        if value is None:
            data[included.name] = None
        elif isinstance(value, (list, tuple, set)):
            data[included.name] = [_columns_of(item, included.columns) for item in value]
        else:
            data[included.name] = _columns_of(value, included.columns)

    for method in projection.methods:
        value = getattr(record, method)
        data[method] = value() if callable(value) else value

    return data


def _columns_of(record: Any, columns) -> Dict[str, Any]:
    return {column: getattr(record, column) for column in columns}
