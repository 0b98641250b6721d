# ABOUTME: Per-key authorization scope
# ABOUTME: Evaluates permission rules into action checks, row scopes, and visible columns/includes

import logging
from typing import Any, Iterable, List, Optional, Set

from sqlalchemy import and_, false, or_

from apiscope.exceptions import Forbidden
from apiscope.models.database import APIKey, PermissionRule
from apiscope.services.resources import ResourceDescriptor, normalize_name

logger = logging.getLogger(__name__)

READ = "read"
MANAGE = "manage"
ACTIONS = (READ, MANAGE)


class Ability:
    """
    What one API key may do, evaluated from its permission rules.

    Built once per request and discarded with it.
    """

    def __init__(self, api_key: APIKey, rules: Optional[Iterable[PermissionRule]] = None):
        self.api_key = api_key
        self.rules = list(api_key.permission_rules if rules is None else rules)

    @property
    def is_admin(self) -> bool:
        return bool(self.api_key.is_admin)

    def rules_for(self, action: str, descriptor: ResourceDescriptor) -> List[PermissionRule]:
        return [
            rule for rule in self.rules
            if rule.action in (action, MANAGE)
            and (rule.resource == "*" or normalize_name(rule.resource) == descriptor.name)
        ]

    def can(self, action: str, descriptor: ResourceDescriptor, record: Any = None) -> bool:
        """
        True when the key may perform action on the resource class, or on one
        record of it when record is given.
        """
        if self.is_admin:
            return True

        rules = self.rules_for(action, descriptor)
        if record is None:
            return bool(rules)
        return any(_record_matches(rule.conditions, record, descriptor) for rule in rules)

    def authorize(self, action: str, descriptor: ResourceDescriptor, record: Any = None) -> None:
        """Raise Forbidden unless can() holds."""
        if not self.can(action, descriptor, record):
            logger.info(
                "API key %s denied %s on %s%s",
                self.api_key.id, action, descriptor.name, "" if record is None else " record",
            )
            raise Forbidden(f"You are not allowed to {action} {descriptor.name}")

    def row_scope(self, descriptor: ResourceDescriptor, action: str = READ):
        """
        SQL criterion limiting rows to those the key may see.

        Returns None when every row is visible.
        """
        if self.is_admin:
            return None

        rules = self.rules_for(action, descriptor)
        if not rules:
            return false()

        clauses = []
        for rule in rules:
            if not rule.conditions:
                return None
            clauses.append(_conditions_clause(rule.conditions, descriptor))
        return or_(*clauses)

    def permitted_columns(self, descriptor: ResourceDescriptor, action: str = READ) -> Set[str]:
        """
        Columns the key may see on any record of the resource.

        The union over every matching rule, applied to every row in scope.
        A rule's columns are not tied to the rows its conditions select, so
        split column grants across separate keys rather than separate rules.
        """
        if self.is_admin:
            return set(descriptor.columns)
        return _union_of(self.rules_for(action, descriptor), "columns", descriptor.columns)

    def permitted_includes(self, descriptor: ResourceDescriptor, action: str = READ) -> Set[str]:
        """Associations and computed methods the key may include."""
        includable = tuple(descriptor.associations) + descriptor.methods
        if self.is_admin:
            return set(includable)
        return _union_of(self.rules_for(action, descriptor), "includes", includable)


def _union_of(rules: List[PermissionRule], attribute: str, available: Iterable[str]) -> Set[str]:
    available = set(available)
    permitted = set()
    for rule in rules:
        names = getattr(rule, attribute)
        if names is None:
            return available
        permitted.update(names)
    return permitted & available


def _conditions_clause(conditions: dict, descriptor: ResourceDescriptor):
    criteria = []
    for column, expected in conditions.items():
        # A condition on a column the model lacks can never hold
        if not descriptor.has_column(column):
            return false()
        attr = descriptor.column_attr(column)
        if isinstance(expected, list):
            criteria.append(attr.in_(expected))
        elif expected is None:
            criteria.append(attr.is_(None))
        else:
            criteria.append(attr == expected)
    return and_(*criteria)


def _record_matches(conditions: Optional[dict], record: Any, descriptor: ResourceDescriptor) -> bool:
    if not conditions:
        return True
    for column, expected in conditions.items():
        if not descriptor.has_column(column):
            return False
        actual = getattr(record, column)
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True
