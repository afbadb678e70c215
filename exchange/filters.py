from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .models import CatalogFilter


class FilterOperator(str, Enum):
    EQUALS = "equals"
    ICONTAINS = "icontains"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


@dataclass
class FieldCondition:
    field: str
    operator: FilterOperator
    value: Any = None

    def evaluate(self, row: dict) -> bool:
        return self._apply_operator(row.get(self.field), self.value)

    def _apply_operator(self, field_value: Any, compare_value: Any) -> bool:
        op = self.operator
        if op == FilterOperator.EQUALS: return field_value == compare_value
        if op == FilterOperator.ICONTAINS:
            return str(compare_value).lower() in field_value.lower() if field_value else False
        return False


@dataclass
class ConditionGroup:
    operator: LogicalOperator
    conditions: list[Union[FieldCondition, "ConditionGroup"]]

    def evaluate(self, row: dict) -> bool:
        if not self.conditions:
            return True
        results = (cond.evaluate(row) for cond in self.conditions)
        return all(results) if self.operator == LogicalOperator.AND else any(results)


EXACT_FIELDS = ("category", "type", "size", "condition", "owner_id", "status")


def build_conditions(filters: CatalogFilter) -> ConditionGroup:
    """Translate a validated CatalogFilter into a conjunctive predicate over item rows.

    ``search`` becomes an OR of case-insensitive substring matches on title and
    description; every other set field is an exact match.
    """
    conditions: list[Union[FieldCondition, ConditionGroup]] = []
    for name in EXACT_FIELDS:
        value = getattr(filters, name)
        if value is not None:
            conditions.append(FieldCondition(field=name, operator=FilterOperator.EQUALS, value=value))

    if filters.search:
        conditions.append(ConditionGroup(operator=LogicalOperator.OR, conditions=[
            FieldCondition(field="title", operator=FilterOperator.ICONTAINS, value=filters.search),
            FieldCondition(field="description", operator=FilterOperator.ICONTAINS, value=filters.search),
        ]))

    return ConditionGroup(operator=LogicalOperator.AND, conditions=conditions)
