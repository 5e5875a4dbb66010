"""
Condition Evaluator

Entry and exit rules are boolean expression trees of indicator
comparisons. A tree is a tagged union of two immutable node types:

    Comparison  - indicator <op> (literal | indicator | price)
    Group       - AND / OR / NOT over child nodes

evaluate(tree, ctx) resolves the tree at ctx.index. The EvaluationContext
is created per run and owns the indicator cache, so concurrent runs never
share mutable state.

Evaluation rules:
- NaN on either side of a comparison (indicator warm-up) => False
- '=' compares with an absolute tolerance of 1e-4
- cross_above / cross_below look at bar i-1 and bar i; False at bar 0
- AND short-circuits on the first False child, OR on the first True child
- Empty AND is True, empty OR is False (vacuous truth)
- NOT negates its single child

Usage:
    tree = Group(LogicalOperator.AND, (
        Comparison(IndicatorRef.of('rsi', period=14), ComparisonOperator.LT, 30.0),
        Comparison(IndicatorRef.of('sma', period=20), ComparisonOperator.LT, PriceRef(PriceField.CLOSE)),
    ))
    ctx = EvaluationContext(bars)
    hit = evaluate(tree, ctx.at(120))
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from backtesting.errors import InvalidRequestError
from backtesting.indicators import DEFAULT_LIBRARY, IndicatorLibrary

logger = logging.getLogger(__name__)

EQUALITY_TOLERANCE = 1e-4


class ComparisonOperator(str, Enum):
    LT = '<'
    LE = '<='
    GT = '>'
    GE = '>='
    EQ = '='
    CROSS_ABOVE = 'cross_above'
    CROSS_BELOW = 'cross_below'

    @property
    def is_cross(self) -> bool:
        return self in (ComparisonOperator.CROSS_ABOVE, ComparisonOperator.CROSS_BELOW)


class LogicalOperator(str, Enum):
    AND = 'AND'
    OR = 'OR'
    NOT = 'NOT'


class PriceField(str, Enum):
    OPEN = 'open'
    HIGH = 'high'
    LOW = 'low'
    CLOSE = 'close'

    @property
    def column(self) -> str:
        return self.value.capitalize()


# =============================================================================
# NODE TYPES
# =============================================================================

@dataclass(frozen=True)
class IndicatorRef:
    """Reference to one field of an indicator with fixed params."""
    indicator_id: str
    params: Tuple[Tuple[str, float], ...] = ()
    field: Optional[str] = None

    @classmethod
    def of(cls, indicator_id: str, field: Optional[str] = None, **params: float) -> 'IndicatorRef':
        return cls(indicator_id.lower(), tuple(sorted(params.items())), field)

    @property
    def params_dict(self) -> Dict[str, float]:
        return dict(self.params)


@dataclass(frozen=True)
class PriceRef:
    """Reference to the current bar's raw price."""
    price: PriceField = PriceField.CLOSE


Operand = Union[float, IndicatorRef, PriceRef]


@dataclass(frozen=True)
class Comparison:
    left: IndicatorRef
    operator: ComparisonOperator
    right: Operand


@dataclass(frozen=True)
class Group:
    operator: LogicalOperator
    children: Tuple['ConditionNode', ...] = ()


ConditionNode = Union[Comparison, Group]


def all_of(*children: ConditionNode) -> Group:
    return Group(LogicalOperator.AND, tuple(children))


def any_of(*children: ConditionNode) -> Group:
    return Group(LogicalOperator.OR, tuple(children))


def negate(child: ConditionNode) -> Group:
    return Group(LogicalOperator.NOT, (child,))


# =============================================================================
# EVALUATION CONTEXT
# =============================================================================

class EvaluationContext:
    """
    Per-run evaluation state: bar series, current index, indicator cache.

    The cache maps (indicator, resolved params, field) to the full causal
    series, so the first lookup computes and later (key, bar) lookups are
    array reads.
    """

    def __init__(self, bars: pd.DataFrame, library: IndicatorLibrary = DEFAULT_LIBRARY):
        self.bars = bars
        self.library = library
        self.index = 0
        self._cache: Dict[Tuple[str, Tuple[Tuple[str, float], ...], str], np.ndarray] = {}
        self._prices: Dict[PriceField, np.ndarray] = {
            price: bars[price.column].to_numpy(dtype=float) for price in PriceField
        }
        self.computations = 0

    def __len__(self) -> int:
        return len(self.bars)

    def at(self, index: int) -> 'EvaluationContext':
        """Move the context to a bar index and return it."""
        self.index = index
        return self

    def cache_key(self, ref: IndicatorRef) -> Tuple[str, Tuple[Tuple[str, float], ...], str]:
        spec = self.library.get(ref.indicator_id)
        if spec is None:
            raise KeyError(f"Unknown indicator: {ref.indicator_id!r}")
        params = self.library.resolve_params(ref.indicator_id, ref.params_dict)
        field = spec.canonical_field(ref.field)
        return spec.indicator_id, tuple(sorted(params.items())), field

    def series(self, ref: IndicatorRef) -> np.ndarray:
        key = self.cache_key(ref)
        values = self._cache.get(key)
        if values is None:
            indicator_id, params, field = key
            values = self.library.compute(self.bars, indicator_id, dict(params), field)
            self._cache[key] = values
            self.computations += 1
        return values

    def price(self, price: PriceField) -> np.ndarray:
        return self._prices[price]

    def value(self, operand: Operand, index: Optional[int] = None) -> float:
        """Resolve an operand at a bar index (default: current)."""
        index = self.index if index is None else index
        if isinstance(operand, IndicatorRef):
            return float(self.series(operand)[index])
        if isinstance(operand, PriceRef):
            return float(self._prices[operand.price][index])
        return float(operand)

    def label(self, ref: IndicatorRef) -> str:
        """Stable human-readable key, e.g. 'rsi(period=14)' or 'macd(...).signal'."""
        indicator_id, params, field = self.cache_key(ref)
        args = ','.join(f'{k}={v:g}' for k, v in params)
        spec = self.library.get(indicator_id)
        suffix = '' if field == spec.default_field else f'.{field}'
        return f'{indicator_id}({args}){suffix}'


# =============================================================================
# EVALUATION
# =============================================================================

def evaluate(node: ConditionNode, ctx: EvaluationContext) -> bool:
    """Evaluate a condition tree at ctx.index."""
    if isinstance(node, Comparison):
        return _evaluate_comparison(node, ctx)
    if isinstance(node, Group):
        return _evaluate_group(node, ctx)
    raise TypeError(f"Not a condition node: {type(node).__name__}")


def _evaluate_group(node: Group, ctx: EvaluationContext) -> bool:
    if node.operator == LogicalOperator.AND:
        return all(evaluate(child, ctx) for child in node.children)
    if node.operator == LogicalOperator.OR:
        return any(evaluate(child, ctx) for child in node.children)
    if node.operator == LogicalOperator.NOT:
        if len(node.children) != 1:
            raise ValueError(f"NOT group needs exactly one child, got {len(node.children)}")
        return not evaluate(node.children[0], ctx)
    raise ValueError(f"Unknown logical operator: {node.operator!r}")


def _evaluate_comparison(node: Comparison, ctx: EvaluationContext) -> bool:
    index = ctx.index
    left = ctx.value(node.left, index)
    right = ctx.value(node.right, index)
    if math.isnan(left) or math.isnan(right):
        return False

    op = node.operator
    if op.is_cross:
        if index < 1:
            return False
        prev_left = ctx.value(node.left, index - 1)
        prev_right = ctx.value(node.right, index - 1)
        if math.isnan(prev_left) or math.isnan(prev_right):
            return False
        if op == ComparisonOperator.CROSS_ABOVE:
            return prev_left <= prev_right and left > right
        return prev_left >= prev_right and left < right

    return compare_values(left, op, right)


def compare_values(left: float, op: ComparisonOperator, right: float) -> bool:
    """Apply a non-cross operator to two scalars."""
    if op == ComparisonOperator.LT:
        return left < right
    if op == ComparisonOperator.LE:
        return left <= right
    if op == ComparisonOperator.GT:
        return left > right
    if op == ComparisonOperator.GE:
        return left >= right
    if op == ComparisonOperator.EQ:
        return abs(left - right) < EQUALITY_TOLERANCE
    raise ValueError(f"Operator {op.value!r} needs a series, not two scalars")


# =============================================================================
# TREE UTILITIES
# =============================================================================

def iter_indicator_refs(node: ConditionNode) -> Iterator[IndicatorRef]:
    """Every indicator reference in a tree, depth first."""
    if isinstance(node, Comparison):
        yield node.left
        if isinstance(node.right, IndicatorRef):
            yield node.right
    elif isinstance(node, Group):
        for child in node.children:
            yield from iter_indicator_refs(child)
    else:
        raise TypeError(f"Not a condition node: {type(node).__name__}")


def validate_tree(node: ConditionNode, library: IndicatorLibrary = DEFAULT_LIBRARY) -> List[str]:
    """Check a tree against an indicator library and return list of issues."""
    issues = []
    if isinstance(node, Group):
        if node.operator == LogicalOperator.NOT and len(node.children) != 1:
            issues.append(f'NOT group needs exactly one child, got {len(node.children)}')
        for child in node.children:
            issues.extend(validate_tree(child, library))
        return issues

    if not isinstance(node, Comparison):
        return [f'Not a condition node: {type(node).__name__}']

    for ref in iter_indicator_refs(node):
        spec = library.get(ref.indicator_id)
        if spec is None:
            issues.append(f'Unknown indicator: {ref.indicator_id}')
            continue
        unknown = sorted(set(spec.canonical_params(ref.params_dict)) - set(spec.defaults))
        if unknown:
            issues.append(f'Unknown params for {ref.indicator_id}: {unknown}')
        if ref.field is not None and spec.canonical_field(ref.field) not in spec.fields:
            issues.append(f'Indicator {ref.indicator_id} has no field {ref.field!r}')
    return issues


# =============================================================================
# JSON TRANSLATION
# =============================================================================

def parse_condition(data: Mapping[str, Any]) -> ConditionNode:
    """
    Build a typed tree from its JSON form.

    Group:      {"operator": "AND", "conditions": [...]}
    Comparison: {"indicatorId": "rsi", "params": {"period": 14}, "field": "value",
                 "operator": "<", "compareTarget": {"type": "fixed", "value": 30}}

    compareTarget types: fixed (value), indicator (indicatorId/params/field),
    price (priceType: open|high|low|close).

    Raises:
        InvalidRequestError: Malformed node
    """
    if not isinstance(data, Mapping):
        raise InvalidRequestError(f'Condition node must be an object, got {type(data).__name__}')

    try:
        if 'conditions' in data:
            operator = LogicalOperator(str(data.get('operator', 'AND')).upper())
            children = tuple(parse_condition(child) for child in data['conditions'])
            return Group(operator, children)

        left = _parse_indicator(data)
        operator = ComparisonOperator(data['operator'])
        return Comparison(left, operator, _parse_target(data.get('compareTarget', {})))
    except InvalidRequestError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidRequestError(f'Malformed condition node {dict(data)!r}: {exc}') from exc


def _parse_indicator(data: Mapping[str, Any]) -> IndicatorRef:
    indicator_id = data.get('indicatorId') or data['indicator']
    params = {k: float(v) for k, v in (data.get('params') or {}).items()}
    return IndicatorRef.of(indicator_id, data.get('field'), **params)


def _parse_target(target: Mapping[str, Any]) -> Operand:
    kind = target.get('type', 'fixed')
    if kind == 'fixed':
        return float(target['value'])
    if kind == 'indicator':
        return _parse_indicator(target)
    if kind == 'price':
        return PriceRef(PriceField(target.get('priceType', 'close')))
    raise ValueError(f'Unknown compareTarget type: {kind!r}')


def condition_to_dict(node: ConditionNode) -> Dict[str, Any]:
    """Inverse of parse_condition."""
    if isinstance(node, Group):
        return {
            'operator': node.operator.value,
            'conditions': [condition_to_dict(child) for child in node.children],
        }
    if isinstance(node, Comparison):
        result = _indicator_to_dict(node.left)
        result['operator'] = node.operator.value
        result['compareTarget'] = _target_to_dict(node.right)
        return result
    raise TypeError(f"Not a condition node: {type(node).__name__}")


def _indicator_to_dict(ref: IndicatorRef) -> Dict[str, Any]:
    result: Dict[str, Any] = {'indicatorId': ref.indicator_id, 'params': ref.params_dict}
    if ref.field is not None:
        result['field'] = ref.field
    return result


def _target_to_dict(operand: Operand) -> Dict[str, Any]:
    if isinstance(operand, IndicatorRef):
        return dict(type='indicator', **_indicator_to_dict(operand))
    if isinstance(operand, PriceRef):
        return {'type': 'price', 'priceType': operand.price.value}
    return {'type': 'fixed', 'value': float(operand)}
