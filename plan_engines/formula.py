"""
PlanNavigator — Variable Graph Engine
Topological ordering of computed variables and formula evaluation.
A failing formula degrades to 0 for that variable only; the walk continues.
"""
import logging
import math
from collections import deque

from plan_engines.expression import parse, ExpressionError


class CircularDependencyError(ValueError):
    """Computed variables could not be fully ordered."""

    def __init__(self, variable_ids):
        self.variable_ids = list(variable_ids)
        super().__init__(f"Circular dependency detected: {', '.join(self.variable_ids)}")


class FormulaEvaluationError(ValueError):
    def __init__(self, variable_id, formula, message):
        self.variable_id = variable_id
        self.formula = formula
        super().__init__(f"Formula error in '{variable_id}' ({formula}): {message}")


def kind_of(v):
    """Variable kind, accepting the legacy 'type' key."""
    return v.get('kind') or v.get('type') or 'input'


def is_computed(v):
    return kind_of(v) == 'computed'


def as_number(value, fallback=0.0):
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return fallback


def get_evaluation_order(defs):
    """Kahn sort over computed->computed edges. Inputs add no in-degree."""
    computed = [vid for vid, v in defs.items() if is_computed(v)]
    computed_set = set(computed)
    in_degree = {vid: 0 for vid in computed}
    dependents = {vid: [] for vid in computed}

    for vid in computed:
        for dep in defs[vid].get('dependsOn') or []:
            if dep in computed_set and dep != vid:
                dependents[dep].append(vid)
                in_degree[vid] += 1
            elif dep == vid:
                in_degree[vid] += 1

    queue = deque(vid for vid in computed if in_degree[vid] == 0)
    order = []
    while queue:
        vid = queue.popleft()
        order.append(vid)
        for nxt in dependents[vid]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                queue.append(nxt)

    if len(order) < len(computed):
        placed = set(order)
        raise CircularDependencyError([vid for vid in computed if vid not in placed])
    return order


def evaluate_variables(defs, extra_scope=None, errors=None):
    """Evaluate every variable. Returns {id: number}.

    extra_scope seeds the scope first; input values then win on collision.
    Per-variable failures are logged, recorded in `errors` (if a list is
    passed) and evaluate to 0. Raises CircularDependencyError on a cycle.
    """
    order = get_evaluation_order(defs)

    scope = {k: as_number(v) for k, v in (extra_scope or {}).items() if not isinstance(v, str)}
    for vid, v in defs.items():
        if not is_computed(v):
            scope[vid] = as_number(v.get('value'))

    for vid in order:
        formula = defs[vid].get('formula')
        try:
            if not formula or not str(formula).strip():
                raise ExpressionError('Missing formula')
            result = parse(formula).evaluate(scope)
            if not math.isfinite(result):
                raise ExpressionError('Result is not a finite number')
            scope[vid] = result
        except ExpressionError as e:
            err = FormulaEvaluationError(vid, formula, str(e))
            logging.warning(f"evaluate_variables: {err}, using 0")
            if errors is not None:
                errors.append({'id': vid, 'formula': formula, 'error': str(e)})
            scope[vid] = 0.0
    return scope


def validate_formula(formula, available_ids):
    """Authoring check. Never raises: {'valid': True} or {'valid': False, 'error': msg}."""
    try:
        expr = parse(formula)
        expr.evaluate({vid: 1 for vid in available_ids})
    except ExpressionError as e:
        # dummy scope of ones can divide by zero in valid formulas like a/(b-c)
        if str(e) == 'Division by zero':
            return {'valid': True}
        return {'valid': False, 'error': str(e)}
    return {'valid': True}


def infer_depends_on(formula):
    """Identifiers a formula references; [] when it does not parse."""
    try:
        return parse(formula).variables()
    except ExpressionError:
        return []
