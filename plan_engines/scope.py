"""
PlanNavigator — Scope Resolution Engine
Resolves each input variable's runtime value (override > derived fact > stored
value), normalizes percents, and drives the variable graph evaluation.
Callers always receive a complete numeric map, never an exception.
"""
import logging
import math

from plan_engines.formula import (
    CircularDependencyError, evaluate_variables, is_computed, as_number,
)


def normalize_percent(value, unit):
    """Percent inputs are decimal fractions; 8 means 8%, not 800%."""
    if unit == 'percent' and value > 1:
        return value / 100
    return value


def _finite(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def resolve_input_value(var, overrides=None, derived=None):
    """Effective runtime value of an input variable, with its source."""
    vid = var['id']
    overrides = overrides or {}
    derived = derived or {}
    if vid in overrides and _finite(overrides[vid]):
        value, source = float(overrides[vid]), 'override'
    elif vid in derived and _finite(derived[vid]):
        value, source = float(derived[vid]), 'derived'
    else:
        value, source = as_number(var.get('value'), as_number(var.get('defaultValue'))), 'stored'
    return normalize_percent(value, var.get('unit')), source


def build_resolved_definitions(defs, overrides=None, derived=None):
    """Copy of defs with every input's value resolved. Computed definitions pass through."""
    merged = {}
    sources = {}
    for vid, var in defs.items():
        if is_computed(var):
            merged[vid] = var
            continue
        value, source = resolve_input_value({**var, 'id': vid}, overrides, derived)
        merged[vid] = {**var, 'value': value}
        sources[vid] = source
    return merged, sources


def _numeric_scope(derived):
    return {k: float(v) for k, v in (derived or {}).items() if _finite(v)}


def resolve_scenario(defs, overrides=None, derived=None):
    """Evaluate a scenario. Returns
    {'values', 'sources', 'errors', 'degraded', 'cycle', 'warning'}.

    On a dependency cycle the pre-evaluation resolved values are returned
    (computed variables fall back to defaultValue) and 'degraded' is set.
    """
    merged, sources = build_resolved_definitions(defs, overrides, derived)
    errors = []
    try:
        values = evaluate_variables(merged, extra_scope=_numeric_scope(derived), errors=errors)
    except CircularDependencyError as e:
        logging.warning(f"resolve_scenario: {e}; falling back to stored values")
        values = dict(_numeric_scope(derived))
        for vid, var in merged.items():
            if is_computed(var):
                values[vid] = as_number(var.get('defaultValue'))
            else:
                values[vid] = var['value']
        return {
            'values': values, 'sources': sources, 'errors': [],
            'degraded': True, 'cycle': e.variable_ids,
            'warning': f"Formula Error: {e}",
        }

    warning = None
    if errors:
        warning = 'Formula Error: ' + '; '.join(f"{err['id']}: {err['error']}" for err in errors)
    return {
        'values': values, 'sources': sources, 'errors': errors,
        'degraded': bool(errors), 'cycle': [], 'warning': warning,
    }


def evaluate_scenario(defs, overrides=None, derived=None):
    """Just the evaluated value map."""
    return resolve_scenario(defs, overrides, derived)['values']
