"""
PlanNavigator — Variable & Scenario Store Operations
Copy-on-write mutations over the variable definition map and scenario
records. Every function returns a new object and leaves its inputs untouched.
"""
import uuid
from datetime import datetime, timezone

from plan_engines.formula import infer_depends_on, is_computed, kind_of
from plan_engines.templates import get_template

SCENARIO_STATUSES = ('draft', 'active', 'archived')
DEFAULT_HORIZON_MONTHS = 12


def _now():
    return datetime.now(timezone.utc).isoformat()


# ── Variable definitions ──

def normalize_variable(var):
    """Fill defaults; 'type' is accepted as the legacy name of 'kind'."""
    v = dict(var)
    v['kind'] = kind_of(var)
    v.pop('type', None)
    v.setdefault('label', v['id'])
    v.setdefault('category', 'operations')
    v.setdefault('unit', 'count')
    v.setdefault('description', '')
    if v['kind'] == 'computed':
        v.setdefault('formula', '')
        if not v.get('dependsOn'):
            v['dependsOn'] = infer_depends_on(v['formula'])
        v.setdefault('value', 0)
        v.setdefault('defaultValue', 0)
    else:
        v.setdefault('value', v.get('defaultValue', 0))
        v.setdefault('defaultValue', v['value'])
    return v


def seed_variables(business_type, template_overrides=None):
    return {v['id']: normalize_variable(v) for v in get_template(business_type, template_overrides)}


def add_variable(defs, var):
    if not var.get('id'):
        raise ValueError('variable id required')
    if var['id'] in defs:
        raise ValueError(f"variable '{var['id']}' already exists")
    return {**defs, var['id']: normalize_variable(var)}


def remove_variable(defs, variable_id):
    """Drop a variable and strip it from every other variable's dependsOn."""
    out = {}
    for vid, v in defs.items():
        if vid == variable_id:
            continue
        deps = v.get('dependsOn') or []
        out[vid] = {**v, 'dependsOn': [d for d in deps if d != variable_id]} if variable_id in deps else v
    return out


def update_variable_value(defs, variable_id, value):
    if variable_id not in defs:
        raise KeyError(variable_id)
    return {**defs, variable_id: {**defs[variable_id], 'value': value}}


def update_variable_definition(defs, variable_id, patch):
    """Merge `patch` into one definition. A new formula re-derives dependsOn
    unless the patch supplies it."""
    if variable_id not in defs:
        raise KeyError(variable_id)
    patch = {k: v for k, v in patch.items() if k != 'id'}
    updated = {**defs[variable_id], **patch}
    if 'type' in patch and 'kind' not in patch:
        updated['kind'] = patch['type']
    updated.pop('type', None)
    if 'formula' in patch and 'dependsOn' not in patch:
        updated['dependsOn'] = infer_depends_on(updated['formula'])
    return {**defs, variable_id: updated}


def input_ids(defs):
    return [vid for vid, v in defs.items() if not is_computed(v)]


# ── Scenarios ──

def normalize_scenario(raw):
    raw = raw if isinstance(raw, dict) else {}
    meta = raw.get('metadata') if isinstance(raw.get('metadata'), dict) else {}
    status = raw.get('status')
    horizon = raw.get('horizonMonths')

    def _dict(key):
        return dict(raw[key]) if isinstance(raw.get(key), dict) else {}

    return {
        'metadata': {
            'id': meta.get('id') or raw.get('id') or str(uuid.uuid4()),
            'name': meta.get('name') or raw.get('name') or 'Untitled Scenario',
            'description': meta.get('description') or '',
            'createdAt': meta.get('createdAt') or _now(),
            'isBaseline': bool(meta.get('isBaseline', False)),
        },
        'values': _dict('values'),
        'assumptions': list(raw['assumptions']) if isinstance(raw.get('assumptions'), list) else [],
        'variantRefs': _dict('variantRefs'),
        'sectionOverrides': _dict('sectionOverrides'),
        'status': status if status in SCENARIO_STATUSES else 'draft',
        'horizonMonths': horizon if isinstance(horizon, int) and horizon > 0 else DEFAULT_HORIZON_MONTHS,
    }


def new_scenario(name, description='', is_baseline=False, scenario_id=None):
    return normalize_scenario({'metadata': {
        'id': scenario_id, 'name': name, 'description': description, 'isBaseline': is_baseline,
    }})


def set_override(scenario, variable_id, value):
    return {**scenario, 'values': {**scenario.get('values', {}), variable_id: value}}


def clear_override(scenario, variable_id):
    values = {k: v for k, v in scenario.get('values', {}).items() if k != variable_id}
    return {**scenario, 'values': values}


def reset_scenario_values(scenario, defs):
    """Every input back to its defaultValue."""
    return {**scenario, 'values': {vid: defs[vid].get('defaultValue', 0) for vid in input_ids(defs)}}


def prune_scenario_values(scenario, defs):
    """Drop overrides for ids that are no longer input variables."""
    keep = set(input_ids(defs))
    return {**scenario, 'values': {k: v for k, v in scenario.get('values', {}).items() if k in keep}}


def snapshot_input_values(defs, values=None):
    """Override-or-stored value of every input, for saving a scenario snapshot."""
    values = values or {}
    return {vid: values.get(vid, defs[vid].get('value', 0)) for vid in input_ids(defs)}


def set_variant_ref(scenario, slug, variant_id):
    refs = dict(scenario.get('variantRefs', {}))
    if variant_id is None:
        refs.pop(slug, None)
    else:
        refs[slug] = variant_id
    return {**scenario, 'variantRefs': refs}


def set_section_override(scenario, slug, patch):
    overrides = dict(scenario.get('sectionOverrides', {}))
    if patch is None:
        overrides.pop(slug, None)
    else:
        overrides[slug] = patch
    return {**scenario, 'sectionOverrides': overrides}


def new_variant(name, data, description='', scenario_id=None, variant_id=None):
    """Variant Store record: a named full snapshot of one section's content."""
    return {
        'id': variant_id or str(uuid.uuid4()), 'name': name, 'description': description,
        'data': data, 'createdAt': _now(), 'scenarioId': scenario_id,
    }
