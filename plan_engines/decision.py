"""
PlanNavigator — Decision Scoring Engine
Weighted multi-criteria ranking of two or more evaluated scenarios.
Auto criteria: min/max normalized linked variable (0-100, 50 when all equal).
Manual criteria: per-scenario 1-10 score mapped onto 0-100 (default 5).
"""
import math
import uuid

DEFAULT_CLOSE_CALL_THRESHOLD = 5.0
DEFAULT_MANUAL_SCORE = 5
DEFAULT_WEIGHT = 5

HIGHER = 'higher-is-better'
LOWER = 'lower-is-better'

# label keyword -> (criterion label, directionality)
DEFAULT_CRITERIA = [
    ('revenue', 'Revenue', HIGHER),
    ('cost', 'Costs', LOWER),
    ('profit', 'Profit', HIGHER),
]


def normalize_score(value, lo, hi, lower_is_better=False):
    if lo == hi:
        return 50.0
    score = (value - lo) / (hi - lo) * 100
    return 100 - score if lower_is_better else score


def manual_to_score(score):
    return (score - 1) / 9 * 100


def _clamp(value, lo, hi, default):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return max(lo, min(hi, value))


def _directionality(criterion):
    return criterion.get('directionality') or criterion.get('type') or HIGHER


def make_criterion(label, directionality=HIGHER, source='manual', variable_id=None, weight=DEFAULT_WEIGHT):
    c = {
        'id': str(uuid.uuid4()), 'label': label, 'weight': weight,
        'directionality': directionality, 'source': source,
    }
    if source == 'auto':
        c['variableId'] = variable_id
    else:
        c['manualScores'] = {}
    return c


def build_default_criteria(defs):
    """Revenue/Costs/Profit auto criteria, each linked to the first computed
    variable whose label mentions the keyword."""
    if not defs:
        return []
    computed = [v for v in defs.values() if (v.get('kind') or v.get('type')) == 'computed']
    criteria = []
    for keyword, label, direction in DEFAULT_CRITERIA:
        match = next((v for v in computed if keyword in str(v.get('label', '')).lower()), None)
        if match:
            criteria.append(make_criterion(label, direction, 'auto', match['id']))
    return criteria


def set_manual_score(criteria, criterion_id, scenario_id, score):
    """Copy-on-write update of one manual score, clamped to 1-10."""
    score = _clamp(score, 1, 10, DEFAULT_MANUAL_SCORE)
    return [
        {**c, 'manualScores': {**(c.get('manualScores') or {}), scenario_id: score}}
        if c['id'] == criterion_id and c.get('source') == 'manual' else c
        for c in criteria
    ]


def score_matrix(scenarios, criteria, manual_default=DEFAULT_MANUAL_SCORE):
    """{criterionId: {scenarioId: 0-100}}. Missing values count as 0."""
    matrix = {}
    for c in criteria:
        row = matrix[c['id']] = {}
        if c.get('source') == 'auto' and c.get('variableId'):
            raw = {s['id']: _clamp((s.get('values') or {}).get(c['variableId'], 0), -math.inf, math.inf, 0.0)
                   for s in scenarios}
            lo, hi = min(raw.values()), max(raw.values())
            lower = _directionality(c) == LOWER
            for sid, value in raw.items():
                row[sid] = normalize_score(value, lo, hi, lower)
        elif c.get('source') == 'manual':
            manual = c.get('manualScores') or {}
            for s in scenarios:
                row[s['id']] = manual_to_score(_clamp(manual.get(s['id'], manual_default), 1, 10, manual_default))
    return matrix


def score_scenarios(scenarios, criteria, close_call_threshold=DEFAULT_CLOSE_CALL_THRESHOLD,
                    manual_default=DEFAULT_MANUAL_SCORE):
    """Rank scenarios. `scenarios` is a list of {'id', 'name', 'values'}.

    Returns {'matrix', 'totals', 'ranking', 'recommendation'}. When the summed
    weight is 0 there are no totals and no recommendation.
    """
    if len(scenarios) < 2:
        raise ValueError('score_scenarios needs at least 2 scenarios')

    criteria = [{**c, 'weight': _clamp(c.get('weight', DEFAULT_WEIGHT), 0, 10, DEFAULT_WEIGHT)} for c in criteria]
    matrix = score_matrix(scenarios, criteria, manual_default)

    total_weight = sum(c['weight'] for c in criteria)
    if total_weight <= 0:
        return {'matrix': matrix, 'totals': None, 'ranking': [], 'recommendation': None}

    totals = {}
    for s in scenarios:
        weighted = sum(matrix[c['id']].get(s['id'], 0) * c['weight'] for c in criteria)
        totals[s['id']] = weighted / total_weight

    names = {s['id']: s.get('name') or s['id'] for s in scenarios}
    # sorted() is stable: ties keep input order
    ranked = sorted(scenarios, key=lambda s: totals[s['id']], reverse=True)
    ranking = [{'id': s['id'], 'name': names[s['id']], 'score': round(totals[s['id']], 1), 'rank': i + 1}
               for i, s in enumerate(ranked)]

    first, second = ranked[0]['id'], ranked[1]['id']
    gap = totals[first] - totals[second]
    rec = {
        'type': 'close' if gap <= close_call_threshold else 'clear',
        'winner': names[first], 'winnerId': first, 'winnerScore': round(totals[first], 1),
        'gap': round(gap, 1),
    }
    if rec['type'] == 'close':
        rec.update({'runner': names[second], 'runnerId': second, 'runnerScore': round(totals[second], 1)})

    return {'matrix': matrix, 'totals': totals, 'ranking': ranking, 'recommendation': rec}
