"""
PlanNavigator — Flask API Server
Owns the in-memory plan store (variables, sections, scenarios, variants) and
recomputes derived inputs and scenario evaluations on every write.
Writes are persisted behind a debounce; pending writes flush at exit.
"""
import atexit
import io
import logging
import os
import traceback
from flask import Flask, jsonify, request, send_file

from plan_engines.data_loader import load_parameters, load_variable_templates
from plan_engines.decision import build_default_criteria, make_criterion, score_scenarios, set_manual_score
from plan_engines.derive_inputs import DERIVED_FACTS, derive_financial_inputs, numeric_facts
from plan_engines.effective_plan import effective_contents, resolve_effective_plan
from plan_engines.formula import validate_formula
from plan_engines.growth import compute_growth_timeline, normalize_growth_timeline
from plan_engines.metrics import build_cash_projection, compute_scenario_metrics
from plan_engines.persistence import DebouncedWriter, JsonStore, SyncTracker
from plan_engines.scope import resolve_scenario
from plan_engines import variables as store
from plan_engines.operations import compute_operations_costs

app = Flask(__name__)

STATE = {
    'params': None, 'businessType': None, 'variables': {}, 'sections': {},
    'scenarios': {}, 'activeScenarioId': None, 'variants': {}, 'criteria': [],
    'derived': {}, 'evaluations': {}, 'templates': {}, 'loaded': False, '_load_error': None,
}
PERSIST = {'store': None, 'writer': None, 'tracker': None}


def _init_state(params=None):
    """(Re)build STATE from config and whatever the JSON store already holds."""
    if PERSIST['writer']:
        PERSIST['writer'].close()
    params = params or load_parameters()
    logging.getLogger().setLevel(str(params.get('logLevel', 'INFO')).upper())

    js = JsonStore(params['storeDir'])
    tracker = SyncTracker()
    writer = DebouncedWriter(js.save, params['persistDebounceSeconds'], tracker, retry={
        'max_retries': params['retryMaxAttempts'],
        'base_delay': params['retryBaseDelay'], 'max_delay': params['retryMaxDelay'],
    })
    PERSIST.update({'store': js, 'writer': writer, 'tracker': tracker})

    meta = js.load('plan', {}) or {}
    STATE.update({
        'params': params,
        'templates': load_variable_templates(),
        'businessType': meta.get('businessType'),
        'activeScenarioId': meta.get('activeScenarioId'),
        'variables': js.load('variables', {}) or {},
        'sections': js.load('sections', {}) or {},
        'scenarios': {sid: store.normalize_scenario(s) for sid, s in (js.load('scenarios', {}) or {}).items()},
        'variants': js.load('variants', {}) or {},
        'criteria': js.load('criteria', []) or [],
    })
    _recompute()
    STATE.update({'loaded': True, '_load_error': None})


def _persist(*keys):
    payloads = {
        'plan': lambda: {'businessType': STATE['businessType'], 'activeScenarioId': STATE['activeScenarioId']},
        'variables': lambda: STATE['variables'], 'sections': lambda: STATE['sections'],
        'scenarios': lambda: STATE['scenarios'], 'variants': lambda: STATE['variants'],
        'criteria': lambda: STATE['criteria'],
    }
    for key in keys:
        PERSIST['writer'].schedule(key, payloads[key]())


def _recompute():
    """Derived inputs -> every scenario's evaluation. STATE is only updated once both succeed."""
    sections = STATE['sections']
    derived = derive_financial_inputs(
        sections.get('product-service'), sections.get('operations'), sections.get('marketing-strategy'))
    evaluations = {sid: _evaluate(s) for sid, s in STATE['scenarios'].items()}
    STATE.update({'derived': derived, 'evaluations': evaluations})


def _evaluate(scenario):
    plan = resolve_effective_plan(STATE['sections'], scenario, STATE['variants'])
    content = effective_contents(plan)
    derived = derive_financial_inputs(
        content.get('product-service'), content.get('operations'), content.get('marketing-strategy'))
    result = resolve_scenario(STATE['variables'], scenario.get('values'), numeric_facts(derived))
    result['derived'] = derived
    return result


def _scenario_or_404(sid):
    s = STATE['scenarios'].get(sid)
    if s is None:
        return None, (jsonify({'error': f'Scenario {sid} not found'}), 404)
    return s, None


def _body():
    return request.get_json(silent=True) or {}


def _scenario_payload(sid):
    s = STATE['scenarios'][sid]
    ev = STATE['evaluations'].get(sid) or _evaluate(s)
    return {
        'scenario': s, 'values': ev['values'], 'sources': ev['sources'],
        'errors': ev['errors'], 'degraded': ev['degraded'], 'warning': ev['warning'],
    }


@app.before_request
def _ensure_loaded():
    if request.endpoint == 'api_reload':
        return None
    if not STATE['loaded'] and not STATE.get('_load_error'):
        try:
            _init_state()
            print("[OK] PlanNavigator state loaded")
        except Exception as e:
            err_msg = f"{type(e).__name__}: {e}"
            STATE['_load_error'] = err_msg
            print(f"[!] State load failed: {err_msg}")
            print("[!] Fix data/config or the store directory, then POST /api/reload")
            traceback.print_exc()
    if not STATE['loaded']:
        return jsonify({'error': 'State not loaded', 'reason': STATE.get('_load_error')}), 503
    return None


@app.route('/api/reload', methods=['POST'])
def api_reload():
    """Re-read config and the JSON store, clearing any previous load error."""
    try:
        STATE['loaded'] = False
        STATE['_load_error'] = None
        _init_state()
        return jsonify({'status': 'ok', 'derived': STATE['derived']})
    except Exception as e:
        STATE['_load_error'] = f"{type(e).__name__}: {e}"
        traceback.print_exc()
        return jsonify({'status': 'error', 'message': str(e)}), 500


# ══════════════════════════════════════════════════════════════
#  ROUTES
# ══════════════════════════════════════════════════════════════

@app.route('/api/state')
def api_state():
    return jsonify({
        'businessType': STATE['businessType'], 'variables': STATE['variables'],
        'sections': STATE['sections'], 'scenarios': STATE['scenarios'],
        'activeScenarioId': STATE['activeScenarioId'], 'variants': STATE['variants'],
        'criteria': STATE['criteria'], 'derived': STATE['derived'],
        'sync': PERSIST['tracker'].summary(),
    })


@app.route('/api/business/seed', methods=['POST'])
def api_seed_business():
    """Seed variables from a business-type template and create a baseline scenario."""
    btype = _body().get('businessType', 'custom')
    STATE['businessType'] = btype
    STATE['variables'] = store.seed_variables(btype, STATE['templates'])
    baseline = store.new_scenario('Baseline', is_baseline=True)
    sid = baseline['metadata']['id']
    STATE['scenarios'] = {sid: baseline}
    STATE['activeScenarioId'] = sid
    STATE['criteria'] = build_default_criteria(STATE['variables'])
    _recompute()
    _persist('plan', 'variables', 'scenarios', 'criteria')
    return jsonify({'status': 'ok', 'businessType': btype, 'variables': STATE['variables'],
                    'activeScenarioId': sid, 'criteria': STATE['criteria']})


# ── Variables ──

@app.route('/api/variables')
def api_variables():
    return jsonify(STATE['variables'])


@app.route('/api/variables', methods=['POST'])
def api_add_variable():
    body = _body()
    try:
        STATE['variables'] = store.add_variable(STATE['variables'], body)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    _recompute(); _persist('variables')
    return jsonify({'status': 'ok', 'variable': STATE['variables'][body['id']]})


@app.route('/api/variables/<vid>', methods=['PATCH'])
def api_update_variable(vid):
    body = _body()
    try:
        if set(body) == {'value'}:
            STATE['variables'] = store.update_variable_value(STATE['variables'], vid, body['value'])
        else:
            STATE['variables'] = store.update_variable_definition(STATE['variables'], vid, body)
    except KeyError:
        return jsonify({'error': f'Variable {vid} not found'}), 404
    _recompute(); _persist('variables')
    return jsonify({'status': 'ok', 'variable': STATE['variables'][vid]})


@app.route('/api/variables/<vid>', methods=['DELETE'])
def api_remove_variable(vid):
    if vid not in STATE['variables']:
        return jsonify({'error': f'Variable {vid} not found'}), 404
    STATE['variables'] = store.remove_variable(STATE['variables'], vid)
    STATE['scenarios'] = {sid: store.prune_scenario_values(s, STATE['variables'])
                          for sid, s in STATE['scenarios'].items()}
    _recompute(); _persist('variables', 'scenarios')
    return jsonify({'status': 'ok', 'removed': vid})


@app.route('/api/formula/validate', methods=['POST'])
def api_validate_formula():
    body = _body()
    if 'formula' not in body:
        return jsonify({'error': 'formula required'}), 400
    available = [k for k in STATE['variables'] if k != body.get('variableId')]
    available += [k for k in DERIVED_FACTS if k not in available]
    return jsonify(validate_formula(body['formula'], available))


# ── Sections ──

@app.route('/api/sections')
def api_sections():
    return jsonify(STATE['sections'])


@app.route('/api/sections/<slug>', methods=['PUT'])
def api_put_section(slug):
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'section content must be an object'}), 400
    previous = STATE['sections']
    STATE['sections'] = {**previous, slug: body}
    try:
        _recompute()
    except Exception as e:
        traceback.print_exc()
        STATE['sections'] = previous
        return jsonify({'error': f'section {slug} could not be applied: {e}'}), 400
    _persist('sections')
    return jsonify({'status': 'ok', 'derived': STATE['derived']})


@app.route('/api/derived')
def api_derived():
    ops = compute_operations_costs(STATE['sections'].get('operations'))
    return jsonify({'derived': STATE['derived'], 'operations': ops})


# ── Scenarios ──

@app.route('/api/scenarios')
def api_scenarios():
    return jsonify({'activeScenarioId': STATE['activeScenarioId'],
                    'scenarios': list(STATE['scenarios'].values())})


@app.route('/api/scenarios', methods=['POST'])
def api_create_scenario():
    body = _body()
    s = store.new_scenario(body.get('name') or 'Untitled Scenario', body.get('description', ''))
    source = STATE['scenarios'].get(body.get('copyFrom'))
    if source:
        s = {**s, 'values': dict(source['values']), 'variantRefs': dict(source['variantRefs']),
             'sectionOverrides': dict(source['sectionOverrides'])}
    sid = s['metadata']['id']
    STATE['scenarios'] = {**STATE['scenarios'], sid: s}
    STATE['evaluations'][sid] = _evaluate(s)
    _persist('scenarios')
    return jsonify({'status': 'ok', **_scenario_payload(sid)})


@app.route('/api/scenarios/<sid>')
def api_get_scenario(sid):
    _, err = _scenario_or_404(sid)
    return err or jsonify(_scenario_payload(sid))


@app.route('/api/scenarios/<sid>', methods=['DELETE'])
def api_delete_scenario(sid):
    _, err = _scenario_or_404(sid)
    if err:
        return err
    STATE['scenarios'] = {k: v for k, v in STATE['scenarios'].items() if k != sid}
    STATE['evaluations'].pop(sid, None)
    if STATE['activeScenarioId'] == sid:
        STATE['activeScenarioId'] = next(iter(STATE['scenarios']), None)
    _persist('scenarios', 'plan')
    return jsonify({'status': 'ok', 'activeScenarioId': STATE['activeScenarioId']})


@app.route('/api/scenarios/<sid>/activate', methods=['POST'])
def api_activate_scenario(sid):
    _, err = _scenario_or_404(sid)
    if err:
        return err
    STATE['activeScenarioId'] = sid
    _persist('plan')
    return jsonify({'status': 'ok', **_scenario_payload(sid)})


def _update_scenario(sid, fn):
    s, err = _scenario_or_404(sid)
    if err:
        return err
    s = fn(s)
    STATE['scenarios'] = {**STATE['scenarios'], sid: s}
    STATE['evaluations'][sid] = _evaluate(s)
    _persist('scenarios')
    return jsonify({'status': 'ok', **_scenario_payload(sid)})


@app.route('/api/scenarios/<sid>/override', methods=['POST'])
def api_scenario_override(sid):
    """Set (or clear, with value null) one input override."""
    body = _body()
    vid = body.get('variableId')
    if not vid:
        return jsonify({'error': 'variableId required'}), 400
    var = STATE['variables'].get(vid)
    if var is None or var.get('kind') == 'computed':
        return jsonify({'error': f'{vid} is not an input variable'}), 400
    value = body.get('value')
    if value is None:
        return _update_scenario(sid, lambda s: store.clear_override(s, vid))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return jsonify({'error': 'value must be a number'}), 400
    return _update_scenario(sid, lambda s: store.set_override(s, vid, value))


@app.route('/api/scenarios/<sid>/reset', methods=['POST'])
def api_scenario_reset(sid):
    return _update_scenario(sid, lambda s: store.reset_scenario_values(s, STATE['variables']))


@app.route('/api/scenarios/<sid>/variant-ref', methods=['POST'])
def api_scenario_variant_ref(sid):
    body = _body()
    slug = body.get('slug'); variant_id = body.get('variantId')
    if not slug:
        return jsonify({'error': 'slug required'}), 400
    if variant_id and variant_id not in STATE['variants'].get(slug, {}):
        return jsonify({'error': f'Variant {variant_id} not found for {slug}'}), 404
    return _update_scenario(sid, lambda s: store.set_variant_ref(s, slug, variant_id))


@app.route('/api/scenarios/<sid>/section-override', methods=['POST'])
def api_scenario_section_override(sid):
    body = _body()
    slug = body.get('slug'); patch = body.get('patch')
    if not slug or (patch is not None and not isinstance(patch, dict)):
        return jsonify({'error': 'slug and object patch required'}), 400
    return _update_scenario(sid, lambda s: store.set_section_override(s, slug, patch))


@app.route('/api/scenarios/<sid>/evaluate')
def api_evaluate(sid):
    _, err = _scenario_or_404(sid)
    if err:
        return err
    ev = _evaluate(STATE['scenarios'][sid])
    STATE['evaluations'][sid] = ev
    return jsonify({'values': ev['values'], 'sources': ev['sources'], 'errors': ev['errors'],
                    'degraded': ev['degraded'], 'warning': ev['warning'], 'derived': ev['derived']})


@app.route('/api/scenarios/<sid>/effective-plan')
def api_effective_plan(sid):
    s, err = _scenario_or_404(sid)
    if err:
        return err
    return jsonify(resolve_effective_plan(STATE['sections'], s, STATE['variants']))


@app.route('/api/scenarios/<sid>/metrics', methods=['GET', 'POST'])
def api_metrics(sid):
    s, err = _scenario_or_404(sid)
    if err:
        return err
    ev = STATE['evaluations'].get(sid) or _evaluate(s)
    scope = {**numeric_facts(ev['derived']), **ev['values']}
    # unit override only; every other input is already resolved in ev['values']
    overrides = {'monthlyBookings': scope['monthlyBookings']} if 'monthlyBookings' in s['values'] else {}
    season = _body().get('seasonCoefficients') if request.is_json else None
    m = compute_scenario_metrics(scope, overrides, season)
    horizon = s.get('horizonMonths', STATE['params']['horizonMonths'])
    months = [m['monthlyProjections'][i % 12] for i in range(horizon)]
    m['cashProjection'] = build_cash_projection(months, STATE['params']['startingCash'])
    return jsonify(m)


@app.route('/api/scenarios/<sid>/growth', methods=['GET', 'POST'])
def api_growth(sid):
    """Event-driven monthly projection over the scenario's effective Operations."""
    s, err = _scenario_or_404(sid)
    if err:
        return err
    ev = STATE['evaluations'].get(sid) or _evaluate(s)
    content = effective_contents(resolve_effective_plan(STATE['sections'], s, STATE['variants']))
    timeline = normalize_growth_timeline(content.get('growth-timeline'))
    scope = {**numeric_facts(ev['derived']), **ev['values']}
    base_bookings = ev['derived'].get('baseOutputPerMonth') or scope.get('monthlyBookings', 0)
    season = _body().get('seasonCoefficients') if request.is_json else None

    result = compute_growth_timeline(
        content.get('operations'),
        base_price=scope.get('averagePricePerOutput', scope.get('pricePerUnit', 0)),
        base_bookings=base_bookings,
        base_marketing=ev['derived'].get('monthlyMarketing', 0),
        season_coefficients=season,
        horizon_months=s.get('horizonMonths', STATE['params']['horizonMonths']),
        events=timeline['events'],
    )
    result['cashProjection'] = build_cash_projection(result['projections'], STATE['params']['startingCash'])
    return jsonify(result)


# ── Variants ──

@app.route('/api/variants')
def api_variants():
    return jsonify(STATE['variants'])


@app.route('/api/variants/<slug>', methods=['POST'])
def api_create_variant(slug):
    """Snapshot a section as a named variant. Omitting data snapshots current base content."""
    body = _body()
    if not body.get('name'):
        return jsonify({'error': 'name required'}), 400
    data = body.get('data', STATE['sections'].get(slug, {}))
    if not isinstance(data, dict):
        return jsonify({'error': 'data must be an object'}), 400
    v = store.new_variant(body['name'], data, body.get('description', ''), body.get('scenarioId'))
    STATE['variants'] = {**STATE['variants'], slug: {**STATE['variants'].get(slug, {}), v['id']: v}}
    _persist('variants')
    return jsonify({'status': 'ok', 'variant': v})


@app.route('/api/variants/<slug>/<variant_id>', methods=['DELETE'])
def api_delete_variant(slug, variant_id):
    if variant_id not in STATE['variants'].get(slug, {}):
        return jsonify({'error': f'Variant {variant_id} not found'}), 404
    remaining = {k: v for k, v in STATE['variants'][slug].items() if k != variant_id}
    STATE['variants'] = {**STATE['variants'], slug: remaining}
    # Scenarios pointing at the deleted variant fall back to base content
    STATE['scenarios'] = {
        sid: store.set_variant_ref(s, slug, None) if s['variantRefs'].get(slug) == variant_id else s
        for sid, s in STATE['scenarios'].items()
    }
    _recompute(); _persist('variants', 'scenarios')
    return jsonify({'status': 'ok', 'removed': variant_id})


# ── Decision matrix ──

@app.route('/api/decision/criteria')
def api_criteria():
    return jsonify(STATE['criteria'])


@app.route('/api/decision/criteria', methods=['POST'])
def api_add_criterion():
    body = _body()
    if not body.get('label'):
        return jsonify({'error': 'label required'}), 400
    c = make_criterion(body['label'], body.get('directionality', 'higher-is-better'),
                       body.get('source', 'manual'), body.get('variableId'), body.get('weight', 5))
    STATE['criteria'] = STATE['criteria'] + [c]
    _persist('criteria')
    return jsonify({'status': 'ok', 'criterion': c})


@app.route('/api/decision/criteria/<cid>', methods=['PATCH'])
def api_update_criterion(cid):
    body = _body()
    if not any(c['id'] == cid for c in STATE['criteria']):
        return jsonify({'error': f'Criterion {cid} not found'}), 404
    if 'scenarioId' in body and 'score' in body:
        STATE['criteria'] = set_manual_score(STATE['criteria'], cid, body['scenarioId'], body['score'])
    else:
        fields = {k: v for k, v in body.items() if k in ('label', 'weight', 'directionality', 'variableId')}
        STATE['criteria'] = [{**c, **fields} if c['id'] == cid else c for c in STATE['criteria']]
    _persist('criteria')
    return jsonify({'status': 'ok', 'criteria': STATE['criteria']})


@app.route('/api/decision/criteria/<cid>', methods=['DELETE'])
def api_delete_criterion(cid):
    STATE['criteria'] = [c for c in STATE['criteria'] if c['id'] != cid]
    _persist('criteria')
    return jsonify({'status': 'ok', 'criteria': STATE['criteria']})


def _decision(scenario_ids=None, criteria=None):
    ids = scenario_ids or list(STATE['scenarios'])
    scenarios = []
    for sid in ids:
        s = STATE['scenarios'][sid]
        ev = STATE['evaluations'].get(sid) or _evaluate(s)
        scenarios.append({'id': sid, 'name': s['metadata']['name'], 'values': ev['values']})
    return score_scenarios(scenarios, STATE['criteria'] if criteria is None else criteria,
                           STATE['params']['closeCallThreshold'], STATE['params']['manualScoreDefault'])


@app.route('/api/decision', methods=['POST'])
def api_decision():
    body = _body()
    ids = body.get('scenarioIds')
    missing = [sid for sid in ids or [] if sid not in STATE['scenarios']]
    if missing:
        return jsonify({'error': f"Unknown scenarios: {', '.join(missing)}"}), 404
    try:
        return jsonify(_decision(ids, body.get('criteria')))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400


@app.route('/api/sync')
def api_sync():
    return jsonify({'summary': PERSIST['tracker'].summary(), 'entries': PERSIST['tracker'].entries(),
                    'pending': PERSIST['writer'].pending_keys()})


@app.route('/api/export')
def api_export():
    """Export the scenario comparison to Excel."""
    try:
        import openpyxl
        from openpyxl.styles import Font, PatternFill, Alignment, Border, Side

        wb = openpyxl.Workbook()
        hf = Font(bold=True, color='FFFFFF', size=11)
        hfill = PatternFill(start_color='2E2E38', end_color='2E2E38', fill_type='solid')
        tb = Border(left=Side(style='thin'), right=Side(style='thin'),
                    top=Side(style='thin'), bottom=Side(style='thin'))

        def ws_write(ws, headers, rows):
            for c, h in enumerate(headers, 1):
                cell = ws.cell(row=1, column=c, value=h)
                cell.font = hf; cell.fill = hfill; cell.alignment = Alignment(horizontal='center'); cell.border = tb
            for r, row in enumerate(rows, 2):
                for c, val in enumerate(row, 1):
                    ws.cell(row=r, column=c, value=val).border = tb
            for col in ws.columns:
                ml = max(len(str(cell.value or '')) for cell in col)
                ws.column_dimensions[col[0].column_letter].width = min(ml + 2, 40)

        scenarios = list(STATE['scenarios'].items())
        defs = STATE['variables']

        ws = wb.active; ws.title = 'Scenario Comparison'
        ws_write(ws, ['Variable', 'Kind', 'Unit'] + [s['metadata']['name'] for _, s in scenarios], [
            [v.get('label', vid), v.get('kind'), v.get('unit')] +
            [round(STATE['evaluations'].get(sid, {}).get('values', {}).get(vid, 0), 4) for sid, _ in scenarios]
            for vid, v in defs.items()
        ])

        ws2 = wb.create_sheet('Derived Inputs')
        ws_write(ws2, ['Fact', 'Value'], [[k, v] for k, v in STATE['derived'].items()])

        if len(scenarios) >= 2 and STATE['criteria']:
            result = _decision()
            ws3 = wb.create_sheet('Decision')
            ws_write(ws3, ['Rank', 'Scenario', 'Score'],
                     [[r['rank'], r['name'], r['score']] for r in result['ranking']])
            rec = result['recommendation']
            if rec:
                ws3.cell(row=len(result['ranking']) + 3, column=1,
                         value=f"{'Close call' if rec['type'] == 'close' else 'Recommended'}: {rec['winner']} ({rec['winnerScore']})")

        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)
        return send_file(buf, as_attachment=True, download_name='PlanNavigator_Scenarios.xlsx',
                         mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
    except Exception as e:
        traceback.print_exc()
        return jsonify({'error': str(e)}), 500


@atexit.register
def _flush_pending_writes():
    if PERSIST['writer']:
        written = PERSIST['writer'].close()
        if written:
            logging.info(f"flushed pending writes: {', '.join(written)}")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')
    app.run(debug=False, host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
