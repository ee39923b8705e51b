from __future__ import annotations

import io

import openpyxl
import pytest

import app as app_module
from plan_engines.data_loader import _default_params


OPERATIONS = {
    'workforce': [{'role': 'Operator', 'count': 1, 'ratePerHour': 25, 'hoursPerWeek': 40}],
    'capacityItems': [{'id': 'c1', 'offeringId': 'o1', 'plannedOutputPerMonth': 80, 'maxOutputPerMonth': 100},
                      {'id': 'c2', 'offeringId': 'o2', 'plannedOutputPerMonth': 20, 'maxOutputPerMonth': 25}],
    'costItems': [{'category': 'Rent', 'type': 'fixed', 'rate': 3000, 'driverType': 'monthly', 'driverQuantityPerMonth': 1}],
}
PRODUCT = {'offerings': [{'id': 'o1', 'name': 'A', 'price': 100}, {'id': 'o2', 'name': 'B', 'price': 200}]}
MARKETING = {'channels': [{'name': 'Meta Ads', 'budget': 500}, {'name': 'Google Ads', 'budget': 300}]}


@pytest.fixture
def client(tmp_path):
    params = {**_default_params(), 'storeDir': str(tmp_path / 'store'), 'persistDebounceSeconds': 60}
    app_module._init_state(params)
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as c:
        yield c
    app_module.PERSIST['writer'].close()


@pytest.fixture
def seeded(client):
    client.post('/api/business/seed', json={'businessType': 'custom'})
    client.put('/api/sections/product-service', json=PRODUCT)
    client.put('/api/sections/operations', json=OPERATIONS)
    client.put('/api/sections/marketing-strategy', json=MARKETING)
    return client


def _active(client):
    return client.get('/api/state').get_json()['activeScenarioId']


def test_seed_creates_baseline_and_default_criteria(client) -> None:
    data = client.post('/api/business/seed', json={'businessType': 'saas'}).get_json()
    assert data['status'] == 'ok'
    assert 'monthlyLeads' in data['variables']
    assert [c['label'] for c in data['criteria']] == ['Revenue', 'Costs', 'Profit']
    scen = client.get('/api/scenarios').get_json()['scenarios']
    assert scen[0]['metadata']['isBaseline'] is True


def test_derived_facts_flow_into_evaluation(seeded) -> None:
    derived = seeded.get('/api/derived').get_json()['derived']
    assert derived['baseOutputPerMonth'] == 100
    assert derived['averagePricePerOutput'] == pytest.approx(120)
    ev = seeded.get(f'/api/scenarios/{_active(seeded)}/evaluate').get_json()
    assert ev['values']['monthlyRevenue'] == pytest.approx(12000)
    assert ev['sources']['averagePricePerOutput'] == 'derived'
    assert ev['degraded'] is False


def test_override_outranks_derived_fact(seeded) -> None:
    sid = _active(seeded)
    res = seeded.post(f'/api/scenarios/{sid}/override', json={'variableId': 'averagePricePerOutput', 'value': 150})
    assert res.get_json()['values']['monthlyRevenue'] == pytest.approx(15000)
    cleared = seeded.post(f'/api/scenarios/{sid}/override', json={'variableId': 'averagePricePerOutput', 'value': None})
    assert cleared.get_json()['values']['monthlyRevenue'] == pytest.approx(12000)


def test_override_rejects_computed_and_unknown(seeded) -> None:
    sid = _active(seeded)
    assert seeded.post(f'/api/scenarios/{sid}/override', json={'variableId': 'monthlyRevenue', 'value': 1}).status_code == 400
    assert seeded.post(f'/api/scenarios/{sid}/override', json={'variableId': 'averagePricePerOutput', 'value': 'x'}).status_code == 400
    assert seeded.post('/api/scenarios/nope/override', json={'variableId': 'averagePricePerOutput', 'value': 1}).status_code == 404


def test_cycle_returns_warning_not_error(seeded) -> None:
    seeded.post('/api/variables', json={'id': 'x', 'kind': 'computed', 'formula': 'y + 1', 'defaultValue': 3})
    seeded.post('/api/variables', json={'id': 'y', 'kind': 'computed', 'formula': 'x + 1'})
    ev = seeded.get(f'/api/scenarios/{_active(seeded)}/evaluate').get_json()
    assert ev['degraded'] is True
    assert ev['warning'].startswith('Formula Error')
    assert ev['values']['x'] == 3


def test_variable_crud_and_formula_validation(seeded) -> None:
    assert seeded.post('/api/formula/validate', json={'formula': 'monthlyProfit * 0.2'}).get_json() == {'valid': True}
    assert seeded.post('/api/formula/validate', json={'formula': 'ghost * 2'}).get_json()['valid'] is False
    assert seeded.post('/api/formula/validate', json={}).status_code == 400

    res = seeded.patch('/api/variables/monthlyMarketing', json={'label': 'Ad Spend'})
    assert res.get_json()['variable']['label'] == 'Ad Spend'
    assert seeded.patch('/api/variables/nope', json={'value': 1}).status_code == 404

    assert seeded.delete('/api/variables/monthlyMarketing').status_code == 200
    variables = seeded.get('/api/variables').get_json()
    assert 'monthlyMarketing' not in variables['totalMonthlyCosts']['dependsOn']


def test_variant_and_section_override_change_effective_plan(seeded) -> None:
    sid = _active(seeded)
    variant = seeded.post('/api/variants/marketing-strategy', json={
        'name': 'Lean', 'data': {'channels': [{'name': 'SEO', 'budget': 100}]},
    }).get_json()['variant']
    seeded.post(f'/api/scenarios/{sid}/variant-ref', json={'slug': 'marketing-strategy', 'variantId': variant['id']})
    plan = seeded.get(f'/api/scenarios/{sid}/effective-plan').get_json()
    assert plan['marketing-strategy']['variantId'] == variant['id']
    ev = seeded.get(f'/api/scenarios/{sid}/evaluate').get_json()
    assert ev['values']['monthlyMarketing'] == 100

    seeded.post(f'/api/scenarios/{sid}/section-override', json={'slug': 'operations', 'patch': {'costItems': []}})
    ev = seeded.get(f'/api/scenarios/{sid}/evaluate').get_json()
    assert ev['derived']['monthlyFixedCost'] == 0

    assert seeded.delete(f"/api/variants/marketing-strategy/{variant['id']}").status_code == 200
    scenario = seeded.get(f'/api/scenarios/{sid}').get_json()['scenario']
    assert 'marketing-strategy' not in scenario['variantRefs']


def test_unknown_variant_ref_is_404(seeded) -> None:
    res = seeded.post(f'/api/scenarios/{_active(seeded)}/variant-ref', json={'slug': 'operations', 'variantId': 'nope'})
    assert res.status_code == 404


def test_decision_matrix_ranks_scenarios(seeded) -> None:
    base = _active(seeded)
    premium = seeded.post('/api/scenarios', json={'name': 'Premium', 'copyFrom': base}).get_json()['scenario']
    pid = premium['metadata']['id']
    seeded.post(f'/api/scenarios/{pid}/override', json={'variableId': 'averagePricePerOutput', 'value': 200})
    result = seeded.post('/api/decision', json={}).get_json()
    assert result['ranking'][0]['name'] == 'Premium'
    assert result['recommendation']['type'] == 'clear'
    assert seeded.post('/api/decision', json={'scenarioIds': [base, 'ghost']}).status_code == 404
    assert seeded.post('/api/decision', json={'scenarioIds': [base]}).status_code == 400


def test_manual_criterion_scoring(seeded) -> None:
    base = _active(seeded)
    other = seeded.post('/api/scenarios', json={'name': 'Other'}).get_json()['scenario']['metadata']['id']
    c = seeded.post('/api/decision/criteria', json={'label': 'Team fit'}).get_json()['criterion']
    seeded.patch(f"/api/decision/criteria/{c['id']}", json={'scenarioId': other, 'score': 10})
    result = seeded.post('/api/decision', json={'criteria': [
        {**c, 'manualScores': {other: 10, base: 1}},
    ]}).get_json()
    assert result['totals'][other] == 100
    assert result['totals'][base] == 0


def test_metrics_and_cash_projection(seeded) -> None:
    m = seeded.get(f'/api/scenarios/{_active(seeded)}/metrics').get_json()
    assert m['monthlyRevenue'] == pytest.approx(12000)
    assert len(m['monthlyProjections']) == 12
    assert len(m['cashProjection']) == 12


def test_writes_are_debounced_and_flushed(seeded, tmp_path) -> None:
    sync = seeded.get('/api/sync').get_json()
    assert 'variables' in sync['pending']
    assert sync['summary'] == 'saving'
    app_module.PERSIST['writer'].flush()
    assert (tmp_path / 'store' / 'variables.json').exists()
    assert seeded.get('/api/sync').get_json()['summary'] == 'saved'


def test_state_reloads_from_store(seeded, tmp_path) -> None:
    sid = _active(seeded)
    app_module.PERSIST['writer'].flush()
    app_module._init_state({**_default_params(), 'storeDir': str(tmp_path / 'store'), 'persistDebounceSeconds': 60})
    state = app_module.STATE
    assert state['activeScenarioId'] == sid
    assert state['derived']['baseOutputPerMonth'] == 100


def test_export_workbook(seeded) -> None:
    seeded.post('/api/scenarios', json={'name': 'Second'})
    res = seeded.get('/api/export')
    assert res.status_code == 200
    wb = openpyxl.load_workbook(io.BytesIO(res.data))
    assert wb.sheetnames == ['Scenario Comparison', 'Derived Inputs', 'Decision']
    assert wb['Scenario Comparison'].cell(row=1, column=4).value == 'Baseline'


def test_malformed_section_keeps_app_usable(seeded) -> None:
    bad = {'offerings': [{'id': 'o1', 'price': 100, 'addOnIds': 5}, {'id': 'o2', 'price': 200}]}
    assert seeded.put('/api/sections/product-service', json=bad).status_code == 200
    res = seeded.post(f'/api/scenarios/{_active(seeded)}/override',
                      json={'variableId': 'averagePricePerOutput', 'value': 150})
    assert res.status_code == 200


def test_section_rolls_back_when_recompute_fails(seeded, monkeypatch) -> None:
    before = seeded.get('/api/sections').get_json()

    def exploding(*args, **kwargs):
        raise TypeError('boom')

    monkeypatch.setattr(app_module, 'derive_financial_inputs', exploding)
    res = seeded.put('/api/sections/operations', json={'capacityItems': []})
    monkeypatch.undo()
    assert res.status_code == 400
    assert seeded.get('/api/sections').get_json() == before


def test_failed_load_is_not_retried_until_reload(client, tmp_path, monkeypatch) -> None:
    calls = []

    def broken_parameters():
        calls.append(1)
        raise ValueError('bad parameters workbook')

    monkeypatch.setattr(app_module, 'load_parameters', broken_parameters)
    monkeypatch.setitem(app_module.STATE, 'loaded', False)
    first = client.get('/api/state')
    second = client.get('/api/variables')
    assert first.status_code == second.status_code == 503
    assert 'bad parameters workbook' in second.get_json()['reason']
    assert len(calls) == 1

    params = {**_default_params(), 'storeDir': str(tmp_path / 'store'), 'persistDebounceSeconds': 60}
    monkeypatch.setattr(app_module, 'load_parameters', lambda: params)
    assert client.post('/api/reload').get_json()['status'] == 'ok'
    assert client.get('/api/state').status_code == 200


def test_growth_timeline_feeds_cash_projection(seeded) -> None:
    seeded.put('/api/sections/growth-timeline', json={'events': [
        {'id': 'e1', 'month': 2, 'label': 'More ads', 'enabled': True,
         'delta': {'type': 'marketing-change', 'data': {'monthlyBudget': 2000}}},
        {'id': 'e2', 'month': 3, 'label': 'Seed', 'enabled': True,
         'delta': {'type': 'funding-round', 'data': {'amount': 50000, 'legalCosts': 0}}},
    ]})
    res = seeded.get(f'/api/scenarios/{_active(seeded)}/growth').get_json()
    months = res['months']
    assert len(months) == 12
    assert months[0]['revenue'] == pytest.approx(12000)
    assert [m['marketingBudget'] for m in months[:2]] == [800, 2000]
    cash = res['cashProjection']
    assert cash[2]['netCashFlow'] - cash[3]['netCashFlow'] == pytest.approx(50000)
    assert seeded.get('/api/scenarios/nope/growth').status_code == 404
