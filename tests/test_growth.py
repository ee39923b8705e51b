from __future__ import annotations

import pytest

from plan_engines.growth import compute_growth_timeline, normalize_growth_timeline
from plan_engines.metrics import build_cash_projection
from plan_engines.operations import WEEKS_PER_MONTH


def ops(**overrides):
    return {'workforce': [], 'capacityItems': [], 'variableComponents': [], 'costItems': [], **overrides}


def cap(cid, planned):
    return {'id': cid, 'name': cid, 'plannedOutputPerMonth': planned}


def event(month, kind, data, **extra):
    return {'id': f"{kind}-{month}", 'month': month, 'label': kind, 'enabled': True,
            'delta': {'type': kind, 'data': data}, **extra}


def run(events=(), operations=None, **kwargs):
    args = {'base_price': 100, 'base_bookings': 50, 'base_marketing': 1000,
            'season_coefficients': [1] * 12, 'horizon_months': 12, **kwargs}
    return compute_growth_timeline(operations or ops(), events=list(events), **args)


def test_no_events_repeats_base_month() -> None:
    result = run()
    assert len(result['months']) == len(result['projections']) == 12
    for snap in result['months']:
        assert snap['revenue'] == 5000
        assert snap['bookings'] == 50
        assert snap['pricePerUnit'] == 100
        assert snap['marketingBudget'] == 1000
    assert result['summary']['totalRevenue'] == 5000 * 12


def test_hires_accumulate_from_their_month() -> None:
    result = run([
        event(1, 'hire', {'role': 'Dev', 'count': 1, 'ratePerHour': 50, 'hoursPerWeek': 40}),
        event(4, 'hire', {'role': 'Designer', 'count': 1, 'ratePerHour': 40, 'hoursPerWeek': 40}),
    ])
    first = 50 * 40 * WEEKS_PER_MONTH
    assert result['months'][2]['workforceCost'] == pytest.approx(first)
    assert result['months'][3]['workforceCost'] == pytest.approx(first + 40 * 40 * WEEKS_PER_MONTH)
    assert len(result['months'][3]['workforce']) == 2


def test_cost_change_adds_fixed_item() -> None:
    result = run([event(2, 'cost-change', {'category': 'Hosting', 'costType': 'fixed', 'rate': 500,
                                           'driverType': 'monthly', 'driverQuantityPerMonth': 1})])
    assert result['months'][0]['fixedCost'] == 0
    assert result['months'][1]['fixedCost'] == 500
    assert result['months'][11]['fixedCost'] == 500


def test_capacity_change_targets_one_item_or_all() -> None:
    base = ops(capacityItems=[cap('cap-a', 100), cap('cap-b', 50)])
    targeted = run([event(3, 'capacity-change', {'capacityItemId': 'cap-a', 'outputDelta': 30})], base)
    assert targeted['months'][1]['plannedOutput'] == 150
    assert targeted['months'][2]['plannedOutput'] == 180
    everywhere = run([event(2, 'capacity-change', {'outputDelta': 20})], base)
    assert everywhere['months'][0]['plannedOutput'] == 150
    assert everywhere['months'][1]['plannedOutput'] == 190


def test_capacity_change_without_items_raises_bookings() -> None:
    result = run([event(2, 'capacity-change', {'outputDelta': 30})])
    assert result['months'][0]['bookings'] == 50
    assert result['months'][1]['bookings'] == 30


def test_marketing_change_and_custom_revenue() -> None:
    result = run([
        event(6, 'marketing-change', {'monthlyBudget': 3000}),
        event(1, 'custom', {'label': 'Bonus', 'value': 500, 'target': 'revenue'}),
    ])
    assert [m['marketingBudget'] for m in result['months'][4:6]] == [1000, 3000]
    assert result['months'][0]['revenue'] == 5500


def test_disabled_events_are_ignored() -> None:
    result = run([event(1, 'hire', {'role': 'Ghost', 'count': 10, 'ratePerHour': 100, 'hoursPerWeek': 40},
                        enabled=False)])
    assert result['months'][0]['workforceCost'] == 0


def test_seasonality_cycles_past_twelve_months() -> None:
    result = run(season_coefficients=[2] + [1] * 11, horizon_months=14)
    assert len(result['months']) == 14
    assert result['months'][0]['revenue'] == 10000
    assert result['months'][12]['revenue'] == 10000
    assert result['months'][13]['revenue'] == 5000


def test_break_even_month() -> None:
    # -5000 x3, then +4000 a month: cumulative turns positive in month 7
    result = run([event(4, 'marketing-change', {'monthlyBudget': 1000})], base_marketing=10000)
    assert result['summary']['breakEvenMonth'] == 7
    assert run(base_marketing=100000)['summary']['breakEvenMonth'] is None


def test_funding_round_is_non_operating_cash_in_event_month() -> None:
    result = run([event(3, 'funding-round', {'amount': 100000, 'legalCosts': 5000, 'investmentType': 'equity'})])
    assert result['months'][2]['revenue'] == 5000
    assert result['months'][2]['fixedCost'] == 5000
    assert result['months'][3]['fixedCost'] == 0
    assert result['projections'][2]['nonOperatingCashFlow'] == 100000
    assert result['projections'][3]['nonOperatingCashFlow'] == 0

    cash = build_cash_projection(result['projections'], 0)
    assert cash[2]['netCashFlow'] == pytest.approx(5000 - 1000 - 5000 + 100000)


def test_facility_build_spreads_cost_then_adds_rent_and_capacity() -> None:
    result = run([event(2, 'facility-build', {'constructionCost': 90000, 'monthlyRent': 3000, 'capacityAdded': 50},
                        durationMonths=3)], ops(capacityItems=[cap('cap-1', 100)]))
    months = result['months']
    assert (months[0]['fixedCost'], months[0]['plannedOutput']) == (0, 100)
    assert [m['fixedCost'] for m in months[1:4]] == [30000, 30000, 30000]
    assert months[3]['plannedOutput'] == 100
    assert (months[4]['fixedCost'], months[4]['plannedOutput']) == (3000, 150)


def test_facility_build_without_duration_takes_one_month() -> None:
    result = run([event(5, 'facility-build', {'constructionCost': 60000, 'monthlyRent': 2000, 'capacityAdded': 30})],
                 ops(capacityItems=[cap('cap-1', 100)]))
    assert (result['months'][4]['fixedCost'], result['months'][4]['plannedOutput']) == (60000, 100)
    assert (result['months'][5]['fixedCost'], result['months'][5]['plannedOutput']) == (2000, 130)


def test_hiring_campaign_staggers_hires_and_recruiting_cost() -> None:
    result = run([event(1, 'hiring-campaign', {'totalHires': 4, 'role': 'dev', 'ratePerHour': 50,
                                               'hoursPerWeek': 40, 'recruitingCostPerHire': 2000},
                        durationMonths=4)])
    per_hire = 50 * 40 * WEEKS_PER_MONTH
    for i, hires in enumerate([1, 2, 3, 4, 4]):
        assert result['months'][i]['workforceCost'] == pytest.approx(hires * per_hire)
    assert [m['fixedCost'] for m in result['months'][:5]] == [2000, 2000, 2000, 2000, 0]


def test_price_change_accepts_legacy_field() -> None:
    result = run([event(4, 'price-change', {'newAvgCheck': 200})])
    assert result['months'][2]['revenue'] == 5000
    assert result['months'][3]['revenue'] == 10000
    assert result['months'][3]['pricePerUnit'] == 200


def test_equipment_purchase_one_time_cost_plus_maintenance() -> None:
    result = run([event(3, 'equipment-purchase', {'purchaseCost': 50000, 'capacityIncrease': 20,
                                                  'maintenanceCostMonthly': 500})],
                 ops(capacityItems=[cap('cap-1', 100)]))
    months = result['months']
    assert (months[1]['fixedCost'], months[1]['plannedOutput']) == (0, 100)
    assert (months[2]['fixedCost'], months[2]['plannedOutput']) == (50500, 120)
    assert (months[3]['fixedCost'], months[11]['plannedOutput']) == (500, 120)


def test_seasonal_campaign_reverts_after_duration() -> None:
    result = run([event(3, 'seasonal-campaign', {'budgetIncrease': 5000}, durationMonths=3)])
    base = result['months'][0]['totalCost']
    assert [m['totalCost'] - base for m in result['months'][2:6]] == [5000, 5000, 5000, 0]
    assert result['months'][2]['marketingBudget'] == 1000


def test_normalize_drops_unknown_and_malformed_events() -> None:
    timeline = normalize_growth_timeline({'events': [
        event(2, 'hire', {'count': 1}), {'delta': {'type': 'teleport'}}, 'junk', {'month': 'x', 'delta': 5},
    ], 'autoSync': 1})
    assert [e['id'] for e in timeline['events']] == ['hire-2']
    assert timeline['events'][0]['durationMonths'] is None
    assert timeline['autoSync'] is True
    assert normalize_growth_timeline(None) == {'events': [], 'autoSync': False}
