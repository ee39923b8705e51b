from __future__ import annotations

import pytest

from plan_engines.derive_inputs import derive_financial_inputs, numeric_facts


def offering(oid, price):
    return {'id': oid, 'name': oid.upper(), 'description': '', 'price': price, 'addOnIds': []}


def capacity(cid, planned, offering_id=None, day=0, week=0, month=0):
    return {'id': cid, 'name': cid, 'offeringId': offering_id, 'outputUnitLabel': 'units',
            'plannedOutputPerMonth': planned, 'maxOutputPerDay': day,
            'maxOutputPerWeek': week, 'maxOutputPerMonth': month, 'utilizationRate': 0}


def operations(**kw):
    ops = {'workforce': [], 'capacityItems': [], 'variableComponents': [], 'costItems': [],
           'equipment': [], 'safetyProtocols': [], 'operationalMetrics': []}
    ops.update(kw)
    return ops


def test_end_to_end_linked_sections() -> None:
    product = {'overview': '', 'offerings': [offering('o1', 100), offering('o2', 200)], 'addOns': []}
    ops = operations(
        workforce=[{'role': 'Operator', 'count': 1, 'ratePerHour': 25, 'hoursPerWeek': 40}],
        capacityItems=[capacity('c1', 80, 'o1', day=5, week=25, month=100),
                       capacity('c2', 20, 'o2', day=2, week=10, month=25)],
        costItems=[
            {'category': 'Materials', 'type': 'variable', 'rate': 10, 'driverType': 'per-unit', 'driverQuantityPerMonth': 100},
            {'category': 'Rent', 'type': 'fixed', 'rate': 3000, 'driverType': 'monthly', 'driverQuantityPerMonth': 1},
        ],
    )
    marketing = {'channels': [{'name': 'Meta Ads', 'budget': 500}, {'name': 'Google Ads', 'budget': 300}]}

    r = derive_financial_inputs(product, ops, marketing)

    assert r['baseOutputPerMonth'] == 100
    assert r['totalMaxOutputPerMonth'] == 125
    assert r['averagePricePerOutput'] == pytest.approx(120)
    assert r['variableCostPerOutput'] == pytest.approx(10)
    assert r['monthlyFixedOverhead'] == pytest.approx(7333.33, abs=0.01)
    assert r['monthlyWorkforceCost'] == pytest.approx(25 * 40 * 52 / 12)
    assert r['monthlyFixedCost'] == 3000
    assert r['monthlyMarketing'] == 800
    assert r['hasCapacityOutput'] is True
    assert r['hasPriceSignal'] is True


def test_unlinked_item_falls_back_to_simple_average_price() -> None:
    product = {'offerings': [offering('o1', 100), offering('o2', 200)]}
    r = derive_financial_inputs(product, operations(capacityItems=[capacity('c1', 50)]), {})
    assert r['baseOutputPerMonth'] == 50
    assert r['averagePricePerOutput'] == 150


def test_unlinked_item_uses_demand_weighted_linked_price() -> None:
    product = {'offerings': [offering('o1', 100), offering('o2', 400)]}
    ops = operations(capacityItems=[capacity('c1', 30, 'o1'), capacity('c2', 10, 'o2'), capacity('c3', 40)])
    r = derive_financial_inputs(product, ops, {})
    # linked mix: (30*100 + 10*400) / 40 = 175; unlinked 40 units priced at 175
    assert r['averagePricePerOutput'] == pytest.approx((3000 + 4000 + 40 * 175) / 80)


def test_no_price_signal() -> None:
    r = derive_financial_inputs({'offerings': []}, operations(capacityItems=[capacity('c1', 40)]), {})
    assert r['baseOutputPerMonth'] == 40
    assert r['averagePricePerOutput'] == 0
    assert r['hasCapacityOutput'] is True
    assert r['hasPriceSignal'] is False


def test_day_and_week_ceilings_without_month() -> None:
    product = {'offerings': [offering('o1', 100)]}
    ops = operations(capacityItems=[capacity('c1', 120, 'o1', day=4, week=20)])
    r = derive_financial_inputs(product, ops, {})
    assert r['baseOutputPerMonth'] == pytest.approx(86.67, abs=0.01)
    assert r['totalMaxOutputPerMonth'] == pytest.approx(86.67, abs=0.01)
    assert r['averagePricePerOutput'] == pytest.approx(100)


def test_variable_cost_uses_capacity_limited_denominator() -> None:
    product = {'offerings': [offering('o1', 100)]}
    ops = operations(
        capacityItems=[capacity('c1', 100, 'o1', month=10)],
        variableComponents=[{'id': 'vc1', 'name': 'Material', 'offeringId': 'o1', 'sourcingModel': 'purchase-order',
                             'componentUnitLabel': 'kg', 'costPerComponentUnit': 2, 'componentUnitsPerOutput': 1,
                             'orderQuantity': 100, 'orderFee': 0}],
    )
    r = derive_financial_inputs(product, ops, {})
    assert r['baseOutputPerMonth'] == 10
    assert r['variableCostPerOutput'] == pytest.approx(20)


def test_empty_and_malformed_sections() -> None:
    r = derive_financial_inputs(None, 'nonsense', None)
    assert r['baseOutputPerMonth'] == 0
    assert r['variableCostPerOutput'] == 0
    assert r['monthlyMarketing'] == 0
    assert r['hasPriceSignal'] is False


def test_numeric_facts_keep_only_positive_signals() -> None:
    assert numeric_facts(derive_financial_inputs({}, {}, {})) == {}
    facts = numeric_facts(derive_financial_inputs({}, operations(capacityItems=[capacity('c1', 40)]),
                                                  {'channels': [{'budget': 250}]}))
    assert facts == {'baseOutputPerMonth': 40, 'totalMaxOutputPerMonth': 40, 'monthlyMarketing': 250}


def test_scalar_add_on_ids_do_not_break_derivation() -> None:
    derived = derive_financial_inputs({'offerings': [{'id': 'o1', 'price': 10, 'addOnIds': 5}]}, {}, {})
    assert derived['averagePricePerOutput'] == 0
    assert derived['hasPriceSignal'] is False
