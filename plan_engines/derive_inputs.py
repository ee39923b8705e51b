"""
PlanNavigator — Derived Input Engine
Rolls cross-section facts into a flat numeric scope for the financial model:
  - capacity mix from Operations (capacity-limited output + ceilings)
  - price signal from Product/Service offerings linked by offeringId
  - variable and fixed/overhead costs from Operations
  - marketing spend from Marketing channels
Pure: nothing is persisted, callers recompute whenever section content changes.
"""
from plan_engines.operations import compute_operations_costs, effective_output
from plan_engines.sections import (
    normalize_marketing, normalize_operations, normalize_product_service, positive,
)

DERIVED_FACTS = (
    'baseOutputPerMonth', 'totalMaxOutputPerMonth', 'averagePricePerOutput',
    'variableCostPerOutput', 'monthlyFixedOverhead', 'monthlyWorkforceCost',
    'monthlyFixedCost', 'monthlyMarketing',
)


def _offering_prices(product):
    prices = {}
    for o in product['offerings']:
        p = positive(o.get('price'))
        if p > 0:
            prices[o['id']] = p
    return prices


def _fallback_price(items, prices):
    """Demand-weighted price of linked+priced items, else simple mean of offering prices."""
    linked_out = linked_rev = 0.0
    for item in items:
        out = effective_output(item)
        price = prices.get(item.get('offeringId'), 0) if item.get('offeringId') else 0
        if out > 0 and price > 0:
            linked_out += out
            linked_rev += out * price
    if linked_out > 0:
        return linked_rev / linked_out
    return sum(prices.values()) / len(prices) if prices else 0.0


def derive_financial_inputs(product, operations, marketing):
    product = normalize_product_service(product)
    ops = normalize_operations(operations)
    mkt = normalize_marketing(marketing)
    summary = compute_operations_costs(ops, normalized=True)

    prices = _offering_prices(product)
    items = ops['capacityItems']
    fallback = _fallback_price(items, prices)

    base_output = 0.0
    weighted_revenue = 0.0
    for item in items:
        out = effective_output(item)
        if out <= 0:
            continue
        base_output += out
        linked = prices.get(item.get('offeringId'), 0) if item.get('offeringId') else 0
        price = linked if linked > 0 else fallback
        if price > 0:
            weighted_revenue += out * price

    avg_price = weighted_revenue / base_output if base_output > 0 else 0.0
    # Variable spend is incurred at planned output, but unit cost must be
    # stated against the same capacity-limited output as baseOutputPerMonth.
    var_per_output = summary['variableMonthlyTotal'] / base_output if base_output > 0 else 0.0

    workforce = summary['workforceMonthlyTotal']
    fixed = summary['fixedMonthlyTotal']
    return {
        'baseOutputPerMonth': base_output,
        'totalMaxOutputPerMonth': summary['totalMaxOutputPerMonth'],
        'averagePricePerOutput': avg_price,
        'variableCostPerOutput': var_per_output,
        'monthlyFixedOverhead': workforce + fixed,
        'monthlyWorkforceCost': workforce,
        'monthlyFixedCost': fixed,
        'monthlyMarketing': sum(c['budget'] for c in mkt['channels']),
        'hasCapacityOutput': base_output > 0,
        'hasPriceSignal': avg_price > 0,
    }


def numeric_facts(derived):
    """Numeric facts for the evaluation scope. A zero fact means the section is
    silent on it, so it is left out and the stored variable value applies."""
    return {k: derived[k] for k in DERIVED_FACTS if derived.get(k, 0) > 0}
