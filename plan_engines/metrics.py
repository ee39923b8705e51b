"""
PlanNavigator — Scenario Metrics Engine
P&L view of one scenario: monthly revenue/costs/profit, margins, break-even,
annual totals, 12-month seasonal projection and running cash balance.
"""
import math

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']

# metric -> scope keys tried in order (derived fact names first, then template aliases)
SCOPE_KEYS = {
    'price': ('pricePerUnit', 'averagePricePerOutput'),
    'variableCost': ('variableCostPerOutput', 'variableCostPerUnit'),
    'fixed': ('monthlyFixedCost', 'fixedMonthlyTotal', 'monthlyFixedCosts'),
    'workforce': ('monthlyWorkforceCost', 'workforceMonthlyTotal', 'monthlyLaborCost'),
    'marketing': ('monthlyMarketingBudget', 'monthlyMarketing'),
    'plannedOutput': ('totalPlannedOutputPerMonth', 'baseOutputPerMonth'),
}


def safe(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value) if math.isfinite(value) else 0.0


def _pick(scope, name):
    for key in SCOPE_KEYS[name]:
        if key in scope:
            return safe(scope[key])
    return 0.0


def monthly_units(scope, overrides):
    """Override wins, then leads x conversion, then planned output, then direct bookings."""
    if 'monthlyBookings' in overrides:
        return safe(overrides['monthlyBookings'])
    leads = safe(scope.get('monthlyLeads')); conv = safe(scope.get('conversionRate'))
    if leads > 0 and conv > 0:
        return leads * conv
    planned = _pick(scope, 'plannedOutput')
    return planned if planned > 0 else safe(scope.get('monthlyBookings'))


def compute_scenario_metrics(scope, overrides=None, season_coefficients=None):
    overrides = overrides or {}
    s = {**scope, **overrides}
    coeffs = season_coefficients if season_coefficients and len(season_coefficients) == 12 else [1.0] * 12

    units = monthly_units(s, overrides)
    price = _pick(s, 'price')
    var_unit = _pick(s, 'variableCost')
    fixed = _pick(s, 'fixed'); workforce = _pick(s, 'workforce'); marketing = _pick(s, 'marketing')

    revenue = units * price
    variable = units * var_unit
    overhead = fixed + workforce + marketing
    total_costs = variable + overhead
    profit = revenue - total_costs
    contribution = price - var_unit

    projections = []
    for i, month in enumerate(MONTH_NAMES):
        c = safe(coeffs[i])
        rev = revenue * c
        costs = variable * c + overhead
        projections.append({'month': month, 'revenue': rev, 'costs': costs, 'profit': rev - costs})

    return {
        'monthlyUnits': units,
        'monthlyRevenue': revenue,
        'monthlyVariableCosts': variable,
        'monthlyFixedCosts': fixed,
        'monthlyWorkforceCost': workforce,
        'monthlyMarketingCost': marketing,
        'monthlyTotalCosts': total_costs,
        'monthlyProfit': profit,
        'profitMargin': profit / revenue if revenue > 0 else 0.0,
        'grossMargin': (revenue - variable) / revenue if revenue > 0 else 0.0,
        'breakEvenUnits': math.ceil(overhead / contribution) if contribution > 0 else 0,
        'annualRevenue': revenue * 12,
        'annualProfit': profit * 12,
        'monthlyProjections': projections,
    }


def build_cash_projection(months, starting_cash=0):
    """Running ending-cash balance. `costs` may be a number or a dict of cost lines."""
    running = safe(starting_cash)
    points = []
    for m in months:
        costs = m.get('costs', 0)
        costs = sum(safe(v) for v in costs.values()) if isinstance(costs, dict) else safe(costs)
        net = safe(m.get('revenue')) - costs + safe(m.get('nonOperatingCashFlow'))
        running += net
        points.append({'month': m.get('month'), 'netCashFlow': net, 'endingCash': running})
    return points
