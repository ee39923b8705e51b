"""
PlanNavigator — Operations Cost Engine
Monthly cost rollup for the Operations section: workforce, fixed items,
per-output variable components and capacity ceilings.
"""
import math

from plan_engines.sections import normalize_operations

WEEKS_PER_MONTH = 52 / 12
DAYS_PER_MONTH = 30

# Fixed cost items are stated per driver period; convert to monthly.
FIXED_PERIOD_DIVISOR = {'monthly': 1, 'quarterly': 3, 'yearly': 12}


def monthly_capacity_limit(item):
    """Smallest configured ceiling, in units/month. 0 means no ceiling."""
    ceilings = []
    day = max(0, item.get('maxOutputPerDay', 0))
    week = max(0, item.get('maxOutputPerWeek', 0))
    month = max(0, item.get('maxOutputPerMonth', 0))
    if month > 0: ceilings.append(month)
    if week > 0: ceilings.append(week * WEEKS_PER_MONTH)
    if day > 0: ceilings.append(day * DAYS_PER_MONTH)
    return min(ceilings) if ceilings else 0


def effective_output(item):
    planned = max(0, item.get('plannedOutputPerMonth', 0))
    limit = monthly_capacity_limit(item)
    return min(planned, limit) if limit > 0 else planned


def workforce_monthly_cost(workforce):
    return sum(w['ratePerHour'] * w['count'] * w['hoursPerWeek'] * WEEKS_PER_MONTH for w in workforce)


def fixed_monthly_cost(cost_items):
    total = 0.0
    for item in cost_items:
        if item.get('type', 'fixed') != 'fixed':
            continue
        total += item['rate'] * item['driverQuantityPerMonth'] / FIXED_PERIOD_DIVISOR.get(item['driverType'], 1)
    return total


def component_monthly_cost(comp, capacity_items):
    """Cost of one variable component at planned output.
    Linked components follow their offering's capacity; unlinked ones follow all capacity."""
    if comp.get('offeringId'):
        basis = sum(max(0, c['plannedOutputPerMonth']) for c in capacity_items
                    if c.get('offeringId') == comp['offeringId'])
    else:
        basis = sum(max(0, c['plannedOutputPerMonth']) for c in capacity_items)
    units = max(0, comp['componentUnitsPerOutput']) * basis
    cost = max(0, comp['costPerComponentUnit']) * units
    if comp.get('sourcingModel') == 'purchase-order' and comp.get('orderQuantity', 0) > 0 and units > 0:
        cost += math.ceil(units / comp['orderQuantity']) * max(0, comp.get('orderFee', 0))
    return cost


def compute_operations_costs(operations, normalized=False):
    """Operations rollup. Pass normalized=True when `operations` already went
    through normalize_operations()."""
    ops = operations if normalized else normalize_operations(operations)
    items = ops['capacityItems']

    workforce_total = workforce_monthly_cost(ops['workforce'])
    fixed_total = fixed_monthly_cost(ops['costItems'])
    variable_total = sum(component_monthly_cost(c, items) for c in ops['variableComponents'])

    planned_total = sum(max(0, c['plannedOutputPerMonth']) for c in items)
    max_total = 0.0
    for c in items:
        limit = monthly_capacity_limit(c)
        max_total += limit if limit > 0 else max(0, c['plannedOutputPerMonth'])

    return {
        'workforceMonthlyTotal': workforce_total,
        'fixedMonthlyTotal': fixed_total,
        'variableMonthlyTotal': variable_total,
        'monthlyOperationsTotal': workforce_total + fixed_total + variable_total,
        'totalPlannedOutputPerMonth': planned_total,
        'totalMaxOutputPerMonth': max_total,
        'variableCostPerPlannedOutput': variable_total / planned_total if planned_total > 0 else 0,
        'components': [{
            'id': c['id'], 'name': c['name'], 'offeringId': c.get('offeringId'),
            'monthlyCost': round(component_monthly_cost(c, items), 2),
        } for c in ops['variableComponents']],
    }
