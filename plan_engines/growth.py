"""
PlanNavigator — Growth Timeline Engine
Month-by-month projection of the Operations section under dated growth events.
Events are applied cumulatively from their start month:
  - ongoing: hire, cost-change, capacity-change, marketing-change, custom, price-change
  - one-time in the event month: funding-round, equipment purchase cost, recruiting
  - duration: facility-build, hiring-campaign, seasonal-campaign
Each month's effective operations run through the operations rollup.
"""
import math

from plan_engines.operations import compute_operations_costs
from plan_engines.sections import as_dicts, as_text, num, normalize_operations

EVENT_TYPES = (
    'hire', 'cost-change', 'capacity-change', 'marketing-change', 'custom',
    'funding-round', 'facility-build', 'hiring-campaign', 'price-change',
    'equipment-purchase', 'seasonal-campaign',
)
CUSTOM_TARGETS = ('revenue', 'fixedCost', 'variableCost', 'marketing')


def normalize_event(raw, index=0):
    """Coerce one stored event. Returns None for unknown delta types."""
    if not isinstance(raw, dict):
        return None
    delta = raw.get('delta') if isinstance(raw.get('delta'), dict) else {}
    if delta.get('type') not in EVENT_TYPES:
        return None
    duration = num(raw.get('durationMonths'))
    return {
        'id': as_text(raw.get('id')) or f"event-{index + 1}",
        'month': max(1, int(num(raw.get('month'), 1.0))),
        'label': as_text(raw.get('label')),
        'enabled': raw.get('enabled', True) is not False,
        'durationMonths': int(duration) if duration >= 1 else None,
        'delta': {'type': delta['type'], 'data': delta.get('data') if isinstance(delta.get('data'), dict) else {}},
    }


def normalize_growth_timeline(raw):
    if not isinstance(raw, dict):
        return {'events': [], 'autoSync': False}
    events = [normalize_event(e, i) for i, e in enumerate(as_dicts(raw.get('events')))]
    return {'events': [e for e in events if e], 'autoSync': bool(raw.get('autoSync'))}


def _bump(items, amount, item_id=None, first_only=False):
    """Add `amount` to plannedOutputPerMonth of the matching capacity items (copy)."""
    out = []
    for i, item in enumerate(items):
        hit = (i == 0) if first_only else (item_id is None or item.get('id') == item_id)
        out.append({**item, 'plannedOutputPerMonth': item['plannedOutputPerMonth'] + amount} if hit else item)
    return out


def _worker(data, count):
    return {
        'role': as_text(data.get('role')), 'count': count,
        'ratePerHour': num(data.get('ratePerHour')), 'hoursPerWeek': num(data.get('hoursPerWeek')),
    }


def _campaign_hires(total, start, duration, m):
    if m < start:
        return 0
    if m > start + duration - 1:
        return total
    return min(total, math.floor(total * (m - start + 1) / duration))


def compute_growth_timeline(operations, base_price, base_bookings, base_marketing,
                            season_coefficients=None, horizon_months=12, events=()):
    """Monthly snapshots, cash-flow-ready projections and a break-even summary."""
    ops = normalize_operations(operations)
    coeffs = [num(c, 1.0) for c in season_coefficients or []] or [1.0]
    active = sorted((e for e in (normalize_event(e, i) for i, e in enumerate(events or [])) if e and e['enabled']),
                    key=lambda e: e['month'])

    months, projections = [], []
    cumulative = 0.0
    break_even = None

    for m in range(1, int(horizon_months) + 1):
        workforce = list(ops['workforce'])
        cost_items = list(ops['costItems'])
        capacity = [dict(c) for c in ops['capacityItems']]
        marketing = num(base_marketing)
        price = num(base_price)
        custom = dict.fromkeys(CUSTOM_TARGETS, 0.0)
        standalone_output = 0.0
        one_time_fixed = 0.0
        non_operating = 0.0

        for event in active:
            if event['month'] > m:
                break
            kind, data = event['delta']['type'], event['delta']['data']
            start = event['month']
            duration = event['durationMonths'] or 1

            if kind == 'hire':
                count = num(data.get('count'))
                workforce.append(_worker(data, count))
                extra = num(data.get('capacityPerHire')) * count
                if extra > 0:
                    if capacity:
                        capacity = _bump(capacity, extra, first_only=True)
                    else:
                        standalone_output += extra
            elif kind == 'cost-change':
                cost_items.append({
                    'category': as_text(data.get('category')),
                    'type': data.get('costType') if data.get('costType') in ('fixed', 'variable') else 'fixed',
                    'rate': num(data.get('rate')),
                    'driverType': as_text(data.get('driverType'), 'monthly'),
                    'driverQuantityPerMonth': num(data.get('driverQuantityPerMonth'), 1.0),
                })
            elif kind == 'capacity-change':
                delta = num(data.get('outputDelta'))
                if data.get('capacityItemId') or capacity:
                    capacity = _bump(capacity, delta, data.get('capacityItemId') or None)
                else:
                    standalone_output += delta
            elif kind == 'marketing-change':
                marketing = num(data.get('monthlyBudget'))
            elif kind == 'custom':
                if data.get('target') in custom:
                    custom[data['target']] += num(data.get('value'))
            elif kind == 'funding-round':
                if start == m:
                    non_operating += num(data.get('amount'))
                    one_time_fixed += num(data.get('legalCosts'))
            elif kind == 'equipment-purchase':
                if start == m:
                    one_time_fixed += num(data.get('purchaseCost'))
                custom['fixedCost'] += num(data.get('maintenanceCostMonthly'))
                capacity = _bump(capacity, num(data.get('capacityIncrease')), data.get('capacityItemId') or None)
            elif kind == 'facility-build':
                end = start + duration - 1
                if m <= end:
                    custom['fixedCost'] += num(data.get('constructionCost')) / duration
                else:
                    custom['fixedCost'] += num(data.get('monthlyRent'))
                    capacity = _bump(capacity, num(data.get('capacityAdded')), data.get('capacityItemId') or None)
            elif kind == 'hiring-campaign':
                total = int(num(data.get('totalHires')))
                hired = _campaign_hires(total, start, duration, m)
                new_hires = hired - _campaign_hires(total, start, duration, m - 1)
                if hired > 0:
                    workforce.append(_worker(data, hired))
                if new_hires > 0:
                    one_time_fixed += new_hires * num(data.get('recruitingCostPerHire'))
                extra = num(data.get('capacityPerHire')) * hired
                if extra > 0:
                    if capacity:
                        capacity = _bump(capacity, extra, first_only=True)
                    else:
                        standalone_output += extra
            elif kind == 'seasonal-campaign':
                if m <= start + duration - 1:
                    custom['marketing'] += num(data.get('budgetIncrease'))
            elif kind == 'price-change':
                for key in ('newPricePerUnit', 'newAvgCheck'):
                    if data.get(key) is not None:
                        price = num(data[key])
                        break

        planned = sum(max(0, c['plannedOutputPerMonth']) for c in capacity) + max(0, standalone_output)
        weight = sum(max(0, c['plannedOutputPerMonth']) for c in capacity)
        util_num = sum(max(0, c.get('utilizationRate', 0)) * max(0, c['plannedOutputPerMonth']) for c in capacity)
        # utilizationRate is stored as 0-100; unset means full utilization
        utilization = util_num / weight / 100 if weight > 0 and util_num > 0 else 1.0
        bookings = (planned if planned > 0 else num(base_bookings)) * utilization

        season = coeffs[(m - 1) % len(coeffs)]
        revenue = max(0, bookings) * season * price + custom['revenue']

        rollup = compute_operations_costs(
            {**ops, 'workforce': workforce, 'costItems': cost_items, 'capacityItems': capacity}, normalized=True)
        workforce_cost = rollup['workforceMonthlyTotal']
        variable_cost = rollup['variableMonthlyTotal'] + custom['variableCost']
        fixed_cost = rollup['fixedMonthlyTotal'] + custom['fixedCost'] + one_time_fixed
        marketing_cost = marketing + custom['marketing']
        total_cost = workforce_cost + variable_cost + fixed_cost + marketing_cost
        profit = revenue - total_cost

        cumulative += profit
        if break_even is None and cumulative >= 0:
            break_even = m

        label = f"Month {m}"
        months.append({
            'month': m, 'label': label, 'workforce': workforce, 'costItems': cost_items,
            'plannedOutput': max(0, planned), 'pricePerUnit': price, 'bookings': max(0, bookings),
            'marketingBudget': marketing, 'revenue': revenue, 'workforceCost': workforce_cost,
            'variableCost': variable_cost, 'fixedCost': fixed_cost, 'totalCost': total_cost,
            'profit': profit,
        })
        projections.append({
            'month': label, 'revenue': revenue, 'profit': profit,
            'costs': {'marketing': marketing_cost, 'labor': workforce_cost,
                      'supplies': variable_cost, 'fixed': fixed_cost},
            'nonOperatingCashFlow': non_operating,
        })

    total_revenue = sum(s['revenue'] for s in months)
    total_costs = sum(s['totalCost'] for s in months)
    return {
        'months': months,
        'projections': projections,
        'summary': {
            'totalRevenue': total_revenue,
            'totalCosts': total_costs,
            'totalProfit': total_revenue - total_costs,
            'breakEvenMonth': break_even,
        },
    }
