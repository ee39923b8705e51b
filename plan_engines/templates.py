"""
PlanNavigator — Variable Templates
Starter variable sets per business type. Input ids reuse the derived fact
names so section content can feed them without extra wiring.
"""
from plan_engines.formula import infer_depends_on

BUSINESS_TYPES = ('saas', 'service', 'retail', 'restaurant', 'event', 'manufacturing', 'custom')
CATEGORIES = ('revenue', 'costs', 'unitEconomics', 'growth', 'operations')
UNITS = ('currency', 'percent', 'count', 'ratio', 'months', 'days', 'hours')


def input_var(vid, label, category, unit, value, description='', **bounds):
    var = {
        'id': vid, 'label': label, 'kind': 'input', 'category': category, 'unit': unit,
        'value': value, 'defaultValue': value, 'description': description,
    }
    var.update({k: v for k, v in bounds.items() if k in ('min', 'max', 'step')})
    return var


def computed_var(vid, label, category, unit, formula, description=''):
    return {
        'id': vid, 'label': label, 'kind': 'computed', 'category': category, 'unit': unit,
        'value': 0, 'defaultValue': 0, 'formula': formula,
        'dependsOn': infer_depends_on(formula), 'description': description,
    }


def _core():
    return [
        input_var('averagePricePerOutput', 'Average Price per Unit', 'revenue', 'currency', 100, min=0, step=1),
        input_var('baseOutputPerMonth', 'Units Sold per Month', 'operations', 'count', 100, min=0, step=1),
        input_var('variableCostPerOutput', 'Variable Cost per Unit', 'unitEconomics', 'currency', 30, min=0, step=1),
        input_var('monthlyFixedOverhead', 'Fixed Overhead', 'costs', 'currency', 5000, min=0, step=100),
        input_var('monthlyMarketing', 'Marketing Budget', 'costs', 'currency', 1000, min=0, step=50),
        computed_var('monthlyRevenue', 'Monthly Revenue', 'revenue', 'currency',
                     'baseOutputPerMonth * averagePricePerOutput'),
        computed_var('totalMonthlyCosts', 'Total Monthly Costs', 'costs', 'currency',
                     'variableExpenses + monthlyFixedOverhead + monthlyMarketing'),
        computed_var('variableExpenses', 'Variable Expenses', 'costs', 'currency',
                     'baseOutputPerMonth * variableCostPerOutput'),
        computed_var('monthlyProfit', 'Monthly Profit', 'revenue', 'currency',
                     'monthlyRevenue - totalMonthlyCosts'),
        computed_var('profitMargin', 'Profit Margin', 'unitEconomics', 'percent',
                     'monthlyProfit / monthlyRevenue'),
        computed_var('contributionPerUnit', 'Contribution per Unit', 'unitEconomics', 'currency',
                     'averagePricePerOutput - variableCostPerOutput'),
        computed_var('breakEvenUnits', 'Break-even Units', 'unitEconomics', 'count',
                     'ceil((monthlyFixedOverhead + monthlyMarketing) / contributionPerUnit)',
                     'Units per month needed to cover fixed overhead and marketing'),
    ]


_EXTRAS = {
    'saas': [
        input_var('monthlyLeads', 'Monthly Leads', 'growth', 'count', 500, min=0),
        input_var('conversionRate', 'Lead Conversion', 'growth', 'percent', 0.05, min=0, max=1, step=0.01),
        input_var('churnRate', 'Monthly Churn', 'growth', 'percent', 0.03, min=0, max=1, step=0.005),
        computed_var('newCustomers', 'New Customers per Month', 'growth', 'count', 'monthlyLeads * conversionRate'),
        computed_var('customerAcquisitionCost', 'Customer Acquisition Cost', 'unitEconomics', 'currency',
                     'monthlyMarketing / newCustomers'),
        computed_var('customerLifetimeValue', 'Customer Lifetime Value', 'unitEconomics', 'currency',
                     'contributionPerUnit / churnRate'),
    ],
    'service': [
        input_var('billableHoursPerMonth', 'Billable Hours per Month', 'operations', 'hours', 640, min=0),
        input_var('utilizationRate', 'Utilization', 'operations', 'percent', 0.75, min=0, max=1, step=0.05),
        computed_var('effectiveRevenuePerHour', 'Effective Revenue per Hour', 'unitEconomics', 'currency',
                     'monthlyRevenue / (billableHoursPerMonth * utilizationRate)'),
    ],
    'retail': [
        input_var('footTraffic', 'Monthly Foot Traffic', 'growth', 'count', 4000, min=0),
        input_var('conversionRate', 'Visitor Conversion', 'growth', 'percent', 0.2, min=0, max=1, step=0.01),
        computed_var('transactionsPerMonth', 'Transactions per Month', 'operations', 'count',
                     'footTraffic * conversionRate'),
    ],
    'restaurant': [
        input_var('seatCount', 'Seats', 'operations', 'count', 40, min=0),
        input_var('tableTurnsPerDay', 'Table Turns per Day', 'operations', 'ratio', 2, min=0, step=0.5),
        input_var('operatingDaysPerMonth', 'Operating Days per Month', 'operations', 'days', 26, min=0, max=31),
        computed_var('coverCapacity', 'Cover Capacity per Month', 'operations', 'count',
                     'seatCount * tableTurnsPerDay * operatingDaysPerMonth'),
        computed_var('seatUtilization', 'Seat Utilization', 'operations', 'percent',
                     'baseOutputPerMonth / coverCapacity'),
    ],
    'event': [
        input_var('participantsPerEvent', 'Participants per Event', 'operations', 'count', 12, min=0),
        computed_var('participantsPerMonth', 'Participants per Month', 'operations', 'count',
                     'baseOutputPerMonth * participantsPerEvent'),
        computed_var('revenuePerParticipant', 'Revenue per Participant', 'unitEconomics', 'currency',
                     'monthlyRevenue / participantsPerMonth'),
    ],
    'manufacturing': [
        input_var('scrapRate', 'Scrap Rate', 'operations', 'percent', 0.02, min=0, max=1, step=0.005),
        computed_var('goodUnitsPerMonth', 'Good Units per Month', 'operations', 'count',
                     'baseOutputPerMonth * (1 - scrapRate)'),
        computed_var('costPerGoodUnit', 'Cost per Good Unit', 'unitEconomics', 'currency',
                     'totalMonthlyCosts / goodUnitsPerMonth'),
    ],
    'custom': [],
}


def get_template(business_type, overrides=None):
    """Ordered variable list for a business type; unknown types get 'custom'.
    `overrides` ({businessType: [var, ...]}, e.g. from variable_templates.xlsx)
    replace or extend built-in variables by id."""
    btype = business_type if business_type in BUSINESS_TYPES else 'custom'
    variables = _core() + [dict(v) for v in _EXTRAS[btype]]
    extra = (overrides or {}).get(btype) or []
    if extra:
        by_id = {v['id']: v for v in variables}
        for v in extra:
            by_id[v['id']] = {**by_id.get(v['id'], {}), **v}
        variables = list(by_id.values())
    return variables
