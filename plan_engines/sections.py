"""
PlanNavigator — Section Normalization Engine
Coerces raw section content (current or legacy shapes) into the shapes the
aggregators read. Never raises on bad input; unknown shapes yield defaults.
"""
import math

DEFAULT_HOURS_PER_WEEK = 40
SOURCING_MODELS = ('in-house', 'purchase-order', 'on-demand')

# Legacy cost-breakdown fields that carried flat monthly amounts.
LEGACY_FIXED_FIELDS = [
    ('ownerSalary', 'Owner Salary'), ('marketingPerson', 'Marketing Person'),
    ('eventCoordinator', 'Event Coordinator'), ('vehiclePayment', 'Vehicle Payment'),
    ('vehicleMaintenance', 'Vehicle Maintenance'), ('vehicleInsurance', 'Vehicle Insurance'),
    ('crmSoftware', 'CRM Software'), ('websiteHosting', 'Website Hosting'),
    ('aiChatbot', 'AI & Chatbot'), ('cloudServices', 'Cloud Services'),
    ('phonePlan', 'Phone Plan'), ('contentCreation', 'Content Creation'),
    ('graphicDesign', 'Graphic Design'), ('storageRent', 'Storage Rent'),
    ('equipmentAmortization', 'Equipment Amortization'),
    ('businessLicenses', 'Business Licenses'), ('miscFixed', 'Miscellaneous Fixed'),
]

DRIVER_UNIT_LABELS = {
    'per-order': 'order', 'per-service-hour': 'service-hour', 'per-machine-hour': 'machine-hour',
}


def num(value, default=0.0):
    """Finite number or default. Strings, None, NaN and bools are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if math.isfinite(value) else default


def positive(value):
    v = num(value)
    return v if v > 0 else 0.0


def as_text(value, default=''):
    return value if isinstance(value, str) else default


def _opt_id(value):
    return value if isinstance(value, str) and value else None


def as_dicts(value):
    return [x for x in value if isinstance(x, dict)] if isinstance(value, list) else []


def _strings(value):
    return [x for x in value if isinstance(x, str)] if isinstance(value, list) else []


# ── Product / Service ──

def normalize_product_service(raw):
    if not isinstance(raw, dict):
        return {'overview': '', 'offerings': [], 'addOns': []}

    offerings = []
    for i, o in enumerate(as_dicts(raw.get('offerings'))):
        offerings.append({
            'id': _opt_id(o.get('id')) or f"offering-{i + 1}",
            'name': as_text(o.get('name')),
            'description': as_text(o.get('description')),
            'price': num(o.get('price')) if o.get('price') is not None else None,
            'priceLabel': as_text(o.get('priceLabel')) or None,
            'addOnIds': _strings(o.get('addOnIds')),
        })

    # Legacy packages become offerings when no offerings exist yet
    if not offerings:
        for i, p in enumerate(as_dicts(raw.get('packages'))):
            includes = _strings(p.get('includes'))
            desc = as_text(p.get('description'))
            if includes:
                desc = '\n'.join([desc] + [f"- {x}" for x in includes]).strip()
            offerings.append({
                'id': f"legacy-package-{i + 1}",
                'name': as_text(p.get('name')),
                'description': desc,
                'price': num(p.get('price')),
                'priceLabel': as_text(p.get('duration')) or None,
                'addOnIds': [],
            })

    add_ons = [{
        'id': _opt_id(a.get('id')) or f"addon-{i + 1}",
        'name': as_text(a.get('name')),
        'price': num(a.get('price')),
    } for i, a in enumerate(as_dicts(raw.get('addOns')))]

    return {'overview': as_text(raw.get('overview')), 'offerings': offerings, 'addOns': add_ons}


# ── Operations ──

def _empty_operations():
    return {
        'workforce': [], 'capacityItems': [], 'variableComponents': [], 'costItems': [],
        'equipment': [], 'safetyProtocols': [], 'operationalMetrics': [],
    }


def ensure_capacity_item(raw, index):
    return {
        'id': _opt_id(raw.get('id')) or f"cap-{index + 1}",
        'name': as_text(raw.get('name')),
        'offeringId': _opt_id(raw.get('offeringId')),
        'outputUnitLabel': as_text(raw.get('outputUnitLabel')),
        'plannedOutputPerMonth': num(raw.get('plannedOutputPerMonth')),
        'maxOutputPerDay': num(raw.get('maxOutputPerDay')),
        'maxOutputPerWeek': num(raw.get('maxOutputPerWeek')),
        'maxOutputPerMonth': num(raw.get('maxOutputPerMonth')),
        'utilizationRate': num(raw.get('utilizationRate')),
    }


def ensure_variable_component(raw, index):
    sourcing = raw.get('sourcingModel')
    return {
        'id': _opt_id(raw.get('id')) or f"var-{index + 1}",
        'name': as_text(raw.get('name')),
        'offeringId': _opt_id(raw.get('offeringId')),
        'description': _opt_id(raw.get('description')),
        'supplier': _opt_id(raw.get('supplier')),
        'sourcingModel': sourcing if sourcing in SOURCING_MODELS else 'in-house',
        'componentUnitLabel': as_text(raw.get('componentUnitLabel'), 'unit'),
        'costPerComponentUnit': num(raw.get('costPerComponentUnit')),
        'componentUnitsPerOutput': num(raw.get('componentUnitsPerOutput')),
        'orderQuantity': num(raw.get('orderQuantity')),
        'orderFee': num(raw.get('orderFee')),
    }


def ensure_cost_item(raw):
    kind = raw.get('type') if raw.get('type') in ('fixed', 'variable') else 'fixed'
    return {
        'category': as_text(raw.get('category')),
        'type': kind,
        'rate': num(raw.get('rate')),
        'driverType': as_text(raw.get('driverType'), 'monthly'),
        'driverQuantityPerMonth': num(raw.get('driverQuantityPerMonth'), 1.0),
    }


def migrate_variable_cost_items(variable_items, monthly_output_basis):
    """Legacy variable cost items -> per-output components.
    unitsPerOutput = quantity / planned output basis (0 when there is no basis)."""
    comps = []
    for i, item in enumerate(variable_items):
        qty = max(0.0, item['driverQuantityPerMonth'])
        comps.append({
            'id': f"var-legacy-{i + 1}",
            'name': item['category'] or f"Variable Component {i + 1}",
            'offeringId': None,
            'description': f"Migrated from legacy variable cost ({item['driverType']})",
            'supplier': None,
            'sourcingModel': 'in-house',
            'componentUnitLabel': DRIVER_UNIT_LABELS.get(item['driverType'], 'unit'),
            'costPerComponentUnit': max(0.0, item['rate']),
            'componentUnitsPerOutput': qty / monthly_output_basis if monthly_output_basis > 0 else 0.0,
            'orderQuantity': 0.0,
            'orderFee': 0.0,
        })
    return comps


def _migrate_cost_breakdown(cb, monthly_bookings):
    items = []
    participants = num(cb.get('participantsPerEvent'), 1.0)
    if positive(cb.get('suppliesPerChild')):
        items.append({'category': 'Supplies', 'type': 'variable',
                      'rate': num(cb.get('suppliesPerChild')) * participants,
                      'driverType': 'per-unit', 'driverQuantityPerMonth': monthly_bookings})
    tickets = num(cb.get('ticketsPerEvent'), 1.0)
    if positive(cb.get('museumTicketPrice')):
        items.append({'category': 'Venue / Tickets', 'type': 'variable',
                      'rate': num(cb.get('museumTicketPrice')) * tickets,
                      'driverType': 'per-unit', 'driverQuantityPerMonth': monthly_bookings})
    fuel = (num(cb.get('avgRoundTripMiles')) / max(num(cb.get('vehicleMPG'), 1.0), 1)
            * num(cb.get('fuelPricePerGallon')) + num(cb.get('parkingPerEvent')))
    if fuel > 0:
        items.append({'category': 'Transportation', 'type': 'variable', 'rate': fuel,
                      'driverType': 'per-unit', 'driverQuantityPerMonth': monthly_bookings})

    for key, label in LEGACY_FIXED_FIELDS:
        if positive(cb.get(key)):
            items.append({'category': label, 'type': 'fixed', 'rate': num(cb.get(key)),
                          'driverType': 'monthly', 'driverQuantityPerMonth': 1.0})

    for exp in as_dicts(cb.get('customExpenses')):
        if positive(exp.get('amount')):
            per_event = exp.get('type') == 'per-event'
            items.append({
                'category': as_text(exp.get('name')) or 'Custom Expense',
                'type': 'variable' if per_event else 'fixed',
                'rate': num(exp.get('amount')),
                'driverType': 'per-unit' if per_event else 'monthly',
                'driverQuantityPerMonth': monthly_bookings if per_event else 1.0,
            })
    return items


def _normalize_legacy_operations(data, hours_per_week):
    workforce = [{
        'role': as_text(m.get('role')),
        'count': num(m.get('count')),
        'ratePerHour': num(m.get('hourlyRate')),
        'hoursPerWeek': hours_per_week,
    } for m in as_dicts(data.get('crew'))]

    cap = data.get('capacity')
    capacity_items = []
    if isinstance(cap, dict):
        capacity_items = [{
            'id': 'cap-legacy-1', 'name': 'Primary Capacity', 'offeringId': None,
            'outputUnitLabel': 'bookings',
            'plannedOutputPerMonth': num(cap.get('maxBookingsPerMonth')),
            'maxOutputPerDay': num(cap.get('maxBookingsPerDay')),
            'maxOutputPerWeek': num(cap.get('maxBookingsPerWeek')),
            'maxOutputPerMonth': num(cap.get('maxBookingsPerMonth')),
            'utilizationRate': 0.0,
        }]
    monthly_bookings = sum(c['maxOutputPerMonth'] for c in capacity_items)

    cb = data.get('costBreakdown')
    migrated = _migrate_cost_breakdown(cb, monthly_bookings) if isinstance(cb, dict) else []

    ops = _empty_operations()
    ops.update({
        'workforce': workforce,
        'capacityItems': capacity_items,
        'variableComponents': migrate_variable_cost_items(
            [c for c in migrated if c['type'] == 'variable'], monthly_bookings),
        'costItems': [c for c in migrated if c['type'] == 'fixed'],
        'equipment': list(data['equipment']) if isinstance(data.get('equipment'), list) else [],
        'safetyProtocols': list(data['safetyProtocols']) if isinstance(data.get('safetyProtocols'), list) else [],
    })
    return ops


def normalize_operations(raw, hours_per_week=DEFAULT_HOURS_PER_WEEK):
    """Current shape passes through with defaults filled; legacy crew/costBreakdown
    shapes are migrated. Workforce wins over crew when both exist."""
    if not isinstance(raw, dict):
        return _empty_operations()

    if isinstance(raw.get('crew'), list) and not isinstance(raw.get('workforce'), list):
        return _normalize_legacy_operations(raw, hours_per_week)

    current_keys = ('workforce', 'costItems', 'variableComponents', 'capacityItems')
    if not any(isinstance(raw.get(k), list) for k in current_keys) and not isinstance(raw.get('capacity'), dict):
        return _empty_operations()

    workforce = [{
        'role': as_text(w.get('role')),
        'count': num(w.get('count')),
        'ratePerHour': num(w.get('ratePerHour')),
        'hoursPerWeek': num(w.get('hoursPerWeek'), hours_per_week),
    } for w in as_dicts(raw.get('workforce'))]

    capacity_items = [ensure_capacity_item(c, i) for i, c in enumerate(as_dicts(raw.get('capacityItems')))]
    # Older single-capacity shape
    if not capacity_items and isinstance(raw.get('capacity'), dict):
        single = dict(raw['capacity'])
        single['id'] = _opt_id(single.get('id')) or 'cap-primary'
        single['name'] = as_text(single.get('name')) or 'Primary Capacity'
        capacity_items = [ensure_capacity_item(single, 0)]

    cost_items = [ensure_cost_item(c) for c in as_dicts(raw.get('costItems'))]
    output_basis = sum(max(0.0, c['plannedOutputPerMonth']) for c in capacity_items)

    components = [ensure_variable_component(c, i) for i, c in enumerate(as_dicts(raw.get('variableComponents')))]
    if not components:
        components = migrate_variable_cost_items([c for c in cost_items if c['type'] == 'variable'], output_basis)

    ops = _empty_operations()
    ops.update({
        'workforce': workforce,
        'capacityItems': capacity_items,
        'variableComponents': components,
        'costItems': [c for c in cost_items if c['type'] == 'fixed'],
        'equipment': list(raw['equipment']) if isinstance(raw.get('equipment'), list) else [],
        'safetyProtocols': list(raw['safetyProtocols']) if isinstance(raw.get('safetyProtocols'), list) else [],
        'operationalMetrics': as_dicts(raw.get('operationalMetrics')),
    })
    return ops


# ── Marketing ──

def normalize_marketing(raw):
    if not isinstance(raw, dict):
        return {'channels': [], 'offers': []}
    channels = [{
        'name': as_text(c.get('name')),
        'budget': positive(c.get('budget')),
        'expectedLeads': positive(c.get('expectedLeads')),
        'expectedCAC': positive(c.get('expectedCAC')),
        'description': as_text(c.get('description')),
        'tactics': _strings(c.get('tactics')),
    } for c in as_dicts(raw.get('channels'))]
    return {'channels': channels, 'offers': as_dicts(raw.get('offers'))}
