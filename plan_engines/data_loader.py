"""
PlanNavigator — Config Loader
Reads consultant-editable workbooks from data/config/:
  parameters.xlsx          Parameter | Value
  variable_templates.xlsx  one sheet per business type, one row per variable
Missing files fall back to built-in defaults.
"""
import os, logging
import openpyxl

from plan_engines.templates import BUSINESS_TYPES, computed_var, input_var

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'data')


def read_xlsx_sheet(filepath, sheet_name=None):
    wb = openpyxl.load_workbook(filepath, read_only=True, data_only=True)
    ws = wb[sheet_name] if sheet_name else wb.active
    rows = list(ws.iter_rows(values_only=True))
    wb.close()
    if len(rows) < 2:
        return []
    headers = [str(h).strip() if h else f'col_{i}' for i, h in enumerate(rows[0])]
    return [dict(zip(headers, row)) for row in rows[1:]]


def load_parameters(config_dir=None):
    """Engine parameters from config/parameters.xlsx over _default_params()."""
    path = os.path.join(config_dir or os.path.join(DATA_DIR, 'config'), 'parameters.xlsx')
    if not os.path.exists(path):
        return _default_params()
    rows = read_xlsx_sheet(path)
    p = _default_params()
    param_map = {
        'Close Call Threshold': 'closeCallThreshold',
        'Persist Debounce (s)': 'persistDebounceSeconds',
        'Manual Score Default': 'manualScoreDefault',
        'Default Hours per Week': 'defaultHoursPerWeek',
        'Horizon Months': 'horizonMonths',
        'Retry Max Attempts': 'retryMaxAttempts',
        'Retry Base Delay (s)': 'retryBaseDelay',
        'Retry Max Delay (s)': 'retryMaxDelay',
        'Starting Cash': 'startingCash',
        'Currency': 'currency', 'Log Level': 'logLevel', 'Store Dir': 'storeDir',
    }
    text_keys = ('currency', 'logLevel', 'storeDir')
    for row in rows:
        key = str(row.get('Parameter', '')).strip()
        val = row.get('Value')
        if key in param_map and val is not None:
            mapped = param_map[key]
            if mapped in text_keys:
                p[mapped] = str(val).strip()
                continue
            try:
                p[mapped] = float(str(val).replace('%', '').replace(',', '').strip()) if isinstance(val, str) else float(val)
            except ValueError:
                logging.warning(f"load_parameters: '{key}' value {val!r} is not numeric, keeping {p[mapped]}")
    for k in ('manualScoreDefault', 'defaultHoursPerWeek', 'horizonMonths', 'retryMaxAttempts'):
        p[k] = int(p[k])
    return p


def _default_params():
    return {
        'closeCallThreshold': 5.0,
        'persistDebounceSeconds': 0.5,
        'manualScoreDefault': 5,
        'defaultHoursPerWeek': 40,
        'horizonMonths': 12,
        'retryMaxAttempts': 3, 'retryBaseDelay': 1.0, 'retryMaxDelay': 10.0,
        'startingCash': 0.0,
        'currency': 'USD',
        'logLevel': 'INFO',
        'storeDir': os.path.join(DATA_DIR, 'store'),
    }


def _num(val, default=None):
    if val is None or val == '':
        return default
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def load_variable_templates(config_dir=None):
    """{businessType: [variable, ...]} from variable_templates.xlsx; {} if absent.
    Columns: Id, Label, Kind, Category, Unit, Value, Formula, Min, Max, Step, Description."""
    path = os.path.join(config_dir or os.path.join(DATA_DIR, 'config'), 'variable_templates.xlsx')
    if not os.path.exists(path):
        return {}
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    sheets = [s for s in wb.sheetnames if s.strip().lower() in BUSINESS_TYPES]
    wb.close()

    templates = {}
    for sheet in sheets:
        variables = []
        for row in read_xlsx_sheet(path, sheet):
            vid = str(row.get('Id') or '').strip()
            if not vid:
                continue
            label = str(row.get('Label') or vid).strip()
            category = str(row.get('Category') or 'operations').strip()
            unit = str(row.get('Unit') or 'count').strip()
            desc = str(row.get('Description') or '').strip()
            if str(row.get('Kind') or 'input').strip().lower() == 'computed':
                formula = str(row.get('Formula') or '').strip()
                variables.append(computed_var(vid, label, category, unit, formula, desc))
            else:
                bounds = {k: _num(row.get(k.title())) for k in ('min', 'max', 'step')}
                variables.append(input_var(vid, label, category, unit, _num(row.get('Value'), 0.0), desc,
                                           **{k: v for k, v in bounds.items() if v is not None}))
        templates[sheet.strip().lower()] = variables
        logging.info(f"load_variable_templates: {len(variables)} variables for '{sheet}'")
    return templates
