from __future__ import annotations

import pytest


def inp(vid, value, unit='count', **extra):
    return {'id': vid, 'label': vid, 'kind': 'input', 'unit': unit, 'value': value, 'defaultValue': value, **extra}


def comp(vid, formula, depends_on, unit='currency', **extra):
    return {'id': vid, 'label': vid, 'kind': 'computed', 'unit': unit, 'formula': formula,
            'dependsOn': list(depends_on), 'value': 0, 'defaultValue': 0, **extra}


def defs_of(*variables):
    return {v['id']: v for v in variables}


@pytest.fixture
def chain_defs():
    return defs_of(inp('a', 5), comp('b', 'a * 2', ['a']), comp('c', 'b + 10', ['b']))
