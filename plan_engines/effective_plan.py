"""
PlanNavigator — Effective Section Engine
Composes a section's effective content from base content, an optional
full-replacement variant snapshot and an optional partial override patch.
Inputs are never mutated; callers must treat results as read-only.
"""


def deep_merge_one_level(base, overlay):
    """None in overlay keeps the base key; lists replace; dicts merge their own
    keys (no deeper recursion); anything else replaces."""
    if overlay is None:
        return base
    result = dict(base) if isinstance(base, dict) else {}
    for key, value in overlay.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = {**current, **value}
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def compute_effective_content(base, variant=None, override_patch=None):
    """variant (if any) fully replaces base; override_patch is merged on top.
    With neither, base itself comes back."""
    baseline = variant if variant is not None else base
    if override_patch is None:
        return baseline
    return deep_merge_one_level(baseline, override_patch)


def variant_snapshot(record):
    """Variant Store records carry the snapshot under 'data'."""
    if isinstance(record, dict) and isinstance(record.get('data'), dict):
        return record['data']
    return record


def resolve_effective_plan(base_sections, scenario=None, variants=None):
    """Resolve every section slug against the active scenario.

    base_sections: {slug: content}
    scenario:      {'variantRefs': {slug: variantId}, 'sectionOverrides': {slug: patch}}
    variants:      {slug: {variantId: record}}
    A variantRef pointing at a missing variant falls back to base content.
    Returns {slug: {'content', 'variantId', 'hasOverride'}}.
    """
    scenario = scenario or {}
    variants = variants or {}
    refs = scenario.get('variantRefs') or {}
    patches = scenario.get('sectionOverrides') or {}

    slugs = list(base_sections)
    slugs += [s for s in list(refs) + list(patches) if s not in base_sections and s not in slugs]

    plan = {}
    for slug in slugs:
        vid = refs.get(slug)
        record = (variants.get(slug) or {}).get(vid) if vid else None
        patch = patches.get(slug)
        plan[slug] = {
            'content': compute_effective_content(base_sections.get(slug, {}), variant_snapshot(record), patch),
            'variantId': vid if record is not None else None,
            'hasOverride': patch is not None,
        }
    return plan


def effective_contents(plan):
    return {slug: entry['content'] for slug, entry in plan.items()}
