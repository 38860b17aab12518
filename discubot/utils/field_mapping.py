"""
Mapping of AI task fields onto Notion database properties.

A field mapping looks like::

    {
        "priority": {"notionProperty": "Priority", "propertyType": "select",
                     "valueMap": {"high": "P1"}},
        "assignee": {"notionProperty": "Owner", "propertyType": "people"},
    }
"""

from typing import Any, Dict, List, Optional

AI_FIELDS = ["priority", "type", "assignee", "dueDate", "tags", "domain"]

_AI_FIELD_VALUES = {
    "priority": ["low", "medium", "high", "urgent"],
    "type": ["bug", "feature", "question", "improvement"],
}

_OPTION_TYPES = {"select", "multi_select", "status"}


def calculate_similarity(first: str, second: str) -> float:
    """Cheap name similarity: 1.0 exact, 0.8 containment, else common-prefix ratio."""
    s1 = first.lower().strip()
    s2 = second.lower().strip()

    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return 0.8

    matching = 0
    for c1, c2 in zip(s1, s2):
        if c1 != c2:
            break
        matching += 1
    longest = max(len(s1), len(s2))
    return matching / longest if longest else 0.0


def _best_option(value: str, options: List[Dict[str, Any]], threshold: float) -> Optional[str]:
    best_name, best_score = None, 0.0
    for option in options:
        name = option.get("name", "")
        score = calculate_similarity(value, name)
        if score > threshold and score > best_score:
            best_name, best_score = name, score
    return best_name


def find_best_match(ai_field: str, properties: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the Notion property whose name best matches ``ai_field`` (score > 0.5)."""
    best = None
    for name, info in properties.items():
        score = calculate_similarity(ai_field, name)
        if score > 0.5 and (best is None or score > best["score"]):
            best = {"property_name": name, "property_type": info.get("type"), "score": score}
    return best


def generate_value_mapping(ai_field: str, options: Optional[List[Dict[str, Any]]]) -> Dict[str, str]:
    """Map known AI values (priorities, task types) onto select options."""
    if not options:
        return {}
    value_map = {}
    for ai_value in _AI_FIELD_VALUES.get(ai_field, []):
        match = _best_option(ai_value, options, 0.3)
        if match:
            value_map[ai_value] = match
    return value_map


def _property_options(info: Dict[str, Any]) -> List[Dict[str, Any]]:
    if "options" in info:
        return info.get("options") or []
    prop_type = info.get("type")
    return (info.get(prop_type) or {}).get("options") or []


def generate_default_mapping(database_schema: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Suggest a field mapping from a Notion database schema.

    ``database_schema`` is the ``GET /databases/{id}`` response or any dict
    with a ``properties`` object.
    """
    properties = database_schema.get("properties") or {}
    mapping = {}
    for ai_field in AI_FIELDS:
        match = find_best_match(ai_field, properties)
        if not match:
            continue
        entry = {
            "notionProperty": match["property_name"],
            "propertyType": match["property_type"],
            "valueMap": {},
        }
        if match["property_type"] in _OPTION_TYPES:
            options = _property_options(properties[match["property_name"]])
            entry["valueMap"] = generate_value_mapping(ai_field, options)
        mapping[ai_field] = entry
    return mapping


def transform_value(
    ai_value: Optional[str],
    select_options: Optional[List[Dict[str, Any]]] = None,
    value_map: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Translate an AI value through the explicit map, then fuzzy options."""
    if not ai_value:
        return None

    if value_map:
        mapped = value_map.get(ai_value.lower())
        if mapped:
            return mapped

    if not select_options:
        return ai_value

    return _best_option(ai_value, select_options, 0.3) or ai_value
