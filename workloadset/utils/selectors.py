"""Label selector evaluation over plain label mappings."""

from typing import Mapping, Optional

IN = "In"
NOT_IN = "NotIn"
EXISTS = "Exists"
DOES_NOT_EXIST = "DoesNotExist"


def _expression_matches(expr: Mapping, labels: Mapping[str, str]) -> bool:
    key = expr.get("key")
    operator = expr.get("operator")
    values = expr.get("values") or []
    if operator == IN:
        return key in labels and labels[key] in values
    if operator == NOT_IN:
        return key not in labels or labels[key] not in values
    if operator == EXISTS:
        return key in labels
    if operator == DOES_NOT_EXIST:
        return key not in labels
    raise ValueError(f"Unsupported label selector operator: {operator}")


def selector_is_empty(selector: Optional[Mapping]) -> bool:
    if not selector:
        return True
    return not selector.get("matchLabels") and not selector.get("matchExpressions")


def selector_matches(selector: Optional[Mapping], labels: Optional[Mapping[str, str]]) -> bool:
    """Return True if `labels` satisfy `selector`.

    A missing selector matches nothing, an empty one matches everything.
    """
    if selector is None:
        return False
    labels = labels or {}
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    return all(
        _expression_matches(expr, labels)
        for expr in selector.get("matchExpressions") or []
    )


def selector_to_str(selector: Optional[Mapping]) -> str:
    """Render a selector in the string form used by the scale subresource."""
    if not selector:
        return ""
    parts = [f"{k}={v}" for k, v in sorted((selector.get("matchLabels") or {}).items())]
    for expr in selector.get("matchExpressions") or []:
        key, operator = expr.get("key"), expr.get("operator")
        values = ",".join(sorted(expr.get("values") or []))
        if operator == IN:
            parts.append(f"{key} in ({values})")
        elif operator == NOT_IN:
            parts.append(f"{key} notin ({values})")
        elif operator == EXISTS:
            parts.append(key)
        elif operator == DOES_NOT_EXIST:
            parts.append(f"!{key}")
    return ",".join(parts)
