from __future__ import annotations
from payrecon.errors import ValidationError

def apply_multi_sort(query, sort_expr: str | None, allowed: dict, default_order):
    """Apply a comma-separated sort expression ('-created_at,amount') to a select.
    allowed: mapping of field key -> column object.
    default_order: column clause used when no sort is requested, and as tie-breaker.
    """
    if not sort_expr:
        return query.order_by(default_order)
    clauses = []
    for raw in sort_expr.split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            raise ValidationError(f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(default_order)
    return query.order_by(*clauses)
