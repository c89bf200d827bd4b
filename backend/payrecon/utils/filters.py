from __future__ import annotations
from typing import Any, Dict
from payrecon.errors import ValidationError

def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """Generic filter builder for query-string parameters.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable (optional), 'validate': callable (optional) } }
    """
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError):
                raise ValidationError(f'{name} invalid')
        if 'validate' in meta and not meta['validate'](val):
            raise ValidationError(f'{name} invalid')
        query = meta['op'](query, val)
    return query
