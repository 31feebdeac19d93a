from django import template

register = template.Library()


# Filters transform values and are applied with | in templates
@register.filter
def get_item(mapping, key):
    """Dictionary lookup with a variable key: {{ labels|get_item:action }}."""
    if not hasattr(mapping, "get"):
        return ""
    return mapping.get(key, "")

