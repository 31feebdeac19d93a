"""Conditional writes against the loads table."""

import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.utils import timezone

from freight.models import Load
from freight.services.exceptions import LoadNotFound, StoreUnavailable

logger = logging.getLogger(__name__)


def get_load(load_id) -> Load:
    try:
        return Load.objects.get(pk=load_id)
    except (Load.DoesNotExist, ValidationError, ValueError, TypeError):
        raise LoadNotFound(f"Load {load_id} not found.")
    except DatabaseError as exc:
        raise StoreUnavailable("Could not read the load. Please try again.") from exc


def compare_and_set(load_id, expected_statuses, *, match=None, **changes) -> bool:
    """
    UPDATE loads SET <changes> WHERE id=<load_id> AND status IN <expected>.

    `match` adds equality conditions (e.g. the assigned driver). Returns True
    when exactly the targeted row was changed; False means the load was not
    in an expected state (or another request changed it first).
    """
    filters = {"pk": load_id, "status__in": list(expected_statuses)}
    filters.update(match or {})
    changes.setdefault("updated_at", timezone.now())
    try:
        rows = Load.objects.filter(**filters).update(**changes)
    except DatabaseError as exc:
        logger.exception("Conditional update failed for load %s", load_id)
        raise StoreUnavailable(
            "The status update could not be saved. Please try again."
        ) from exc
    return rows == 1
