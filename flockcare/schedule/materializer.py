"""Materialize template definitions into per-batch task instances.

Pure and synchronous: the same (batch, day-of-age) always yields the same
instances, in the same order, with the same IDs.
"""

import logging

from flockcare.core.config import settings
from flockcare.domain.batch import Batch
from flockcare.domain.schedule import TaskDefinition
from flockcare.domain.task import TaskInstance
from flockcare.schedule.day_age import date_for_day, has_started
from flockcare.schedule.template import ScheduleTemplate, default_template


logger = logging.getLogger(__name__)

INSTANCE_ID_SEPARATOR = ":"
SERIES_ID_SEPARATOR = "~"


def build_instance_id(batch_id: str, definition_id: str, day_of_age: int) -> str:
    """Stable instance ID derived only from batch, definition and day-of-age."""
    return f"{batch_id}{INSTANCE_ID_SEPARATOR}{definition_id}{INSTANCE_ID_SEPARATOR}{day_of_age}"


def _build_instance(
    batch: Batch, definition: TaskDefinition, start_day: int, day_of_age: int
) -> TaskInstance:
    position = day_of_age - start_day + 1
    return TaskInstance(
        instance_id=build_instance_id(batch.id, definition.id, day_of_age),
        batch_id=batch.id,
        batch_number=batch.batch_number,
        day_of_age=day_of_age,
        scheduled_date=date_for_day(batch.entry_date, day_of_age),
        definition_id=definition.id,
        series_id=f"{definition.id}{SERIES_ID_SEPARATOR}{position}",
        category=definition.category,
        title=definition.title,
        description=definition.description,
        priority=definition.priority,
        dosage=definition.dosage,
        duration=definition.duration,
        position_in_series=position,
        estimated_minutes=definition.estimated_minutes,
        materials=list(definition.materials),
        notes=definition.notes,
    )


def materialize(
    batch: Batch, day_of_age: int, *, template: ScheduleTemplate = default_template
) -> list[TaskInstance]:
    """All instances due on day_of_age, including the matching day of every running series.

    Ordered by series start day, then by template order. Days before
    enrollment or past the template yield an empty list.
    """
    if not has_started(day_of_age) or day_of_age > template.last_day:
        return []

    instances: list[TaskInstance] = []
    for start_day in template.all_scheduled_days():
        if start_day > day_of_age:
            break
        for definition in template.tasks_for_day(start_day):
            if start_day + definition.duration - 1 >= day_of_age:
                instances.append(_build_instance(batch, definition, start_day, day_of_age))
    return instances


def materialize_range(
    batch: Batch, from_day: int, to_day: int, *, template: ScheduleTemplate = default_template
) -> dict[int, list[TaskInstance]]:
    """Instances grouped by day-of-age over [from_day, to_day]; days without tasks are omitted."""
    grouped: dict[int, list[TaskInstance]] = {}
    for day in range(max(from_day, 1), min(to_day, template.last_day) + 1):
        instances = materialize(batch, day, template=template)
        if instances:
            grouped[day] = instances
    return grouped


def upcoming_window(
    current_day: int, days: int | None = None, *, template: ScheduleTemplate = default_template
) -> tuple[int, int]:
    """Look-ahead window [current+1, current+days], clamped to the template's last day.

    ``from`` may exceed ``to`` once the batch is past the end of the template;
    ranged materialization of such a window is empty.
    """
    window = days if days is not None else settings.upcoming_window_days
    from_day = max(current_day + 1, 1)
    to_day = min(current_day + window, template.last_day)
    return from_day, to_day


def parse_instance_id(instance_id: str) -> tuple[str, str, int] | None:
    """Split an instance ID into (batch_id, definition_id, day_of_age), or None if malformed."""
    head, sep, day = instance_id.rpartition(INSTANCE_ID_SEPARATOR)
    if not sep or not day.isdigit():
        return None
    batch_id, sep, definition_id = head.rpartition(INSTANCE_ID_SEPARATOR)
    if not sep or not batch_id or not definition_id:
        return None
    return batch_id, definition_id, int(day)


def resolve(
    batch: Batch, instance_id: str, *, template: ScheduleTemplate = default_template
) -> TaskInstance | None:
    """Rebuild the instance an ID refers to, or None if the template no longer produces it."""
    parsed = parse_instance_id(instance_id)
    if parsed is None:
        logger.debug("Malformed instance ID: %s", instance_id)
        return None

    batch_id, definition_id, day = parsed
    if batch_id != batch.id:
        return None

    definition = template.get_definition(definition_id)
    start_day = template.start_day(definition_id)
    if definition is None or start_day is None:
        return None
    if not start_day <= day <= start_day + definition.duration - 1:
        return None

    return _build_instance(batch, definition, start_day, day)
