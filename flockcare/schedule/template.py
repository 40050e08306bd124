"""Built-in rearing schedule and the read-only template store."""

import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from flockcare.domain.schedule import TaskDefinition


logger = logging.getLogger(__name__)


# Day-of-age -> definitions starting that day. Multi-day courses are declared
# once on their first day with a duration; the materializer expands them.
REARING_SCHEDULE: dict[int, list[dict[str, Any]]] = {
    1: [
        {
            "id": "entry_check",
            "category": "inspection",
            "priority": "high",
            "title": "Entry health check",
            "description": "Check chick health, record entry count and basic information",
            "estimated_minutes": 60,
            "materials": ["thermometer", "record sheet"],
            "notes": "Must be done on entry day; establishes the batch health record",
        },
        {
            "id": "glucose_water",
            "category": "nutrition",
            "priority": "critical",
            "title": "3% glucose or brown sugar water with electrolytes",
            "description": "Medicated drinking water to build resistance, rehydrate and reduce stress",
            "estimated_minutes": 30,
            "materials": ["glucose or brown sugar", "electrolyte multivitamin", "drinker"],
            "dosage": "3% solution in drinking water",
            "notes": "Give on entry day to help chicks settle",
        },
    ],
    2: [
        {
            "id": "goose_plague_serum",
            "category": "vaccine",
            "priority": "critical",
            "title": "Gosling plague hyperimmune serum, first shot",
            "description": "Inject gosling plague hyperimmune serum or yolk antibody",
            "estimated_minutes": 120,
            "materials": ["hyperimmune serum", "syringe", "alcohol", "cotton swabs"],
            "dosage": "1.2 ml per bird",
            "notes": "Must be given on day 2",
        },
        {
            "id": "opening_medicine",
            "category": "medication",
            "priority": "high",
            "title": "Opening medicine course",
            "description": "Prevent navel infection from salmonella and E. coli, support yolk absorption",
            "estimated_minutes": 45,
            "materials": ["opening medicine", "drinker"],
            "duration": 4,
            "dosage": "As labelled",
            "notes": "Separate weak chicks for individual feeding",
        },
    ],
    3: [
        {
            "id": "weak_chick_care",
            "category": "care",
            "priority": "medium",
            "title": "Weak chick care",
            "description": "Feed and care for the separated weak chicks individually",
            "estimated_minutes": 30,
        },
    ],
    5: [
        {
            "id": "feed_control",
            "category": "feeding",
            "priority": "critical",
            "title": "Feed control (days 5-15)",
            "description": "Add green fodder, no soybean cake or other protein feed, remove feed after midnight",
            "estimated_minutes": 30,
            "duration": 11,
        },
    ],
    6: [
        {
            "id": "combined_vaccine",
            "category": "vaccine",
            "priority": "critical",
            "title": "Second shot: gout, reovirus, gosling plague and serositis vaccine",
            "description": "Vaccinate in the evening, then raise house temperature by one degree",
            "estimated_minutes": 150,
            "dosage": "1 ml per bird",
        },
        {
            "id": "stress_prevention",
            "category": "medication",
            "priority": "medium",
            "title": "Multivitamin against vaccine stress (days 6-8)",
            "description": "Multivitamin in daytime drinking water",
            "estimated_minutes": 20,
            "duration": 3,
        },
    ],
    7: [
        {
            "id": "liver_kidney_protection",
            "category": "medication",
            "priority": "high",
            "title": "Liver and kidney protection",
            "description": "Two morning hours of liver tonic, 0.3% baking soda water after 10pm",
            "estimated_minutes": 60,
            "duration": 2,
            "dosage": "2 bottles per day",
        },
    ],
    9: [
        {
            "id": "reovirus_prevention",
            "category": "medication",
            "priority": "high",
            "title": "Reovirus prevention",
            "description": "Morning dose against reovirus",
            "estimated_minutes": 45,
            "duration": 2,
            "dosage": "1 bottle per day",
        },
    ],
    11: [
        {
            "id": "routine_inspection_11",
            "category": "inspection",
            "priority": "medium",
            "title": "Routine health check",
            "description": "Check alertness, appetite and droppings",
            "estimated_minutes": 30,
        },
    ],
    12: [
        {
            "id": "serositis_prevention",
            "category": "medication",
            "priority": "high",
            "title": "Serositis and E. coli prevention",
            "description": "Prevent gout, serositis, E. coli and duck hepatitis, ease vaccine stress",
            "estimated_minutes": 60,
            "duration": 2,
            "dosage": "Half a sachet of each product per day",
        },
    ],
    14: [
        {
            "id": "two_week_evaluation",
            "category": "evaluation",
            "priority": "medium",
            "title": "Two-week health evaluation",
            "description": "Evaluate the first 14 days of health management",
            "estimated_minutes": 60,
        },
    ],
    15: [
        {
            "id": "feed_transition_prep",
            "category": "feeding",
            "priority": "high",
            "title": "Prepare feed transition",
            "description": "Prepare to return to normal feed tomorrow",
            "estimated_minutes": 30,
        },
    ],
    16: [
        {
            "id": "normal_feeding",
            "category": "feeding",
            "priority": "critical",
            "title": "Resume normal feed",
            "description": "Feed control ends, feed normally",
            "estimated_minutes": 30,
            "duration": 2,
        },
        {
            "id": "flu_prevention",
            "category": "medication",
            "priority": "high",
            "title": "Viral cold and influenza prevention",
            "description": "Prevent viral colds that open the way to other viral disease",
            "estimated_minutes": 60,
            "duration": 2,
            "dosage": "1 sachet each of booster and serum product",
        },
    ],
    18: [
        {
            "id": "gout_prevention",
            "category": "medication",
            "priority": "medium",
            "title": "Gout prevention",
            "description": "Prevent gout and treat diarrhoea according to dropping colour",
            "estimated_minutes": 45,
            "dosage": "Depends on dropping inspection",
        },
        {
            "id": "dropping_inspection",
            "category": "inspection",
            "priority": "medium",
            "title": "Dropping inspection",
            "description": "Check dropping colour and shape to decide on treatment",
            "estimated_minutes": 20,
        },
    ],
    19: [
        {
            "id": "routine_inspection_19",
            "category": "inspection",
            "priority": "medium",
            "title": "Routine health management",
            "description": "Routine health check and daily management",
            "estimated_minutes": 30,
        },
        {
            "id": "environment_check",
            "category": "environment",
            "priority": "medium",
            "title": "Environment check",
            "description": "Check house temperature, humidity and ventilation",
            "estimated_minutes": 20,
        },
    ],
    20: [
        {
            "id": "triple_vaccine",
            "category": "vaccine",
            "priority": "critical",
            "title": "Third shot: paramyxovirus, H9 avian influenza and Ankara (triple vaccine)",
            "description": "Vaccinate against influenza and paramyxovirus",
            "estimated_minutes": 180,
            "dosage": "1 ml per bird",
        },
        {
            "id": "post_vaccine_care",
            "category": "medication",
            "priority": "high",
            "title": "Post-vaccine stress care",
            "description": "Multivitamin after vaccination",
            "estimated_minutes": 30,
        },
    ],
    21: [
        {
            "id": "gout_cold_prevention",
            "category": "medication",
            "priority": "medium",
            "title": "Gout and cold prevention",
            "description": "Grazing goslings catch colds easily; watch for head shaking, runny nose and coughing",
            "estimated_minutes": 45,
            "dosage": "Antiviral sachet if cold symptoms appear",
        },
        {
            "id": "grazing_management",
            "category": "environment",
            "priority": "medium",
            "title": "Grazing management",
            "description": "Start grazing, guard against colds",
            "estimated_minutes": 60,
        },
    ],
    22: [
        {
            "id": "respiratory_prevention",
            "category": "medication",
            "priority": "high",
            "title": "Cough and respiratory prevention",
            "description": "Prevent coughing and wheezing in goslings",
            "estimated_minutes": 45,
            "duration": 2,
            "dosage": "1 bottle per day",
        },
    ],
    24: [
        {
            "id": "routine_inspection_24",
            "category": "inspection",
            "priority": "medium",
            "title": "Routine health check",
            "description": "Routine health check, observe flock condition",
            "estimated_minutes": 30,
            "duration": 2,
        },
    ],
    26: [
        {
            "id": "enteritis_prevention",
            "category": "medication",
            "priority": "high",
            "title": "Enteritis prevention during E. coli peak",
            "description": "Focus on enteritis during the E. coli peak",
            "estimated_minutes": 60,
            "duration": 2,
            "dosage": "1 sachet per day",
        },
        {
            "id": "immune_enhancement",
            "category": "medication",
            "priority": "high",
            "title": "Antiviral immune booster",
            "description": "Antiviral, strengthen immunity",
            "estimated_minutes": 30,
            "duration": 2,
            "dosage": "1 sachet per day",
        },
    ],
    28: [
        {
            "id": "four_week_evaluation",
            "category": "evaluation",
            "priority": "medium",
            "title": "Four-week health evaluation",
            "description": "Evaluate four weeks of health management",
            "estimated_minutes": 90,
        },
    ],
    29: [
        {
            "id": "antiviral_treatment",
            "category": "medication",
            "priority": "high",
            "title": "Antiviral treatment",
            "description": "Prevent influenza, paramyxovirus and flavivirus",
            "estimated_minutes": 60,
            "duration": 2,
            "dosage": "1 sachet per day",
        },
    ],
    30: [
        {
            "id": "phase_one_summary",
            "category": "evaluation",
            "priority": "high",
            "title": "Phase one disease prevention summary (days 1-30)",
            "description": "Summarize the critical first 30 days",
            "estimated_minutes": 120,
        },
    ],
    35: [
        {
            "id": "growth_phase_check",
            "category": "evaluation",
            "priority": "medium",
            "title": "Growth phase health check",
            "description": "Full health evaluation on entering the growth phase",
            "estimated_minutes": 90,
        },
        {
            "id": "feed_adjustment",
            "category": "feeding",
            "priority": "medium",
            "title": "Feed adjustment",
            "description": "Adjust feed ratio and nutrition to growth",
            "estimated_minutes": 45,
        },
    ],
    42: [
        {
            "id": "six_week_evaluation",
            "category": "evaluation",
            "priority": "medium",
            "title": "Six-week growth performance evaluation",
            "description": "Evaluate growth performance and adjust the late-stage plan",
            "estimated_minutes": 90,
        },
        {
            "id": "deworming",
            "category": "medication",
            "priority": "high",
            "title": "Deworming",
            "description": "Deworm to prevent parasite infection",
            "estimated_minutes": 60,
        },
    ],
    56: [
        {
            "id": "eight_week_check",
            "category": "inspection",
            "priority": "medium",
            "title": "Eight-week health check",
            "description": "Check flock health and vaccination effect",
            "estimated_minutes": 60,
        },
        {
            "id": "nutrition_optimization",
            "category": "feeding",
            "priority": "medium",
            "title": "Nutrition ratio optimization",
            "description": "Optimize the nutrition ratio for growth",
            "estimated_minutes": 40,
        },
    ],
    70: [
        {
            "id": "pre_market_health_check",
            "category": "inspection",
            "priority": "critical",
            "title": "Pre-market health check",
            "description": "Full health check against market standards",
            "estimated_minutes": 120,
        },
        {
            "id": "medication_withdrawal",
            "category": "medication",
            "priority": "critical",
            "title": "Withdrawal period management",
            "description": "Confirm the withdrawal period has started, check residue risk",
            "estimated_minutes": 30,
        },
    ],
    77: [
        {
            "id": "final_weight_measurement",
            "category": "evaluation",
            "priority": "high",
            "title": "Final weight measurement",
            "description": "Weigh for market and record growth performance",
            "estimated_minutes": 90,
        },
        {
            "id": "health_certificate",
            "category": "documentation",
            "priority": "critical",
            "title": "Health certificate preparation",
            "description": "Prepare market health and vaccination certificates",
            "estimated_minutes": 60,
        },
    ],
    80: [
        {
            "id": "final_inspection",
            "category": "inspection",
            "priority": "critical",
            "title": "Final pre-market inspection",
            "description": "Last full inspection before market",
            "estimated_minutes": 60,
        },
        {
            "id": "batch_summary",
            "category": "evaluation",
            "priority": "high",
            "title": "Batch summary report",
            "description": "Write the complete batch rearing report",
            "estimated_minutes": 120,
        },
        {
            "id": "market_preparation",
            "category": "logistics",
            "priority": "critical",
            "title": "Market preparation",
            "description": "Arrange transport, prepare loading, count birds",
            "estimated_minutes": 120,
        },
    ],
}


class ScheduleTemplate:
    """Immutable day-of-age -> task definitions store.

    A definition appears only under the day its series starts; ``last_day``
    accounts for series running past the last declared day.
    """

    def __init__(self, schedule: Mapping[int, Sequence[TaskDefinition | Mapping[str, Any]]]) -> None:
        """Validate and freeze the schedule.

        Raises:
            ValueError: On a non-positive day, a duplicate definition ID, or an invalid definition
        """
        by_day: dict[int, tuple[TaskDefinition, ...]] = {}
        by_id: dict[str, tuple[int, TaskDefinition]] = {}

        for day in sorted(schedule):
            if day < 1:
                msg = f"Schedule day must be >= 1, got {day}"
                raise ValueError(msg)
            definitions = tuple(
                entry if isinstance(entry, TaskDefinition) else TaskDefinition.model_validate(entry)
                for entry in schedule[day]
            )
            for definition in definitions:
                if definition.id in by_id:
                    msg = f"Duplicate task definition ID '{definition.id}' on day {day}"
                    raise ValueError(msg)
                by_id[definition.id] = (day, definition)
            if definitions:
                by_day[day] = definitions

        self._by_day = MappingProxyType(by_day)
        self._by_id = MappingProxyType(by_id)
        self._last_day = max((day + d.duration - 1 for day, d in by_id.values()), default=0)

        logger.debug("Loaded schedule template: %d days, %d definitions", len(by_day), len(by_id))

    @property
    def last_day(self) -> int:
        """Length of the rearing cycle covered by the template."""
        return self._last_day

    def tasks_for_day(self, day_of_age: int) -> list[TaskDefinition]:
        """Definitions whose series starts on the given day; empty when nothing starts."""
        return list(self._by_day.get(day_of_age, ()))

    def all_scheduled_days(self) -> list[int]:
        return list(self._by_day)

    def definition_ids(self) -> list[str]:
        return list(self._by_id)

    def get_definition(self, definition_id: str) -> TaskDefinition | None:
        entry = self._by_id.get(definition_id)
        return entry[1] if entry else None

    def start_day(self, definition_id: str) -> int | None:
        """Day-of-age on which the definition's series starts."""
        entry = self._by_id.get(definition_id)
        return entry[0] if entry else None


default_template = ScheduleTemplate(REARING_SCHEDULE)
