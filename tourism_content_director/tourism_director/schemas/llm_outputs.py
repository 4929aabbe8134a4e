"""
Structured-output models for every LLM call.

Each model doubles as the JSON Schema sent to the provider (strict mode: object typed,
additionalProperties false, every property required) and as the validator of the
response. Validation itself is lenient: unknown keys are ignored and missing localized
strings default to "" so a partly filled answer is still usable.
"""
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, create_model


def _strict_object_schema(schema: Dict[str, Any], model: Any) -> None:
    """Provider constraint: all properties required, no extra keys, no defaults."""
    properties = schema.get("properties", {})
    for prop in properties.values():
        prop.pop("default", None)
    schema["required"] = list(properties)
    schema["additionalProperties"] = False


class LlmOutput(BaseModel):
    """Base for structured LLM responses."""

    model_config = ConfigDict(extra="ignore", json_schema_extra=_strict_object_schema)


# --- Orchestration plan -------------------------------------------------------


class Coordinates(LlmOutput):
    lat: float
    lng: float


class TargetCity(LlmOutput):
    city: str
    country: str = ""
    coordinates: Optional[Coordinates] = None
    locations_to_fetch: int = Field(default=20, ge=0)
    categories: List[str] = Field(default_factory=list)
    reasoning: str = ""


class EstimatedContent(LlmOutput):
    locations: int = 0
    experiences: int = 0
    plans: int = 0


class OrchestrationPlan(LlmOutput):
    """Blueprint of one generation run. Treated as immutable once produced."""

    analysis: str = ""
    target_cities: List[TargetCity] = Field(default_factory=list)
    tourist_profiles_to_generate: List[str] = Field(default_factory=list)
    estimated_new_content: EstimatedContent = Field(default_factory=EstimatedContent)


# --- Location enrichment ------------------------------------------------------


class PracticalInfo(LlmOutput):
    best_time: str = ""
    duration_minutes: int = 60
    tips: List[str] = Field(default_factory=list)


class LocationMetadata(LlmOutput):
    suitable_experiences: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    practical_info: PracticalInfo = Field(default_factory=PracticalInfo)


# --- Plan rebuild: experience replacement -------------------------------------


class ExperienceReplacement(LlmOutput):
    remove_experience_id: int
    add_experience_id: int
    reason: str = ""


class ExperienceReplacementDecision(LlmOutput):
    keep_all: bool = True
    replacements: List[ExperienceReplacement] = Field(default_factory=list)
    reasoning: str = ""


# --- Locale-dependent models --------------------------------------------------


@lru_cache
def localized_text_model(locales: Tuple[str, ...]) -> Type[LlmOutput]:
    """Object with one string property per locale."""
    fields: Dict[str, Any] = {locale: (str, "") for locale in locales}
    return create_model("LocalizedText_" + "_".join(locales), __base__=LlmOutput, **fields)


@lru_cache
def localized_payload_model(field: str, locales: Tuple[str, ...]) -> Type[LlmOutput]:
    """{field: {locale: text}}, used for batched description / history translations."""
    text_model = localized_text_model(locales)
    return create_model(
        f"Localized_{field}",
        __base__=LlmOutput,
        **{field: (text_model, ...)},
    )


@lru_cache
def experience_proposals_model(locales: Tuple[str, ...]) -> Type[LlmOutput]:
    """{experiences: [proposal]} for local and thematic experience creation."""
    text_model = localized_text_model(locales)
    proposal = create_model(
        "ExperienceProposal",
        __base__=LlmOutput,
        location_ids=(List[int], Field(default_factory=list)),
        location_names=(List[str], Field(default_factory=list)),
        category_key=(str, ""),
        estimated_duration=(Optional[int], None),
        seasons=(List[str], Field(default_factory=list)),
        titles=(text_model, ...),
        descriptions=(text_model, ...),
        theme_reasoning=(str, ""),
    )
    return create_model(
        "ExperienceProposals",
        __base__=LlmOutput,
        experiences=(List[proposal], Field(default_factory=list)),
    )


@lru_cache
def plan_proposal_model(locales: Tuple[str, ...]) -> Type[LlmOutput]:
    """Day-by-day plan: experience ids per day plus localized titles / notes."""
    text_model = localized_text_model(locales)
    day = create_model(
        "PlanDayProposal",
        __base__=LlmOutput,
        day_number=(int, ...),
        theme=(str, ""),
        experience_ids=(List[int], Field(default_factory=list)),
    )
    return create_model(
        "PlanProposal",
        __base__=LlmOutput,
        duration_days=(int, 1),
        titles=(text_model, ...),
        notes=(text_model, ...),
        days=(List[day], Field(default_factory=list)),
        reasoning=(str, ""),
    )


@lru_cache
def experience_regeneration_model(locales: Tuple[str, ...]) -> Type[LlmOutput]:
    text_model = localized_text_model(locales)
    return create_model(
        "ExperienceRegeneration",
        __base__=LlmOutput,
        titles=(text_model, ...),
        descriptions=(text_model, ...),
        estimated_duration=(Optional[int], None),
    )


@lru_cache
def plan_regeneration_model(locales: Tuple[str, ...]) -> Type[LlmOutput]:
    text_model = localized_text_model(locales)
    return create_model(
        "PlanRegeneration",
        __base__=LlmOutput,
        titles=(text_model, ...),
        notes=(text_model, ...),
    )


def localized_dict(value: Optional[BaseModel]) -> Dict[str, str]:
    """Localized model -> {locale: text} without blank entries."""
    if value is None:
        return {}
    return {k: v.strip() for k, v in value.model_dump().items() if isinstance(v, str) and v.strip()}
