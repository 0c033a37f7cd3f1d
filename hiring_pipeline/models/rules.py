"""Pydantic models for auto-rejection rule sets."""

from __future__ import annotations

from typing import Annotated, Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

RuleField = Literal["experience", "location", "skills", "education", "salary_expectation"]
RuleOperator = Literal[
    "less_than",
    "greater_than",
    "equals",
    "not_equals",
    "between",
    "contains",
    "not_contains",
    "contains_all",
    "contains_any",
]
LogicConnector = Literal["AND", "OR"]

RULE_FIELDS: tuple[str, ...] = get_args(RuleField)
RULE_OPERATORS: tuple[str, ...] = get_args(RuleOperator)

LEGACY_CRITERIA_KEYS = ("minExperience", "maxExperience", "requiredSkills", "requiredEducation")


# ============================================
# Legacy generation
# ============================================


class LegacyCriteria(BaseModel):
    """Experience range and required skills/education of a legacy rule set."""

    model_config = ConfigDict(populate_by_name=True)

    min_experience: float | None = Field(default=None, alias="minExperience")
    max_experience: float | None = Field(default=None, alias="maxExperience")
    required_skills: list[str] | None = Field(default=None, alias="requiredSkills")
    required_education: list[str] | None = Field(default=None, alias="requiredEducation")


class LegacyRuleSet(BaseModel):
    """First-generation rule set: a single criteria object."""

    version: Literal["legacy"] = "legacy"
    enabled: bool
    rules: LegacyCriteria = Field(default_factory=LegacyCriteria)


# ============================================
# Structured generation
# ============================================


class Rule(BaseModel):
    """One field/operator/value predicate; a match means reject."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    field: RuleField
    operator: RuleOperator
    value: Any
    logic_connector: LogicConnector = Field(default="OR", alias="logicConnector")


class StructuredRuleSet(BaseModel):
    """Second-generation rule set: an ordered list of rules."""

    version: Literal["structured"] = "structured"
    enabled: bool
    rules: list[Rule] = Field(default_factory=list)


RuleSet = Annotated[LegacyRuleSet | StructuredRuleSet, Field(discriminator="version")]


# ============================================
# Evaluation input/output
# ============================================


class CandidateSnapshot(BaseModel):
    """Candidate attributes the rule engine can look at."""

    experience_years: float | None = None
    location: str | None = None
    skills: list[str] = Field(default_factory=list)
    education: str | None = None
    salary_expectation: float | None = None


class RejectionDecision(BaseModel):
    """Outcome of evaluating a rule set against a candidate."""

    should_reject: bool
    reason: str | None = None
    triggered_rule: Rule | None = None
