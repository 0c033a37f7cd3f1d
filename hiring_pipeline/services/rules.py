"""Rule evaluation engine for auto-rejection decisions."""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from hiring_pipeline.core.errors import ValidationError
from hiring_pipeline.models.rules import (
    LEGACY_CRITERIA_KEYS,
    RULE_FIELDS,
    RULE_OPERATORS,
    CandidateSnapshot,
    LegacyRuleSet,
    RejectionDecision,
    Rule,
    RuleSet,
    StructuredRuleSet,
)

logger = get_logger()

_rule_set_adapter: TypeAdapter[LegacyRuleSet | StructuredRuleSet] = TypeAdapter(RuleSet)

FIELD_LABELS = {
    "experience": "Experience",
    "location": "Location",
    "skills": "Skills",
    "education": "Education",
    "salary_expectation": "Salary Expectation",
}

OPERATOR_LABELS = {
    "less_than": "less than",
    "greater_than": "greater than",
    "equals": "equal to",
    "not_equals": "not equal to",
    "between": "between",
    "contains": "containing",
    "not_contains": "not containing",
    "contains_all": "containing all of",
    "contains_any": "containing any of",
}

ERROR_PREFIX = "autoRejectionRules"


# ============================================
# Write-time validation
# ============================================


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def detect_version(payload: dict[str, Any]) -> str | None:
    """
    Decide which rule-set generation a payload belongs to.

    An explicit ``version`` wins. Untagged payloads are tagged by shape: a list
    of rules is structured, a criteria object with at least one legacy key is
    legacy. Anything else is ambiguous and yields None.
    """
    version = payload.get("version")
    if version is not None:
        return version if version in ("legacy", "structured") else None

    rules = payload.get("rules")
    if isinstance(rules, list):
        return "structured"
    if isinstance(rules, dict) and any(key in rules for key in LEGACY_CRITERIA_KEYS):
        return "legacy"
    return None


def _validate_legacy(rules: Any, errors: dict[str, list[str]]) -> None:
    if not isinstance(rules, dict):
        errors[f"{ERROR_PREFIX}.rules"] = ["rules must be an object for legacy rule sets"]
        return

    min_exp = rules.get("minExperience")
    max_exp = rules.get("maxExperience")

    if min_exp is not None and (not _is_number(min_exp) or min_exp < 0):
        errors[f"{ERROR_PREFIX}.minExperience"] = ["minExperience must be a non-negative number"]
    if max_exp is not None and (not _is_number(max_exp) or max_exp < 0):
        errors[f"{ERROR_PREFIX}.maxExperience"] = ["maxExperience must be a non-negative number"]
    if (
        _is_number(min_exp)
        and _is_number(max_exp)
        and f"{ERROR_PREFIX}.minExperience" not in errors
        and min_exp > max_exp
    ):
        errors[f"{ERROR_PREFIX}.minExperience"] = [
            "minExperience cannot be greater than maxExperience"
        ]

    for key in ("requiredSkills", "requiredEducation"):
        value = rules.get(key)
        if value is not None and not _is_string_list(value):
            errors[f"{ERROR_PREFIX}.{key}"] = [f"{key} must be an array of strings"]


def _validate_structured(rules: Any, errors: dict[str, list[str]]) -> None:
    if not isinstance(rules, list):
        errors[f"{ERROR_PREFIX}.rules"] = ["rules must be an array of rule objects"]
        return

    for i, rule in enumerate(rules):
        path = f"{ERROR_PREFIX}.rules[{i}]"
        if not isinstance(rule, dict):
            errors[path] = ["rule must be an object"]
            continue
        if not rule.get("id") or not isinstance(rule["id"], str):
            errors[f"{path}.id"] = ["rule id is required"]
        if rule.get("field") not in RULE_FIELDS:
            errors[f"{path}.field"] = ["invalid rule field"]
        if not rule.get("operator"):
            errors[f"{path}.operator"] = ["rule operator is required"]
        elif rule["operator"] not in RULE_OPERATORS:
            errors[f"{path}.operator"] = ["unknown rule operator"]
        if "value" not in rule or rule["value"] is None:
            errors[f"{path}.value"] = ["rule value is required"]
        elif rule.get("operator") == "between" and not (
            isinstance(rule["value"], list)
            and len(rule["value"]) == 2
            and all(_is_number(v) for v in rule["value"])
        ):
            errors[f"{path}.value"] = ["between requires a [min, max] pair of numbers"]
        connector = rule.get("logicConnector")
        if connector is not None and connector not in ("AND", "OR"):
            errors[f"{path}.logicConnector"] = ["logicConnector must be AND or OR"]


def validate_rule_set(payload: dict[str, Any] | None) -> LegacyRuleSet | StructuredRuleSet | None:
    """
    Validate a caller-submitted rule set and tag it with its generation.

    Args:
        payload: Raw ``autoRejectionRules`` value from a job create/update

    Returns:
        Tagged rule set model, or None when no rule set was supplied

    Raises:
        ValidationError: With field-level messages when the payload is malformed
    """
    if payload is None:
        return None

    errors: dict[str, list[str]] = {}

    if not isinstance(payload, dict):
        raise ValidationError({ERROR_PREFIX: ["autoRejectionRules must be an object"]})

    enabled = payload.get("enabled")
    if not isinstance(enabled, bool):
        raise ValidationError({f"{ERROR_PREFIX}.enabled": ["enabled must be a boolean"]})

    version = detect_version(payload)

    if not enabled:
        # Disabled rule sets are stored but never evaluated
        if version == "structured" and isinstance(payload.get("rules"), list):
            _validate_structured(payload["rules"], errors)
        elif version == "legacy" and isinstance(payload.get("rules"), dict):
            _validate_legacy(payload["rules"], errors)
        if errors:
            raise ValidationError(errors)
        return _build(payload, version or "legacy")

    if "version" in payload and version is None:
        raise ValidationError({f"{ERROR_PREFIX}.version": ["version must be legacy or structured"]})

    if version is None:
        raise ValidationError(
            {
                f"{ERROR_PREFIX}.rules": [
                    "rules must be a non-empty criteria object or an array of rules when enabled"
                ]
            }
        )

    rules = payload.get("rules")
    if (isinstance(rules, list) and not rules) or (
        isinstance(rules, dict)
        and not any(rules.get(key) is not None for key in LEGACY_CRITERIA_KEYS)
    ):
        raise ValidationError(
            {f"{ERROR_PREFIX}.rules": ["enabled rule sets need at least one rule"]}
        )

    if version == "legacy":
        _validate_legacy(payload.get("rules"), errors)
    else:
        _validate_structured(payload.get("rules"), errors)

    if errors:
        raise ValidationError(errors)

    return _build(payload, version)


def _build(payload: dict[str, Any], version: str) -> LegacyRuleSet | StructuredRuleSet:
    data = dict(payload)
    data["version"] = version
    rules = data.get("rules")
    if version == "legacy" and not isinstance(rules, dict):
        data["rules"] = {}
    elif version == "structured" and not isinstance(rules, list):
        data["rules"] = []
    try:
        return _rule_set_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(
            {
                f"{ERROR_PREFIX}.{'.'.join(str(part) for part in err['loc'])}": [err["msg"]]
                for err in e.errors()
            }
        ) from e


def load_rule_set(stored: dict[str, Any] | None) -> LegacyRuleSet | StructuredRuleSet | None:
    """
    Parse a persisted rule set.

    Rows written before the version tag existed are tagged by shape. A stored
    value that no longer parses is logged and treated as "no rules", so it can
    never reject anyone.
    """
    if not stored:
        return None

    data = dict(stored)
    if "version" not in data:
        data["version"] = detect_version(data) or "legacy"
        if data["version"] == "legacy" and not isinstance(data.get("rules"), dict):
            data["rules"] = {}

    try:
        return _rule_set_adapter.validate_python(data)
    except PydanticValidationError as e:
        logger.error("stored_rule_set_unparseable", error=str(e))
        return None


def dump_rule_set(rule_set: LegacyRuleSet | StructuredRuleSet | None) -> dict[str, Any]:
    """Serialize a rule set for the jobs.auto_rejection_rules column."""
    if rule_set is None:
        return LegacyRuleSet(enabled=False).model_dump(by_alias=True, exclude_none=True)
    return rule_set.model_dump(by_alias=True, exclude_none=True)


# ============================================
# Evaluation
# ============================================


def _compare_number(candidate_value: Any, operator: str, rule_value: Any) -> bool:
    """
    Compare a numeric candidate value against a rule value.

    Args:
        candidate_value: Value from the candidate snapshot
        operator: Numeric operator
        rule_value: Threshold, or [min, max] for between

    Returns:
        True if the predicate matches
    """
    if candidate_value is None:
        return False

    try:
        value = float(candidate_value)

        if operator == "between":
            low, high = (float(v) for v in rule_value)
            return low <= value <= high

        threshold = float(rule_value)
        if operator == "less_than":
            return value < threshold
        elif operator == "greater_than":
            return value > threshold
        elif operator == "equals":
            return value == threshold
        elif operator == "not_equals":
            return value != threshold
        else:
            return False

    except (ValueError, TypeError):
        logger.warning(
            "non_numeric_comparison",
            candidate_value=candidate_value,
            rule_value=rule_value,
            operator=operator,
        )
        return False


def _compare_text(candidate_value: str | None, operator: str, rule_value: Any) -> bool:
    if candidate_value is None:
        return False

    candidate = candidate_value.lower().strip()
    expected = str(rule_value).lower().strip()

    if operator == "equals":
        return candidate == expected
    elif operator == "not_equals":
        return candidate != expected
    elif operator == "contains":
        return expected in candidate
    elif operator == "not_contains":
        return expected not in candidate
    return False


def _compare_list(candidate_value: list[str] | None, operator: str, rule_value: Any) -> bool:
    if candidate_value is None:
        return False

    have = {item.lower().strip() for item in candidate_value}
    values = rule_value if isinstance(rule_value, list) else [rule_value]
    wanted = [str(v).lower().strip() for v in values]

    if operator in ("contains", "contains_any"):
        return any(v in have for v in wanted)
    elif operator == "not_contains":
        return not any(v in have for v in wanted)
    elif operator == "contains_all":
        return all(v in have for v in wanted)
    return False


def _candidate_value(candidate: CandidateSnapshot, field: str) -> Any:
    if field == "experience":
        return candidate.experience_years
    return getattr(candidate, field, None)


def _rule_matches(candidate: CandidateSnapshot, rule: Rule) -> bool:
    value = _candidate_value(candidate, rule.field)
    if rule.field in ("experience", "salary_expectation"):
        return _compare_number(value, rule.operator, rule.value)
    if rule.field in ("location", "education"):
        return _compare_text(value, rule.operator, rule.value)
    return _compare_list(value, rule.operator, rule.value)


def _format_value(value: Any, operator: str) -> str:
    if isinstance(value, list):
        if operator == "between" and len(value) == 2:
            return f"{value[0]} and {value[1]}"
        return ", ".join(str(v) for v in value)
    return str(value)


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _structured_reason(candidate: CandidateSnapshot, rule: Rule) -> str:
    value = _candidate_value(candidate, rule.field)
    if isinstance(value, list):
        shown = ", ".join(value) or "none"
    elif value is None:
        shown = "not specified"
    elif isinstance(value, float):
        shown = _format_number(value)
    else:
        shown = str(value)

    unit = " years" if rule.field == "experience" else ""
    return (
        f"Auto-rejected: {FIELD_LABELS[rule.field]} ({shown}{unit}) is "
        f"{OPERATOR_LABELS[rule.operator]} required "
        f"({_format_value(rule.value, rule.operator)}{unit})"
    )


def _evaluate_legacy(candidate: CandidateSnapshot, rule_set: LegacyRuleSet) -> RejectionDecision:
    criteria = rule_set.rules
    experience = candidate.experience_years

    if experience is None:
        return RejectionDecision(should_reject=False)

    if criteria.min_experience is not None and experience < criteria.min_experience:
        return RejectionDecision(
            should_reject=True,
            reason=(
                f"Auto-rejected: Experience ({_format_number(experience)} years) is below "
                f"the minimum experience of {_format_number(criteria.min_experience)} years"
            ),
            triggered_rule=Rule(
                id="legacy-min-experience",
                field="experience",
                operator="less_than",
                value=criteria.min_experience,
            ),
        )

    if criteria.max_experience is not None and experience > criteria.max_experience:
        return RejectionDecision(
            should_reject=True,
            reason=(
                f"Auto-rejected: Experience ({_format_number(experience)} years) exceeds "
                f"the maximum experience of {_format_number(criteria.max_experience)} years"
            ),
            triggered_rule=Rule(
                id="legacy-max-experience",
                field="experience",
                operator="greater_than",
                value=criteria.max_experience,
            ),
        )

    return RejectionDecision(should_reject=False)


def _evaluate_structured(
    candidate: CandidateSnapshot, rule_set: StructuredRuleSet
) -> RejectionDecision:
    # Fold left to right; each rule's connector joins it to the next rule
    result = False
    triggered: Rule | None = None
    pending = "OR"

    for i, rule in enumerate(rule_set.rules):
        matches = _rule_matches(candidate, rule)

        if i == 0:
            result = matches
        elif pending == "AND":
            result = result and matches
        else:
            result = result or matches

        if matches and result and triggered is None:
            triggered = rule

        pending = rule.logic_connector

    if result and triggered is not None:
        return RejectionDecision(
            should_reject=True,
            reason=_structured_reason(candidate, triggered),
            triggered_rule=triggered,
        )
    return RejectionDecision(should_reject=False)


def evaluate(
    candidate: CandidateSnapshot,
    rule_set: LegacyRuleSet | StructuredRuleSet | None,
) -> RejectionDecision:
    """
    Decide whether a candidate should be auto-rejected.

    Pure function: the caller performs the stage move and writes the audit
    entry. Assumes the rule set passed write-time validation.

    Args:
        candidate: Candidate attributes
        rule_set: Job's rule set (None = no rules configured)

    Returns:
        Decision with a human-readable reason when rejecting
    """
    if rule_set is None or not rule_set.enabled:
        return RejectionDecision(should_reject=False)

    if isinstance(rule_set, LegacyRuleSet):
        return _evaluate_legacy(candidate, rule_set)
    return _evaluate_structured(candidate, rule_set)
