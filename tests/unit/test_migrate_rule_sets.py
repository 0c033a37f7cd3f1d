"""Unit tests for the rule-set tagging script (scripts/migrate_rule_sets.py)."""

from scripts.migrate_rule_sets import tag_rule_set
from tests.fixtures.factories import create_legacy_rules, create_rule, create_structured_rules


def test_criteria_object_tagged_legacy():
    """Untagged criteria objects become legacy rule sets."""
    tagged = tag_rule_set(create_legacy_rules(min_experience=2, max_experience=10))

    assert tagged == {
        "version": "legacy",
        "enabled": True,
        "rules": {"minExperience": 2.0, "maxExperience": 10.0},
    }


def test_rule_list_tagged_structured():
    """Untagged rule lists become structured rule sets."""
    rule = create_rule(rule_id="r1", field="location", operator="equals", value="Remote")

    tagged = tag_rule_set(create_structured_rules([rule]))

    assert tagged["version"] == "structured"
    assert tagged["rules"] == [rule]


def test_empty_rules_become_disabled_legacy():
    """Rule sets with nothing to evaluate are stored disabled."""
    assert tag_rule_set({"enabled": True, "rules": {}}) == {
        "version": "legacy",
        "enabled": False,
        "rules": {},
    }


def test_unparseable_rule_list_left_alone():
    """Rules with unknown fields cannot be migrated."""
    broken = create_structured_rules([create_rule(field="favourite_colour")])

    assert tag_rule_set(broken) is None
