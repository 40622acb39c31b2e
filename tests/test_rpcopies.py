#!/usr/bin/env python3
"""
Tests for copy classification, copy resolution and group lookup
"""

import logging
import pytest
from typing import Dict, List, Tuple

from rpcopies import GroupDirectory, classify_copies, eligible_copies, resolve_copy
from rpconfig import Identifiers
from rpmodels import Copy, GroupNotFoundError, ResolutionError, SelectionIntent


def make_copy(name: str, copy_id: int, role: str = "REPLICA") -> Copy:
    return Copy(name=name, group_id=1, cluster_id=10 + copy_id, copy_id=copy_id, role=role)


@pytest.fixture
def identifiers() -> Identifiers:
    """Regular expression identifiers, as in the default config"""
    return Identifiers.build(production="_PN$", dr="_CN$", test="^TC_")


@pytest.fixture
def contains_identifiers() -> Identifiers:
    """Substring identifiers"""
    return Identifiers.build(production="_PN", dr="_CN", test="TC_", match="contains")


@pytest.fixture
def test1_copies() -> List[Copy]:
    """Test1_CG as returned by the API (test copy first, production last)"""
    return [
        make_copy("TC_Test1_CG", 2),
        make_copy("Test1_CG_CN", 1),
        make_copy("Test1_CG_PN", 0, role="ACTIVE"),
    ]


class FakeGateway:
    """Fake gateway exposing only the read calls used by GroupDirectory"""

    def __init__(self, groups: Dict[int, Tuple[str, List[Copy]]], user_groups: List[int] = None):
        self.groups = groups
        self.user_groups = user_groups or []

    def list_groups(self) -> List[int]:
        return list(self.groups)

    def get_group_name(self, group_id: int) -> str:
        return self.groups[group_id][0]

    def get_group_copies(self, group_id: int) -> List[Copy]:
        return self.groups[group_id][1]

    def list_user_administered_groups(self) -> List[int]:
        return self.user_groups


class TestClassifyCopies:
    """Production first, then the rest, then test copies"""

    def test_production_first_test_last(self, test1_copies, identifiers):
        ordered = classify_copies(test1_copies, identifiers)

        assert [c.name for c in ordered] == ["Test1_CG_PN", "Test1_CG_CN", "TC_Test1_CG"]

    def test_keeps_every_copy(self, identifiers):
        copies = [
            make_copy("Other_copy", 4),
            make_copy("TC_A", 3),
            make_copy("A_PN", 0, role="ACTIVE"),
            make_copy("A_CN", 1),
            make_copy("TC_B", 2),
        ]

        ordered = classify_copies(copies, identifiers)

        assert sorted(c.copy_id for c in ordered) == sorted(c.copy_id for c in copies)
        assert len(ordered) == len(copies)

    def test_stable_within_buckets(self, identifiers):
        """API order is preserved inside each bucket"""
        copies = [
            make_copy("TC_second", 5),
            make_copy("Z_CN", 1),
            make_copy("TC_first", 4),
            make_copy("A_CN", 2),
            make_copy("Unlabelled", 3),
        ]

        ordered = classify_copies(copies, identifiers)

        assert [c.name for c in ordered] == [
            "Z_CN",
            "A_CN",
            "Unlabelled",
            "TC_second",
            "TC_first",
        ]

    def test_copies_matching_no_rule_stay_in_middle(self, identifiers):
        copies = [make_copy("TC_X", 2), make_copy("mystery", 1), make_copy("X_PN", 0)]

        ordered = classify_copies(copies, identifiers)

        assert [c.name for c in ordered] == ["X_PN", "mystery", "TC_X"]

    def test_empty_list(self, identifiers):
        assert classify_copies([], identifiers) == []

    def test_substring_matching(self, test1_copies, contains_identifiers):
        ordered = classify_copies(test1_copies, contains_identifiers)

        assert [c.name for c in ordered] == ["Test1_CG_PN", "Test1_CG_CN", "TC_Test1_CG"]


class TestResolveCopy:
    """Selection of exactly one non-production copy"""

    def test_test_role_selects_test_copy(self, test1_copies, identifiers):
        copy = resolve_copy(test1_copies, SelectionIntent.by_role("test"), identifiers)

        assert copy.name == "TC_Test1_CG"

    def test_test_role_with_substring_rules(self, test1_copies, contains_identifiers):
        copy = resolve_copy(
            test1_copies, SelectionIntent.by_role("test"), contains_identifiers
        )

        assert copy.name == "TC_Test1_CG"

    def test_dr_role_selects_dr_copy(self, test1_copies, identifiers):
        copy = resolve_copy(test1_copies, SelectionIntent.by_role("dr"), identifiers)

        assert copy.name == "Test1_CG_CN"

    def test_exact_name(self, test1_copies, identifiers):
        copy = resolve_copy(test1_copies, SelectionIntent.by_name("Test1_CG_CN"), identifiers)

        assert copy.name == "Test1_CG_CN"
        assert copy.copy_id == 1

    def test_exact_name_must_match_whole_name(self, test1_copies, identifiers):
        with pytest.raises(ResolutionError):
            resolve_copy(test1_copies, SelectionIntent.by_name("Test1_CG"), identifiers)

    def test_missing_exact_name_lists_non_production_copies(self, test1_copies, identifiers):
        with pytest.raises(ResolutionError) as exc_info:
            resolve_copy(test1_copies, SelectionIntent.by_name("Nope_CN"), identifiers)

        assert sorted(exc_info.value.available) == ["TC_Test1_CG", "Test1_CG_CN"]
        assert "Test1_CG_PN" not in str(exc_info.value)
        assert "Nope_CN" in str(exc_info.value)

    def test_production_never_selected_by_name(self, test1_copies, identifiers):
        with pytest.raises(ResolutionError):
            resolve_copy(test1_copies, SelectionIntent.by_name("Test1_CG_PN"), identifiers)

    def test_production_never_selected_by_loose_rule(self, test1_copies):
        """A DR rule matching everything still skips production"""
        loose = Identifiers.build(production="_PN$", dr=".*", test="^TC_")

        copy = resolve_copy(test1_copies, SelectionIntent.by_role("dr"), loose)

        assert copy.name == "Test1_CG_CN"

    def test_dr_role_skips_copy_that_also_matches_test_rule(self, identifiers):
        """TC_Shared_CN matches both the DR and the test rule"""
        copies = [
            make_copy("Shared_PN", 0, role="ACTIVE"),
            make_copy("TC_Shared_CN", 1),
        ]

        with pytest.raises(ResolutionError) as exc_info:
            resolve_copy(copies, SelectionIntent.by_role("dr"), identifiers)

        assert exc_info.value.available == ["TC_Shared_CN"]

    def test_dr_role_prefers_plain_dr_copy_over_dual_match(self, identifiers):
        copies = [
            make_copy("Shared_PN", 0, role="ACTIVE"),
            make_copy("TC_Shared_CN", 1),
            make_copy("Shared_CN", 2),
        ]

        copy = resolve_copy(copies, SelectionIntent.by_role("dr"), identifiers)

        assert copy.name == "Shared_CN"

    def test_test_role_accepts_dual_match(self, identifiers):
        copies = [
            make_copy("Shared_PN", 0, role="ACTIVE"),
            make_copy("TC_Shared_CN", 1),
        ]

        copy = resolve_copy(copies, SelectionIntent.by_role("test"), identifiers)

        assert copy.name == "TC_Shared_CN"

    def test_first_match_in_order_wins(self, identifiers):
        copies = [make_copy("TC_one", 1), make_copy("TC_two", 2)]

        copy = resolve_copy(copies, SelectionIntent.by_role("test"), identifiers)

        assert copy.name == "TC_one"

    def test_no_test_copy(self, identifiers):
        copies = [make_copy("A_PN", 0, role="ACTIVE"), make_copy("A_CN", 1)]

        with pytest.raises(ResolutionError) as exc_info:
            resolve_copy(copies, SelectionIntent.by_role("test"), identifiers)

        assert exc_info.value.requested == "test copy"
        assert exc_info.value.available == ["A_CN"]

    def test_eligible_copies_excludes_production(self, test1_copies, identifiers):
        names = [c.name for c in eligible_copies(test1_copies, identifiers)]

        assert names == ["TC_Test1_CG", "Test1_CG_CN"]


class TestSelectionIntent:
    def test_requires_exactly_one(self):
        with pytest.raises(ValueError):
            SelectionIntent()
        with pytest.raises(ValueError):
            SelectionIntent(copy_name="A_CN", role="dr")

    def test_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            SelectionIntent.by_role("prod")

    def test_role_is_case_insensitive(self):
        assert SelectionIntent.by_role("TEST").role == "test"


class TestGroupDirectory:
    @pytest.fixture
    def directory(self, test1_copies) -> GroupDirectory:
        return GroupDirectory(
            FakeGateway(
                {
                    101: ("Test1_CG", test1_copies),
                    102: ("Test2_CG", []),
                    103: ("Test3_CG", []),
                },
                user_groups=[101, 103],
            )
        )

    def test_list_groups_in_api_order(self, directory):
        groups = directory.list_groups()

        assert [(g.id, g.name) for g in groups] == [
            (101, "Test1_CG"),
            (102, "Test2_CG"),
            (103, "Test3_CG"),
        ]

    def test_find_group(self, directory):
        group = directory.find_group("Test2_CG")

        assert group.id == 102

    def test_find_group_missing(self, directory):
        with pytest.raises(GroupNotFoundError) as exc_info:
            directory.find_group("Missing_CG")

        assert "Missing_CG" in str(exc_info.value)

    def test_load_group_fetches_copies(self, directory, test1_copies):
        group = directory.load_group(directory.find_group("Test1_CG"))

        assert group.copies == test1_copies

    def test_filter_administered_excludes_other_groups(self, directory, caplog):
        with caplog.at_level(logging.INFO):
            kept = directory.filter_administered(directory.list_groups())

        assert [g.name for g in kept] == ["Test1_CG", "Test3_CG"]
        assert "Test2_CG" in caplog.text
