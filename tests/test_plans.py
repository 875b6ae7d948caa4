"""Tests for the static plan catalog."""
from config import PanelType, AccessType
from plans import PLANS, Plan, find_plan, get_plan, list_plans


class TestCatalog:
    def test_triple_is_unique(self):
        keys = [(p.id, p.type, p.access) for p in PLANS]
        assert len(keys) == len(set(keys))

    def test_every_combination_has_all_tiers(self):
        for panel_type in PanelType:
            for access in AccessType:
                ids = {p.id for p in list_plans(panel_type, access)}
                assert {"1gb", "5gb", "10gb", "unli"} <= ids

    def test_unli_private_regular_price(self):
        plan = find_plan("unli", PanelType.PRIVATE, AccessType.REGULAR)
        assert plan.price == 15000
        assert (plan.memory, plan.disk, plan.cpu) == (0, 0, 0)

    def test_admin_costs_more(self):
        regular = find_plan("2gb", PanelType.PRIVATE, AccessType.REGULAR)
        admin = find_plan("2gb", PanelType.PRIVATE, AccessType.ADMIN)
        assert admin.price > regular.price

    def test_find_plan_accepts_raw_strings(self):
        plan = find_plan("1gb", "public", "regular")
        assert plan is not None
        assert plan.type is PanelType.PUBLIC

    def test_unknown_plan(self):
        assert find_plan("99gb") is None
        assert get_plan("99gb") is None

    def test_get_plan_by_id_only(self):
        assert get_plan("3gb").id == "3gb"

    def test_custom_catalog(self):
        catalog = (Plan("x", "X", PanelType.PRIVATE, AccessType.REGULAR, 1, 1, 1, 100),)
        assert find_plan("x", catalog=catalog).price == 100
        assert find_plan("1gb", catalog=catalog) is None
