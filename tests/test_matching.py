"""Tests for supplier matching and ranking."""

import pytest

from app.core.config import MatchingConfig
from app.db.schema import Supplier, VerificationTier
from app.services.catalog import MaterialCatalog, SupplierDirectory
from app.services.matching import (
    DeliveryRadiusPolicy, ResponseRateScorer, SubstringLocationPolicy, SupplierMatcher
)

CEMENT = ["Cement & Concrete"]


def _matcher(session, **config):
    return SupplierMatcher(SupplierDirectory(session), MaterialCatalog(), MatchingConfig(**config))


class TestCategoriesForItems:
    def test_maps_catalog_categories_to_supplier_labels(self, matcher):
        labels = matcher.categories_for_items(["cement_50kg", "sand_river", "stone_19mm"])
        assert labels == ["Cement & Concrete", "Aggregates & Sand"]

    def test_unknown_materials_are_ignored(self, matcher):
        assert matcher.categories_for_items(["no_such_thing"]) == []


class TestMatchSuppliers:
    def test_trusted_supplier_ranks_above_verified(self, matcher, suppliers):
        matches = matcher.match_suppliers(CEMENT, "12 Main St, Harare")
        ids = [m.supplier_id for m in matches]
        assert ids == [suppliers["s1"].id, suppliers["s2"].id]
        assert matches[0].score > matches[1].score

    def test_score_combines_tier_and_rating(self, matcher, suppliers):
        matches = matcher.match_suppliers(CEMENT, "Harare")
        # trusted (2) + 4.5/5 ; verified (1) + 4.0/5
        assert matches[0].score == pytest.approx(2.9)
        assert matches[1].score == pytest.approx(1.8)

    def test_filters_category_location_and_inactive(self, matcher, suppliers):
        ids = {m.supplier_id for m in matcher.match_suppliers(CEMENT, "Harare")}
        assert suppliers["roofing"].id not in ids
        assert suppliers["bulawayo"].id not in ids
        assert suppliers["inactive"].id not in ids

    def test_blank_location_disables_location_filter(self, matcher, suppliers):
        matches = matcher.match_suppliers(CEMENT, "")
        assert matches[0].supplier_id == suppliers["bulawayo"].id
        assert len(matches) == 3

    def test_no_matches_is_empty_list(self, matcher, suppliers):
        assert matcher.match_suppliers(["Plumbing Supplies"], "Harare") == []
        assert matcher.match_suppliers([], "Harare") == []

    def test_result_never_exceeds_cap(self, session, suppliers):
        assert len(_matcher(session, cap=1).match_suppliers(CEMENT, None)) == 1
        assert _matcher(session, cap=0).match_suppliers(CEMENT, None) == []

    def test_cap_argument_overrides_config(self, matcher, suppliers):
        assert len(matcher.match_suppliers(CEMENT, None, cap=2)) == 2

    def test_weights_are_injected(self, session, suppliers):
        # Rating only: the 5.0-rated Bulawayo depot leads when location is ignored.
        matcher = _matcher(session, tier_weight=0.0, rating_weight=1.0)
        matches = matcher.match_suppliers(CEMENT, None)
        assert matches[0].supplier_id == suppliers["bulawayo"].id
        assert matches[1].supplier_id == suppliers["s1"].id

    def test_ties_break_by_name(self, session):
        for name in ("Zimbuild", "Acme Cement"):
            session.add(Supplier(
                name=name, location="Gweru", material_categories=CEMENT,
                verification_status=VerificationTier.VERIFIED, rating=4.0,
            ))
        session.commit()

        matches = _matcher(session).match_suppliers(CEMENT, "Gweru")
        assert [m.supplier_name for m in matches] == ["Acme Cement", "Zimbuild"]

    def test_reasons_explain_the_score(self, matcher, suppliers):
        top = matcher.match_suppliers(CEMENT, "Harare")[0]
        assert "Categories: Cement & Concrete" in top.reasons
        assert "Verified: trusted" in top.reasons
        assert "Rating 4.5" in top.reasons

    def test_response_rate_scorer_adds_weighted_term(self, session, suppliers):
        class Always(ResponseRateScorer):
            def score(self, supplier):
                return 1.0

        matcher = SupplierMatcher(
            SupplierDirectory(session), MaterialCatalog(),
            MatchingConfig(response_rate_weight=0.5), response_rate_scorer=Always(),
        )
        top = matcher.match_suppliers(CEMENT, "Harare")[0]
        assert top.score == pytest.approx(3.4)


class TestLocationPolicies:
    def test_substring_matches_either_direction(self):
        policy = SubstringLocationPolicy()
        supplier = Supplier(name="x", location="Harare")
        assert policy.matches("12 Main St, Harare", supplier)
        assert policy.matches("harare", supplier)
        assert not policy.matches("Mutare", supplier)

    def test_substring_checks_physical_address(self):
        policy = SubstringLocationPolicy()
        supplier = Supplier(name="x", location="Zimbabwe", physical_address="8 Khami Road, Bulawayo")
        assert policy.matches("Bulawayo", supplier)

    def test_supplier_without_location_never_matches_a_location(self):
        assert not SubstringLocationPolicy().matches("Harare", Supplier(name="x"))

    def test_delivery_radius_is_not_available_yet(self):
        with pytest.raises(NotImplementedError):
            DeliveryRadiusPolicy().matches("Harare", Supplier(name="x", location="Harare"))
