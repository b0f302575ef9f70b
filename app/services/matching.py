from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from loguru import logger
from sqlmodel import SQLModel, Field

from app.core.config import MatchingConfig
from app.db.schema import Supplier
from app.services.catalog import MaterialCatalog, SupplierDirectory


class SupplierMatch(SQLModel):
    supplier_id: UUID
    supplier_name: str
    score: float
    reasons: List[str] = Field(default_factory=list)


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


# ==========================================================================
# PLUGGABLE STRATEGIES
# ==========================================================================


class LocationPolicy:
    """Decides whether a supplier can serve a delivery location."""

    def matches(self, delivery_location: Optional[str], supplier: Supplier) -> bool:
        raise NotImplementedError


class SubstringLocationPolicy(LocationPolicy):
    """
    Case-insensitive string match in either direction between the delivery
    location and the supplier's location + physical address.

    '12 Main St, Harare' matches a supplier located in 'Harare'.
    A blank delivery location matches every supplier.
    """

    def matches(self, delivery_location: Optional[str], supplier: Supplier) -> bool:
        wanted = _normalize(delivery_location)
        if not wanted:
            return True

        candidates = [
            _normalize(part) for part in (supplier.location, supplier.physical_address) if part
        ]
        if not candidates:
            return False

        combined = " ".join(candidates)
        if wanted in combined or combined in wanted:
            return True
        return any(c in wanted for c in candidates)


class DeliveryRadiusPolicy(LocationPolicy):
    """
    Geo filter on `Supplier.delivery_radius_km`.

    Needs a geocoder that turns addresses into coordinates; none is wired in yet,
    so this policy refuses to run rather than guess.
    """

    def __init__(self, geocoder=None):
        self.geocoder = geocoder

    def matches(self, delivery_location: Optional[str], supplier: Supplier) -> bool:
        raise NotImplementedError(
            "Delivery-radius matching requires a geocoder; use SubstringLocationPolicy.")


class ResponseRateScorer:
    """
    Normalized (0-1) responsiveness signal for a supplier.
    The metric is not collected yet, so the default scorer abstains.
    """

    def score(self, supplier: Supplier) -> Optional[float]:
        return None


# ==========================================================================
# MATCHER
# ==========================================================================


class SupplierMatcher:
    """
    Selects a bounded, ranked set of suppliers to invite to an RFQ.

    Filters: category intersection, then location policy.
    Score:   tier_weight * tier score
           + rating_weight * rating / 5
           + response_rate_weight * response-rate score
    Ties are broken by supplier name so results are stable.
    """

    def __init__(
        self,
        directory: SupplierDirectory,
        catalog: MaterialCatalog,
        config: MatchingConfig,
        location_policy: Optional[LocationPolicy] = None,
        response_rate_scorer: Optional[ResponseRateScorer] = None,
    ):
        self.directory = directory
        self.catalog = catalog
        self.config = config
        self.location_policy = location_policy or SubstringLocationPolicy()
        self.response_rate_scorer = response_rate_scorer or ResponseRateScorer()

    def categories_for_items(self, material_keys: Iterable[str]) -> List[str]:
        """Supplier category labels covering the requested materials."""
        labels: List[str] = []
        for category in self.catalog.categories_for(material_keys):
            label = self.config.category_map.get(category)
            if label and label not in labels:
                labels.append(label)
        return labels

    def score(self, supplier: Supplier) -> Tuple[float, List[str]]:
        reasons: List[str] = []
        tier = supplier.verification_status.value if supplier.verification_status else "unverified"

        tier_score = self.config.tier_scores.get(tier, 0.0)
        total = self.config.tier_weight * tier_score
        if tier_score > 0:
            reasons.append(f"Verified: {tier}")

        if supplier.rating:
            rating_score = min(max(supplier.rating / 5.0, 0.0), 1.0)
            total += self.config.rating_weight * rating_score
            reasons.append(f"Rating {supplier.rating:.1f}")

        response_rate = self.response_rate_scorer.score(supplier)
        if response_rate is not None:
            total += self.config.response_rate_weight * response_rate
            reasons.append(f"Response rate {response_rate:.0%}")

        return total, reasons

    def match_suppliers(
        self,
        categories: Iterable[str],
        delivery_location: Optional[str],
        cap: Optional[int] = None,
    ) -> List[SupplierMatch]:
        limit = self.config.cap if cap is None else cap
        wanted = set(categories)
        if limit <= 0 or not wanted:
            return []

        matches: List[SupplierMatch] = []
        for supplier in self.directory.active_suppliers():
            hits = sorted(wanted.intersection(supplier.material_categories or []))
            if not hits:
                continue
            if not self.location_policy.matches(delivery_location, supplier):
                continue

            score, reasons = self.score(supplier)
            matches.append(SupplierMatch(
                supplier_id=supplier.id,
                supplier_name=supplier.name,
                score=round(score, 4),
                reasons=[f"Categories: {', '.join(hits)}"] + reasons
            ))

        matches.sort(key=lambda m: (-m.score, m.supplier_name.lower()))
        selected = matches[:limit]

        logger.info(
            f"Matched {len(selected)} of {len(matches)} eligible suppliers "
            f"for categories={sorted(wanted)} location='{delivery_location or ''}'"
        )
        return selected
