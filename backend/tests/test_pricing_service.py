"""Price resolution: base fallback, tiers, variation adjustments and grade modes."""

from decimal import Decimal

import pytest

from app.services.pricing_service import (
    ANOMALY_GRADE_CONFIGURATION,
    ANOMALY_PRICE,
    CustomGradeSelection,
    FlexibleGradeConfig,
    FullGrade,
    GradeConfigurationMissing,
    HalfGrade,
    CustomMix,
    PricingError,
    ProductPricing,
    TierPricing,
    VariationPricing,
    apply_percentage_discount,
    effective_tier_quantity,
    grade_mode_for,
    half_grade_pairs,
    next_tier_hint,
    resolve_price,
    resolve_tier,
    select_base_price,
    validate_price_tiers,
)


def _product(retail=5000, wholesale=4000, min_wholesale_qty=1):
    return ProductPricing(
        product_id=1,
        retail_price_cents=retail,
        wholesale_price_cents=wholesale,
        min_wholesale_qty=min_wholesale_qty,
        name="Sneaker",
    )


def _grade(pairs=(1, 2, 2, 1), sizes=("34", "35", "36", "37"), config=None):
    return VariationPricing(
        variation_id=7,
        product_id=1,
        is_grade=True,
        grade_sizes=tuple(sizes),
        grade_pairs=tuple(pairs),
        flexible_grade_config=config,
        label="Grade A",
    )


def _tiers():
    return [
        TierPricing(tier_order=1, tier_type="retail", min_quantity=1, price_cents=10000),
        TierPricing(tier_order=2, tier_type="gradual_wholesale", min_quantity=10, price_cents=9000),
        TierPricing(tier_order=3, tier_type="gradual_wholesale", min_quantity=50, price_cents=8000),
    ]


# -----------------------------------------------------------------------------
# Base price
# -----------------------------------------------------------------------------

def test_retail_mode_falls_back_to_wholesale_price():
    result = resolve_price(_product(retail=None, wholesale=5000), catalog_mode="retail", quantity=2)
    assert result.unit_price_cents == 5000
    assert result.line_total_cents == 10000
    assert result.anomalies == ()


def test_wholesale_mode_prefers_wholesale_price():
    assert select_base_price(_product(), "wholesale") == 4000


def test_wholesale_mode_falls_back_to_retail_when_zero():
    assert select_base_price(_product(retail=5000, wholesale=0), "wholesale") == 5000


def test_product_without_any_price_is_rejected():
    with pytest.raises(PricingError):
        select_base_price(_product(retail=None, wholesale=0), "retail")


def test_unknown_catalog_mode_is_rejected():
    with pytest.raises(PricingError):
        select_base_price(_product(), "b2b")


# -----------------------------------------------------------------------------
# Tiers
# -----------------------------------------------------------------------------

def test_tier_with_highest_reached_threshold_applies():
    assert resolve_tier(_tiers(), 12).price_cents == 9000
    assert resolve_tier(_tiers(), 50).price_cents == 8000
    assert resolve_tier(_tiers(), 5).price_cents == 10000


def test_no_tier_below_every_threshold():
    tiers = [TierPricing(tier_order=2, tier_type="gradual_wholesale", min_quantity=10, price_cents=9000)]
    assert resolve_tier(tiers, 3) is None
    assert resolve_tier([], 3) is None


def test_inactive_tiers_are_ignored():
    tiers = _tiers()
    tiers[2] = TierPricing(tier_order=3, tier_type="gradual_wholesale", min_quantity=50, price_cents=8000, is_active=False)
    assert resolve_tier(tiers, 60).price_cents == 9000


def test_tier_price_replaces_base_price():
    result = resolve_price(_product(), catalog_mode="retail", quantity=12, tiers=_tiers())
    assert result.unit_price_cents == 9000
    assert result.line_total_cents == 108000
    assert result.applied_tier.tier_order == 2


def test_effective_quantity_overrides_line_quantity_for_tiers():
    result = resolve_price(_product(), catalog_mode="retail", quantity=2, tiers=_tiers(), effective_quantity=55)
    assert result.unit_price_cents == 8000
    assert result.line_total_cents == 16000


def test_effective_tier_quantity_modes():
    assert effective_tier_quantity(3, mode="per_line", cart_quantity=20) == 3
    assert effective_tier_quantity(3, mode="cart_total", cart_quantity=20) == 20
    with pytest.raises(PricingError):
        effective_tier_quantity(3, mode="cart_total")
    with pytest.raises(PricingError):
        effective_tier_quantity(3, mode="per_store")


def test_validate_price_tiers_accepts_well_formed_table():
    validate_price_tiers(_tiers())


def test_validate_price_tiers_requires_exactly_one_retail_tier():
    tiers = _tiers() + [TierPricing(tier_order=4, tier_type="retail", min_quantity=1, price_cents=9900)]
    with pytest.raises(PricingError):
        validate_price_tiers(tiers)


def test_validate_price_tiers_requires_increasing_thresholds():
    tiers = [
        TierPricing(tier_order=1, tier_type="retail", min_quantity=1, price_cents=10000),
        TierPricing(tier_order=2, tier_type="gradual_wholesale", min_quantity=20, price_cents=9000),
        TierPricing(tier_order=3, tier_type="gradual_wholesale", min_quantity=20, price_cents=8000),
    ]
    with pytest.raises(PricingError):
        validate_price_tiers(tiers)


def test_next_tier_hint_reports_quantity_and_savings():
    hint = next_tier_hint(_tiers(), 8, 10000)
    assert hint["quantity_needed"] == 2
    assert hint["price_cents"] == 9000
    assert hint["unit_savings_cents"] == 1000
    assert next_tier_hint(_tiers(), 60, 8000) is None


# -----------------------------------------------------------------------------
# Variations
# -----------------------------------------------------------------------------

def test_variation_adjustment_is_added_to_unit_price():
    variation = VariationPricing(variation_id=3, product_id=1, price_adjustment_cents=750, color="Red", size="40")
    result = resolve_price(_product(), catalog_mode="retail", quantity=3, variation=variation)
    assert result.unit_price_cents == 5750
    assert result.line_total_cents == 17250


def test_negative_unit_price_is_clamped_and_flagged():
    variation = VariationPricing(variation_id=3, product_id=1, price_adjustment_cents=-6000)
    result = resolve_price(_product(), catalog_mode="retail", quantity=2, variation=variation)
    assert result.unit_price_cents == 0
    assert result.line_total_cents == 0
    assert ANOMALY_PRICE in result.anomalies


# -----------------------------------------------------------------------------
# Grades
# -----------------------------------------------------------------------------

def test_full_grade_charges_every_pair():
    result = resolve_price(_product(), catalog_mode="retail", quantity=1, variation=_grade())
    assert result.grade_mode == "full"
    assert result.quantity_priced == 6
    assert result.line_total_cents == 30000


def test_half_grade_pairs_round_down_per_size():
    assert half_grade_pairs([1, 2, 2, 1]) == [0, 1, 1, 0]
    assert half_grade_pairs([3, 4, 5]) == [1, 2, 2]


def test_half_grade_applies_discount_to_half_pairs():
    config = FlexibleGradeConfig(allow_half_grade=True, half_grade_discount_percentage=Decimal("10"))
    result = resolve_price(
        _product(), catalog_mode="retail", quantity=1, variation=_grade(config=config), grade_mode="half",
    )
    assert result.grade_mode == "half"
    assert result.quantity_priced == 2
    assert result.unit_price_cents == 4500
    assert result.line_total_cents == 9000
    assert result.anomalies == ()


def test_half_grade_without_pairs_falls_back_to_full():
    config = FlexibleGradeConfig(allow_half_grade=True, half_grade_discount_percentage=Decimal("10"))
    variation = _grade(pairs=(1, 1, 1), sizes=("34", "35", "36"), config=config)
    result = resolve_price(_product(), catalog_mode="retail", quantity=1, variation=variation, grade_mode="half")
    assert result.grade_mode == "full"
    assert result.line_total_cents == 15000
    assert ANOMALY_GRADE_CONFIGURATION in result.anomalies


def test_half_grade_not_enabled_falls_back_to_full():
    result = resolve_price(_product(), catalog_mode="retail", quantity=1, variation=_grade(), grade_mode="half")
    assert result.grade_mode == "full"
    assert result.line_total_cents == 30000
    assert result.anomalies == (ANOMALY_GRADE_CONFIGURATION,)


def test_custom_mix_prices_selected_pairs():
    config = FlexibleGradeConfig(allow_custom_mix=True, custom_mix_price_adjustment_cents=500)
    selection = CustomGradeSelection.from_pairs([("35", 2), ("36", 4)])
    result = resolve_price(
        _product(), catalog_mode="retail", quantity=1, variation=_grade(config=config),
        grade_mode="custom", custom_selection=selection,
    )
    assert result.grade_mode == "custom"
    assert result.unit_price_cents == 5500
    assert result.line_total_cents == 33000


def test_custom_mix_with_size_outside_grade_falls_back():
    config = FlexibleGradeConfig(allow_custom_mix=True, custom_mix_price_adjustment_cents=500)
    selection = CustomGradeSelection.from_pairs([("44", 2)])
    result = resolve_price(
        _product(), catalog_mode="retail", quantity=1, variation=_grade(config=config),
        grade_mode="custom", custom_selection=selection,
    )
    assert result.grade_mode == "full"
    assert ANOMALY_GRADE_CONFIGURATION in result.anomalies


def test_grade_mode_for_builds_each_variant():
    config = FlexibleGradeConfig(
        allow_half_grade=True,
        half_grade_discount_percentage=Decimal("15"),
        allow_custom_mix=True,
        custom_mix_price_adjustment_cents=200,
    )
    grade = _grade(config=config)
    assert grade_mode_for(grade, "full") == FullGrade(pairs=6)
    assert grade_mode_for(grade, "half") == HalfGrade(pairs=2, discount_percentage=Decimal("15"))
    selection = CustomGradeSelection.from_pairs([("34", 1)])
    assert grade_mode_for(grade, "custom", selection) == CustomMix(selection=selection, price_adjustment_cents=200)
    with pytest.raises(GradeConfigurationMissing):
        grade_mode_for(grade, "custom", None)


def test_grade_tier_quantity_defaults_to_priced_pairs():
    tiers = [
        TierPricing(tier_order=1, tier_type="retail", min_quantity=1, price_cents=5000),
        TierPricing(tier_order=2, tier_type="gradual_wholesale", min_quantity=6, price_cents=4500),
    ]
    result = resolve_price(_product(), catalog_mode="retail", quantity=1, variation=_grade(), tiers=tiers)
    assert result.unit_price_cents == 4500
    assert result.line_total_cents == 27000


def test_grade_without_pairs_cannot_be_priced():
    with pytest.raises(PricingError):
        resolve_price(_product(), catalog_mode="retail", quantity=1, variation=_grade(pairs=(0, 0), sizes=("1", "2")))


def test_percentage_discount_rounds_half_up():
    assert apply_percentage_discount(1001, 15) == 851
    assert apply_percentage_discount(5, 50) == 3
    assert apply_percentage_discount(999, Decimal("12.5")) == 874


@pytest.mark.parametrize("raw", [
    {"allow_half_grade": True, "half_grade_discount_percentage": True},
    {"allow_half_grade": True, "half_grade_discount_percentage": "ten"},
    {"allow_custom_mix": True, "custom_mix_price_adjustment_cents": "abc"},
    {"allow_custom_mix": True, "custom_mix_min_pairs": 2.5},
    ["not", "an", "object"],
])
def test_malformed_flexible_config_is_ignored(raw):
    assert FlexibleGradeConfig.from_dict(raw) is None


def test_flexible_config_reads_well_formed_values():
    config = FlexibleGradeConfig.from_dict({
        "allow_half_grade": True,
        "half_grade_discount_percentage": 12.5,
        "allow_custom_mix": True,
        "custom_mix_price_adjustment_cents": -300,
        "custom_mix_min_pairs": 4,
    })
    assert config.half_grade_discount_percentage == Decimal("12.5")
    assert config.custom_mix_price_adjustment_cents == -300
    assert config.custom_mix_min_pairs == 4


def test_failed_grade_computation_reprices_tier_on_full_pairs():
    # An unreadable discount only surfaces when the half grade is computed
    config = FlexibleGradeConfig(allow_half_grade=True, half_grade_discount_percentage="abc")
    tiers = [
        TierPricing(tier_order=1, tier_type="retail", min_quantity=1, price_cents=5000),
        TierPricing(tier_order=2, tier_type="gradual_wholesale", min_quantity=6, price_cents=4500),
    ]
    result = resolve_price(
        _product(), catalog_mode="retail", quantity=1, variation=_grade(config=config),
        tiers=tiers, grade_mode="half",
    )
    assert result.grade_mode == "full"
    assert result.quantity_priced == 6
    assert result.applied_tier.min_quantity == 6
    assert result.unit_price_cents == 4500
    assert result.line_total_cents == 27000
    assert ANOMALY_GRADE_CONFIGURATION in result.anomalies
