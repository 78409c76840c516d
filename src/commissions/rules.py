"""Advanced commission rule engine.

Evaluation is pure: rules and the deal context come in as plain
dataclasses, a :class:`RuleEvaluation` comes out. Nothing here rounds;
the calculator rounds the final total once.

Rules run in ascending priority. Each contributes according to its
``calculation_type``: ``cumulative`` adds to the running total,
``replace`` overwrites it and ``max`` keeps the larger of the two.
Accelerators always scale the running total.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from core.exceptions import DomainValidationError
from core.money import HUNDRED, ZERO, percentage, quantize_money, to_decimal

BASE_RATE = "base_rate"
TIERED = "tiered"
BONUS = "bonus"
ACCELERATOR = "accelerator"
PRODUCT_RATE = "product_rate"
RULE_TYPES = (BASE_RATE, TIERED, BONUS, ACCELERATOR, PRODUCT_RATE)

CUMULATIVE = "cumulative"
REPLACE = "replace"
MAX = "max"
CALCULATION_TYPES = (CUMULATIVE, REPLACE, MAX)

GRADUATED = "graduated"
CLIFF = "cliff"

DEFAULT_CALCULATION_TYPE = {PRODUCT_RATE: REPLACE}
DEFAULT_ACCELERATOR_MULTIPLIER = Decimal("1.5")


@dataclass(frozen=True)
class TierSpec:
    threshold_min: Decimal
    threshold_max: Decimal | None
    rate: Decimal
    tier_type: str = GRADUATED

    @classmethod
    def from_dict(cls, data: dict) -> "TierSpec":
        upper = data.get("threshold_max")
        return cls(
            threshold_min=to_decimal(data.get("threshold_min")),
            threshold_max=None if upper in (None, "") else to_decimal(upper),
            rate=to_decimal(data.get("rate"), default=None),
            tier_type=data.get("type") or data.get("tier_type") or GRADUATED,
        )

    def contains(self, value: Decimal) -> bool:
        return value >= self.threshold_min and (self.threshold_max is None or value < self.threshold_max)


@dataclass(frozen=True)
class RuleSpec:
    id: str
    name: str
    rule_type: str
    priority: int = 100
    config: dict = field(default_factory=dict)
    calculation_type: str = ""
    stops_processing: bool = False
    tiers: tuple[TierSpec, ...] = ()

    @classmethod
    def from_model(cls, rule) -> "RuleSpec":
        tier_rows = [] if rule._state.adding else list(rule.tiers.all())
        if tier_rows:
            tiers = tuple(
                TierSpec(t.threshold_min, t.threshold_max, t.rate, t.tier_type)
                for t in sorted(tier_rows, key=lambda t: (t.position, t.threshold_min))
            )
        else:
            tiers = tuple(TierSpec.from_dict(t) for t in (rule.config or {}).get("tiers", []))
        return cls(
            id=str(rule.pk),
            name=rule.name,
            rule_type=rule.rule_type,
            priority=rule.priority,
            config=dict(rule.config or {}),
            calculation_type=rule.calculation_type,
            stops_processing=rule.stops_processing,
            tiers=tiers,
        )

    @property
    def mode(self) -> str:
        return self.calculation_type or DEFAULT_CALCULATION_TYPE.get(self.rule_type, CUMULATIVE)


@dataclass(frozen=True)
class DealContext:
    """Inputs a rule may look at. ``prior_sales`` excludes the deal itself."""

    amount: Decimal
    stage: str = ""
    product_type: str = ""
    product_category: str = ""
    prior_sales: Decimal = ZERO
    quota: Decimal = ZERO

    @property
    def attainment_pct(self) -> Decimal:
        return percentage(self.prior_sales, self.quota)


@dataclass(frozen=True)
class AppliedRule:
    rule_id: str
    rule_name: str
    rule_type: str
    contributed_amount: Decimal

    def as_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "rule_type": self.rule_type,
            "contributed_amount": str(quantize_money(self.contributed_amount)),
        }


@dataclass
class RuleEvaluation:
    total: Decimal = ZERO
    applied: list[AppliedRule] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return bool(self.applied)

    def as_dict(self) -> dict:
        return {
            "total": str(quantize_money(self.total)),
            "applied_rules": [a.as_dict() for a in self.applied],
        }


def _norm(value) -> str:
    return str(value or "").strip().lower().replace(" ", "_")


def _base_rate(rule: RuleSpec, ctx: DealContext, running: Decimal):
    return ctx.amount * to_decimal(rule.config.get("rate"))


def _tiered(rule: RuleSpec, ctx: DealContext, running: Decimal):
    tiers = rule.tiers or tuple(TierSpec.from_dict(t) for t in rule.config.get("tiers", []))
    if not tiers or ctx.amount <= ZERO:
        return None
    if rule.config.get("trigger", "cumulative_sales") == "attainment":
        if ctx.quota <= ZERO:
            return None
        low = ctx.prior_sales / ctx.quota * HUNDRED
        high = (ctx.prior_sales + ctx.amount) / ctx.quota * HUNDRED
        scale = ctx.quota / HUNDRED
    else:
        low, high, scale = ctx.prior_sales, ctx.prior_sales + ctx.amount, Decimal("1")

    amount, matched = ZERO, False
    for tier in tiers:
        if tier.tier_type == CLIFF:
            if tier.contains(high):
                amount += ctx.amount * tier.rate
                matched = True
            continue
        upper = high if tier.threshold_max is None else min(high, tier.threshold_max)
        overlap = upper - max(low, tier.threshold_min)
        if overlap > ZERO:
            amount += overlap * scale * tier.rate
            matched = True
    return amount if matched else None


def _accelerator(rule: RuleSpec, ctx: DealContext, running: Decimal):
    threshold = to_decimal(rule.config.get("threshold"))
    if ctx.attainment_pct <= threshold:
        return None
    multiplier = to_decimal(rule.config.get("multiplier"), DEFAULT_ACCELERATOR_MULTIPLIER)
    return running * (multiplier - 1)


def _bonus(rule: RuleSpec, ctx: DealContext, running: Decimal):
    conditions = rule.config.get("conditions") or {}
    if "min_amount" in conditions and ctx.amount < to_decimal(conditions["min_amount"]):
        return None
    if conditions.get("product_types"):
        if _norm(ctx.product_type) not in {_norm(p) for p in conditions["product_types"]}:
            return None
    if conditions.get("stages"):
        if _norm(ctx.stage) not in {_norm(s) for s in conditions["stages"]}:
            return None
    if "min_attainment" in conditions and ctx.attainment_pct < to_decimal(conditions["min_attainment"]):
        return None
    return to_decimal(rule.config.get("amount"))


def _product_rate(rule: RuleSpec, ctx: DealContext, running: Decimal):
    product, category = _norm(ctx.product_type), _norm(ctx.product_category)
    for entry in rule.config.get("products", []):
        if (product and _norm(entry.get("product_type")) == product) or (
            category and _norm(entry.get("category")) == category
        ):
            return ctx.amount * to_decimal(entry.get("rate"))
    if rule.config.get("default_rate") not in (None, ""):
        return ctx.amount * to_decimal(rule.config["default_rate"])
    return None


_CONTRIBUTIONS = {
    BASE_RATE: _base_rate,
    TIERED: _tiered,
    ACCELERATOR: _accelerator,
    BONUS: _bonus,
    PRODUCT_RATE: _product_rate,
}


def evaluate_rules(rules, context: DealContext) -> RuleEvaluation:
    """Apply ``rules`` in priority order and return the unrounded total."""
    result = RuleEvaluation()
    for rule in sorted(rules, key=lambda r: (r.priority, r.id)):
        handler = _CONTRIBUTIONS.get(rule.rule_type)
        if handler is None:
            continue
        contribution = handler(rule, context, result.total)
        if contribution is None:
            continue

        before = result.total
        if rule.rule_type == ACCELERATOR or rule.mode == CUMULATIVE:
            result.total = before + contribution
        elif rule.mode == REPLACE:
            result.total = contribution
        elif rule.mode == MAX:
            result.total = max(before, contribution)
        result.applied.append(
            AppliedRule(
                rule_id=rule.id,
                rule_name=rule.name,
                rule_type=rule.rule_type,
                contributed_amount=result.total - before,
            )
        )
        if rule.stops_processing:
            break
    return result


def _require_rate(value, field_name: str) -> Decimal:
    try:
        rate = to_decimal(value, default=None)
    except ValueError:
        rate = None
    if rate is None or rate < ZERO or rate > Decimal("1"):
        raise DomainValidationError(field_name, "Un taux entre 0 et 1 est requis.")
    return rate


def validate_tiers(tiers, field_name: str = "config.tiers") -> list[TierSpec]:
    if not tiers:
        raise DomainValidationError(field_name, "Au moins un palier est requis.")
    parsed = []
    for index, raw in enumerate(tiers):
        entry = f"{field_name}[{index}]"
        try:
            tier = TierSpec.from_dict(raw) if isinstance(raw, dict) else raw
        except ValueError:
            raise DomainValidationError(entry, "Seuils invalides.")
        _require_rate(tier.rate, f"{entry}.rate")
        if tier.threshold_min < ZERO:
            raise DomainValidationError(f"{entry}.threshold_min", "Le seuil minimum doit etre positif.")
        if tier.threshold_max is not None and tier.threshold_max <= tier.threshold_min:
            raise DomainValidationError(f"{entry}.threshold_max", "Le seuil maximum doit depasser le minimum.")
        if tier.tier_type not in (GRADUATED, CLIFF):
            raise DomainValidationError(f"{entry}.type", "Type attendu: 'graduated' ou 'cliff'.")
        parsed.append(tier)
    ordered = sorted(parsed, key=lambda t: t.threshold_min)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.threshold_max is None or current.threshold_min < previous.threshold_max:
            raise DomainValidationError(field_name, "Les paliers ne doivent pas se chevaucher.")
    return ordered


def validate_rule_config(rule_type: str, config: dict | None, tiers=None) -> dict:
    """Check ``config`` against what ``rule_type`` needs; returns it unchanged."""
    config = config or {}
    if rule_type not in RULE_TYPES:
        raise DomainValidationError("rule_type", f"Type attendu parmi: {', '.join(RULE_TYPES)}.")
    if rule_type == BASE_RATE:
        _require_rate(config.get("rate"), "config.rate")
    elif rule_type == TIERED:
        validate_tiers(tiers if tiers else config.get("tiers"))
        if config.get("trigger", "cumulative_sales") not in ("cumulative_sales", "attainment"):
            raise DomainValidationError("config.trigger", "Declencheur attendu: 'cumulative_sales' ou 'attainment'.")
    elif rule_type == ACCELERATOR:
        try:
            threshold = to_decimal(config.get("threshold"), default=None)
            multiplier = to_decimal(config.get("multiplier"), DEFAULT_ACCELERATOR_MULTIPLIER)
        except ValueError:
            raise DomainValidationError("config", "Seuil ou multiplicateur invalide.")
        if threshold is None or threshold < ZERO:
            raise DomainValidationError("config.threshold", "Un seuil d'atteinte (%) positif est requis.")
        if multiplier < Decimal("1"):
            raise DomainValidationError("config.multiplier", "Le multiplicateur doit etre superieur ou egal a 1.")
    elif rule_type == BONUS:
        try:
            amount = to_decimal(config.get("amount"), default=None)
        except ValueError:
            amount = None
        if amount is None or amount < ZERO:
            raise DomainValidationError("config.amount", "Un montant de bonus positif est requis.")
    elif rule_type == PRODUCT_RATE:
        products = config.get("products") or []
        if not products and config.get("default_rate") in (None, ""):
            raise DomainValidationError("config.products", "Au moins un produit ou un taux par defaut est requis.")
        for index, entry in enumerate(products):
            if not (entry.get("product_type") or entry.get("category")):
                raise DomainValidationError(f"config.products[{index}]", "product_type ou category requis.")
            _require_rate(entry.get("rate"), f"config.products[{index}].rate")
        if config.get("default_rate") not in (None, ""):
            _require_rate(config["default_rate"], "config.default_rate")
    return config


RULE_TEMPLATES = {
    "standard_tiered": {
        "name": "Standard Tiered Commission",
        "description": "3% up to 50k, 5% to 100k, 7% to 200k, 10% beyond.",
        "rule_type": TIERED,
        "priority": 100,
        "config": {
            "trigger": "cumulative_sales",
            "tiers": [
                {"threshold_min": "0", "threshold_max": "50000", "rate": "0.03", "type": GRADUATED},
                {"threshold_min": "50000", "threshold_max": "100000", "rate": "0.05", "type": GRADUATED},
                {"threshold_min": "100000", "threshold_max": "200000", "rate": "0.07", "type": GRADUATED},
                {"threshold_min": "200000", "threshold_max": None, "rate": "0.10", "type": GRADUATED},
            ],
        },
    },
    "accelerator_package": {
        "name": "Quota Accelerator",
        "description": "1.5x commission once quota attainment passes 100%.",
        "rule_type": ACCELERATOR,
        "priority": 900,
        "config": {"threshold": "100", "multiplier": "1.5"},
    },
    "enterprise_sales": {
        "name": "Enterprise Deal Bonus",
        "description": "Flat bonus for closed deals of 100k and above.",
        "rule_type": BONUS,
        "priority": 500,
        "config": {"amount": "1000", "conditions": {"min_amount": "100000", "stages": ["closed_won"]}},
    },
    "product_specific": {
        "name": "Product Specific Rates",
        "description": "Per product rates with a default for everything else.",
        "rule_type": PRODUCT_RATE,
        "priority": 50,
        "config": {
            "products": [
                {"product_type": "software", "rate": "0.10"},
                {"product_type": "services", "rate": "0.05"},
                {"category": "hardware", "rate": "0.03"},
            ],
            "default_rate": "0.04",
        },
    },
}


def dry_run_rule(rule: RuleSpec, sample: dict) -> dict:
    """Evaluate one rule against a hand-written deal, without touching data."""
    try:
        context = DealContext(
            amount=to_decimal(sample.get("amount")),
            stage=sample.get("stage") or "closed_won",
            product_type=sample.get("product_type") or "",
            product_category=sample.get("product_category") or "",
            prior_sales=to_decimal(sample.get("prior_sales")),
            quota=to_decimal(sample.get("quota")),
        )
    except ValueError:
        raise DomainValidationError("sample", "Montants invalides.")
    if context.amount <= ZERO:
        raise DomainValidationError("sample.amount", "Le montant doit etre superieur a 0.")
    evaluation = evaluate_rules([rule], context)
    return {
        "rule_id": rule.id,
        "applies": evaluation.matched,
        "attainment_pct": str(quantize_money(context.attainment_pct)),
        **evaluation.as_dict(),
    }
