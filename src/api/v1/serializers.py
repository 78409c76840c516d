"""DRF serializers for the quota and commission API."""
from __future__ import annotations

from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from accounts.models import User
from commissions.models import Commission, CommissionApproval, CommissionRule, CommissionRuleTier
from commissions.rules import RULE_TYPES, validate_rule_config
from commissions.state_machine import CommissionAction
from core.exceptions import DomainValidationError
from targets.models import AllocationPattern, AllocationPeriod, Target
from targets.services import ConflictDecision, ConflictPolicy, TargetSpec


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class MeSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "email", "first_name", "last_name", "role", "company", "team", "hire_date"]
        read_only_fields = fields


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Extends JWT token response to include user profile data."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = user.role
        token["company_id"] = str(user.company_id) if user.company_id else None
        return token

    def validate(self, attrs):
        data = super().validate(attrs)
        data["user"] = MeSerializer(self.user).data
        return data


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------

class TargetSerializer(serializers.ModelSerializer):
    user_name = serializers.CharField(source="user.get_full_name", read_only=True)
    children_count = serializers.SerializerMethodField()

    class Meta:
        model = Target
        fields = [
            "id", "name", "user", "user_name", "company", "period_type",
            "period_start", "period_end", "quota_amount", "commission_rate",
            "parent_target", "distribution_method", "distribution_config",
            "role", "team", "allocation_pattern", "is_active", "deactivated_at", "children_count",
            "created_by", "created_at", "updated_at",
        ]
        read_only_fields = fields

    def get_children_count(self, obj):
        return obj.children.count()


class TargetCreateSerializer(serializers.Serializer):
    """Batch creation: explicit users, a role, a team or the whole company."""

    user_ids = serializers.ListField(child=serializers.UUIDField(), required=False, allow_empty=True)
    role = serializers.ChoiceField(choices=User.Role.choices, required=False, allow_blank=True)
    team = serializers.UUIDField(required=False, allow_null=True)
    quota_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    commission_rate = serializers.DecimalField(max_digits=7, decimal_places=6)
    period_start = serializers.DateField()
    period_end = serializers.DateField()
    period_type = serializers.ChoiceField(choices=Target.PeriodType.choices, required=False, allow_blank=True)
    distribution_method = serializers.ChoiceField(
        choices=[c for c in Target.DistributionMethod.values if c != Target.DistributionMethod.CHILD],
        default=Target.DistributionMethod.ONE_TIME,
    )
    distribution_config = serializers.DictField(required=False, default=dict)
    custom_breakdown = serializers.ListField(child=serializers.DictField(), required=False)
    allocation_pattern = serializers.UUIDField(required=False, allow_null=True)
    conflict_policy = serializers.ChoiceField(choices=ConflictPolicy.CHOICES, default=ConflictPolicy.SKIP)

    def validate(self, attrs):
        if attrs.get("period_end") < attrs.get("period_start"):
            raise serializers.ValidationError(
                {"period_end": "La date de fin doit etre posterieure ou egale a la date de debut."}
            )
        return attrs

    def validate_allocation_pattern(self, value):
        request = self.context.get("request")
        if value is None or request is None:
            return value
        if not AllocationPattern.objects.filter(
            pk=value, company_id=request.user.company_id, is_active=True
        ).exists():
            raise serializers.ValidationError("Modele de repartition introuvable ou inactif.")
        return value

    def to_spec(self) -> TargetSpec:
        data = self.validated_data
        config = dict(data.get("distribution_config") or {})
        if data.get("custom_breakdown") is not None:
            config["custom_breakdown"] = [
                {key: str(value) for key, value in entry.items()} for entry in data["custom_breakdown"]
            ]
        if data.get("allocation_pattern"):
            config["allocation_pattern_id"] = str(data["allocation_pattern"])
        return TargetSpec(
            quota_amount=data["quota_amount"],
            commission_rate=data["commission_rate"],
            period_start=data["period_start"],
            period_end=data["period_end"],
            period_type=data.get("period_type") or "",
            distribution_method=data["distribution_method"],
            distribution_config=config,
            role=data.get("role") or "",
            team_id=str(data["team"]) if data.get("team") else None,
        )


class TargetUpdateSerializer(serializers.Serializer):
    quota_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    commission_rate = serializers.DecimalField(max_digits=7, decimal_places=6, required=False)
    name = serializers.CharField(max_length=60, required=False, allow_blank=True)


class AllocationPeriodSerializer(serializers.ModelSerializer):
    class Meta:
        model = AllocationPeriod
        fields = ["id", "name", "period_start", "period_end", "allocation_pct", "notes", "sort_order"]
        read_only_fields = ["id"]
        extra_kwargs = {"sort_order": {"required": False}}


class AllocationPatternSerializer(serializers.ModelSerializer):
    periods = AllocationPeriodSerializer(many=True, read_only=True)
    targets_count = serializers.SerializerMethodField()

    class Meta:
        model = AllocationPattern
        fields = [
            "id", "company", "name", "description", "base_period_type", "is_active",
            "periods", "targets_count", "created_by", "created_at", "updated_at",
        ]
        read_only_fields = fields

    def get_targets_count(self, obj):
        return obj.targets.filter(is_active=True).count()


class AllocationPatternWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True)
    base_period_type = serializers.ChoiceField(choices=Target.PeriodType.choices, required=False)
    periods = AllocationPeriodSerializer(many=True)

    def validate_periods(self, value):
        if not value:
            raise serializers.ValidationError("Au moins une periode est requise.")
        return value


class ConflictDecisionSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    action = serializers.ChoiceField(choices=ConflictDecision.CHOICES)


class ResolveConflictsSerializer(TargetCreateSerializer):
    decisions = ConflictDecisionSerializer(many=True)


# ---------------------------------------------------------------------------
# Commissions
# ---------------------------------------------------------------------------

class CommissionApprovalSerializer(serializers.ModelSerializer):
    class Meta:
        model = CommissionApproval
        fields = [
            "id", "action", "performed_by", "actor_label", "performed_at",
            "previous_status", "new_status", "notes", "metadata",
        ]
        read_only_fields = fields


class CommissionSerializer(serializers.ModelSerializer):
    deal_name = serializers.CharField(source="deal.name", read_only=True)
    user_name = serializers.CharField(source="user.get_full_name", read_only=True)

    class Meta:
        model = Commission
        fields = [
            "id", "deal", "deal_name", "user", "user_name", "company", "target",
            "target_name", "period_start", "period_end", "quota_amount",
            "actual_amount", "attainment_pct", "commission_rate",
            "commission_amount", "base_commission", "original_amount",
            "status", "calculation_details", "calculated_at", "calculated_by",
            "reviewed_at", "reviewed_by", "approved_at", "approved_by",
            "paid_at", "payment_reference", "adjustment_reason", "notes",
            "created_at", "updated_at",
        ]
        read_only_fields = fields


class CommissionActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=CommissionAction.USER_ACTIONS)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    adjustment_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)
    adjustment_reason = serializers.CharField(required=False, allow_blank=True, default="")
    payment_reference = serializers.CharField(required=False, allow_blank=True, default="")
    payment_date = serializers.DateField(required=False, allow_null=True)


class BulkActionSerializer(serializers.Serializer):
    commission_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    action = serializers.ChoiceField(choices=CommissionAction.BULK_ACTIONS)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class MarkPaidSerializer(serializers.Serializer):
    commission_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    payment_reference = serializers.CharField()
    payment_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class CalculateSerializer(serializers.Serializer):
    deal_id = serializers.UUIDField()
    recalculate = serializers.BooleanField(default=False)
    use_advanced_rules = serializers.BooleanField(required=False, allow_null=True, default=None)


class RecalculateSerializer(serializers.Serializer):
    user_ids = serializers.ListField(child=serializers.UUIDField(), required=False)
    period_start = serializers.DateField(required=False, allow_null=True)
    period_end = serializers.DateField(required=False, allow_null=True)
    run_async = serializers.BooleanField(default=False)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class CommissionRuleTierSerializer(serializers.ModelSerializer):
    class Meta:
        model = CommissionRuleTier
        fields = ["id", "position", "threshold_min", "threshold_max", "rate", "tier_type"]
        read_only_fields = ["id"]


class CommissionRuleSerializer(serializers.ModelSerializer):
    tiers = CommissionRuleTierSerializer(many=True, required=False)

    class Meta:
        model = CommissionRule
        fields = [
            "id", "company", "name", "description", "rule_type", "priority",
            "config", "calculation_type", "stops_processing", "effective_from",
            "effective_to", "is_active", "tiers", "created_by", "created_at", "updated_at",
        ]
        read_only_fields = ["id", "company", "created_by", "created_at", "updated_at"]

    def validate(self, attrs):
        instance = self.instance
        rule_type = attrs.get("rule_type", getattr(instance, "rule_type", None))
        config = attrs.get("config", getattr(instance, "config", {}))
        tiers = attrs.get("tiers")
        if rule_type not in RULE_TYPES:
            raise serializers.ValidationError({"rule_type": "Type de regle inconnu."})
        effective_from = attrs.get("effective_from", getattr(instance, "effective_from", None))
        effective_to = attrs.get("effective_to", getattr(instance, "effective_to", None))
        if effective_from and effective_to and effective_to < effective_from:
            raise serializers.ValidationError(
                {"effective_to": "La date de fin doit etre posterieure a la date de debut."}
            )
        if tiers is None and instance is not None:
            tiers = [
                {
                    "threshold_min": t.threshold_min,
                    "threshold_max": t.threshold_max,
                    "rate": t.rate,
                    "tier_type": t.tier_type,
                }
                for t in instance.tiers.all()
            ]
        try:
            validate_rule_config(rule_type, config, tiers=tiers or None)
        except DomainValidationError as exc:
            raise serializers.ValidationError(exc.as_dict())
        return attrs

    def _write_tiers(self, rule, tiers):
        rule.tiers.all().delete()
        for position, tier in enumerate(sorted(tiers, key=lambda t: t["threshold_min"])):
            tier = dict(tier)
            tier["position"] = position
            CommissionRuleTier.objects.create(rule=rule, **tier)

    def create(self, validated_data):
        tiers = validated_data.pop("tiers", None)
        rule = CommissionRule.objects.create(**validated_data)
        if tiers:
            self._write_tiers(rule, tiers)
        return rule

    def update(self, instance, validated_data):
        tiers = validated_data.pop("tiers", None)
        rule = super().update(instance, validated_data)
        if tiers is not None:
            self._write_tiers(rule, tiers)
        return rule


class RuleDryRunSerializer(serializers.Serializer):
    """Hand-written deal a rule is evaluated against."""

    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    stage = serializers.CharField(required=False, default="closed_won")
    product_type = serializers.CharField(required=False, allow_blank=True, default="")
    product_category = serializers.CharField(required=False, allow_blank=True, default="")
    prior_sales = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=0)
    quota = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=0)


class RuleDefinitionDryRunSerializer(RuleDryRunSerializer):
    """Dry run of a rule that is not saved yet."""

    name = serializers.CharField(required=False, default="Brouillon")
    rule_type = serializers.ChoiceField(choices=CommissionRule.RuleType.choices)
    config = serializers.DictField(required=False, default=dict)
    calculation_type = serializers.ChoiceField(
        choices=CommissionRule.CalculationType.choices, required=False, allow_blank=True, default=""
    )
    tiers = serializers.ListField(child=serializers.DictField(), required=False, default=list)

    def validate(self, attrs):
        try:
            validate_rule_config(attrs["rule_type"], attrs["config"], tiers=attrs["tiers"] or None)
        except DomainValidationError as exc:
            raise serializers.ValidationError(exc.as_dict())
        return attrs
