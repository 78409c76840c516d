"""Models for commission calculation, approval and rules."""
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinLengthValidator, MinValueValidator
from django.db import models

from core.models import TimeStampedModel


class CommissionStatus(models.TextChoices):
    CALCULATED = "calculated", "Calculee"
    PENDING_REVIEW = "pending_review", "En revue"
    APPROVED = "approved", "Approuvee"
    REJECTED = "rejected", "Rejetee"
    PAID = "paid", "Payee"
    VOIDED = "voided", "Annulee"


class Commission(TimeStampedModel):
    """Commission owed on one closed deal."""

    Status = CommissionStatus

    deal = models.OneToOneField(
        "deals.Deal",
        on_delete=models.PROTECT,
        related_name="commission",
        verbose_name="affaire",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="commissions",
        verbose_name="commercial",
    )
    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="commissions",
        verbose_name="entreprise",
    )
    target = models.ForeignKey(
        "targets.Target",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="commissions",
        verbose_name="objectif",
    )
    target_name = models.CharField("nom de l'objectif", max_length=60, blank=True, default="")
    period_start = models.DateField("debut de periode")
    period_end = models.DateField("fin de periode")
    quota_amount = models.DecimalField("quota", max_digits=14, decimal_places=2, default=Decimal("0"))
    actual_amount = models.DecimalField("montant de l'affaire", max_digits=14, decimal_places=2)
    attainment_pct = models.DecimalField("atteinte (%)", max_digits=9, decimal_places=2, default=Decimal("0"))
    commission_rate = models.DecimalField("taux", max_digits=9, decimal_places=6)
    commission_amount = models.DecimalField("montant", max_digits=14, decimal_places=2)
    base_commission = models.DecimalField("commission de base", max_digits=14, decimal_places=2)
    original_amount = models.DecimalField(
        "montant avant ajustement",
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
    )
    status = models.CharField(
        "statut",
        max_length=20,
        choices=CommissionStatus.choices,
        default=CommissionStatus.CALCULATED,
        db_index=True,
    )
    calculation_details = models.JSONField("details de calcul", default=dict, blank=True)

    calculated_at = models.DateTimeField("calculee le", null=True, blank=True)
    calculated_by = models.CharField("calculee par", max_length=100, blank=True, default="system")
    reviewed_at = models.DateTimeField("revue le", null=True, blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    approved_at = models.DateTimeField("approuvee le", null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    paid_at = models.DateTimeField("payee le", null=True, blank=True)
    payment_reference = models.CharField("reference de paiement", max_length=120, blank=True, default="")
    adjustment_reason = models.TextField("motif d'ajustement", blank=True, default="")
    notes = models.TextField("notes", blank=True, default="")

    class Meta:
        verbose_name = "commission"
        verbose_name_plural = "commissions"
        ordering = ["-calculated_at", "-created_at"]
        indexes = [
            models.Index(fields=["company", "status"], name="commission_company_status_idx"),
            models.Index(fields=["user", "period_start", "period_end"], name="commission_user_period_idx"),
        ]

    def __str__(self):
        return f"{self.target_name or self.user} {self.commission_amount} ({self.status})"


class CommissionApprovalQuerySet(models.QuerySet):
    """Audit rows are written once; bulk edits are refused like instance edits."""

    def update(self, **kwargs):
        raise ValueError("Les entrees d'historique sont immuables.")

    def delete(self):
        raise ValueError("Les entrees d'historique ne peuvent pas etre supprimees.")


class CommissionApproval(models.Model):
    """Append-only audit entry, one per status transition."""

    commission = models.ForeignKey(
        Commission,
        on_delete=models.CASCADE,
        related_name="approvals",
        verbose_name="commission",
    )
    action = models.CharField("action", max_length=30)
    performed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="commission_actions",
        verbose_name="realisee par",
    )
    actor_label = models.CharField("acteur", max_length=150, default="system")
    performed_at = models.DateTimeField("realisee le", auto_now_add=True, db_index=True)
    previous_status = models.CharField("statut precedent", max_length=20, blank=True, default="")
    new_status = models.CharField("nouveau statut", max_length=20)
    notes = models.TextField("notes", blank=True, default="")
    metadata = models.JSONField("metadonnees", default=dict, blank=True)

    objects = CommissionApprovalQuerySet.as_manager()

    class Meta:
        verbose_name = "historique de commission"
        verbose_name_plural = "historiques de commission"
        ordering = ["performed_at", "id"]

    def __str__(self):
        return f"{self.action}: {self.previous_status or '-'} -> {self.new_status}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Les entrees d'historique sont immuables.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Les entrees d'historique ne peuvent pas etre supprimees.")


class CommissionRule(TimeStampedModel):
    """Company-scoped rule evaluated by the advanced commission engine."""

    class RuleType(models.TextChoices):
        BASE_RATE = "base_rate", "Taux de base"
        TIERED = "tiered", "Paliers"
        BONUS = "bonus", "Bonus"
        ACCELERATOR = "accelerator", "Accelerateur"
        PRODUCT_RATE = "product_rate", "Taux par produit"

    class CalculationType(models.TextChoices):
        CUMULATIVE = "cumulative", "Cumulatif"
        REPLACE = "replace", "Remplace"
        MAX = "max", "Maximum"

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="commission_rules",
        verbose_name="entreprise",
    )
    name = models.CharField("nom", max_length=100, validators=[MinLengthValidator(3)])
    description = models.TextField("description", blank=True, default="")
    rule_type = models.CharField("type", max_length=20, choices=RuleType.choices)
    priority = models.PositiveIntegerField(
        "priorite",
        default=100,
        validators=[MinValueValidator(1), MaxValueValidator(1000)],
    )
    config = models.JSONField("configuration", default=dict, blank=True)
    calculation_type = models.CharField(
        "mode de cumul",
        max_length=20,
        choices=CalculationType.choices,
        blank=True,
        default="",
        help_text="Vide = mode par defaut du type de regle.",
    )
    stops_processing = models.BooleanField("stoppe l'evaluation", default=False)
    effective_from = models.DateField("effective du")
    effective_to = models.DateField("effective jusqu'au", null=True, blank=True)
    is_active = models.BooleanField("active", default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    class Meta:
        verbose_name = "regle de commission"
        verbose_name_plural = "regles de commission"
        ordering = ["priority", "created_at"]
        indexes = [
            models.Index(fields=["company", "is_active", "effective_from"], name="rule_company_active_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.rule_type}, p{self.priority})"

    def clean(self) -> None:
        if self.effective_to and self.effective_to < self.effective_from:
            raise ValidationError({"effective_to": "La date de fin doit etre posterieure a la date de debut."})


class CommissionRuleTier(models.Model):
    """One band of a tiered rule."""

    class TierType(models.TextChoices):
        GRADUATED = "graduated", "Progressif"
        CLIFF = "cliff", "Seuil"

    rule = models.ForeignKey(
        CommissionRule,
        on_delete=models.CASCADE,
        related_name="tiers",
        verbose_name="regle",
    )
    position = models.PositiveSmallIntegerField("ordre", default=0)
    threshold_min = models.DecimalField(
        "seuil min",
        max_digits=14,
        decimal_places=2,
        default=Decimal("0"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    threshold_max = models.DecimalField("seuil max", max_digits=14, decimal_places=2, null=True, blank=True)
    rate = models.DecimalField(
        "taux",
        max_digits=7,
        decimal_places=6,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("1"))],
    )
    tier_type = models.CharField(
        "type de palier", max_length=20, choices=TierType.choices, default=TierType.GRADUATED
    )

    class Meta:
        verbose_name = "palier de commission"
        verbose_name_plural = "paliers de commission"
        ordering = ["position", "threshold_min"]
        constraints = [
            models.UniqueConstraint(fields=["rule", "position"], name="uniq_commission_tier_position"),
        ]

    def __str__(self):
        upper = self.threshold_max if self.threshold_max is not None else "+"
        return f"{self.threshold_min}-{upper} @ {self.rate}"
