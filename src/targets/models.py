"""Models for quota targets."""
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from core.models import TimeStampedModel
from targets.naming import target_name

MAX_QUOTA = Decimal("999999999.99")


class TargetQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)

    def overlapping(self, period_start, period_end):
        return self.filter(period_start__lte=period_end, period_end__gte=period_start)


class Target(TimeStampedModel):
    """Quota and commission-rate contract for one user over a period."""

    class PeriodType(models.TextChoices):
        MONTHLY = "monthly", "Mensuel"
        QUARTERLY = "quarterly", "Trimestriel"
        ANNUAL = "annual", "Annuel"
        CUSTOM = "custom", "Personnalise"
        WEEKLY = "weekly", "Hebdomadaire"

    class DistributionMethod(models.TextChoices):
        EVEN = "even", "Uniforme"
        SEASONAL = "seasonal", "Saisonniere"
        CUSTOM = "custom", "Personnalisee"
        ONE_TIME = "one-time", "Ponctuelle"
        CHILD = "child", "Sous-periode"

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="targets",
        verbose_name="entreprise",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="targets",
        verbose_name="commercial",
    )
    name = models.CharField("nom", max_length=60, blank=True, default="")
    period_type = models.CharField("type de periode", max_length=20, choices=PeriodType.choices)
    period_start = models.DateField("debut de periode")
    period_end = models.DateField("fin de periode")
    quota_amount = models.DecimalField(
        "quota",
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(MAX_QUOTA)],
    )
    commission_rate = models.DecimalField(
        "taux de commission",
        max_digits=7,
        decimal_places=6,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("1"))],
    )
    parent_target = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="children",
        verbose_name="objectif parent",
    )
    distribution_method = models.CharField(
        "methode de repartition",
        max_length=20,
        choices=DistributionMethod.choices,
        default=DistributionMethod.ONE_TIME,
    )
    distribution_config = models.JSONField("configuration de repartition", default=dict, blank=True)
    role = models.CharField("role cible", max_length=20, blank=True, default="")
    team = models.ForeignKey(
        "companies.Team",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="targets",
        verbose_name="equipe",
    )
    allocation_pattern = models.ForeignKey(
        "targets.AllocationPattern",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="targets",
        verbose_name="modele de repartition",
    )
    is_active = models.BooleanField("actif", default=True, db_index=True)
    deactivated_at = models.DateTimeField("desactive le", null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    objects = TargetQuerySet.as_manager()

    class Meta:
        verbose_name = "objectif"
        verbose_name_plural = "objectifs"
        ordering = ["user", "period_start", "-created_at"]
        indexes = [
            models.Index(
                fields=["user", "is_active", "period_start", "period_end"],
                name="target_user_active_period_idx",
            ),
            models.Index(fields=["company", "is_active"], name="target_company_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(period_end__gte=models.F("period_start")),
                name="target_period_end_after_start",
            ),
        ]

    def __str__(self):
        return self.name or f"{self.user} {self.period_start}-{self.period_end}"

    def clean(self) -> None:
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValidationError({"period_end": "La date de fin doit etre posterieure a la date de debut."})
        if self.parent_target_id and self.parent_target.user_id != self.user_id:
            raise ValidationError({"parent_target": "L'objectif parent doit appartenir au meme utilisateur."})

    @property
    def is_child(self) -> bool:
        return self.parent_target_id is not None

    def derived_name(self) -> str:
        return target_name(self.user, self.period_type, self.period_start, self.period_end) or ""

    def seasonal_allocations(self) -> list[dict] | None:
        """Stored seasonal split as ``[{label, period_start, period_end, share_pct}]``."""
        if self.distribution_method != self.DistributionMethod.SEASONAL:
            return None
        shares = self.distribution_config.get("shares")
        return shares or None


class AllocationPattern(TimeStampedModel):
    """Reusable dated split of an annual quota, fed into seasonal targets."""

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="allocation_patterns",
        verbose_name="entreprise",
    )
    name = models.CharField("nom", max_length=100)
    description = models.TextField("description", blank=True, default="")
    base_period_type = models.CharField(
        "type de periode de base",
        max_length=20,
        choices=Target.PeriodType.choices,
        default=Target.PeriodType.ANNUAL,
    )
    is_active = models.BooleanField("actif", default=True, db_index=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        verbose_name = "modele de repartition"
        verbose_name_plural = "modeles de repartition"
        ordering = ["name"]

    def __str__(self):
        return self.name


class AllocationPeriod(models.Model):
    pattern = models.ForeignKey(
        AllocationPattern,
        on_delete=models.CASCADE,
        related_name="periods",
        verbose_name="modele",
    )
    name = models.CharField("nom", max_length=60)
    period_start = models.DateField("debut")
    period_end = models.DateField("fin")
    allocation_pct = models.DecimalField(
        "pourcentage",
        max_digits=6,
        decimal_places=3,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
    )
    notes = models.TextField("notes", blank=True, default="")
    sort_order = models.PositiveIntegerField("ordre", default=0)

    class Meta:
        verbose_name = "periode de repartition"
        verbose_name_plural = "periodes de repartition"
        ordering = ["sort_order", "period_start"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(period_end__gte=models.F("period_start")),
                name="allocation_period_end_after_start",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.allocation_pct}%)"

    def as_share(self) -> dict:
        return {
            "label": self.name,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "share_pct": str(self.allocation_pct),
        }
