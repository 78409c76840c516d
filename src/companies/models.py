"""Models for the companies app."""
from django.conf import settings
from django.db import models

from core.models import TimeStampedModel


class Company(TimeStampedModel):
    """Tenant owning users, targets, deals and commissions."""

    class SubscriptionPlan(models.TextChoices):
        TRIAL = "trial", "Essai"
        STARTER = "starter", "Starter"
        PROFESSIONAL = "professional", "Professionnel"
        ENTERPRISE = "enterprise", "Entreprise"

    class PaymentSchedule(models.TextChoices):
        MONTHLY = "monthly", "Mensuel"
        QUARTERLY = "quarterly", "Trimestriel"
        YEARLY = "yearly", "Annuel"

    name = models.CharField("nom", max_length=255)
    code = models.CharField("code", max_length=50, unique=True)
    currency = models.CharField("devise", max_length=10, default="GBP")
    subscription_plan = models.CharField(
        "plan d'abonnement",
        max_length=20,
        choices=SubscriptionPlan.choices,
        default=SubscriptionPlan.TRIAL,
    )
    payment_schedule = models.CharField(
        "frequence de paiement des commissions",
        max_length=20,
        choices=PaymentSchedule.choices,
        default=PaymentSchedule.MONTHLY,
    )
    is_active = models.BooleanField("actif", default=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Entreprise"
        verbose_name_plural = "Entreprises"

    def __str__(self):
        return f"{self.name} ({self.code})"

    @property
    def is_trial(self) -> bool:
        return self.subscription_plan == self.SubscriptionPlan.TRIAL

    @property
    def payment_schedule_months(self) -> int:
        return {
            self.PaymentSchedule.MONTHLY: 1,
            self.PaymentSchedule.QUARTERLY: 3,
            self.PaymentSchedule.YEARLY: 12,
        }.get(self.payment_schedule, 1)


class Team(TimeStampedModel):
    """Group of sales users sharing a manager, used to scope batch targets."""

    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name="teams",
        verbose_name="entreprise",
    )
    name = models.CharField("nom", max_length=120)
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="managed_teams",
        verbose_name="responsable",
    )
    is_active = models.BooleanField("actif", default=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Equipe"
        verbose_name_plural = "Equipes"
        constraints = [
            models.UniqueConstraint(fields=["company", "name"], name="uniq_team_name_per_company"),
        ]

    def __str__(self):
        return f"{self.name} ({self.company.code})"
