"""Deal snapshot owned by the CRM side of the product.

Only the fields the commission core reads are modelled here, plus the
read-optimised commission cache the calculator writes back.
"""
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from core.models import TimeStampedModel

CLOSED_WON_STAGES = frozenset({"closed won", "closed_won"})


def is_closed_won(stage) -> bool:
    return (stage or "").strip().lower() in CLOSED_WON_STAGES


class Deal(TimeStampedModel):
    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="deals",
        verbose_name="entreprise",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="deals",
        verbose_name="proprietaire",
    )
    name = models.CharField("nom", max_length=255)
    amount = models.DecimalField(
        "montant",
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )
    stage = models.CharField("etape", max_length=50, default="open", db_index=True)
    close_date = models.DateField("date de cloture", null=True, blank=True)
    product_type = models.CharField("type de produit", max_length=100, blank=True, default="")
    product_category = models.CharField("categorie produit", max_length=100, blank=True, default="")
    external_id = models.CharField("identifiant CRM", max_length=100, blank=True, default="")

    # Read cache written by the commission calculator
    commission_rate = models.DecimalField(
        "taux de commission",
        max_digits=9,
        decimal_places=6,
        null=True,
        blank=True,
    )
    commission_amount = models.DecimalField(
        "montant de commission",
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
    )
    commission_calculated_at = models.DateTimeField("commission calculee le", null=True, blank=True)

    class Meta:
        verbose_name = "affaire"
        verbose_name_plural = "affaires"
        ordering = ["-close_date", "-created_at"]
        indexes = [
            models.Index(fields=["company", "stage"], name="deal_company_stage_idx"),
            models.Index(fields=["user", "close_date"], name="deal_user_close_date_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.amount})"

    @property
    def is_closed_won(self) -> bool:
        return is_closed_won(self.stage)

    def clear_commission_cache(self) -> None:
        self.commission_rate = None
        self.commission_amount = None
        self.commission_calculated_at = None
        self.save(update_fields=["commission_rate", "commission_amount", "commission_calculated_at", "updated_at"])
