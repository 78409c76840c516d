"""Deal snapshot with the commission read cache."""
import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("companies", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Deal",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                ("name", models.CharField(max_length=255, verbose_name="nom")),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=14,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                        verbose_name="montant",
                    ),
                ),
                ("stage", models.CharField(db_index=True, default="open", max_length=50, verbose_name="etape")),
                ("close_date", models.DateField(blank=True, null=True, verbose_name="date de cloture")),
                (
                    "product_type",
                    models.CharField(blank=True, default="", max_length=100, verbose_name="type de produit"),
                ),
                (
                    "product_category",
                    models.CharField(blank=True, default="", max_length=100, verbose_name="categorie produit"),
                ),
                (
                    "external_id",
                    models.CharField(blank=True, default="", max_length=100, verbose_name="identifiant CRM"),
                ),
                (
                    "commission_rate",
                    models.DecimalField(
                        blank=True, decimal_places=6, max_digits=9, null=True, verbose_name="taux de commission"
                    ),
                ),
                (
                    "commission_amount",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="montant de commission"
                    ),
                ),
                (
                    "commission_calculated_at",
                    models.DateTimeField(blank=True, null=True, verbose_name="commission calculee le"),
                ),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="deals",
                        to="companies.company",
                        verbose_name="entreprise",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="deals",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="proprietaire",
                    ),
                ),
            ],
            options={
                "verbose_name": "affaire",
                "verbose_name_plural": "affaires",
                "ordering": ["-close_date", "-created_at"],
                "indexes": [
                    models.Index(fields=["company", "stage"], name="deal_company_stage_idx"),
                    models.Index(fields=["user", "close_date"], name="deal_user_close_date_idx"),
                ],
            },
        ),
    ]
