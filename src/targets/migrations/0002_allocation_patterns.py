"""Allocation patterns and their dated periods, linked from seasonal targets."""
import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("companies", "0002_team_manager"),
        ("targets", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="AllocationPattern",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                ("name", models.CharField(max_length=100, verbose_name="nom")),
                ("description", models.TextField(blank=True, default="", verbose_name="description")),
                (
                    "base_period_type",
                    models.CharField(
                        choices=[
                            ("monthly", "Mensuel"),
                            ("quarterly", "Trimestriel"),
                            ("annual", "Annuel"),
                            ("custom", "Personnalise"),
                            ("weekly", "Hebdomadaire"),
                        ],
                        default="annual",
                        max_length=20,
                        verbose_name="type de periode de base",
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True, verbose_name="actif")),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="allocation_patterns",
                        to="companies.company",
                        verbose_name="entreprise",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "modele de repartition",
                "verbose_name_plural": "modeles de repartition",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="AllocationPeriod",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=60, verbose_name="nom")),
                ("period_start", models.DateField(verbose_name="debut")),
                ("period_end", models.DateField(verbose_name="fin")),
                (
                    "allocation_pct",
                    models.DecimalField(
                        decimal_places=3,
                        max_digits=6,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("100")),
                        ],
                        verbose_name="pourcentage",
                    ),
                ),
                ("notes", models.TextField(blank=True, default="", verbose_name="notes")),
                ("sort_order", models.PositiveIntegerField(default=0, verbose_name="ordre")),
                (
                    "pattern",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="periods",
                        to="targets.allocationpattern",
                        verbose_name="modele",
                    ),
                ),
            ],
            options={
                "verbose_name": "periode de repartition",
                "verbose_name_plural": "periodes de repartition",
                "ordering": ["sort_order", "period_start"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("period_end__gte", models.F("period_start"))),
                        name="allocation_period_end_after_start",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="target",
            name="allocation_pattern",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="targets",
                to="targets.allocationpattern",
                verbose_name="modele de repartition",
            ),
        ),
    ]
