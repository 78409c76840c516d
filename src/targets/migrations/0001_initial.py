"""Target with its parent/child hierarchy and period check constraint."""
import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("companies", "0002_team_manager"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Target",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                ("name", models.CharField(blank=True, default="", max_length=60, verbose_name="nom")),
                (
                    "period_type",
                    models.CharField(
                        choices=[
                            ("monthly", "Mensuel"),
                            ("quarterly", "Trimestriel"),
                            ("annual", "Annuel"),
                            ("custom", "Personnalise"),
                            ("weekly", "Hebdomadaire"),
                        ],
                        max_length=20,
                        verbose_name="type de periode",
                    ),
                ),
                ("period_start", models.DateField(verbose_name="debut de periode")),
                ("period_end", models.DateField(verbose_name="fin de periode")),
                (
                    "quota_amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=14,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("999999999.99")),
                        ],
                        verbose_name="quota",
                    ),
                ),
                (
                    "commission_rate",
                    models.DecimalField(
                        decimal_places=6,
                        max_digits=7,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("1")),
                        ],
                        verbose_name="taux de commission",
                    ),
                ),
                (
                    "distribution_method",
                    models.CharField(
                        choices=[
                            ("even", "Uniforme"),
                            ("seasonal", "Saisonniere"),
                            ("custom", "Personnalisee"),
                            ("one-time", "Ponctuelle"),
                            ("child", "Sous-periode"),
                        ],
                        default="one-time",
                        max_length=20,
                        verbose_name="methode de repartition",
                    ),
                ),
                (
                    "distribution_config",
                    models.JSONField(blank=True, default=dict, verbose_name="configuration de repartition"),
                ),
                ("role", models.CharField(blank=True, default="", max_length=20, verbose_name="role cible")),
                ("is_active", models.BooleanField(db_index=True, default=True, verbose_name="actif")),
                ("deactivated_at", models.DateTimeField(blank=True, null=True, verbose_name="desactive le")),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="targets",
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
                (
                    "parent_target",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="children",
                        to="targets.target",
                        verbose_name="objectif parent",
                    ),
                ),
                (
                    "team",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="targets",
                        to="companies.team",
                        verbose_name="equipe",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="targets",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="commercial",
                    ),
                ),
            ],
            options={
                "verbose_name": "objectif",
                "verbose_name_plural": "objectifs",
                "ordering": ["user", "period_start", "-created_at"],
                "indexes": [
                    models.Index(
                        fields=["user", "is_active", "period_start", "period_end"],
                        name="target_user_active_period_idx",
                    ),
                    models.Index(fields=["company", "is_active"], name="target_company_active_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("period_end__gte", models.F("period_start"))),
                        name="target_period_end_after_start",
                    ),
                ],
            },
        ),
    ]
