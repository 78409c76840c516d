"""Commission, its approval history, and the advanced rule tables."""
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
        ("deals", "0001_initial"),
        ("targets", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Commission",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                (
                    "target_name",
                    models.CharField(blank=True, default="", max_length=60, verbose_name="nom de l'objectif"),
                ),
                ("period_start", models.DateField(verbose_name="debut de periode")),
                ("period_end", models.DateField(verbose_name="fin de periode")),
                (
                    "quota_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=14, verbose_name="quota"),
                ),
                (
                    "actual_amount",
                    models.DecimalField(decimal_places=2, max_digits=14, verbose_name="montant de l'affaire"),
                ),
                (
                    "attainment_pct",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0"), max_digits=9, verbose_name="atteinte (%)"
                    ),
                ),
                ("commission_rate", models.DecimalField(decimal_places=6, max_digits=9, verbose_name="taux")),
                ("commission_amount", models.DecimalField(decimal_places=2, max_digits=14, verbose_name="montant")),
                (
                    "base_commission",
                    models.DecimalField(decimal_places=2, max_digits=14, verbose_name="commission de base"),
                ),
                (
                    "original_amount",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="montant avant ajustement"
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("calculated", "Calculee"),
                            ("pending_review", "En revue"),
                            ("approved", "Approuvee"),
                            ("rejected", "Rejetee"),
                            ("paid", "Payee"),
                            ("voided", "Annulee"),
                        ],
                        db_index=True,
                        default="calculated",
                        max_length=20,
                        verbose_name="statut",
                    ),
                ),
                (
                    "calculation_details",
                    models.JSONField(blank=True, default=dict, verbose_name="details de calcul"),
                ),
                ("calculated_at", models.DateTimeField(blank=True, null=True, verbose_name="calculee le")),
                (
                    "calculated_by",
                    models.CharField(blank=True, default="system", max_length=100, verbose_name="calculee par"),
                ),
                ("reviewed_at", models.DateTimeField(blank=True, null=True, verbose_name="revue le")),
                ("approved_at", models.DateTimeField(blank=True, null=True, verbose_name="approuvee le")),
                ("paid_at", models.DateTimeField(blank=True, null=True, verbose_name="payee le")),
                (
                    "payment_reference",
                    models.CharField(blank=True, default="", max_length=120, verbose_name="reference de paiement"),
                ),
                ("adjustment_reason", models.TextField(blank=True, default="", verbose_name="motif d'ajustement")),
                ("notes", models.TextField(blank=True, default="", verbose_name="notes")),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="commissions",
                        to="companies.company",
                        verbose_name="entreprise",
                    ),
                ),
                (
                    "deal",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commission",
                        to="deals.deal",
                        verbose_name="affaire",
                    ),
                ),
                (
                    "reviewed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "target",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="commissions",
                        to="targets.target",
                        verbose_name="objectif",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="commissions",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="commercial",
                    ),
                ),
            ],
            options={
                "verbose_name": "commission",
                "verbose_name_plural": "commissions",
                "ordering": ["-calculated_at", "-created_at"],
                "indexes": [
                    models.Index(fields=["company", "status"], name="commission_company_status_idx"),
                    models.Index(fields=["user", "period_start", "period_end"], name="commission_user_period_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionApproval",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("action", models.CharField(max_length=30, verbose_name="action")),
                ("actor_label", models.CharField(default="system", max_length=150, verbose_name="acteur")),
                ("performed_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="realisee le")),
                (
                    "previous_status",
                    models.CharField(blank=True, default="", max_length=20, verbose_name="statut precedent"),
                ),
                ("new_status", models.CharField(max_length=20, verbose_name="nouveau statut")),
                ("notes", models.TextField(blank=True, default="", verbose_name="notes")),
                ("metadata", models.JSONField(blank=True, default=dict, verbose_name="metadonnees")),
                (
                    "commission",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="approvals",
                        to="commissions.commission",
                        verbose_name="commission",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="commission_actions",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="realisee par",
                    ),
                ),
            ],
            options={
                "verbose_name": "historique de commission",
                "verbose_name_plural": "historiques de commission",
                "ordering": ["performed_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="CommissionRule",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                (
                    "name",
                    models.CharField(
                        max_length=100,
                        validators=[django.core.validators.MinLengthValidator(3)],
                        verbose_name="nom",
                    ),
                ),
                ("description", models.TextField(blank=True, default="", verbose_name="description")),
                (
                    "rule_type",
                    models.CharField(
                        choices=[
                            ("base_rate", "Taux de base"),
                            ("tiered", "Paliers"),
                            ("bonus", "Bonus"),
                            ("accelerator", "Accelerateur"),
                            ("product_rate", "Taux par produit"),
                        ],
                        max_length=20,
                        verbose_name="type",
                    ),
                ),
                (
                    "priority",
                    models.PositiveIntegerField(
                        default=100,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(1000),
                        ],
                        verbose_name="priorite",
                    ),
                ),
                ("config", models.JSONField(blank=True, default=dict, verbose_name="configuration")),
                (
                    "calculation_type",
                    models.CharField(
                        blank=True,
                        choices=[("cumulative", "Cumulatif"), ("replace", "Remplace"), ("max", "Maximum")],
                        default="",
                        help_text="Vide = mode par defaut du type de regle.",
                        max_length=20,
                        verbose_name="mode de cumul",
                    ),
                ),
                ("stops_processing", models.BooleanField(default=False, verbose_name="stoppe l'evaluation")),
                ("effective_from", models.DateField(verbose_name="effective du")),
                ("effective_to", models.DateField(blank=True, null=True, verbose_name="effective jusqu'au")),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="commission_rules",
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
                "verbose_name": "regle de commission",
                "verbose_name_plural": "regles de commission",
                "ordering": ["priority", "created_at"],
                "indexes": [
                    models.Index(fields=["company", "is_active", "effective_from"], name="rule_company_active_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionRuleTier",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("position", models.PositiveSmallIntegerField(default=0, verbose_name="ordre")),
                (
                    "threshold_min",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        max_digits=14,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                        verbose_name="seuil min",
                    ),
                ),
                (
                    "threshold_max",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=14, null=True, verbose_name="seuil max"
                    ),
                ),
                (
                    "rate",
                    models.DecimalField(
                        decimal_places=6,
                        max_digits=7,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("1")),
                        ],
                        verbose_name="taux",
                    ),
                ),
                (
                    "tier_type",
                    models.CharField(
                        choices=[("graduated", "Progressif"), ("cliff", "Seuil")],
                        default="graduated",
                        max_length=20,
                        verbose_name="type de palier",
                    ),
                ),
                (
                    "rule",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tiers",
                        to="commissions.commissionrule",
                        verbose_name="regle",
                    ),
                ),
            ],
            options={
                "verbose_name": "palier de commission",
                "verbose_name_plural": "paliers de commission",
                "ordering": ["position", "threshold_min"],
                "constraints": [
                    models.UniqueConstraint(fields=("rule", "position"), name="uniq_commission_tier_position"),
                ],
            },
        ),
    ]
