"""Create Company and Team (the team manager FK follows once the user model exists)."""
import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                ("name", models.CharField(max_length=255, verbose_name="nom")),
                ("code", models.CharField(max_length=50, unique=True, verbose_name="code")),
                ("currency", models.CharField(default="GBP", max_length=10, verbose_name="devise")),
                (
                    "subscription_plan",
                    models.CharField(
                        choices=[
                            ("trial", "Essai"),
                            ("starter", "Starter"),
                            ("professional", "Professionnel"),
                            ("enterprise", "Entreprise"),
                        ],
                        default="trial",
                        max_length=20,
                        verbose_name="plan d'abonnement",
                    ),
                ),
                (
                    "payment_schedule",
                    models.CharField(
                        choices=[("monthly", "Mensuel"), ("quarterly", "Trimestriel"), ("yearly", "Annuel")],
                        default="monthly",
                        max_length=20,
                        verbose_name="frequence de paiement des commissions",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="actif")),
            ],
            options={
                "verbose_name": "Entreprise",
                "verbose_name_plural": "Entreprises",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Team",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="cree le")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="modifie le")),
                ("name", models.CharField(max_length=120, verbose_name="nom")),
                ("is_active", models.BooleanField(default=True, verbose_name="actif")),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="teams",
                        to="companies.company",
                        verbose_name="entreprise",
                    ),
                ),
            ],
            options={
                "verbose_name": "Equipe",
                "verbose_name_plural": "Equipes",
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "name"), name="uniq_team_name_per_company"),
                ],
            },
        ),
    ]
