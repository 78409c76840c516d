"""API views for targets, allocation patterns, commissions, rules and reports."""
from __future__ import annotations

import logging
from datetime import date

from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.models import User
from api.v1.exceptions import to_api_exception
from api.v1.pagination import CommissionPagination, StandardResultsSetPagination
from api.v1.permissions import (
    HasCompany,
    IsAdmin,
    IsAdminOrManager,
    IsAdminOrManagerOrReadOnly,
    IsAdminOrReadOnly,
    principal_for,
)
from api.v1.serializers import (
    AllocationPatternSerializer,
    AllocationPatternWriteSerializer,
    AllocationPeriodSerializer,
    BulkActionSerializer,
    CalculateSerializer,
    CommissionActionSerializer,
    CommissionApprovalSerializer,
    CommissionRuleSerializer,
    CommissionSerializer,
    MarkPaidSerializer,
    RecalculateSerializer,
    ResolveConflictsSerializer,
    RuleDefinitionDryRunSerializer,
    RuleDryRunSerializer,
    TargetCreateSerializer,
    TargetSerializer,
    TargetUpdateSerializer,
)
from commissions import calculator, reports, state_machine
from commissions.models import Commission, CommissionRule
from commissions.rules import RULE_TEMPLATES, RuleSpec, TierSpec, dry_run_rule
from companies.models import Team
from deals.models import Deal
from targets import patterns
from targets import services as target_services
from targets.models import AllocationPattern, Target
from targets.resolver import resolve_active_target

logger = logging.getLogger(__name__)


def _parse_date(value, field_name: str, default=None) -> date | None:
    if not value:
        return default
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError({field_name: "Format de date invalide. Utilisez YYYY-MM-DD."})


def _is_manager(user) -> bool:
    return user.is_superuser or getattr(user, "role", None) in ("ADMIN", "MANAGER")


def _company_user(request, user_id):
    """User of the caller's company; sales users may only look at themselves."""
    if not user_id:
        return request.user
    if not _is_manager(request.user) and str(user_id) != str(request.user.pk):
        raise NotFound("Utilisateur introuvable.")
    user = User.objects.filter(pk=user_id, company_id=request.user.company_id).first()
    if user is None:
        raise NotFound("Utilisateur introuvable.")
    return user


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------

class TargetViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """Targets of the caller's company. Creation is batched, deletion is soft."""

    serializer_class = TargetSerializer
    pagination_class = StandardResultsSetPagination
    permission_classes = [IsAuthenticated, HasCompany, IsAdminOrManagerOrReadOnly]
    filterset_fields = ["user", "is_active", "period_type", "distribution_method", "parent_target"]
    search_fields = ["name", "user__email", "user__last_name"]
    ordering_fields = ["period_start", "created_at", "quota_amount"]

    def get_queryset(self):
        qs = Target.objects.filter(company_id=self.request.user.company_id).select_related("user", "parent_target")
        if not _is_manager(self.request.user):
            qs = qs.filter(user=self.request.user)
        return qs.order_by("user__last_name", "period_start", "-created_at")

    def _scope_users(self, data):
        company = self.request.user.company
        team = None
        if data.get("team"):
            team = Team.objects.filter(pk=data["team"], company=company).first()
            if team is None:
                raise ValidationError({"team": "Equipe introuvable."})
        users = target_services.users_in_scope(
            company,
            user_ids=data.get("user_ids") or None,
            role=data.get("role") or None,
            team=team,
        )
        return list(users)

    def create(self, request, *args, **kwargs):
        serializer = TargetCreateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        users = self._scope_users(serializer.validated_data)
        if not users:
            raise ValidationError({"user_ids": "Aucun utilisateur actif ne correspond a la selection."})
        try:
            summary = target_services.create_targets(
                users,
                serializer.to_spec(),
                conflict_policy=serializer.validated_data["conflict_policy"],
                created_by=request.user,
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        http_status = status.HTTP_201_CREATED if summary.created else status.HTTP_200_OK
        return Response(summary.as_dict(), status=http_status)

    def update(self, request, *args, **kwargs):
        target = self.get_object()
        serializer = TargetUpdateSerializer(data=request.data, partial=kwargs.get("partial", False))
        serializer.is_valid(raise_exception=True)
        try:
            target = target_services.update_target(target, **serializer.validated_data)
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(TargetSerializer(target).data)

    def perform_destroy(self, instance):
        target_services.deactivate_target(instance)

    @action(detail=True, methods=["post"])
    def deactivate(self, request, pk=None):
        target = self.get_object()
        count = target_services.deactivate_target(target)
        return Response({"deactivated": count})

    @action(detail=False, methods=["post"], url_path="resolve-conflicts")
    def resolve_conflicts(self, request):
        serializer = ResolveConflictsSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        try:
            summary = target_services.resolve_conflicts(
                request.user.company,
                [
                    {"user_id": str(d["user_id"]), "action": d["action"]}
                    for d in serializer.validated_data["decisions"]
                ],
                serializer.to_spec(),
                created_by=request.user,
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(summary.as_dict())

    @action(detail=False, methods=["get"])
    def active(self, request):
        user = _company_user(request, request.query_params.get("user"))
        on_date = _parse_date(request.query_params.get("date"), "date", timezone.localdate())
        target = resolve_active_target(user.pk, on_date, on_date, company_id=request.user.company_id)
        if target is None:
            raise NotFound({"detail": f"Aucun objectif actif au {on_date.isoformat()}.", "code": "no_active_target"})
        return Response(TargetSerializer(target).data)

    @action(detail=False, methods=["get"])
    def progress(self, request):
        on_date = _parse_date(request.query_params.get("date"), "date", timezone.localdate())
        if request.query_params.get("scope") == "team":
            if not _is_manager(request.user):
                raise PermissionDenied("Action reservee aux managers et administrateurs.")
            team = None
            if request.query_params.get("team"):
                team = Team.objects.filter(pk=request.query_params["team"], company_id=request.user.company_id).first()
            return Response(reports.team_quota_progress(request.user.company, on_date, team=team))
        user = _company_user(request, request.query_params.get("user"))
        return Response(reports.quota_progress(user, on_date))

    @action(detail=False, methods=["post"], url_path="backfill-names", permission_classes=[IsAuthenticated, IsAdmin])
    def backfill_names(self, request):
        renamed = target_services.backfill_target_names(request.user.company)
        return Response({"renamed": renamed})


class AllocationPatternViewSet(viewsets.ModelViewSet):
    """Company allocation patterns; administrators write, everyone reads."""

    serializer_class = AllocationPatternSerializer
    pagination_class = StandardResultsSetPagination
    permission_classes = [IsAuthenticated, HasCompany, IsAdminOrReadOnly]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "created_at"]

    def get_queryset(self):
        qs = AllocationPattern.objects.filter(company_id=self.request.user.company_id).prefetch_related("periods")
        if self.action == "list" and self.request.query_params.get("include_inactive") != "true":
            qs = qs.filter(is_active=True)
        return qs.order_by("name")

    def create(self, request, *args, **kwargs):
        serializer = AllocationPatternWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            pattern = patterns.create_pattern(
                request.user.company,
                name=data["name"],
                description=data.get("description", ""),
                base_period_type=data.get("base_period_type") or Target.PeriodType.ANNUAL,
                periods=data["periods"],
                created_by=request.user,
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(AllocationPatternSerializer(pattern).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        pattern = self.get_object()
        partial = kwargs.get("partial", False)
        serializer = AllocationPatternWriteSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            pattern = patterns.update_pattern(
                pattern,
                name=data.get("name"),
                description=data.get("description"),
                base_period_type=data.get("base_period_type"),
                periods=data.get("periods"),
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(AllocationPatternSerializer(pattern).data)

    def destroy(self, request, *args, **kwargs):
        pattern = self.get_object()
        try:
            patterns.deactivate_pattern(pattern)
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"])
    def periods(self, request, pk=None):
        pattern = self.get_object()
        year = request.query_params.get("year")
        if year:
            try:
                year = int(year)
            except ValueError:
                raise ValidationError({"year": "Annee invalide."})
        rows = patterns.pattern_periods(pattern, year=year or None)
        return Response(AllocationPeriodSerializer(rows, many=True).data)


# ---------------------------------------------------------------------------
# Commissions
# ---------------------------------------------------------------------------

class CommissionViewSet(viewsets.ReadOnlyModelViewSet):
    """Commissions are created by the calculator and moved by workflow actions."""

    serializer_class = CommissionSerializer
    pagination_class = CommissionPagination
    permission_classes = [IsAuthenticated, HasCompany]
    filterset_fields = ["status", "user", "target", "period_start", "period_end"]
    search_fields = ["deal__name", "target_name", "payment_reference"]
    ordering_fields = ["calculated_at", "commission_amount", "period_start"]

    def get_queryset(self):
        qs = Commission.objects.filter(company_id=self.request.user.company_id).select_related("deal", "user")
        if not _is_manager(self.request.user):
            qs = qs.filter(user=self.request.user)
        period_from = _parse_date(self.request.query_params.get("from"), "from")
        period_to = _parse_date(self.request.query_params.get("to"), "to")
        if period_from:
            qs = qs.filter(period_end__gte=period_from)
        if period_to:
            qs = qs.filter(period_start__lte=period_to)
        return qs

    @action(detail=False, methods=["post"], permission_classes=[IsAuthenticated, HasCompany, IsAdminOrManager])
    def calculate(self, request):
        serializer = CalculateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        deal = Deal.objects.filter(pk=data["deal_id"], company_id=request.user.company_id).first()
        if deal is None:
            raise NotFound("Affaire introuvable.")
        try:
            result = calculator.calculate_deal_commission(
                deal,
                recalculate=data["recalculate"],
                use_advanced_rules=data["use_advanced_rules"],
                actor=principal_for(request),
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        if result is None:
            raise ValidationError({"deal_id": "L'affaire n'est pas a l'etape gagnee."})
        return Response(CommissionSerializer(result).data)

    @action(detail=True, methods=["post"], url_path="action")
    def perform_action(self, request, pk=None):
        commission = self.get_object()
        serializer = CommissionActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            commission = state_machine.transition(
                commission,
                data["action"],
                principal_for(request),
                notes=data["notes"],
                adjustment_amount=data.get("adjustment_amount"),
                adjustment_reason=data["adjustment_reason"],
                payment_reference=data["payment_reference"],
                payment_date=data.get("payment_date"),
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(CommissionSerializer(commission).data)

    @action(detail=False, methods=["post"], url_path="bulk-action",
            permission_classes=[IsAuthenticated, HasCompany, IsAdminOrManager])
    def bulk_action(self, request):
        serializer = BulkActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            result = state_machine.bulk_transition(
                data["commission_ids"], data["action"], principal_for(request), notes=data["notes"]
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(result.as_dict())

    @action(detail=False, methods=["post"], url_path="mark-paid", permission_classes=[IsAuthenticated, HasCompany, IsAdmin])
    def mark_paid(self, request):
        serializer = MarkPaidSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            result = state_machine.mark_paid(
                data["commission_ids"],
                principal_for(request),
                payment_reference=data["payment_reference"],
                payment_date=data.get("payment_date"),
                notes=data["notes"],
            )
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(result.as_dict())

    @action(detail=False, methods=["post"], permission_classes=[IsAuthenticated, HasCompany, IsAdmin])
    def recalculate(self, request):
        serializer = RecalculateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user_ids = [str(pk) for pk in data.get("user_ids") or []]
        if data["run_async"]:
            from commissions.tasks import recalculate_company_commissions

            job = recalculate_company_commissions.delay(
                company_id=str(request.user.company_id),
                user_ids=user_ids or None,
                period_start=data["period_start"].isoformat() if data.get("period_start") else None,
                period_end=data["period_end"].isoformat() if data.get("period_end") else None,
            )
            return Response({"task_id": job.id}, status=status.HTTP_202_ACCEPTED)
        summary = calculator.recalculate_commissions(
            request.user.company,
            user_ids=user_ids or None,
            period_start=data.get("period_start"),
            period_end=data.get("period_end"),
        )
        return Response(summary.as_dict())

    @action(detail=False, methods=["get"], url_path="pending-count")
    def pending_count(self, request):
        return Response(reports.pending_approval_count(request.user))

    @action(detail=True, methods=["get"])
    def history(self, request, pk=None):
        commission = self.get_object()
        entries = commission.approvals.select_related("performed_by").order_by("performed_at", "id")
        return Response(CommissionApprovalSerializer(entries, many=True).data)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _draft_rule(data) -> RuleSpec:
    return RuleSpec(
        id="draft",
        name=data["name"],
        rule_type=data["rule_type"],
        config=dict(data["config"]),
        calculation_type=data["calculation_type"],
        tiers=tuple(TierSpec.from_dict(t) for t in (data["tiers"] or data["config"].get("tiers", []))),
    )


class CommissionRuleViewSet(viewsets.ModelViewSet):
    serializer_class = CommissionRuleSerializer
    pagination_class = StandardResultsSetPagination
    permission_classes = [IsAuthenticated, HasCompany, IsAdminOrManager]
    filterset_fields = ["rule_type", "is_active"]
    search_fields = ["name", "description"]
    ordering_fields = ["priority", "created_at", "name"]

    def get_queryset(self):
        return (
            CommissionRule.objects.filter(company_id=self.request.user.company_id)
            .prefetch_related("tiers")
            .order_by("priority", "created_at")
        )

    def perform_create(self, serializer):
        rule = serializer.save(company=self.request.user.company, created_by=self.request.user)
        logger.info("Commission rule created: %s (%s)", rule.pk, rule.rule_type)

    @action(detail=False, methods=["get"])
    def templates(self, request):
        return Response([{"key": key, **template} for key, template in RULE_TEMPLATES.items()])

    @action(detail=False, methods=["post"], url_path="test")
    def dry_run(self, request):
        serializer = RuleDefinitionDryRunSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = dry_run_rule(_draft_rule(serializer.validated_data), serializer.validated_data)
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(result)

    @action(detail=True, methods=["post"], url_path="test")
    def dry_run_saved(self, request, pk=None):
        rule = self.get_object()
        serializer = RuleDryRunSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = dry_run_rule(RuleSpec.from_model(rule), serializer.validated_data)
        except ValueError as exc:
            raise to_api_exception(exc)
        return Response(result)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class CommissionReportViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated, HasCompany, IsAdminOrManager]

    def _window(self, request, required=False):
        start = _parse_date(request.query_params.get("start"), "start")
        end = _parse_date(request.query_params.get("end"), "end")
        if required and (start is None or end is None):
            raise ValidationError({"detail": "Les parametres start et end sont obligatoires."})
        if start and end and end < start:
            raise ValidationError({"end": "La date de fin doit etre posterieure a la date de debut."})
        return start, end

    @action(detail=False, methods=["get"])
    def periods(self, request):
        start, end = self._window(request, required=True)
        granularity = request.query_params.get("granularity", "monthly")
        if granularity not in ("monthly", "quarterly", "yearly"):
            raise ValidationError({"granularity": "Valeurs possibles: monthly, quarterly, yearly."})
        user_ids = request.query_params.getlist("user") or None
        return Response(reports.period_report(request.user.company, start, end, granularity, user_ids=user_ids))

    @action(detail=False, methods=["get"])
    def summary(self, request):
        start, end = self._window(request)
        return Response(reports.status_summary(request.user.company, start, end))

    @action(detail=False, methods=["get"], url_path="payment-ready")
    def payment_ready(self, request):
        return Response(reports.payment_ready_summary(request.user.company))

    @action(detail=False, methods=["get"], url_path="audit-trail")
    def audit_trail(self, request):
        start, end = self._window(request)
        user = None
        if request.query_params.get("user"):
            user = _company_user(request, request.query_params["user"])
        entries = reports.audit_trail(request.user.company, start, end, user=user)
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(entries, request, view=self)
        data = [
            {"commission": str(entry.commission_id), **CommissionApprovalSerializer(entry).data}
            for entry in page
        ]
        return paginator.get_paginated_response(data)
