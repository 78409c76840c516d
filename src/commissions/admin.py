"""Django admin for the commissions module."""
from django.contrib import admin

from commissions.models import Commission, CommissionApproval, CommissionRule, CommissionRuleTier


class CommissionApprovalInline(admin.TabularInline):
    model = CommissionApproval
    extra = 0
    can_delete = False
    fields = ("performed_at", "action", "previous_status", "new_status", "actor_label", "notes")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Commission)
class CommissionAdmin(admin.ModelAdmin):
    list_display = (
        "deal", "user", "company", "target_name", "commission_amount",
        "commission_rate", "status", "calculated_at",
    )
    list_filter = ("status", "company")
    search_fields = ("deal__name", "user__email", "target_name", "payment_reference")
    raw_id_fields = ("deal", "user", "target", "reviewed_by", "approved_by")
    inlines = [CommissionApprovalInline]

    def get_readonly_fields(self, request, obj=None):
        # Status and amounts only move through the approval workflow.
        return [f.name for f in self.model._meta.fields]

    def has_delete_permission(self, request, obj=None):
        return False


class CommissionRuleTierInline(admin.TabularInline):
    model = CommissionRuleTier
    extra = 0
    ordering = ("position",)
    fields = ("position", "threshold_min", "threshold_max", "rate", "tier_type")


@admin.register(CommissionRule)
class CommissionRuleAdmin(admin.ModelAdmin):
    list_display = ("name", "company", "rule_type", "priority", "is_active", "effective_from", "effective_to")
    list_filter = ("rule_type", "is_active", "company")
    search_fields = ("name", "company__name")
    inlines = [CommissionRuleTierInline]
    readonly_fields = ("created_at", "updated_at")
