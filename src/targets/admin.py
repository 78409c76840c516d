from django.contrib import admin

from targets.models import AllocationPattern, AllocationPeriod, Target


@admin.register(Target)
class TargetAdmin(admin.ModelAdmin):
    list_display = (
        "name", "user", "company", "period_type", "period_start", "period_end",
        "quota_amount", "commission_rate", "distribution_method", "is_active",
    )
    list_filter = ("company", "period_type", "distribution_method", "is_active")
    search_fields = ("name", "user__email", "user__last_name")
    raw_id_fields = ("user", "parent_target", "created_by")
    readonly_fields = ("deactivated_at",)

    def has_delete_permission(self, request, obj=None):
        # Targets are deactivated, never deleted.
        return False


class AllocationPeriodInline(admin.TabularInline):
    model = AllocationPeriod
    extra = 0
    fields = ("sort_order", "name", "period_start", "period_end", "allocation_pct", "notes")


@admin.register(AllocationPattern)
class AllocationPatternAdmin(admin.ModelAdmin):
    list_display = ("name", "company", "base_period_type", "is_active", "created_at")
    list_filter = ("company", "is_active")
    search_fields = ("name",)
    raw_id_fields = ("created_by",)
    inlines = [AllocationPeriodInline]
