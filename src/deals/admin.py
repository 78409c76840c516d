from django.contrib import admin

from deals.models import Deal


@admin.register(Deal)
class DealAdmin(admin.ModelAdmin):
    list_display = ("name", "company", "user", "amount", "stage", "close_date", "commission_amount")
    list_filter = ("company", "stage")
    search_fields = ("name", "external_id")
    readonly_fields = ("commission_rate", "commission_amount", "commission_calculated_at")
