from django.contrib import admin

from companies.models import Company, Team


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "subscription_plan", "payment_schedule", "is_active")
    list_filter = ("subscription_plan", "payment_schedule", "is_active")
    search_fields = ("name", "code")


@admin.register(Team)
class TeamAdmin(admin.ModelAdmin):
    list_display = ("name", "company", "manager", "is_active")
    list_filter = ("company", "is_active")
    search_fields = ("name",)
