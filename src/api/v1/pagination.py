"""Pagination classes for API v1."""
from decimal import Decimal

from django.db.models import Sum
from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page number pagination with client-controlled page size."""

    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100


class CommissionPagination(StandardResultsSetPagination):
    """Adds the summed ``commission_amount`` of the whole filtered set."""

    def paginate_queryset(self, queryset, request, view=None):
        total = queryset.aggregate(total=Sum("commission_amount"))["total"]
        self.total_amount = total if total is not None else Decimal("0.00")
        return super().paginate_queryset(queryset, request, view=view)

    def get_paginated_response(self, data):
        response = super().get_paginated_response(data)
        response.data["total_amount"] = f"{self.total_amount:.2f}"
        return response

    def get_paginated_response_schema(self, schema):
        schema = super().get_paginated_response_schema(schema)
        schema["properties"]["total_amount"] = {"type": "string", "example": "1250.00"}
        return schema
