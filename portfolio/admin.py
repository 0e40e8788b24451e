from django.contrib import admin

from .models import Expense, Lease, Property, Unit, Vendor, WorkOrder


@admin.register(Property)
class PropertyAdmin(admin.ModelAdmin):
    list_display = ("name", "external_id", "city", "state", "unit_count", "is_active")
    list_filter = ("is_active", "property_type", "state")
    search_fields = ("name", "external_id", "address_line1", "city")


@admin.register(Unit)
class UnitAdmin(admin.ModelAdmin):
    list_display = ("unit_number", "property", "status", "market_rent", "is_active")
    list_filter = ("status", "is_active")
    search_fields = ("unit_number", "external_id", "property__name")


@admin.register(Vendor)
class VendorAdmin(admin.ModelAdmin):
    list_display = ("company_name", "external_id", "vendor_type", "do_not_use", "is_active")
    list_filter = ("do_not_use", "is_active")
    search_fields = ("company_name", "contact_name", "external_id")


@admin.register(Lease)
class LeaseAdmin(admin.ModelAdmin):
    list_display = ("external_id", "unit", "status", "start_date", "end_date", "rent")
    list_filter = ("status",)
    search_fields = ("external_id", "unit__unit_number")


@admin.register(WorkOrder)
class WorkOrderAdmin(admin.ModelAdmin):
    list_display = ("external_id", "property", "status", "priority", "opened_at", "closed_at")
    list_filter = ("status", "priority")
    search_fields = ("external_id", "description", "vendor_name")


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ("external_id", "property", "gl_account_number", "amount", "bill_date")
    list_filter = ("gl_account_number",)
    search_fields = ("external_id", "payee_name", "description")
