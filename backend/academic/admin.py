from django.contrib import admin

from .models import SchoolYear, Trimester


class TrimesterInline(admin.TabularInline):
    model = Trimester
    extra = 0


@admin.register(SchoolYear)
class SchoolYearAdmin(admin.ModelAdmin):
    list_display = ("name", "start_date", "end_date", "is_active")
    list_filter = ("is_active",)
    inlines = [TrimesterInline]


@admin.register(Trimester)
class TrimesterAdmin(admin.ModelAdmin):
    list_display = ("name", "school_year", "order", "start_date", "end_date")
    list_filter = ("school_year",)
