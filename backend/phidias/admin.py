from django.contrib import admin

from .models import SeguimientoConfig, SyncRun, SyncWatermark


@admin.register(SeguimientoConfig)
class SeguimientoConfigAdmin(admin.ModelAdmin):
    list_display = ("name", "poll_id", "infraction_type", "academic_level", "school_year", "is_active")
    list_filter = ("school_year", "academic_level", "infraction_type", "is_active")
    search_fields = ("name", "poll_id")


@admin.register(SyncRun)
class SyncRunAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "sync_type",
        "status",
        "students_processed",
        "records_created",
        "records_updated",
        "triggered_by",
        "started_at",
        "duration_seconds",
    )
    list_filter = ("status", "sync_type", "school_year")
    search_fields = ("triggered_by",)
    readonly_fields = [field.name for field in SyncRun._meta.fields]


@admin.register(SyncWatermark)
class SyncWatermarkAdmin(admin.ModelAdmin):
    list_display = ("table", "last_synced_at", "rows_imported", "updated_at")
