from django.contrib import admin

from .models import AlertSetting, FollowUp, Infraction


class FollowUpInline(admin.TabularInline):
	model = FollowUp
	extra = 0


@admin.register(Infraction)
class InfractionAdmin(admin.ModelAdmin):
	list_display = (
		"hash",
		"student_code",
		"infraction_type",
		"number",
		"level",
		"occurred_at",
		"trimester_name",
		"attended",
	)
	list_filter = ("infraction_type", "level", "attended", "source", "school_year")
	search_fields = ("hash", "student_code", "description", "detail", "author")
	readonly_fields = ("hash", "external_id", "external_created_at", "external_edited_at", "created_at", "updated_at")
	inlines = [FollowUpInline]


@admin.register(FollowUp)
class FollowUpAdmin(admin.ModelAdmin):
	list_display = ("id", "infraction", "number", "date", "author")
	list_filter = ("number",)


@admin.register(AlertSetting)
class AlertSettingAdmin(admin.ModelAdmin):
	list_display = ("level", "primary_threshold", "secondary_threshold", "updated_at")
