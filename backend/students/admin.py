from django.contrib import admin

from .models import Student


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ("code", "last_name", "first_name", "grade", "section", "school_year", "is_active")
    list_filter = ("school_year", "section", "is_active")
    search_fields = ("code", "first_name", "last_name", "grade")
