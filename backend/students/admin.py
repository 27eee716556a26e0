from django.contrib import admin
from .models import Student


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('rut', 'first_name', 'last_name', 'course_name', 'guardian')
    search_fields = ('first_name', 'last_name', 'rut', 'guardian__username', 'guardian__rut')
    list_filter = ('course_name',)
    raw_id_fields = ('guardian',)
