from django.contrib import admin

from .models import Task


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = ('title', 'owner', 'priority', 'category', 'deadline', 'completed', 'sort_score')
    list_filter = ('completed', 'priority', 'category')
    search_fields = ('title', 'description')
    readonly_fields = ('created_at', 'updated_at', 'sort_score')
