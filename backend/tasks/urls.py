"""
URL configuration for the tasks app.
"""

from django.urls import path
from . import views

urlpatterns = [
    path('', views.api_info, name='api-info'),
    path('tasks/', views.task_list, name='task-list'),
    path('tasks/stats/', views.task_stats, name='task-stats'),
    path('tasks/rank/', views.rank_tasks, name='rank-tasks'),
    path('tasks/sort-orders/', views.get_sort_orders, name='sort-orders'),
    path('tasks/<uuid:task_id>/', views.task_detail, name='task-detail'),
    path('tasks/<uuid:task_id>/toggle/', views.toggle_task, name='task-toggle'),
]
