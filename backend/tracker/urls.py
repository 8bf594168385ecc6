# tracker/urls.py

from django.urls import path                # type: ignore
from . import views

urlpatterns = [
    # --- Clients & Campaigns ---
    path('clients', views.clients_view, name='clients'),
    path('clients/<int:pk>', views.client_detail_view, name='client_detail'),
    path('campaigns', views.campaigns_view, name='campaigns'),
    path('campaigns/<int:pk>', views.campaigns_view, name='campaign_detail'),

    # --- Budgets, Results & Masters ---
    path('budget-results', views.budget_results_view, name='budget_results'),
    path('masters', views.masters_view, name='masters'),

    # --- CSV Import / Export ---
    path('csv-import', views.csv_import_view, name='csv_import'),
    path('csv-template', views.csv_template_view, name='csv_template'),
    path('csv-export', views.csv_export_view, name='csv_export'),

    # --- Excel Import / Export ---
    path('import-export', views.import_export_view, name='import_export'),

    # --- Analytics ---
    path('analytics/clients', views.client_analytics_view, name='client_analytics'),
    path('analytics/departments', views.department_analytics_view, name='department_analytics'),
    path('analytics/departments/budget', views.department_budget_view, name='department_budget'),

    path('health', views.health_view, name='health'),
]
