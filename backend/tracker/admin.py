from django.contrib import admin            # type: ignore
from .models import Budget, Campaign, Client, Master, Result, Team, TeamAllocation

# --- 1. Clients & Campaigns ---
class CampaignInline(admin.TabularInline):
    model = Campaign
    extra = 0
    fields = ('name', 'purpose', 'start_year', 'start_month', 'end_year', 'end_month', 'total_budget')
    show_change_link = True

@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ('name', 'business_division', 'sales_department', 'priority', 'manager')
    list_filter = ('business_division', 'priority')
    search_fields = ('name', 'agency', 'manager')
    inlines = [CampaignInline]

@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = ('name', 'client', 'start_year', 'start_month', 'total_budget')
    list_filter = ('start_year', 'client__business_division')
    search_fields = ('name', 'client__name')
    autocomplete_fields = ['client']

# --- 2. Monthly Budgets & Results ---
class TeamAllocationInline(admin.TabularInline):
    model = TeamAllocation
    extra = 0
    verbose_name = "Team Share"
    verbose_name_plural = "Team Allocations (must total 100%)"

@admin.register(Budget)
class BudgetAdmin(admin.ModelAdmin):
    list_display = ('campaign', 'year', 'month', 'platform', 'operation_type', 'amount', 'get_allocations')
    list_filter = ('year', 'platform', 'operation_type', 'budget_type')
    search_fields = ('campaign__name', 'campaign__client__name')
    inlines = [TeamAllocationInline]

    @admin.display(description="Team Shares")
    def get_allocations(self, obj):
        shares = obj.allocations.select_related('team')
        if not shares.exists():
            return "-"
        return ", ".join([f"{a.team.name} ({a.percentage}%)" for a in shares])

@admin.register(Result)
class ResultAdmin(admin.ModelAdmin):
    list_display = ('campaign', 'year', 'month', 'platform', 'operation_type', 'actual_spend', 'actual_result')
    list_filter = ('year', 'platform', 'operation_type')
    search_fields = ('campaign__name', 'campaign__client__name')

# --- 3. Teams & Masters ---
@admin.register(Team)
class TeamAdmin(admin.ModelAdmin):
    list_display = ('name', 'color', 'is_active')
    list_editable = ('color', 'is_active')

@admin.register(Master)
class MasterAdmin(admin.ModelAdmin):
    list_display = ('category', 'value', 'order')
    list_editable = ('order',)
    list_filter = ('category',)
