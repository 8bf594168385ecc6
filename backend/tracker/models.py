from django.db import models            # type: ignore

from .constants import (
    DEFAULT_BUDGET_TYPE, DEFAULT_PRIORITY, PRIORITY_CHOICES, MASTER_CATEGORY_CHOICES,
)

# ==============================================================================
# 1. CLIENTS & CAMPAIGNS
# ==============================================================================

class Client(models.Model):
    """
    An advertiser account. ``business_division`` is the organizational tag
    used by the department rollups.
    """
    name = models.CharField(max_length=255, unique=True)
    business_division = models.CharField(max_length=100, null=True, blank=True, verbose_name="事業部")
    sales_department = models.CharField(max_length=100, null=True, blank=True, verbose_name="営業部門")
    sales_channel = models.CharField(max_length=100, blank=True, default='', verbose_name="営業チャネル")
    agency = models.CharField(max_length=255, blank=True, default='', verbose_name="代理店")
    priority = models.CharField(max_length=1, choices=PRIORITY_CHOICES, default=DEFAULT_PRIORITY)
    manager = models.CharField(max_length=100, blank=True, default='', verbose_name="営業担当")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Campaign(models.Model):
    """ A client's advertising project. (client, name) is the natural key. """
    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name='campaigns')
    name = models.CharField(max_length=255)
    purpose = models.CharField(max_length=255, blank=True, default='')

    start_year = models.PositiveIntegerField()
    start_month = models.PositiveSmallIntegerField()
    end_year = models.PositiveIntegerField(null=True, blank=True)
    end_month = models.PositiveSmallIntegerField(null=True, blank=True)

    total_budget = models.DecimalField(max_digits=15, decimal_places=2, default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-start_year', '-start_month', 'name']
        constraints = [
            models.UniqueConstraint(fields=['client', 'name'], name='uniq_campaign_client_name'),
        ]

    def __str__(self):
        return f"{self.client.name} - {self.name}"

    def status_at(self, year, month):
        """ planned / active / completed relative to the given month. """
        current = (year, month)
        if current < (self.start_year, self.start_month):
            return 'planned'
        if self.end_year and self.end_month and current > (self.end_year, self.end_month):
            return 'completed'
        return 'active'


# ==============================================================================
# 2. MONTHLY BUDGETS & RESULTS (keyed by the natural key)
# ==============================================================================

class MonthlyRecord(models.Model):
    """
    Shared natural key: (campaign, year, month, platform, operation_type).
    Imports upsert on this key.
    """
    campaign = models.ForeignKey(Campaign, on_delete=models.CASCADE, related_name='%(class)ss')
    year = models.PositiveIntegerField()
    month = models.PositiveSmallIntegerField()
    platform = models.CharField(max_length=100, verbose_name="媒体")
    operation_type = models.CharField(max_length=100, verbose_name="運用タイプ")
    budget_type = models.CharField(max_length=100, default=DEFAULT_BUDGET_TYPE, verbose_name="予算タイプ")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    NATURAL_KEY = ('campaign_id', 'year', 'month', 'platform', 'operation_type')

    class Meta:
        abstract = True
        ordering = ['-year', '-month', 'platform']

    def natural_key(self):
        return tuple(getattr(self, f) for f in self.NATURAL_KEY)


class Budget(MonthlyRecord):
    amount = models.DecimalField(max_digits=15, decimal_places=2, default=0)
    target_kpi = models.CharField(max_length=50, blank=True, default='')
    target_value = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)

    class Meta(MonthlyRecord.Meta):
        constraints = [
            models.UniqueConstraint(
                fields=['campaign', 'year', 'month', 'platform', 'operation_type'],
                name='uniq_budget_natural_key',
            ),
        ]

    def __str__(self):
        return f"{self.campaign} {self.year}/{self.month:02d} {self.platform} ({self.amount})"


class Result(MonthlyRecord):
    actual_spend = models.DecimalField(max_digits=15, decimal_places=2, default=0)
    actual_result = models.DecimalField(max_digits=15, decimal_places=2, default=0)

    class Meta(MonthlyRecord.Meta):
        constraints = [
            models.UniqueConstraint(
                fields=['campaign', 'year', 'month', 'platform', 'operation_type'],
                name='uniq_result_natural_key',
            ),
        ]

    def __str__(self):
        return f"{self.campaign} {self.year}/{self.month:02d} {self.platform} ({self.actual_spend})"


# ==============================================================================
# 3. TEAMS
# ==============================================================================

class Team(models.Model):
    name = models.CharField(max_length=100, unique=True)
    color = models.CharField(max_length=20, blank=True, default='')
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class TeamAllocation(models.Model):
    """ Share of a budget handled by a team. Shares of one budget sum to 100. """
    budget = models.ForeignKey(Budget, on_delete=models.CASCADE, related_name='allocations')
    team = models.ForeignKey(Team, on_delete=models.CASCADE, related_name='allocations')
    percentage = models.DecimalField(max_digits=5, decimal_places=2)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['budget', 'team'], name='uniq_allocation_budget_team'),
        ]

    def __str__(self):
        return f"{self.team.name}: {self.percentage}%"


# ==============================================================================
# 4. CONFIGURATION (Admin Managed)
# ==============================================================================

class Master(models.Model):
    """ Lookup values for dropdowns (platforms, operation types, revenue types). """
    category = models.CharField(max_length=50, choices=MASTER_CATEGORY_CHOICES)
    value = models.CharField(max_length=100)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['category', 'order']
        constraints = [
            models.UniqueConstraint(fields=['category', 'value'], name='uniq_master_category_value'),
        ]

    def __str__(self):
        return f"{self.category}: {self.value}"
