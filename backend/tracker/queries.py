"""
Filtered ORM reads, returned as flat dicts for analytics and CSV export.
A filter value of None, '' or 'all' means "no filter".
"""
from datetime import date

from django.db.models import F, Sum          # type: ignore

from .exceptions import BadPayload
from .models import Budget, Campaign, Client, Result

CLIENT_FIELDS = ('id', 'name', 'business_division', 'sales_department', 'sales_channel', 'agency',
                 'priority', 'manager')
CAMPAIGN_FIELDS = ('id', 'client_id', 'name', 'purpose', 'start_year', 'start_month', 'end_year',
                   'end_month', 'total_budget')
MONTHLY_FIELDS = ('id', 'campaign_id', 'year', 'month', 'platform', 'operation_type', 'budget_type')
BUDGET_FIELDS = MONTHLY_FIELDS + ('amount', 'target_kpi', 'target_value')
RESULT_FIELDS = MONTHLY_FIELDS + ('actual_spend', 'actual_result')


NUMERIC_FILTERS = ('year', 'month', 'client', 'campaign')


def filters_from_request(params):
    """ Query-string names -> internal filter names. Numeric filters become ints. """
    filters = {
        'year': params.get('year'),
        'month': params.get('month'),
        'client': params.get('clientId') or params.get('client'),
        'campaign': params.get('campaignId') or params.get('campaign'),
        'platform': params.get('platform'),
        'operation_type': params.get('operationType') or params.get('operation_type'),
        'department': params.get('department') or params.get('businessDivision'),
    }
    for key in NUMERIC_FILTERS:
        if _active(filters, key):
            try:
                filters[key] = int(filters[key])
            except (TypeError, ValueError):
                raise BadPayload(f"{key} は数値で指定してください: {filters[key]!r}")
    return filters


def _active(filters, key):
    value = (filters or {}).get(key)
    return value not in (None, '', 'all')


def filter_monthly(queryset, filters):
    """ Applies the shared filters to a Budget or Result queryset. """
    if _active(filters, 'year'):
        queryset = queryset.filter(year=filters['year'])
    if _active(filters, 'month'):
        queryset = queryset.filter(month=filters['month'])
    if _active(filters, 'client'):
        queryset = queryset.filter(campaign__client_id=filters['client'])
    if _active(filters, 'campaign'):
        queryset = queryset.filter(campaign_id=filters['campaign'])
    if _active(filters, 'platform'):
        queryset = queryset.filter(platform=filters['platform'])
    if _active(filters, 'operation_type'):
        queryset = queryset.filter(operation_type=filters['operation_type'])
    if _active(filters, 'department'):
        queryset = queryset.filter(campaign__client__business_division=filters['department'])
    return queryset


def budget_queryset(filters=None):
    return filter_monthly(Budget.objects.select_related('campaign__client'), filters)


def result_queryset(filters=None):
    return filter_monthly(Result.objects.select_related('campaign__client'), filters)


def _monthly_rows(queryset, fields):
    return list(
        queryset.annotate(campaign_name=F('campaign__name'), client_name=F('campaign__client__name'))
        .values(*fields, 'campaign_name', 'client_name')
    )


def budget_rows(filters=None):
    return _monthly_rows(budget_queryset(filters), BUDGET_FIELDS)


def result_rows(filters=None):
    return _monthly_rows(result_queryset(filters), RESULT_FIELDS)


def client_rows(filters=None):
    queryset = Client.objects.all()
    if _active(filters, 'client'):
        queryset = queryset.filter(pk=filters['client'])
    if _active(filters, 'department'):
        queryset = queryset.filter(business_division=filters['department'])
    return list(queryset.values(*CLIENT_FIELDS))


def campaign_rows(filters=None):
    queryset = Campaign.objects.all()
    if _active(filters, 'client'):
        queryset = queryset.filter(client_id=filters['client'])
    if _active(filters, 'campaign'):
        queryset = queryset.filter(pk=filters['campaign'])
    if _active(filters, 'department'):
        queryset = queryset.filter(client__business_division=filters['department'])
    return list(queryset.annotate(client_name=F('client__name')).values(*CAMPAIGN_FIELDS, 'client_name'))


def campaign_list(filters=None, today=None):
    """ Campaigns with client name, derived status and budget / spend totals. """
    today = today or date.today()
    queryset = Campaign.objects.select_related('client')
    if _active(filters, 'client'):
        queryset = queryset.filter(client_id=filters['client'])
    if _active(filters, 'campaign'):
        queryset = queryset.filter(pk=filters['campaign'])
    budget_totals = dict(
        Budget.objects.values('campaign_id').annotate(total=Sum('amount')).values_list('campaign_id', 'total')
    )
    spend_totals = dict(
        Result.objects.values('campaign_id').annotate(total=Sum('actual_spend'))
        .values_list('campaign_id', 'total')
    )
    rows = []
    for campaign in queryset:
        rows.append({
            'id': campaign.pk,
            'client_id': campaign.client_id,
            'client_name': campaign.client.name,
            'name': campaign.name,
            'purpose': campaign.purpose,
            'start_year': campaign.start_year,
            'start_month': campaign.start_month,
            'end_year': campaign.end_year,
            'end_month': campaign.end_month,
            'total_budget': float(campaign.total_budget),
            'status': campaign.status_at(today.year, today.month),
            'budget_total': float(budget_totals.get(campaign.pk) or 0),
            'spend_total': float(spend_totals.get(campaign.pk) or 0),
        })
    return rows
