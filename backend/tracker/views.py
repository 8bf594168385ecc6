import json
import logging
import re
from datetime import date
from decimal import Decimal
from functools import wraps

import pandas as pd
from django.db import connection, transaction, DatabaseError         # type: ignore
from django.db.models import Count, Q                                # type: ignore
from django.forms.models import model_to_dict                        # type: ignore
from django.http import Http404, HttpResponse, JsonResponse          # type: ignore
from django.shortcuts import get_object_or_404                       # type: ignore
from django.views.decorators.http import require_http_methods        # type: ignore

from .analytics import (
    client_rollup, department_budget_rollup, department_rollup, merge_budget_results,
    summarize_budget_results, validate_allocations,
)
from .constants import DATA_TYPES, XLSX_CONTENT_TYPE
from .exceptions import BadPayload, TrackerError
from .forms import BudgetForm, CampaignForm, ClientForm, MasterForm, ResultForm, UploadFileForm
from .importer import ImportOptions, run_import
from .models import Campaign, Client, Master, Team, TeamAllocation
from .queries import (
    budget_queryset, budget_rows, campaign_list, campaign_rows, client_rows, filters_from_request,
    result_queryset, result_rows,
)
from .spreadsheet import (
    ExportOptions, csv_template, export_csv, export_filename, export_workbook, import_workbook,
)

logger = logging.getLogger(__name__)

# ==============================================================================
# SECTION 1: HELPER FUNCTIONS
# ==============================================================================

def _json(data, status=200):
    return JsonResponse(data, status=status, safe=isinstance(data, dict),
                        json_dumps_params={'ensure_ascii': False})


def api_view(func):
    """ Maps client errors to 400 and anything unexpected to a logged 500. """
    @wraps(func)
    def wrapper(request, *args, **kwargs):
        try:
            return func(request, *args, **kwargs)
        except TrackerError as exc:
            logger.warning("%s %s rejected: %s", request.method, request.path, exc.message)
            return _json(exc.as_dict(), status=exc.status_code)
        except Http404:
            return _json({'success': False, 'message': '対象が見つかりません'}, status=404)
        except Exception:
            logger.exception("Unhandled error in %s %s", request.method, request.path)
            return _json({'success': False, 'message': 'サーバーエラーが発生しました'}, status=500)
    return wrapper


def _snake(key):
    return re.sub(r'(?<!^)([A-Z])', r'_\1', key).lower()


def _normalize_keys(data):
    """ camelCase -> snake_case; 'campaign_id' also fills 'campaign' for ModelForms. """
    normalized = {_snake(k): v for k, v in data.items()}
    for key in list(normalized):
        if key.endswith('_id') and key[:-3] not in normalized:
            normalized[key[:-3]] = normalized[key]
    return normalized


def _payload(request):
    """ JSON body as a dict with normalized keys. """
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise BadPayload("リクエストの形式が正しくありません（JSON）")
    if not isinstance(data, dict):
        raise BadPayload("リクエストの形式が正しくありません（JSON）")
    return _normalize_keys(data)


def _form_errors(form):
    return _json({
        'success': False,
        'message': '入力内容に誤りがあります',
        'errors': {field: [str(e) for e in errs] for field, errs in form.errors.items()},
    }, status=400)


def _bound_form(form_class, payload, instance=None):
    """ PUT sends partial objects; fill the gaps from the stored instance. """
    data = model_to_dict(instance, fields=form_class._meta.fields) if instance is not None else {}
    data.update({k: v for k, v in payload.items() if k in form_class._meta.fields})
    return form_class(data, instance=instance)


def _csv_response(text, filename):
    response = HttpResponse(text.encode('utf-8-sig'), content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def _client_payload(client):
    data = model_to_dict(client)
    data['campaign_count'] = getattr(client, 'campaign_count', None)
    return data

# ==============================================================================
# SECTION 2: CLIENTS
# ==============================================================================

@require_http_methods(['GET', 'POST'])
@api_view
def clients_view(request):
    if request.method == 'POST':
        form = ClientForm(_payload(request))
        if not form.is_valid():
            return _form_errors(form)
        client = form.save()
        logger.info("Client created: %s", client.name)
        return _json({'success': True, 'client': _client_payload(client)}, status=201)

    queryset = Client.objects.annotate(campaign_count=Count('campaigns'))
    search = request.GET.get('search', '').strip()
    if search:
        queryset = queryset.filter(Q(name__icontains=search) | Q(agency__icontains=search))
    priority = request.GET.get('priority')
    if priority and priority != 'all':
        queryset = queryset.filter(priority=priority)
    department = request.GET.get('department')
    if department and department != 'all':
        queryset = queryset.filter(business_division=department)
    return _json({'clients': [_client_payload(c) for c in queryset]})


@require_http_methods(['GET', 'PUT', 'DELETE'])
@api_view
def client_detail_view(request, pk):
    client = get_object_or_404(Client, pk=pk)

    if request.method == 'DELETE':
        client.delete()
        logger.info("Client deleted: %s", pk)
        return _json({'success': True})

    if request.method == 'PUT':
        form = _bound_form(ClientForm, _payload(request), instance=client)
        if not form.is_valid():
            return _form_errors(form)
        client = form.save()
        return _json({'success': True, 'client': _client_payload(client)})

    data = _client_payload(client)
    data['campaigns'] = campaign_list({'client': client.pk})
    return _json({'client': data})

# ==============================================================================
# SECTION 3: CAMPAIGNS
# ==============================================================================

def _campaign_from(request, pk, payload):
    campaign_id = pk or payload.get('id') or request.GET.get('id')
    if not campaign_id:
        raise BadPayload("案件IDが指定されていません")
    return get_object_or_404(Campaign, pk=campaign_id)


@require_http_methods(['GET', 'POST', 'PUT', 'DELETE'])
@api_view
def campaigns_view(request, pk=None):
    if request.method == 'GET':
        if pk is not None:
            rows = campaign_list({'campaign': pk})
            if not rows:
                raise Http404
            return _json({'campaign': rows[0]})
        return _json({'campaigns': campaign_list(filters_from_request(request.GET))})

    payload = _payload(request)

    if request.method == 'POST':
        form = CampaignForm(payload)
        if not form.is_valid():
            return _form_errors(form)
        campaign = form.save()
        logger.info("Campaign created: %s", campaign)
        return _json({'success': True, 'campaign': model_to_dict(campaign)}, status=201)

    campaign = _campaign_from(request, pk, payload)

    if request.method == 'DELETE':
        campaign_id = campaign.pk
        campaign.delete()
        logger.info("Campaign deleted: %s", campaign_id)
        return _json({'success': True})

    form = _bound_form(CampaignForm, payload, instance=campaign)
    if not form.is_valid():
        return _form_errors(form)
    campaign = form.save()
    return _json({'success': True, 'campaign': model_to_dict(campaign)})

# ==============================================================================
# SECTION 4: BUDGETS & RESULTS
# ==============================================================================

MERGED_CSV_COLUMNS = [
    'client_name', 'campaign_name', 'year', 'month', 'platform', 'operation_type', 'budget_type',
    'amount', 'actual_spend', 'actual_result', 'budget_utilization', 'roi', 'variance',
]


@require_http_methods(['GET', 'POST'])
@api_view
def budget_results_view(request):
    if request.method == 'POST':
        return _create_budget_result(_payload(request))

    filters = filters_from_request(request.GET)
    rows = merge_budget_results(budget_rows(filters), result_rows(filters))

    if request.GET.get('format') == 'csv':
        text = pd.DataFrame(rows, columns=MERGED_CSV_COLUMNS).to_csv(index=False)
        return _csv_response(text, f"budget-results-{date.today().isoformat()}.csv")

    return _json({'data': rows, 'summary': summarize_budget_results(rows)})


def _allocation(item):
    if not isinstance(item, dict):
        raise BadPayload("チーム配分の形式が正しくありません")
    team_id = item.get('teamId', item.get('team_id'))
    try:
        team_id = int(team_id)
    except (TypeError, ValueError):
        raise BadPayload(f"チームIDが正しくありません: {team_id!r}")
    return {'team_id': team_id, 'percentage': item.get('percentage')}


def _create_budget_result(payload):
    budget_data = payload.get('budget')
    result_data = payload.get('result')
    allocations = [_allocation(a) for a in payload.get('allocations') or []]
    if not budget_data and not result_data:
        raise BadPayload("budget または result を指定してください")
    if allocations and not budget_data:
        raise BadPayload("チーム配分には予算データが必要です")

    problems = validate_allocations(allocations)
    if problems:
        raise BadPayload("チーム配分が正しくありません", problems)

    teams = Team.objects.in_bulk([a['team_id'] for a in allocations])
    missing = [str(a['team_id']) for a in allocations if a['team_id'] not in teams]
    if missing:
        raise BadPayload(f"チームが見つかりません: {', '.join(missing)}")

    forms = []
    if budget_data:
        forms.append(('budget', BudgetForm(_normalize_keys(budget_data))))
    if result_data:
        forms.append(('result', ResultForm(_normalize_keys(result_data))))
    for _, form in forms:
        if not form.is_valid():
            return _form_errors(form)

    response = {'success': True}
    with transaction.atomic():
        for name, form in forms:
            response[name] = model_to_dict(form.save())
        if allocations:
            budget_id = response['budget']['id']
            created = TeamAllocation.objects.bulk_create([
                TeamAllocation(budget_id=budget_id, team=teams[a['team_id']],
                               percentage=Decimal(str(a['percentage'])))
                for a in allocations
            ])
            response['allocations'] = [
                {'team_id': a.team_id, 'percentage': float(a.percentage)} for a in created
            ]
    return _json(response, status=201)

# ==============================================================================
# SECTION 5: MASTERS
# ==============================================================================

@require_http_methods(['GET', 'POST'])
@api_view
def masters_view(request):
    if request.method == 'POST':
        form = MasterForm(_payload(request))
        if not form.is_valid():
            return _form_errors(form)
        master = form.save()
        return _json({'success': True, 'master': model_to_dict(master)}, status=201)

    grouped = {}
    for master in Master.objects.all():
        grouped.setdefault(master.category, []).append(
            {'id': master.pk, 'value': master.value, 'order': master.order}
        )
    return _json({'masters': grouped})

# ==============================================================================
# SECTION 6: CSV IMPORT / EXPORT
# ==============================================================================

@require_http_methods(['POST'])
@api_view
def csv_import_view(request):
    form = UploadFileForm(request.POST, request.FILES)
    if not form.is_valid():
        return _json({'success': False, 'message': 'ファイルが選択されていません'}, status=400)

    upload = request.FILES['file']
    options = ImportOptions.from_json(request.POST.get('options'))
    data_type = request.POST.get('dataType', 'auto')
    logger.info("CSV import: %s (%d bytes) as %s", upload.name, upload.size, data_type)

    summary = run_import(upload.read(), data_type, options)
    return _json(summary.as_dict())


@require_http_methods(['GET'])
@api_view
def csv_template_view(request):
    data_type = request.GET.get('type', 'results')
    if data_type not in DATA_TYPES:
        return _json({'success': False, 'message': f"未対応のデータ型です: {data_type}"}, status=400)

    template = csv_template(data_type)
    if request.GET.get('format') == 'json':
        return _json(template['json'])
    return _csv_response(template['csv'], f"{data_type}_template.csv")


EXPORT_LOADERS = {
    'results': result_rows,
    'budgets': budget_rows,
    'clients': client_rows,
    'campaigns': campaign_rows,
}


@require_http_methods(['GET'])
@api_view
def csv_export_view(request):
    kind = request.GET.get('type', 'results')
    if kind != 'all' and kind not in EXPORT_LOADERS:
        return _json({'success': False, 'message': f"未対応のエクスポート種別です: {kind}"}, status=400)

    filters = filters_from_request(request.GET)
    options = ExportOptions.from_query(request.GET)
    if kind == 'all':
        rows = {name: loader(filters) for name, loader in EXPORT_LOADERS.items()}
    else:
        rows = EXPORT_LOADERS[kind](filters)

    text = export_csv(kind, rows, options)
    logger.info("CSV export: %s", kind)
    return _csv_response(text, f"{kind}_export_{date.today().isoformat()}.csv")

# ==============================================================================
# SECTION 7: XLSX IMPORT / EXPORT
# ==============================================================================

@require_http_methods(['GET', 'POST'])
@api_view
def import_export_view(request):
    if request.method == 'POST':
        form = UploadFileForm(request.POST, request.FILES)
        if not form.is_valid():
            return _json({'success': False, 'message': 'ファイルが選択されていません'}, status=400)
        upload = request.FILES['file']
        if not upload.name.lower().endswith(('.xlsx', '.xlsm')):
            return _json({'success': False, 'message': 'Excelファイル（.xlsx）を選択してください'}, status=400)
        logger.info("Workbook import: %s (%d bytes)", upload.name, upload.size)
        summary = import_workbook(upload.read())
        return _json(summary.as_dict())

    filters = filters_from_request(request.GET)
    content = export_workbook(budget_queryset(filters), result_queryset(filters))
    response = HttpResponse(content, content_type=XLSX_CONTENT_TYPE)
    response['Content-Disposition'] = f'attachment; filename="{export_filename(filters)}"'
    return response

# ==============================================================================
# SECTION 8: ANALYTICS
# ==============================================================================

def _analytics_inputs(request):
    filters = filters_from_request(request.GET)
    return client_rows(filters), campaign_rows(filters), filters


@require_http_methods(['GET'])
@api_view
def client_analytics_view(request):
    clients, campaigns, filters = _analytics_inputs(request)
    return _json(client_rollup(clients, campaigns, budget_rows(filters), result_rows(filters)))


@require_http_methods(['GET'])
@api_view
def department_analytics_view(request):
    clients, campaigns, filters = _analytics_inputs(request)
    return _json(department_rollup(clients, campaigns, budget_rows(filters), result_rows(filters)))


@require_http_methods(['GET'])
@api_view
def department_budget_view(request):
    clients, campaigns, filters = _analytics_inputs(request)
    return _json(department_budget_rollup(clients, campaigns, budget_rows(filters)))

# ==============================================================================
# SECTION 9: HEALTH
# ==============================================================================

@require_http_methods(['GET'])
def health_view(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        return _json({'status': 'error', 'database': 'unreachable'}, status=503)
    return _json({'status': 'ok', 'database': 'ok'})
