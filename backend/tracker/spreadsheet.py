"""
Spreadsheet I/O.

XLSX: the fixed 12-column Japanese sheet (export and import).
CSV: per-record-type exports and import templates.
"""
import io
import logging
import numbers
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

import pandas as pd
from django.conf import settings                    # type: ignore
from django.db import transaction                   # type: ignore

from .constants import (
    DATE_FORMATS, DEFAULT_SALES_DEPARTMENT, DEFAULT_SHEET_GENRE, DIVISION_TO_SHEET,
    EXPORT_SECTION_TITLES, FIELD_DESCRIPTIONS, NUMBER_FORMATS, RECORD_TYPES, SHEET_CLIENT_PRIORITY,
    SHEET_COLUMNS, SHEET_NAME, SHEET_REQUIRED, SHEET_TO_DIVISION, TEMPLATE_SAMPLES,
)
from .exceptions import WorkbookImportError
from .importer import ImportDeadline, apply_statement_timeout, compact, parse_number, to_decimal
from .models import Budget, Campaign, Client, Result, TeamAllocation

logger = logging.getLogger(__name__)

EXCEL_EPOCH = datetime(1899, 12, 30)

# ==============================================================================
# SECTION 1: VALUE FORMATTING / PARSING
# ==============================================================================

def format_yen(value):
    """ 1200000 -> '¥1,200,000' """
    amount = int(round(float(value or 0)))
    sign = '-' if amount < 0 else ''
    return f"{sign}¥{abs(amount):,}"


def format_year_month(year, month, fmt='YY/MM'):
    if fmt == 'YYYY-MM-DD':
        return f"{int(year):04d}-{int(month):02d}-01"
    if fmt == 'YYYY年MM月':
        return f"{int(year)}年{int(month):02d}月"
    return f"{int(year) % 100:02d}/{int(month):02d}"


_YEAR_MONTH_PATTERNS = (
    (re.compile(r'^(\d{2})/(\d{1,2})$'), lambda y: 2000 + int(y)),
    (re.compile(r'^(\d{4})[-/](\d{1,2})$'), int),
    (re.compile(r'^(\d{4})-(\d{1,2})-\d{1,2}(?:[ T].*)?$'), int),
    (re.compile(r'^(\d{4})年\s*(\d{1,2})月'), int),
)


def _is_blank(value):
    if value is None:
        return True
    if isinstance(value, float) and pd.isnull(value):
        return True
    return isinstance(value, str) and not value.strip()


def parse_year_month(value):
    """
        Accepts Excel serial numbers, datetimes, 'YY/MM', 'YYYY-MM',
        'YYYY-MM-DD' and 'YYYY年MM月'. Returns (year, month).
        Raises ValueError for anything else.
    """
    if _is_blank(value):
        raise ValueError("対象月が空です")

    if isinstance(value, (datetime, date)):
        return value.year, value.month

    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        serial = float(value)
        if serial <= 0:
            raise ValueError(f"対象月の形式が不正です: {value}")
        moment = EXCEL_EPOCH + timedelta(days=serial)
        return moment.year, moment.month

    text = str(value).strip()
    for pattern, to_year in _YEAR_MONTH_PATTERNS:
        match = pattern.match(text)
        if match:
            year, month = to_year(match.group(1)), int(match.group(2))
            if not 1 <= month <= 12:
                raise ValueError(f"対象月の月が範囲外です: {text}")
            return year, month

    if re.fullmatch(r'\d+(\.\d+)?', text):
        return parse_year_month(float(text))

    raise ValueError(f"対象月の形式が不正です: {text}")


def parse_amount(value):
    """ '¥1,200,000' -> 1200000.0, blank -> 0.0, junk -> ValueError. """
    if _is_blank(value):
        return 0.0
    return parse_number(value)


def division_from_sheet(label):
    """ Sheet '部門' label -> stored business division. None for blank. """
    if _is_blank(label):
        return None
    text = str(label).strip()
    if text in SHEET_TO_DIVISION:
        return SHEET_TO_DIVISION[text]
    if text in DIVISION_TO_SHEET:
        return text
    raise ValueError(f"不明な部門です: {text}")


def division_to_sheet(division):
    if not division:
        return ''
    return DIVISION_TO_SHEET.get(division, division)

# ==============================================================================
# SECTION 2: XLSX EXPORT
# ==============================================================================

def sheet_rows(budgets, results):
    """ Budget rows joined to their result by natural key. """
    result_map = {r.natural_key(): r for r in results}
    rows = []
    for budget in budgets:
        result = result_map.get(budget.natural_key())
        campaign = budget.campaign
        client = campaign.client
        rows.append({
            '案件': campaign.name,
            '会社名': client.name,
            '対象月': format_year_month(budget.year, budget.month, 'YY/MM'),
            '部門': division_to_sheet(client.business_division),
            '媒体': budget.platform,
            '運用タイプ': budget.operation_type,
            '担当者': '',
            '金額': format_yen(budget.amount),
            '実績': format_yen(result.actual_spend if result else 0),
            'ジャンル': campaign.purpose or '',
            '営業先': client.sales_department or DEFAULT_SALES_DEPARTMENT,
            '営業担当': client.manager or '',
        })
    return rows


def export_workbook(budgets, results):
    """ Returns the .xlsx file contents. """
    df = pd.DataFrame(sheet_rows(budgets, results), columns=SHEET_COLUMNS)
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False)
        worksheet = writer.sheets[SHEET_NAME]
        for cell in worksheet[1]:
            worksheet.column_dimensions[cell.column_letter].width = 16
    buffer.seek(0)
    logger.info("Exported workbook with %d rows", len(df))
    return buffer.getvalue()


def export_filename(filters, today=None):
    """
        budget-data[-Y2025][-M8][-client-filtered][-<platform>][-<operationType>]
        [-dept-filtered]-YYYY-MM-DD.xlsx
    """
    today = today or date.today()

    def active(key):
        value = filters.get(key)
        return value not in (None, '', 'all')

    parts = ['budget-data']
    if active('year'):
        parts.append(f"Y{filters['year']}")
    if active('month'):
        parts.append(f"M{filters['month']}")
    if active('client'):
        parts.append('client-filtered')
    if active('platform'):
        parts.append(str(filters['platform']))
    if active('operation_type'):
        parts.append(str(filters['operation_type']))
    if active('department'):
        parts.append('dept-filtered')
    parts.append(today.isoformat())
    return '-'.join(parts) + '.xlsx'

# ==============================================================================
# SECTION 3: XLSX IMPORT
# ==============================================================================

@dataclass
class SheetRow:
    line: int
    campaign_name: str
    company: str
    year: int
    month: int
    division: Optional[str]
    platform: str
    operation_type: str
    amount: float
    actual: float
    genre: str
    sales_department: str


@dataclass
class WorkbookImportSummary:
    processed: int = 0
    clients_created: int = 0
    campaigns_created: int = 0
    budgets_created: int = 0
    budgets_updated: int = 0
    results_created: int = 0
    results_updated: int = 0
    errors: List[str] = field(default_factory=list)
    integrity: dict = field(default_factory=dict)

    def as_dict(self):
        return {
            'success': True,
            'message': f"{self.processed}件のデータをインポートしました",
            'processed': self.processed,
            'clientsCreated': self.clients_created,
            'campaignsCreated': self.campaigns_created,
            'budgetsCreated': self.budgets_created,
            'budgetsUpdated': self.budgets_updated,
            'resultsCreated': self.results_created,
            'resultsUpdated': self.results_updated,
            'errors': list(self.errors),
            'integrity': dict(self.integrity),
        }


def _cell_text(value):
    if _is_blank(value):
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_sheet_rows(content):
    """ Positional read of the first sheet. Returns (rows, errors). """
    try:
        df = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None, dtype=object)
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as exc:
        logger.warning("Workbook read failed: %s", exc)
        raise WorkbookImportError(f"Excelファイルを読み込めませんでした: {exc}")

    rows, errors = [], []
    for idx, values in enumerate(df.itertuples(index=False, name=None)):
        if idx == 0:
            continue
        line = idx + 1
        cells = dict(zip(SHEET_COLUMNS, list(values) + [None] * (len(SHEET_COLUMNS) - len(values))))
        if all(_is_blank(v) for v in cells.values()):
            continue

        missing = [c for c in SHEET_REQUIRED if _is_blank(cells[c])]
        if missing:
            errors.append(f"{line}行目: {', '.join(missing)}は必須です")
            continue

        try:
            year, month = parse_year_month(cells['対象月'])
            division = division_from_sheet(cells['部門'])
            amount = parse_amount(cells['金額'])
            actual = parse_amount(cells['実績'])
        except ValueError as exc:
            errors.append(f"{line}行目: {exc}")
            continue

        rows.append(SheetRow(
            line=line,
            campaign_name=_cell_text(cells['案件']),
            company=_cell_text(cells['会社名']),
            year=year,
            month=month,
            division=division,
            platform=_cell_text(cells['媒体']),
            operation_type=_cell_text(cells['運用タイプ']),
            amount=amount,
            actual=actual,
            genre=_cell_text(cells['ジャンル']),
            sales_department=_cell_text(cells['営業先']),
        ))
    return rows, errors


def integrity_snapshot():
    return {
        'clients': Client.objects.count(),
        'campaigns': Campaign.objects.count(),
        'budgets': Budget.objects.count(),
        'results': Result.objects.count(),
        'allocations': TeamAllocation.objects.count(),
    }


def import_workbook(content, timeout=None):
    """
        Upserts every valid sheet row inside one transaction.
        Row-level problems are reported and skipped; storage errors abort.
    """
    rows, errors = read_sheet_rows(content)
    if not rows:
        raise WorkbookImportError("インポート可能なデータがありません", errors)

    timeout = timeout or settings.TRACKER_IMPORT_TIMEOUT
    deadline = ImportDeadline(timeout)
    summary = WorkbookImportSummary(errors=errors)
    clients, campaigns = {}, {}

    with transaction.atomic():
        apply_statement_timeout(timeout)
        for row in rows:
            deadline.check(row.line)

            client = clients.get(row.company)
            if client is None:
                client, created = Client.objects.get_or_create(
                    name=row.company,
                    defaults={
                        'business_division': row.division,
                        'sales_department': row.sales_department or DEFAULT_SALES_DEPARTMENT,
                        'priority': SHEET_CLIENT_PRIORITY,
                    },
                )
                clients[row.company] = client
                summary.clients_created += int(created)

            campaign_key = (client.pk, row.campaign_name)
            campaign = campaigns.get(campaign_key)
            if campaign is None:
                campaign, created = Campaign.objects.get_or_create(
                    client=client, name=row.campaign_name,
                    defaults={
                        'purpose': row.genre or DEFAULT_SHEET_GENRE,
                        'start_year': row.year,
                        'start_month': row.month,
                        'total_budget': to_decimal(row.amount),
                    },
                )
                campaigns[campaign_key] = campaign
                summary.campaigns_created += int(created)

            key = {
                'campaign': campaign, 'year': row.year, 'month': row.month,
                'platform': row.platform, 'operation_type': row.operation_type,
            }
            _, created = Budget.objects.update_or_create(**key, defaults={'amount': to_decimal(row.amount)})
            if created:
                summary.budgets_created += 1
            else:
                summary.budgets_updated += 1

            _, created = Result.objects.update_or_create(**key, defaults={
                'actual_spend': to_decimal(row.actual),
                'actual_result': to_decimal(row.actual),
            })
            if created:
                summary.results_created += 1
            else:
                summary.results_updated += 1

            summary.processed += 1

        summary.integrity = integrity_snapshot()

    logger.info("Workbook import: %d rows processed, %d skipped", summary.processed, len(errors))
    return summary

# ==============================================================================
# SECTION 4: CSV EXPORT / TEMPLATES
# ==============================================================================

CSV_EXPORT_COLUMNS = {
    'results': ['id', 'campaign_id', 'campaign_name', 'client_name', 'year', 'month', 'target_month',
                'platform', 'operation_type', 'budget_type', 'actual_spend', 'actual_result'],
    'budgets': ['id', 'campaign_id', 'campaign_name', 'client_name', 'year', 'month', 'target_month',
                'platform', 'operation_type', 'budget_type', 'amount', 'target_kpi', 'target_value'],
    'clients': ['id', 'name', 'business_division', 'sales_department', 'sales_channel', 'agency',
                'priority', 'manager'],
    'campaigns': ['id', 'client_id', 'client_name', 'name', 'purpose', 'start_year', 'start_month',
                  'end_year', 'end_month', 'total_budget'],
}
MONEY_COLUMNS = ('actual_spend', 'actual_result', 'amount', 'target_value', 'total_budget')


@dataclass
class ExportOptions:
    date_format: str = 'YY/MM'
    number_format: str = 'raw'
    delimiter: str = ','
    include_headers: bool = True

    @classmethod
    def from_query(cls, params):
        options = cls()
        date_format = params.get('dateFormat', options.date_format)
        number_format = params.get('numberFormat', options.number_format)
        delimiter = params.get('delimiter', options.delimiter)
        if date_format in DATE_FORMATS:
            options.date_format = date_format
        else:
            logger.warning("Unknown date format %r, using %s", date_format, options.date_format)
        if number_format in NUMBER_FORMATS:
            options.number_format = number_format
        else:
            logger.warning("Unknown number format %r, using %s", number_format, options.number_format)
        if delimiter in ('tab', '\t'):
            options.delimiter = '\t'
        elif delimiter in (',', ';'):
            options.delimiter = delimiter
        options.include_headers = str(params.get('includeHeaders', 'true')).lower() != 'false'
        return options


def format_number(value, number_format='raw'):
    if _is_blank(value) or pd.isnull(value):
        return ''
    number = float(value)
    if number_format == 'currency':
        return format_yen(number)
    if number_format == 'formatted':
        return f"{number:,.0f}" if number.is_integer() else f"{number:,.2f}"
    return str(int(number)) if number.is_integer() else str(number)


def _export_frame(kind, rows, options):
    df = pd.DataFrame(list(rows), columns=CSV_EXPORT_COLUMNS[kind])
    if 'target_month' in df.columns and not df.empty:
        df['target_month'] = [format_year_month(y, m, options.date_format)
                              for y, m in zip(df['year'], df['month'])]
    for column in MONEY_COLUMNS:
        if column in df.columns:
            df[column] = [format_number(v, options.number_format) for v in df[column]]
    return df.fillna('')


def export_csv(kind, rows, options=None):
    """
        ``rows`` is a list of flat dicts for one kind, or for kind 'all' a
        dict of kind -> rows. Returns the CSV text.
    """
    options = options or ExportOptions()
    if kind == 'all':
        sections = []
        for section_kind, section_rows in rows.items():
            df = _export_frame(section_kind, section_rows, options)
            body = df.to_csv(sep=options.delimiter, index=False, header=options.include_headers)
            sections.append(f"{EXPORT_SECTION_TITLES[section_kind]}\n{body}")
        return "\n".join(sections)

    if kind not in CSV_EXPORT_COLUMNS:
        raise KeyError(kind)
    df = _export_frame(kind, rows, options)
    return df.to_csv(sep=options.delimiter, index=False, header=options.include_headers)


def _field_description(header):
    target = compact(header)
    for name, description in FIELD_DESCRIPTIONS.items():
        if compact(name) == target:
            return description
    return ''


def csv_template(data_type):
    """ Returns {'csv': text, 'json': description dict} for one record type. """
    sample = TEMPLATE_SAMPLES[data_type]
    config = RECORD_TYPES[data_type]
    required = {compact(f) for f in config['required']}

    csv_text = pd.DataFrame(sample['rows'], columns=sample['headers']).to_csv(index=False)
    description = {
        'dataType': data_type,
        'description': config['description'],
        'headers': list(sample['headers']),
        'fields': [
            {
                'name': header,
                'description': _field_description(header),
                'required': compact(header) in required,
            }
            for header in sample['headers']
        ],
        'sample': [dict(zip(sample['headers'], row)) for row in sample['rows']],
    }
    return {'csv': csv_text, 'json': description}
