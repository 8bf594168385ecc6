"""
CSV import pipeline.

    raw bytes -> decode_upload -> diagnose_csv -> parse_csv (pandas)
              -> detect_data_type -> validate_rows (typed records)
              -> reconcile (one atomic transaction, natural-key upsert)

``run_import`` strings the steps together and is what the view calls.
"""
import io
import json
import logging
import math
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar, Dict, List, Optional

import pandas as pd
from django.conf import settings                    # type: ignore
from django.db import connection, transaction       # type: ignore

from .constants import (
    AMOUNT_FIELDS, CANDIDATE_DELIMITERS, COMMENT_PHRASES, CRITICAL_NUMERIC_FIELDS,
    DATA_TYPES, DEFAULT_BUDGET_TYPE, DEFAULT_PRIORITY, DESCRIPTION_HEADER_MARKERS,
    MOJIBAKE_MARKERS, PRIORITY_WEIGHTS, RECORD_TYPES, SUPPORTED_ENCODINGS, TYPE_KEYWORDS,
)
from .exceptions import (
    CsvParseError, ImportAborted, ImportTimeout, MissingReference, NoValidRows,
    TrackerImportError, UnknownDataType,
)
from .models import Budget, Campaign, Client, Result

logger = logging.getLogger(__name__)

# ==============================================================================
# SECTION 1: OPTIONS & VALUE HELPERS
# ==============================================================================

@dataclass
class ImportOptions:
    delimiter: str = 'auto'
    encoding: str = 'utf-8'
    trim_whitespace: bool = True

    @classmethod
    def from_json(cls, raw):
        """ Accepts the ``options`` form field (camelCase JSON, may be empty). """
        if not raw:
            return cls()
        try:
            data = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except (TypeError, ValueError):
            raise TrackerImportError("オプションの形式が正しくありません（JSON）")
        if not isinstance(data, dict):
            raise TrackerImportError("オプションはJSONオブジェクトで指定してください")

        options = cls()
        delimiter = data.get('delimiter', options.delimiter)
        if delimiter not in CANDIDATE_DELIMITERS + ('auto',):
            raise TrackerImportError(f"未対応の区切り文字です: {delimiter!r}")
        options.delimiter = delimiter
        options.encoding = str(data.get('encoding', options.encoding))
        options.trim_whitespace = bool(data.get('trimWhitespace', options.trim_whitespace))
        return options


def normalize_header(header):
    text = str(header).strip().lower()
    for ch in (' ', '-', '　'):
        text = text.replace(ch, '_')
    return text


def compact(name):
    """ 'operation_type' and 'operationtype' compare equal. """
    return normalize_header(name).replace('_', '')


def parse_number(value):
    """
        Currency-tolerant float parsing: '¥1,200,000' -> 1200000.0.
        Raises ValueError on anything that is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        text = str(value)
        for ch in ('¥', '￥', ',', '，'):
            text = text.replace(ch, '')
        text = text.strip()
        if not text:
            raise ValueError("empty value")
        number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


def parse_integer(value):
    number = parse_number(value)
    if number != int(number):
        raise ValueError(f"not an integer: {value!r}")
    return int(number)


def to_decimal(value):
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal('0.01'))


def decode_upload(raw, encoding='utf-8'):
    codec = SUPPORTED_ENCODINGS.get(str(encoding).strip().lower())
    if codec is None:
        raise TrackerImportError(f"未対応のエンコーディングです: {encoding}")
    return raw.decode(codec, errors='replace')

# ==============================================================================
# SECTION 2: FILE DIAGNOSIS
# ==============================================================================

@dataclass
class FileDiagnosis:
    suggested_delimiter: str = ','
    line_count: int = 0
    first_line_field_count: int = 1
    detected_encoding: str = 'UTF-8'
    encoding_suspect: bool = False
    has_bom: bool = False
    has_comments: bool = False
    data_start_line: int = 0
    issues: List[str] = field(default_factory=list)
    cleaned_content: str = ''
    # Source line number (1-based) of every line kept in cleaned_content.
    line_numbers: List[int] = field(default_factory=list)

    def as_dict(self):
        return {
            'suggestedDelimiter': self.suggested_delimiter,
            'lineCount': self.line_count,
            'firstLineFieldCount': self.first_line_field_count,
            'detectedEncoding': self.detected_encoding,
            'hasComments': self.has_comments,
            'actualDataStartLine': self.data_start_line,
            'issues': list(self.issues),
        }

    def report(self):
        """ Human readable block appended to parse-error messages. """
        lines = [
            "ファイル診断結果:",
            f"• ファイル行数: {self.line_count}",
            f"• 推奨区切り文字: {self.suggested_delimiter!r}",
            f"• 1行目フィールド数: {self.first_line_field_count}",
            f"• エンコーディング: {self.detected_encoding}",
            f"• コメント行検出: {'あり' if self.has_comments else 'なし'}",
        ]
        for idx, issue in enumerate(self.issues, 1):
            lines.append(f"{idx}. {issue}")
        return "\n".join(lines)


def _is_comment_line(stripped):
    return stripped.startswith('#') or any(p in stripped for p in COMMENT_PHRASES)


def diagnose_csv(text, encoding_label='UTF-8'):
    """
        Cleans the raw text (BOM, comment lines, blank lines) and guesses the
        delimiter from the header line. Never raises.
    """
    issues = []
    has_bom = text.startswith('\ufeff')
    if has_bom:
        text = text[1:]
        issues.append('BOM（Byte Order Mark）を除去しました。')

    kept, numbers = [], []
    has_comments = False
    for number, line in enumerate(text.splitlines(), 1):
        stripped = line.strip()
        if not stripped:
            continue
        if _is_comment_line(stripped):
            has_comments = True
            continue
        kept.append(line)
        numbers.append(number)

    if has_comments:
        issues.append('説明行・コメント行を除去しました。')

    header = kept[0] if kept else ''
    counts = {d: header.count(d) for d in CANDIDATE_DELIMITERS}
    # max() keeps the first of equal counts, so ties go to the comma
    delimiter = max(CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    if counts[delimiter] == 0:
        delimiter = ','
        field_count = 1
        issues.append('区切り文字が検出されませんでした。カンマ区切り（,）のCSVファイルである必要があります。')
    else:
        field_count = counts[delimiter] + 1
        if delimiter == ';':
            issues.append('セミコロン区切り（;）が検出されました。カンマ区切り（,）に変更することを推奨します。')
        elif delimiter == '\t':
            issues.append('タブ区切りが検出されました。カンマ区切り（,）に変更することを推奨します。')

    encoding_suspect = any(marker in text for marker in MOJIBAKE_MARKERS)
    detected_encoding = encoding_label.upper()
    if encoding_suspect:
        detected_encoding = f"{detected_encoding} (文字化けの可能性)"
        issues.append('文字化けが検出されました。UTF-8エンコーディングで保存し直してください。')

    if len(kept) < 2:
        issues.append('ヘッダー行のみでデータ行がありません。')
    if field_count < 3:
        issues.append(f'フィールド数が少なすぎます（{field_count}個）。テンプレートと比較してください。')

    return FileDiagnosis(
        suggested_delimiter=delimiter,
        line_count=len(kept),
        first_line_field_count=field_count,
        detected_encoding=detected_encoding,
        encoding_suspect=encoding_suspect,
        has_bom=has_bom,
        has_comments=has_comments,
        data_start_line=numbers[0] if numbers else 0,
        issues=issues,
        cleaned_content="\n".join(kept),
        line_numbers=numbers,
    )

# ==============================================================================
# SECTION 3: PARSING
# ==============================================================================

@dataclass
class SourceRow:
    line: int
    values: Dict[str, str]


@dataclass
class ParsedFile:
    headers: List[str]
    rows: List[SourceRow]
    diagnosis: FileDiagnosis
    delimiter: str


def _is_junk_header(name):
    return (not name or name.startswith('#') or name.startswith('_') or name.startswith('unnamed')
            or any(marker in name for marker in DESCRIPTION_HEADER_MARKERS))


def _looks_like_comment_row(values):
    first = next(iter(values.values()), '').strip()
    return first.startswith('#') or '必須フィールド' in first or '説明' in first


def parse_csv(content, options=None):
    """ Decodes, diagnoses and parses an uploaded CSV into SourceRows. """
    options = options or ImportOptions()
    text = content if isinstance(content, str) else decode_upload(content, options.encoding)
    diagnosis = diagnose_csv(text, options.encoding)
    logger.info("CSV diagnosis: %s", diagnosis.as_dict())
    if diagnosis.encoding_suspect:
        logger.warning("Character encoding issues detected in upload")

    if diagnosis.line_count == 0:
        raise CsvParseError("CSVファイルに有効なデータが含まれていません。", diagnosis)

    delimiter = diagnosis.suggested_delimiter if options.delimiter == 'auto' else options.delimiter
    try:
        df = pd.read_csv(
            io.StringIO(diagnosis.cleaned_content),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as exc:
        logger.warning("CSV parse failed: %s", exc)
        raise CsvParseError(f"CSV形式エラー: {exc}\n\n{diagnosis.report()}", diagnosis)

    df.columns = [normalize_header(c) for c in df.columns]
    headers = [c for c in df.columns if not _is_junk_header(c)]
    df = df[headers].fillna('')

    # Line numbers map 1:1 unless a quoted field spanned several lines.
    line_numbers = diagnosis.line_numbers[1:]
    if len(line_numbers) != len(df):
        line_numbers = [idx + 2 for idx in range(len(df))]

    rows = []
    for line, record in zip(line_numbers, df.to_dict('records')):
        values = {k: (str(v).strip() if options.trim_whitespace else str(v)) for k, v in record.items()}
        if all(not v.strip() for v in values.values()):
            continue
        if _looks_like_comment_row(values):
            continue
        rows.append(SourceRow(line=line, values=values))

    if not rows:
        raise CsvParseError(
            "CSVファイルに有効なデータが含まれていません。\n"
            "• ヘッダー行が正しい形式（campaign_id, year, month等）\n"
            "• データ行が存在する\n"
            "• 説明行やコメント行（#で始まる行）を削除",
            diagnosis,
        )

    logger.info("CSV parsed: %d rows, delimiter=%r", len(rows), delimiter)
    return ParsedFile(headers=headers, rows=rows, diagnosis=diagnosis, delimiter=delimiter)

# ==============================================================================
# SECTION 4: DATA TYPE DETECTION
# ==============================================================================

def detect_data_type(headers):
    """
        Returns one of DATA_TYPES or 'unknown'.
        A type matches when all its required fields are present. Among several
        matches the widest required set wins, then keyword hints break ties.
        Results and budgets share their required fields, so a header with only
        those fields and no keyword is 'unknown' rather than defaulting to
        results; the caller must pass an explicit dataType.
    """
    present = {compact(h) for h in headers}

    def has(field_name):
        return compact(field_name) in present

    matches = [t for t, cfg in RECORD_TYPES.items() if all(has(f) for f in cfg['required'])]
    if len(matches) == 1:
        return matches[0]
    if matches:
        widest = max(len(RECORD_TYPES[t]['required']) for t in matches)
        matches = [t for t in matches if len(RECORD_TYPES[t]['required']) == widest]
        if len(matches) == 1:
            return matches[0]

    candidates = matches or DATA_TYPES
    for data_type, keywords in TYPE_KEYWORDS:
        if data_type in candidates and any(has(k) for k in keywords):
            return data_type

    logger.info("Could not detect data type from headers %s", headers)
    return 'unknown'

# ==============================================================================
# SECTION 5: ROW VALIDATION (typed records)
# ==============================================================================

@dataclass
class ResultRow:
    kind: ClassVar[str] = 'results'
    line: int
    campaign_id: int
    year: int
    month: int
    platform: str
    operation_type: str
    budget_type: str = DEFAULT_BUDGET_TYPE
    actual_spend: float = 0.0
    actual_result: float = 0.0


@dataclass
class BudgetRow:
    kind: ClassVar[str] = 'budgets'
    line: int
    campaign_id: int
    year: int
    month: int
    platform: str
    operation_type: str
    budget_type: str = DEFAULT_BUDGET_TYPE
    amount: float = 0.0
    target_kpi: str = ''
    target_value: float = 0.0


@dataclass
class ClientRow:
    kind: ClassVar[str] = 'clients'
    line: int
    name: str
    business_division: str = ''
    sales_department: str = ''
    sales_channel: str = ''
    agency: str = ''
    priority: str = DEFAULT_PRIORITY


@dataclass
class CampaignRow:
    kind: ClassVar[str] = 'campaigns'
    line: int
    client_id: int
    name: str
    start_year: int
    start_month: int
    purpose: str = ''
    end_year: Optional[int] = None
    end_month: Optional[int] = None
    total_budget: float = 0.0


ROW_CLASSES = {
    'results': ResultRow,
    'budgets': BudgetRow,
    'clients': ClientRow,
    'campaigns': CampaignRow,
}

MONTH_FIELDS = ('month', 'start_month', 'end_month')


def _validate_row(source, config):
    """ Returns (values, problems) for one source row. """
    lookup = {compact(k): v for k, v in source.values.items()}
    problems = []
    values = {}

    missing = [f for f in config['required'] if not str(lookup.get(compact(f), '')).strip()]
    if missing:
        problems.append(f"{', '.join(missing)}は必須です")
    for f in config['required']:
        if f not in missing:
            values[f] = str(lookup[compact(f)]).strip()

    for f in config['optional']:
        raw = str(lookup.get(compact(f), '')).strip()
        values[f] = raw if raw else config['defaults'].get(f)

    for f in CRITICAL_NUMERIC_FIELDS:
        if f not in values:
            continue
        if values[f] in (None, ''):
            values[f] = None
            continue
        try:
            values[f] = parse_integer(values[f])
        except ValueError:
            problems.append(f"{f}は数値である必要があります ({values[f]})")

    for f in AMOUNT_FIELDS:
        if f in values:
            try:
                values[f] = parse_number(values[f])
            except ValueError:
                logger.warning("Line %s: non-numeric %s %r treated as 0", source.line, f, values[f])
                values[f] = 0.0

    for f in MONTH_FIELDS:
        value = values.get(f)
        if isinstance(value, int) and not 1 <= value <= 12:
            problems.append(f"{f}は1〜12で指定してください ({value})")

    if 'priority' in values:
        values['priority'] = str(values['priority']).upper()
        if values['priority'] not in PRIORITY_WEIGHTS:
            problems.append(f"priorityはS/A/B/C/Dのいずれかです ({values['priority']})")

    return values, problems


def validate_rows(rows, data_type):
    """
        Splits SourceRows into typed records and error strings.
        Each rejected row yields exactly one error tagged with its line number.
    """
    config = RECORD_TYPES[data_type]
    row_class = ROW_CLASSES[data_type]
    valid, errors = [], []

    for source in rows:
        if all(not str(v).strip() for v in source.values.values()):
            continue
        values, problems = _validate_row(source, config)
        if problems:
            errors.append(f"{source.line}行目: {' / '.join(problems)}")
            continue
        valid.append(row_class(line=source.line, **values))

    logger.info("Validated %s rows: %d valid, %d errors", data_type, len(valid), len(errors))
    return valid, errors

# ==============================================================================
# SECTION 6: RECONCILIATION (upsert inside one transaction)
# ==============================================================================

@dataclass
class ImportSummary:
    data_type: str
    created: int = 0
    updated: int = 0
    validation_errors: List[str] = field(default_factory=list)
    diagnosis: Optional[FileDiagnosis] = None

    def as_dict(self):
        payload = {
            'success': True,
            'message': f"{self.data_type}データのインポートが完了しました",
            'dataType': self.data_type,
            'created': self.created,
            'updated': self.updated,
            'errors': [],
            'validationErrors': list(self.validation_errors),
        }
        if self.diagnosis is not None:
            payload['diagnosis'] = self.diagnosis.as_dict()
        return payload


class ImportDeadline:
    """ Wall-clock budget for one import transaction. """

    def __init__(self, seconds):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def check(self, line=None):
        if time.monotonic() > self.expires_at:
            where = f"{line}行目で" if line else ""
            raise ImportTimeout(
                f"インポートがタイムアウトしました（{self.seconds}秒）。{where}中断し、すべての変更を取り消しました。"
            )


def apply_statement_timeout(seconds):
    """ Server-side guard for the current transaction (PostgreSQL only). """
    if connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute(f"SET LOCAL statement_timeout = {int(seconds * 1000)}")


class Reconciler:
    """ Upserts typed records by natural key. Parent lookups are cached. """

    def __init__(self):
        self._campaigns = {}
        self._clients = {}

    def campaign(self, campaign_id):
        if campaign_id not in self._campaigns:
            self._campaigns[campaign_id] = Campaign.objects.filter(pk=campaign_id).first()
        found = self._campaigns[campaign_id]
        if found is None:
            raise MissingReference(f"案件ID {campaign_id} が見つかりません")
        return found

    def client(self, client_id):
        if client_id not in self._clients:
            self._clients[client_id] = Client.objects.filter(pk=client_id).first()
        found = self._clients[client_id]
        if found is None:
            raise MissingReference(f"クライアントID {client_id} が見つかりません")
        return found

    def apply(self, record):
        """ Returns True when a row was created, False when updated. """
        handler = getattr(self, f"_upsert_{record.kind}")
        return handler(record)

    def _upsert_results(self, row):
        _, created = Result.objects.update_or_create(
            campaign=self.campaign(row.campaign_id), year=row.year, month=row.month,
            platform=row.platform, operation_type=row.operation_type,
            defaults={
                'budget_type': row.budget_type or DEFAULT_BUDGET_TYPE,
                'actual_spend': to_decimal(row.actual_spend),
                'actual_result': to_decimal(row.actual_result),
            },
        )
        return created

    def _upsert_budgets(self, row):
        _, created = Budget.objects.update_or_create(
            campaign=self.campaign(row.campaign_id), year=row.year, month=row.month,
            platform=row.platform, operation_type=row.operation_type,
            defaults={
                'budget_type': row.budget_type or DEFAULT_BUDGET_TYPE,
                'amount': to_decimal(row.amount),
                'target_kpi': row.target_kpi or '',
                'target_value': to_decimal(row.target_value),
            },
        )
        return created

    def _upsert_clients(self, row):
        _, created = Client.objects.update_or_create(
            name=row.name,
            defaults={
                'business_division': row.business_division or None,
                'sales_department': row.sales_department or None,
                'sales_channel': row.sales_channel or '',
                'agency': row.agency or '',
                'priority': row.priority or DEFAULT_PRIORITY,
            },
        )
        return created

    def _upsert_campaigns(self, row):
        _, created = Campaign.objects.update_or_create(
            client=self.client(row.client_id), name=row.name,
            defaults={
                'purpose': row.purpose or '',
                'start_year': row.start_year,
                'start_month': row.start_month,
                'end_year': row.end_year,
                'end_month': row.end_month,
                'total_budget': to_decimal(row.total_budget),
            },
        )
        return created


def reconcile(records, data_type, timeout=None):
    """
        All-or-nothing upsert. Any missing parent or a blown deadline raises
        ImportAborted and rolls back every row of the batch.
    """
    timeout = timeout or settings.TRACKER_IMPORT_TIMEOUT
    summary = ImportSummary(data_type=data_type)
    reconciler = Reconciler()
    deadline = ImportDeadline(timeout)
    errors = []

    with transaction.atomic():
        apply_statement_timeout(timeout)
        for record in records:
            deadline.check(record.line)
            try:
                created = reconciler.apply(record)
            except MissingReference as exc:
                errors.append(f"{record.line}行目: {exc}")
                continue
            if created:
                summary.created += 1
            else:
                summary.updated += 1

        if errors:
            logger.warning("Import of %s aborted, %d row errors", data_type, len(errors))
            raise ImportAborted("存在しない参照先を含む行があるため、インポートを中止しました。", errors)

    logger.info("Import of %s finished: %d created, %d updated", data_type, summary.created, summary.updated)
    return summary


def run_import(content, data_type='auto', options=None):
    """ Full pipeline for one upload. Returns an ImportSummary. """
    options = options or ImportOptions()
    parsed = parse_csv(content, options)

    requested = (data_type or 'auto').strip().lower()
    if requested == 'auto':
        detected = detect_data_type(parsed.headers)
    elif requested in RECORD_TYPES:
        detected = requested
    else:
        raise TrackerImportError(f"未対応のデータ型です: {data_type}")
    if detected == 'unknown':
        raise UnknownDataType(parsed.headers)
    logger.info("Importing as %s", detected)

    valid, errors = validate_rows(parsed.rows, detected)
    if not valid:
        raise NoValidRows(errors)

    summary = reconcile(valid, detected)
    summary.validation_errors = errors
    summary.diagnosis = parsed.diagnosis
    return summary
