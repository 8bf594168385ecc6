# tracker/constants.py

# ==============================================================================
# CLIENT / MASTER CONFIGURATION
# ==============================================================================
PRIORITY_CHOICES = (
    ('S', 'S'),
    ('A', 'A'),
    ('B', 'B'),
    ('C', 'C'),
    ('D', 'D'),
)
DEFAULT_PRIORITY = 'B'

# Used by the department budget rollup ("average client priority").
PRIORITY_WEIGHTS = {'S': 5, 'A': 4, 'B': 3, 'C': 2, 'D': 1}

MASTER_CATEGORY_CHOICES = (
    ('platform', 'Platform'),
    ('operationType', 'Operation Type'),
    ('revenueType', 'Revenue Type'),
)

UNASSIGNED_DIVISION = '未設定'
DEFAULT_BUDGET_TYPE = '月次予算'

# ==============================================================================
# BUSINESS DIVISIONS
# ==============================================================================
# The spreadsheet uses "部門" names, the database stores "事業部" names.
SHEET_TO_DIVISION = {
    'SNSメディア部門': 'SNSメディア事業部',
    'インフルエンサー部門': 'インフルエンサー事業部',
    '広告部門': '広告事業部',
}
DIVISION_TO_SHEET = {v: k for k, v in SHEET_TO_DIVISION.items()}
VALID_DIVISIONS = tuple(SHEET_TO_DIVISION.values())

# ==============================================================================
# CSV IMPORT: RECORD TYPE CONTRACTS
# ==============================================================================
# Field names are in normalized form (lower-case, snake_case). Header matching
# ignores underscores, so "targetKpi", "target_kpi" and "TargetKPI" are equal.
RECORD_TYPES = {
    'results': {
        'required': ('campaign_id', 'year', 'month', 'platform', 'operation_type'),
        'optional': ('budget_type', 'actual_spend', 'actual_result'),
        'defaults': {
            'budget_type': DEFAULT_BUDGET_TYPE,
            'actual_spend': 0.0,
            'actual_result': 0.0,
        },
        'description': '実績データ: 案件の月次実績（支出額・実績値）を管理',
    },
    'budgets': {
        'required': ('campaign_id', 'year', 'month', 'platform', 'operation_type'),
        'optional': ('budget_type', 'amount', 'target_kpi', 'target_value'),
        'defaults': {
            'budget_type': DEFAULT_BUDGET_TYPE,
            'amount': 0.0,
            'target_kpi': '',
            'target_value': 0.0,
        },
        'description': '予算データ: 案件の月次予算と目標値を管理',
    },
    'clients': {
        'required': ('name',),
        'optional': ('business_division', 'sales_department', 'sales_channel', 'agency', 'priority'),
        'defaults': {
            'business_division': 'SNSメディア事業部',
            'sales_department': 'マーケティング部',
            'sales_channel': '',
            'agency': '',
            'priority': DEFAULT_PRIORITY,
        },
        'description': 'クライアントデータ: 顧客情報と営業情報を管理',
    },
    'campaigns': {
        'required': ('client_id', 'name', 'start_year', 'start_month'),
        'optional': ('purpose', 'end_year', 'end_month', 'total_budget'),
        'defaults': {
            'purpose': '広告運用',
            'total_budget': 0.0,
        },
        'description': '案件データ: クライアントの案件情報を管理',
    },
}

DATA_TYPES = tuple(RECORD_TYPES)

# Fallback hints when the required-field check is not decisive.
# Order matters: first hit wins.
TYPE_KEYWORDS = (
    ('results', ('actual_spend', 'actual_result')),
    ('budgets', ('amount', 'target_kpi', 'target_value')),
    ('clients', ('business_division', 'sales_department', 'sales_channel')),
    ('campaigns', ('total_budget', 'purpose')),
)

# Non-numeric value => row error.
CRITICAL_NUMERIC_FIELDS = ('campaign_id', 'client_id', 'year', 'month', 'start_year', 'start_month',
                           'end_year', 'end_month')
# Non-numeric value => 0.
AMOUNT_FIELDS = ('actual_spend', 'actual_result', 'amount', 'target_value', 'total_budget')

# ==============================================================================
# CSV DIAGNOSIS
# ==============================================================================
COMMENT_PHRASES = ('必須フィールド', 'オプションフィールド', 'フィールド説明')
DESCRIPTION_HEADER_MARKERS = ('説明', 'フィールド')
CANDIDATE_DELIMITERS = (',', ';', '\t')

# Fragments that show up when UTF-8 / Shift_JIS text is decoded with the
# wrong codec.
MOJIBAKE_MARKERS = ('�', 'ã\x81', 'ã\x83', 'ã‚', 'ã€', 'Ã', 'ï¼')

SUPPORTED_ENCODINGS = {
    'utf-8': 'utf-8',
    'utf8': 'utf-8',
    'shift_jis': 'cp932',
    'sjis': 'cp932',
    'cp932': 'cp932',
}

# ==============================================================================
# XLSX IMPORT / EXPORT (fixed 12-column sheet)
# ==============================================================================
SHEET_COLUMNS = [
    '案件', '会社名', '対象月', '部門', '媒体', '運用タイプ', '担当者',
    '金額', '実績', 'ジャンル', '営業先', '営業担当',
]
SHEET_NAME = '予算実績データ'
SHEET_REQUIRED = ('案件', '会社名', '対象月', '媒体', '運用タイプ')
DEFAULT_SALES_DEPARTMENT = '国内営業部'
DEFAULT_SHEET_GENRE = '投稿予算'
SHEET_CLIENT_PRIORITY = 'C'

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

# ==============================================================================
# CSV EXPORT / TEMPLATES
# ==============================================================================
DATE_FORMATS = ('YY/MM', 'YYYY-MM-DD', 'YYYY年MM月')
NUMBER_FORMATS = ('raw', 'formatted', 'currency')

EXPORT_SECTION_TITLES = {
    'results': '# 実績データ',
    'budgets': '# 予算データ',
    'clients': '# クライアントデータ',
    'campaigns': '# 案件データ',
}

TEMPLATE_SAMPLES = {
    'results': {
        'headers': ['campaign_id', 'year', 'month', 'platform', 'operation_type', 'budget_type',
                    'actual_spend', 'actual_result'],
        'rows': [
            ['1', '2024', '1', 'Google', '運用代行', '月次予算', '100000', '300000'],
            ['1', '2024', '2', 'Google', '運用代行', '月次予算', '120000', '350000'],
            ['2', '2024', '1', 'Meta', 'コンサルティング', '月次予算', '80000', '240000'],
        ],
    },
    'budgets': {
        'headers': ['campaign_id', 'year', 'month', 'platform', 'operation_type', 'budget_type',
                    'amount', 'targetKpi', 'targetValue'],
        'rows': [
            ['1', '2024', '1', 'Google', '運用代行', '月次予算', '100000', 'ROAS', '3.0'],
            ['1', '2024', '2', 'Google', '運用代行', '月次予算', '120000', 'ROAS', '3.0'],
            ['2', '2024', '1', 'Meta', 'コンサルティング', '月次予算', '80000', 'CPA', '5000'],
        ],
    },
    'clients': {
        'headers': ['name', 'business_division', 'sales_department', 'sales_channel', 'agency', 'priority'],
        'rows': [
            ['サンプル株式会社', 'SNSメディア事業部', 'マーケティング部', '直接営業', '', 'A'],
            ['テスト商事', 'コマース事業部', 'セールス部', '代理店経由', 'エージェンシーA', 'B'],
        ],
    },
    'campaigns': {
        'headers': ['client_id', 'name', 'purpose', 'start_year', 'start_month', 'end_year', 'end_month',
                    'totalBudget'],
        'rows': [
            ['1', 'ブランド認知キャンペーン', 'ブランド認知向上', '2024', '1', '2024', '12', '1200000'],
            ['1', 'EC売上向上', 'EC売上拡大', '2024', '3', '2024', '12', '800000'],
        ],
    },
}

FIELD_DESCRIPTIONS = {
    'campaign_id': '案件ID（数値）',
    'client_id': 'クライアントID（数値）',
    'year': '年（YYYY形式）',
    'month': '月（1-12）',
    'platform': 'プラットフォーム（Google, Meta, Yahoo, LINE, TikTok等）',
    'operation_type': '運用タイプ（運用代行, コンサルティング, 内製支援）',
    'budget_type': '予算タイプ（月次予算, 四半期予算等）',
    'actual_spend': '実際の支出額（数値）',
    'actual_result': '実績値（数値）',
    'amount': '予算金額（数値）',
    'target_kpi': '目標KPI（ROAS, CPA, CTR等）',
    'target_value': '目標値（数値）',
    'name': '名前（クライアント名または案件名）',
    'business_division': '事業部（SNSメディア事業部, コマース事業部等）',
    'sales_department': '営業部門（マーケティング部, セールス部等）',
    'sales_channel': '営業チャネル（直接営業, 代理店経由等）',
    'agency': '代理店名（任意）',
    'priority': '優先度（S, A, B, C, D）',
    'purpose': '案件の目的・概要',
    'start_year': '開始年（YYYY形式）',
    'start_month': '開始月（1-12）',
    'end_year': '終了年（YYYY形式、任意）',
    'end_month': '終了月（1-12、任意）',
    'total_budget': '総予算（数値）',
}
