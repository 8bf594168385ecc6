from unittest import mock

from django.test import SimpleTestCase, TestCase      # type: ignore

from tracker.exceptions import (
    CsvParseError, ImportAborted, ImportTimeout, NoValidRows, TrackerImportError, UnknownDataType,
)
from tracker.importer import (
    ImportDeadline, ImportOptions, decode_upload, detect_data_type, diagnose_csv, parse_number,
    parse_csv, reconcile, run_import, validate_rows,
)
from tracker.models import Budget, Campaign, Client, Result

# ==============================================================================
# DIAGNOSIS & PARSING
# ==============================================================================

class DiagnoseCsvTests(SimpleTestCase):

    def test_strips_bom_and_comment_lines(self):
        text = "\ufeff# 必須フィールド: campaign_id\ncampaign_id,year,month\n1,2025,8\n"
        diagnosis = diagnose_csv(text)
        self.assertTrue(diagnosis.has_bom)
        self.assertTrue(diagnosis.has_comments)
        self.assertEqual(diagnosis.cleaned_content, "campaign_id,year,month\n1,2025,8")
        self.assertEqual(diagnosis.line_numbers, [2, 3])
        self.assertEqual(diagnosis.data_start_line, 2)

    def test_detects_semicolon_delimiter(self):
        diagnosis = diagnose_csv("a;b;c\n1;2;3")
        self.assertEqual(diagnosis.suggested_delimiter, ';')
        self.assertEqual(diagnosis.first_line_field_count, 3)
        self.assertTrue(any('セミコロン' in issue for issue in diagnosis.issues))

    def test_delimiter_tie_prefers_comma(self):
        diagnosis = diagnose_csv("a;b,c\n1;2,3")
        self.assertEqual(diagnosis.suggested_delimiter, ',')

    def test_flags_mojibake(self):
        diagnosis = diagnose_csv("name,x,y\nã‚µãƒ³ãƒ—ãƒ«,1,2")
        self.assertTrue(diagnosis.encoding_suspect)
        self.assertIn('文字化け', diagnosis.detected_encoding)

    def test_header_only_is_reported(self):
        diagnosis = diagnose_csv("campaign_id,year,month\n")
        self.assertIn('ヘッダー行のみでデータ行がありません。', diagnosis.issues)


class ReadCsvRowsTests(SimpleTestCase):

    def test_normalizes_headers_and_drops_junk_columns(self):
        text = " Campaign ID ,Year,Month,#memo,説明\n1,2025,8,x,y\n"
        parsed = parse_csv(text)
        self.assertEqual(parsed.headers, ['campaign_id', 'year', 'month'])
        self.assertEqual(parsed.rows[0].values, {'campaign_id': '1', 'year': '2025', 'month': '8'})

    def test_skips_blank_rows_and_keeps_source_lines(self):
        text = "name,agency,priority\n\nAcme,,A\n,,\nBeta,,B\n"
        parsed = parse_csv(text)
        self.assertEqual([r.line for r in parsed.rows], [3, 5])

    def test_empty_file_raises_with_diagnosis(self):
        with self.assertRaises(CsvParseError) as ctx:
            parse_csv("# only a comment\n")
        self.assertIn('diagnosis', ctx.exception.as_dict())

    def test_decodes_shift_jis(self):
        raw = "name,agency,priority\nサンプル株式会社,,A\n".encode('cp932')
        parsed = parse_csv(raw, ImportOptions(encoding='shift_jis'))
        self.assertEqual(parsed.rows[0].values['name'], 'サンプル株式会社')

    def test_unknown_encoding_rejected(self):
        with self.assertRaises(TrackerImportError):
            decode_upload(b"a,b", 'latin-9')

    def test_options_from_json(self):
        options = ImportOptions.from_json('{"delimiter": ";", "encoding": "shift_jis", "trimWhitespace": false}')
        self.assertEqual(options.delimiter, ';')
        self.assertEqual(options.encoding, 'shift_jis')
        self.assertFalse(options.trim_whitespace)
        with self.assertRaises(TrackerImportError):
            ImportOptions.from_json('not json')

# ==============================================================================
# TYPE DETECTION & VALIDATION
# ==============================================================================

class DetectDataTypeTests(SimpleTestCase):

    def test_single_match_wins(self):
        self.assertEqual(detect_data_type(['name', 'priority']), 'clients')

    def test_widest_required_set_wins(self):
        headers = ['client_id', 'name', 'start_year', 'start_month']
        self.assertEqual(detect_data_type(headers), 'campaigns')

    def test_keywords_break_ties(self):
        base = ['campaign_id', 'year', 'month', 'platform', 'operation_type']
        self.assertEqual(detect_data_type(base + ['actual_spend']), 'results')
        self.assertEqual(detect_data_type(base + ['amount']), 'budgets')

    def test_header_spelling_variants_match(self):
        headers = ['campaignId', 'year', 'month', 'platform', 'operationType', 'targetKpi']
        self.assertEqual(detect_data_type(headers), 'budgets')

    def test_ambiguous_header_is_unknown(self):
        base = ['campaign_id', 'year', 'month', 'platform', 'operation_type']
        self.assertEqual(detect_data_type(base), 'unknown')
        self.assertEqual(detect_data_type(['foo', 'bar']), 'unknown')


class ValidateRowsTests(SimpleTestCase):

    def _rows(self, text):
        return parse_csv(text).rows

    def test_parse_number_strips_currency(self):
        self.assertEqual(parse_number('¥1,200,000'), 1200000)
        self.assertEqual(parse_number(' ￥3,000 '), 3000)
        with self.assertRaises(ValueError):
            parse_number('abc')

    def test_missing_required_field_yields_one_error_with_line(self):
        rows = self._rows(
            "# header comment\n"
            "campaign_id,year,month,platform,operation_type,amount\n"
            "1,2025,8,,,100\n"
            "1,2025,9,Google,運用代行,abc\n"
        )
        valid, errors = validate_rows(rows, 'budgets')
        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith('3行目:'))
        self.assertIn('platform', errors[0])
        self.assertEqual([r.line for r in valid], [4])
        self.assertEqual(valid[0].amount, 0.0)
        self.assertEqual(valid[0].budget_type, '月次予算')

    def test_critical_fields_must_be_numeric(self):
        rows = self._rows(
            "campaign_id,year,month,platform,operation_type\n"
            "x,2025,8,Google,運用代行\n"
            "1,2025,13,Google,運用代行\n"
            "1,2025,12,Google,運用代行\n"
        )
        valid, errors = validate_rows(rows, 'results')
        self.assertEqual(len(valid), 1)
        self.assertEqual(len(errors), 2)
        self.assertIn('campaign_id', errors[0])
        self.assertIn('month', errors[1])

    def test_typed_records(self):
        rows = self._rows(
            "campaign_id,year,month,platform,operation_type,actual_spend,actual_result\n"
            "2,2025,1,Meta,コンサルティング,\"¥80,000\",240000\n"
        )
        valid, errors = validate_rows(rows, 'results')
        self.assertEqual(errors, [])
        record = valid[0]
        self.assertEqual(record.kind, 'results')
        self.assertEqual((record.campaign_id, record.year, record.month), (2, 2025, 1))
        self.assertEqual(record.actual_spend, 80000.0)

    def test_client_priority_checked(self):
        rows = self._rows("name,priority,agency\nAcme,z,\nBeta,a,\n")
        valid, errors = validate_rows(rows, 'clients')
        self.assertEqual([r.name for r in valid], ['Beta'])
        self.assertEqual(valid[0].priority, 'A')
        self.assertTrue(errors[0].startswith('2行目:'))

# ==============================================================================
# RECONCILIATION (database)
# ==============================================================================

class ReconcileTests(TestCase):

    def setUp(self):
        self.client_obj = Client.objects.create(name='Acme')
        self.campaign = Campaign.objects.create(client=self.client_obj, name='Launch', start_year=2025, start_month=1)

    def _budget_csv(self, *lines):
        header = "campaign_id,year,month,platform,operation_type,amount\n"
        return (header + "\n".join(lines) + "\n").encode('utf-8')

    def test_budget_import_creates_one_row(self):
        summary = run_import(self._budget_csv(f"{self.campaign.pk},2025,8,Google,運用代行,500000"))
        self.assertEqual(summary.data_type, 'budgets')
        self.assertEqual((summary.created, summary.updated), (1, 0))
        budget = Budget.objects.get()
        self.assertEqual(budget.amount, 500000)
        self.assertEqual(budget.budget_type, '月次予算')

    def test_reimport_is_idempotent(self):
        content = self._budget_csv(
            f"{self.campaign.pk},2025,8,Google,運用代行,500000",
            f"{self.campaign.pk},2025,9,Google,運用代行,600000",
        )
        run_import(content)
        summary = run_import(content)
        self.assertEqual(Budget.objects.count(), 2)
        self.assertEqual((summary.created, summary.updated), (0, 2))

    def test_duplicate_keys_in_one_file_overwrite(self):
        summary = run_import(self._budget_csv(
            f"{self.campaign.pk},2025,8,Google,運用代行,100",
            f"{self.campaign.pk},2025,8,Google,運用代行,200",
        ))
        self.assertEqual((summary.created, summary.updated), (1, 1))
        self.assertEqual(Budget.objects.count(), 1)
        self.assertEqual(Budget.objects.get().amount, 200)

    def test_missing_campaign_rolls_back_everything(self):
        content = self._budget_csv(
            f"{self.campaign.pk},2025,8,Google,運用代行,500000",
            "99999,2025,8,Google,運用代行,100",
        )
        with self.assertRaises(ImportAborted) as ctx:
            run_import(content)
        self.assertEqual(Budget.objects.count(), 0)
        self.assertEqual(len(ctx.exception.errors), 1)
        self.assertTrue(ctx.exception.errors[0].startswith('3行目:'))

    def test_timeout_rolls_back(self):
        parsed = parse_csv(self._budget_csv(f"{self.campaign.pk},2025,8,Google,運用代行,1"))
        records, _ = validate_rows(parsed.rows, 'budgets')
        with mock.patch.object(ImportDeadline, 'check', side_effect=ImportTimeout("timeout")):
            with self.assertRaises(ImportTimeout):
                reconcile(records, 'budgets')
        self.assertEqual(Budget.objects.count(), 0)

    def test_expired_deadline_raises(self):
        with self.assertRaises(ImportTimeout):
            ImportDeadline(-1).check(5)

    def test_results_import_with_hint(self):
        content = (
            "campaign_id,year,month,platform,operation_type\n"
            f"{self.campaign.pk},2025,8,Google,運用代行\n"
        ).encode('utf-8')
        with self.assertRaises(UnknownDataType):
            run_import(content)
        summary = run_import(content, 'results')
        self.assertEqual(summary.created, 1)
        self.assertEqual(Result.objects.get().actual_spend, 0)

    def test_all_rows_invalid(self):
        with self.assertRaises(NoValidRows) as ctx:
            run_import(self._budget_csv("1,2025,8,,運用代行,5"))
        self.assertEqual(len(ctx.exception.as_dict()['validationErrors']), 1)

    def test_clients_upsert_by_name(self):
        content = "name,business_division,priority\nAcme,広告事業部,S\nNewco,,\n".encode('utf-8')
        summary = run_import(content)
        self.assertEqual((summary.created, summary.updated), (1, 1))
        self.assertEqual(Client.objects.get(name='Acme').priority, 'S')
        self.assertEqual(Client.objects.get(name='Newco').business_division, 'SNSメディア事業部')

    def test_campaigns_import(self):
        content = (
            "client_id,name,start_year,start_month,totalBudget\n"
            f"{self.client_obj.pk},Summer,2025,6,\"1,000,000\"\n"
        ).encode('utf-8')
        summary = run_import(content)
        self.assertEqual(summary.data_type, 'campaigns')
        campaign = Campaign.objects.get(name='Summer')
        self.assertEqual(campaign.total_budget, 1000000)
        self.assertEqual(campaign.purpose, '広告運用')
