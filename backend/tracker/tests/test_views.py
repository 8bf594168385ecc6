import io
import json

import pandas as pd
from django.core.files.uploadedfile import SimpleUploadedFile     # type: ignore
from django.test import TestCase                                   # type: ignore

from tracker.constants import SHEET_NAME, XLSX_CONTENT_TYPE
from tracker.models import Budget, Campaign, Client, Master, Result, Team, TeamAllocation


class ApiTestCase(TestCase):

    def setUp(self):
        self.acme = Client.objects.create(name='Acme', business_division='広告事業部', priority='A')
        self.campaign = Campaign.objects.create(client=self.acme, name='Launch', start_year=2025, start_month=1)

    def put_json(self, url, data):
        return self.client.put(url, data=json.dumps(data), content_type='application/json')

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def delete_json(self, url, data=None):
        return self.client.delete(url, data=json.dumps(data or {}), content_type='application/json')

# ==============================================================================
# CRUD
# ==============================================================================

class ClientViewTests(ApiTestCase):

    def test_list_and_filter(self):
        Client.objects.create(name='Beta', priority='C')
        response = self.client.get('/api/clients', {'priority': 'A'})
        self.assertEqual(response.status_code, 200)
        clients = response.json()['clients']
        self.assertEqual([c['name'] for c in clients], ['Acme'])
        self.assertEqual(clients[0]['campaign_count'], 1)

    def test_create_update_delete(self):
        response = self.post_json('/api/clients', {'name': ' Newco ', 'businessDivision': 'SNSメディア事業部'})
        self.assertEqual(response.status_code, 201)
        client_id = response.json()['client']['id']
        newco = Client.objects.get(pk=client_id)
        self.assertEqual((newco.name, newco.priority), ('Newco', 'B'))

        response = self.put_json(f'/api/clients/{client_id}', {'priority': 'S'})
        self.assertEqual(response.status_code, 200)
        newco.refresh_from_db()
        self.assertEqual((newco.priority, newco.business_division), ('S', 'SNSメディア事業部'))

        response = self.client.delete(f'/api/clients/{client_id}')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Client.objects.filter(pk=client_id).exists())

    def test_duplicate_name_rejected(self):
        response = self.post_json('/api/clients', {'name': 'Acme'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('name', response.json()['errors'])

    def test_missing_client_is_404(self):
        response = self.client.get('/api/clients/99999')
        self.assertEqual(response.status_code, 404)

    def test_wrong_method_is_405(self):
        response = self.client.patch('/api/clients')
        self.assertEqual(response.status_code, 405)

    def test_malformed_json_is_400(self):
        response = self.client.post('/api/clients', data='{oops', content_type='application/json')
        self.assertEqual(response.status_code, 400)


class CampaignViewTests(ApiTestCase):

    def test_list_includes_totals_and_status(self):
        key = dict(campaign=self.campaign, year=2025, month=2, platform='Google', operation_type='運用代行')
        Budget.objects.create(amount=1000, **key)
        Result.objects.create(actual_spend=400, **key)
        response = self.client.get('/api/campaigns', {'clientId': self.acme.pk})
        campaign = response.json()['campaigns'][0]
        self.assertEqual(campaign['client_name'], 'Acme')
        self.assertEqual((campaign['budget_total'], campaign['spend_total']), (1000.0, 400.0))
        self.assertIn(campaign['status'], ('planned', 'active', 'completed'))

    def test_create_and_update_by_body_id(self):
        response = self.post_json('/api/campaigns', {
            'clientId': self.acme.pk, 'name': 'Summer', 'startYear': 2025, 'startMonth': 6,
        })
        self.assertEqual(response.status_code, 201)
        campaign_id = response.json()['campaign']['id']

        response = self.put_json('/api/campaigns', {'id': campaign_id, 'endYear': 2025, 'endMonth': 3})
        self.assertEqual(response.status_code, 400)

        response = self.put_json('/api/campaigns', {'id': campaign_id, 'endYear': 2025, 'endMonth': 9})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Campaign.objects.get(pk=campaign_id).end_month, 9)

    def test_delete_via_path(self):
        response = self.client.delete(f'/api/campaigns/{self.campaign.pk}')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Campaign.objects.exists())

    def test_delete_without_id_is_400(self):
        response = self.delete_json('/api/campaigns')
        self.assertEqual(response.status_code, 400)


class BudgetResultViewTests(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.search = Team.objects.create(name='Search')
        self.social = Team.objects.create(name='Social')

    def _payload(self, allocations):
        return {
            'budget': {'campaignId': self.campaign.pk, 'year': 2025, 'month': 8, 'platform': 'Google',
                       'operationType': '運用代行', 'amount': 500000},
            'result': {'campaignId': self.campaign.pk, 'year': 2025, 'month': 8, 'platform': 'Google',
                       'operationType': '運用代行', 'actualSpend': 450000, 'actualResult': 900000},
            'allocations': allocations,
        }

    def test_create_with_allocations(self):
        response = self.post_json('/api/budget-results', self._payload([
            {'teamId': self.search.pk, 'percentage': 70},
            {'teamId': self.social.pk, 'percentage': 30},
        ]))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(TeamAllocation.objects.count(), 2)
        self.assertEqual(Result.objects.get().actual_result, 900000)

        response = self.client.get('/api/budget-results', {'year': 2025})
        body = response.json()
        self.assertEqual(body['summary']['consumption_rate'], 90.0)
        self.assertEqual(body['data'][0]['client_name'], 'Acme')

    def test_string_team_ids_are_accepted(self):
        response = self.post_json('/api/budget-results', self._payload([
            {'teamId': str(self.search.pk), 'percentage': '100'},
        ]))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(TeamAllocation.objects.get().team, self.search)

    def test_bad_team_id_is_400(self):
        response = self.post_json('/api/budget-results', self._payload([
            {'teamId': 'search', 'percentage': 100},
        ]))
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Budget.objects.exists())

    def test_non_numeric_filters_are_400(self):
        for params in ({'year': 'abc'}, {'month': 'x'}, {'clientId': 'acme'}):
            response = self.client.get('/api/budget-results', params)
            self.assertEqual(response.status_code, 400)
        response = self.client.get('/api/import-export', {'year': 'abc'})
        self.assertEqual(response.status_code, 400)
        response = self.client.get('/api/budget-results', {'year': 'all'})
        self.assertEqual(response.status_code, 200)

    def test_allocations_must_total_100(self):
        response = self.post_json('/api/budget-results', self._payload([
            {'teamId': self.search.pk, 'percentage': 70},
        ]))
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Budget.objects.exists())

    def test_csv_format(self):
        self.post_json('/api/budget-results', self._payload([]))
        response = self.client.get('/api/budget-results', {'format': 'csv'})
        self.assertEqual(response['Content-Type'], 'text/csv; charset=utf-8')
        text = response.content.decode('utf-8-sig')
        self.assertTrue(text.startswith('client_name,campaign_name'))


class MasterViewTests(ApiTestCase):

    def test_grouped_by_category(self):
        Master.objects.create(category='platform', value='Google', order=1)
        self.post_json('/api/masters', {'category': 'platform', 'value': 'Meta', 'order': 2})
        self.post_json('/api/masters', {'category': 'operationType', 'value': '運用代行'})
        masters = self.client.get('/api/masters').json()['masters']
        self.assertEqual([m['value'] for m in masters['platform']], ['Google', 'Meta'])
        self.assertEqual(len(masters['operationType']), 1)

# ==============================================================================
# IMPORT / EXPORT
# ==============================================================================

class CsvViewTests(ApiTestCase):

    def _upload(self, text, **extra):
        upload = SimpleUploadedFile('data.csv', text.encode('utf-8'), content_type='text/csv')
        return self.client.post('/api/csv-import', {'file': upload, **extra})

    def test_import_budgets(self):
        response = self._upload(
            "campaign_id,year,month,platform,operation_type,amount\n"
            f"{self.campaign.pk},2025,8,Google,運用代行,500000\n",
            dataType='auto',
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual((body['created'], body['updated']), (1, 0))
        self.assertEqual(body['dataType'], 'budgets')

    def test_import_reports_validation_errors(self):
        response = self._upload(
            "campaign_id,year,month,platform,operation_type,amount\n"
            "1,2025,8,,運用代行,5\n"
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(len(response.json()['validationErrors']), 1)

    def test_unknown_type_lists_headers(self):
        response = self._upload("foo,bar,baz\n1,2,3\n")
        self.assertEqual(response.status_code, 400)
        self.assertIn('foo', response.json()['error'])

    def test_bad_options(self):
        response = self._upload("name,agency,priority\nA,,B\n", options='{"delimiter": "|"}')
        self.assertEqual(response.status_code, 400)

        for options in ('[1]', '"x"'):
            response = self._upload("name,agency,priority\nA,,B\n", options=options)
            self.assertEqual(response.status_code, 400)

    def test_missing_file(self):
        response = self.client.post('/api/csv-import', {})
        self.assertEqual(response.status_code, 400)

    def test_template_csv_and_json(self):
        response = self.client.get('/api/csv-template', {'type': 'clients'})
        self.assertEqual(response.status_code, 200)
        self.assertIn('attachment; filename="clients_template.csv"', response['Content-Disposition'])

        response = self.client.get('/api/csv-template', {'type': 'clients', 'format': 'json'})
        self.assertEqual(response.json()['dataType'], 'clients')

        response = self.client.get('/api/csv-template', {'type': 'nope'})
        self.assertEqual(response.status_code, 400)

    def test_export(self):
        response = self.client.get('/api/csv-export', {'type': 'clients'})
        text = response.content.decode('utf-8-sig')
        self.assertTrue(text.startswith('id,name,business_division'))
        self.assertIn('Acme', text)

        response = self.client.get('/api/csv-export', {'type': 'all'})
        self.assertIn('# 案件データ', response.content.decode('utf-8-sig'))

        response = self.client.get('/api/csv-export', {'type': 'nope'})
        self.assertEqual(response.status_code, 400)


class WorkbookViewTests(ApiTestCase):

    def setUp(self):
        super().setUp()
        key = dict(campaign=self.campaign, year=2025, month=8, platform='Google', operation_type='運用代行')
        Budget.objects.create(amount=1200000, **key)
        Result.objects.create(actual_spend=1000000, actual_result=1000000, **key)

    def test_export_then_import(self):
        response = self.client.get('/api/import-export', {'year': 2025, 'month': 8})
        self.assertEqual(response['Content-Type'], XLSX_CONTENT_TYPE)
        self.assertIn('budget-data-Y2025-M8-', response['Content-Disposition'])
        content = response.content
        df = pd.read_excel(io.BytesIO(content), sheet_name=SHEET_NAME, dtype=str)
        self.assertEqual(df.iloc[0]['金額'], '¥1,200,000')

        Client.objects.all().delete()
        upload = SimpleUploadedFile('budget.xlsx', content, content_type=XLSX_CONTENT_TYPE)
        response = self.client.post('/api/import-export', {'file': upload})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['processed'], 1)
        self.assertEqual(Budget.objects.get().amount, 1200000)

    def test_rejects_non_xlsx(self):
        upload = SimpleUploadedFile('budget.csv', b'a,b', content_type='text/csv')
        response = self.client.post('/api/import-export', {'file': upload})
        self.assertEqual(response.status_code, 400)

# ==============================================================================
# ANALYTICS & HEALTH
# ==============================================================================

class AnalyticsViewTests(ApiTestCase):

    def setUp(self):
        super().setUp()
        key = dict(campaign=self.campaign, year=2025, month=8, platform='Google', operation_type='運用代行')
        Budget.objects.create(amount=1000000, **key)
        Result.objects.create(actual_spend=1200000, actual_result=2400000, **key)

    def test_client_analytics(self):
        body = self.client.get('/api/analytics/clients').json()
        self.assertEqual(body['clients'][0]['consumption_rate'], 120.0)
        self.assertEqual(body['summary']['avg_efficiency'], 2.0)

    def test_department_analytics(self):
        body = self.client.get('/api/analytics/departments').json()
        self.assertEqual(body['departments'][0]['department'], '広告事業部')
        self.assertEqual(body['departments'][0]['consumption_rate'], 120.0)

    def test_department_budget(self):
        body = self.client.get('/api/analytics/departments/budget', {'department': '広告事業部'}).json()
        self.assertEqual(body['summary']['total_amount'], 1000000.0)
        self.assertEqual(body['departments'][0]['avg_priority'], 4.0)

    def test_health(self):
        response = self.client.get('/api/health')
        self.assertEqual(response.json(), {'status': 'ok', 'database': 'ok'})
