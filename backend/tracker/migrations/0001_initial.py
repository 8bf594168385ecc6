import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Client',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255, unique=True)),
                ('business_division', models.CharField(blank=True, max_length=100, null=True, verbose_name='事業部')),
                ('sales_department', models.CharField(blank=True, max_length=100, null=True, verbose_name='営業部門')),
                ('sales_channel', models.CharField(blank=True, default='', max_length=100, verbose_name='営業チャネル')),
                ('agency', models.CharField(blank=True, default='', max_length=255, verbose_name='代理店')),
                ('priority', models.CharField(choices=[('S', 'S'), ('A', 'A'), ('B', 'B'), ('C', 'C'), ('D', 'D')], default='B', max_length=1)),
                ('manager', models.CharField(blank=True, default='', max_length=100, verbose_name='営業担当')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Team',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('color', models.CharField(blank=True, default='', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Master',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category', models.CharField(choices=[('platform', 'Platform'), ('operationType', 'Operation Type'), ('revenueType', 'Revenue Type')], max_length=50)),
                ('value', models.CharField(max_length=100)),
                ('order', models.PositiveIntegerField(default=0)),
            ],
            options={
                'ordering': ['category', 'order'],
                'constraints': [models.UniqueConstraint(fields=('category', 'value'), name='uniq_master_category_value')],
            },
        ),
        migrations.CreateModel(
            name='Campaign',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('purpose', models.CharField(blank=True, default='', max_length=255)),
                ('start_year', models.PositiveIntegerField()),
                ('start_month', models.PositiveSmallIntegerField()),
                ('end_year', models.PositiveIntegerField(blank=True, null=True)),
                ('end_month', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('total_budget', models.DecimalField(decimal_places=2, default=0, max_digits=15)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='campaigns', to='tracker.client')),
            ],
            options={
                'ordering': ['-start_year', '-start_month', 'name'],
                'constraints': [models.UniqueConstraint(fields=('client', 'name'), name='uniq_campaign_client_name')],
            },
        ),
        migrations.CreateModel(
            name='Budget',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('year', models.PositiveIntegerField()),
                ('month', models.PositiveSmallIntegerField()),
                ('platform', models.CharField(max_length=100, verbose_name='媒体')),
                ('operation_type', models.CharField(max_length=100, verbose_name='運用タイプ')),
                ('budget_type', models.CharField(default='月次予算', max_length=100, verbose_name='予算タイプ')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('amount', models.DecimalField(decimal_places=2, default=0, max_digits=15)),
                ('target_kpi', models.CharField(blank=True, default='', max_length=50)),
                ('target_value', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('campaign', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='budgets', to='tracker.campaign')),
            ],
            options={
                'ordering': ['-year', '-month', 'platform'],
                'abstract': False,
                'constraints': [models.UniqueConstraint(fields=('campaign', 'year', 'month', 'platform', 'operation_type'), name='uniq_budget_natural_key')],
            },
        ),
        migrations.CreateModel(
            name='Result',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('year', models.PositiveIntegerField()),
                ('month', models.PositiveSmallIntegerField()),
                ('platform', models.CharField(max_length=100, verbose_name='媒体')),
                ('operation_type', models.CharField(max_length=100, verbose_name='運用タイプ')),
                ('budget_type', models.CharField(default='月次予算', max_length=100, verbose_name='予算タイプ')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('actual_spend', models.DecimalField(decimal_places=2, default=0, max_digits=15)),
                ('actual_result', models.DecimalField(decimal_places=2, default=0, max_digits=15)),
                ('campaign', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='tracker.campaign')),
            ],
            options={
                'ordering': ['-year', '-month', 'platform'],
                'abstract': False,
                'constraints': [models.UniqueConstraint(fields=('campaign', 'year', 'month', 'platform', 'operation_type'), name='uniq_result_natural_key')],
            },
        ),
        migrations.CreateModel(
            name='TeamAllocation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('percentage', models.DecimalField(decimal_places=2, max_digits=5)),
                ('budget', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='allocations', to='tracker.budget')),
                ('team', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='allocations', to='tracker.team')),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('budget', 'team'), name='uniq_allocation_budget_team')],
            },
        ),
    ]
