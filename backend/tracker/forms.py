from django import forms                    # type: ignore

from .constants import DEFAULT_PRIORITY
from .models import Budget, Campaign, Client, Master, Result


class UploadFileForm(forms.Form):
    file = forms.FileField()


def _check_month(value, label='month'):
    if value is not None and not 1 <= value <= 12:
        raise forms.ValidationError(f"{label}は1〜12で指定してください")
    return value


class ClientForm(forms.ModelForm):
    class Meta:
        model = Client
        fields = ['name', 'business_division', 'sales_department', 'sales_channel', 'agency',
                  'priority', 'manager']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['priority'].required = False

    def clean_name(self):
        return self.cleaned_data['name'].strip()

    def clean_priority(self):
        return self.cleaned_data.get('priority') or DEFAULT_PRIORITY


class CampaignForm(forms.ModelForm):
    class Meta:
        model = Campaign
        fields = ['client', 'name', 'purpose', 'start_year', 'start_month', 'end_year', 'end_month',
                  'total_budget']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['total_budget'].required = False

    def clean_start_month(self):
        return _check_month(self.cleaned_data.get('start_month'), 'start_month')

    def clean_end_month(self):
        return _check_month(self.cleaned_data.get('end_month'), 'end_month')

    def clean_total_budget(self):
        value = self.cleaned_data.get('total_budget')
        return 0 if value is None else value

    def clean(self):
        cleaned = super().clean()
        start = (cleaned.get('start_year'), cleaned.get('start_month'))
        end = (cleaned.get('end_year'), cleaned.get('end_month'))
        if None not in start and None not in end and end < start:
            raise forms.ValidationError("終了年月は開始年月以降である必要があります")
        return cleaned


class MonthlyRecordForm(forms.ModelForm):
    """ Shared month check and zero defaults for money fields. """

    money_fields = ()

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['budget_type'].required = False
        for name in self.money_fields:
            self.fields[name].required = False

    def clean_month(self):
        return _check_month(self.cleaned_data.get('month'))

    def clean(self):
        cleaned = super().clean()
        for name in self.money_fields:
            if cleaned.get(name) is None:
                cleaned[name] = 0
        if not cleaned.get('budget_type'):
            cleaned['budget_type'] = Budget._meta.get_field('budget_type').default
        return cleaned


class BudgetForm(MonthlyRecordForm):
    money_fields = ('amount',)

    class Meta:
        model = Budget
        fields = ['campaign', 'year', 'month', 'platform', 'operation_type', 'budget_type',
                  'amount', 'target_kpi', 'target_value']


class ResultForm(MonthlyRecordForm):
    money_fields = ('actual_spend', 'actual_result')

    class Meta:
        model = Result
        fields = ['campaign', 'year', 'month', 'platform', 'operation_type', 'budget_type',
                  'actual_spend', 'actual_result']


class MasterForm(forms.ModelForm):
    class Meta:
        model = Master
        fields = ['category', 'value', 'order']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['order'].required = False

    def clean_order(self):
        value = self.cleaned_data.get('order')
        return 0 if value is None else value
