"""
Budget vs. spend aggregation.

Everything here works on flat dict rows (``QuerySet.values()`` output),
so the math can be tested without a database.
"""
from collections import OrderedDict
from datetime import date

from .constants import PRIORITY_WEIGHTS, UNASSIGNED_DIVISION

KEY_FIELDS = ('campaign_id', 'year', 'month', 'platform', 'operation_type')


def _num(value):
    return float(value or 0)


def _mean(values):
    values = list(values)
    return round(sum(values) / len(values), 2) if values else 0.0

# ==============================================================================
# SECTION 1: RATIOS
# ==============================================================================

def consumption_rate(spend, budget):
    """ Percentage of budget spent. 0 when there is no budget. """
    budget = _num(budget)
    if not budget:
        return 0.0
    return round(_num(spend) / budget * 100, 2)


def efficiency(result, spend):
    spend = _num(spend)
    if not spend:
        return 0.0
    return round(_num(result) / spend, 2)


def roi_percent(result, spend):
    spend = _num(spend)
    if not spend:
        return 0.0
    return round((_num(result) / spend - 1) * 100, 2)

# ==============================================================================
# SECTION 2: GROUPING
# ==============================================================================

def group_totals(rows, key, value_fields):
    """
        Groups rows by ``key`` (field name or callable) and sums
        ``value_fields``. Returns an OrderedDict keyed by group value, in
        first-seen order, each entry also carrying a ``count``.
    """
    get_key = key if callable(key) else (lambda row: row.get(key))
    groups = OrderedDict()
    for row in rows:
        group = get_key(row)
        if group not in groups:
            groups[group] = {f: 0.0 for f in value_fields}
            groups[group]['count'] = 0
        for f in value_fields:
            groups[group][f] += _num(row.get(f))
        groups[group]['count'] += 1
    return groups


def _by(rows, field_name):
    grouped = {}
    for row in rows:
        grouped.setdefault(row.get(field_name), []).append(row)
    return grouped


def _year_month(row):
    return f"{int(row['year']):04d}-{int(row['month']):02d}"


def _budget_spend_breakdown(budgets, results, key, label):
    """ Joins budget and spend totals on one grouping key. """
    budget_totals = group_totals(budgets, key, ('amount',))
    spend_totals = group_totals(results, key, ('actual_spend', 'actual_result'))
    keys = list(budget_totals) + [k for k in spend_totals if k not in budget_totals]
    rows = []
    for group in keys:
        budget = budget_totals.get(group, {}).get('amount', 0.0)
        spend = spend_totals.get(group, {}).get('actual_spend', 0.0)
        result = spend_totals.get(group, {}).get('actual_result', 0.0)
        rows.append({
            label: group,
            'budget': budget,
            'spend': spend,
            'result': result,
            'consumption_rate': consumption_rate(spend, budget),
            'efficiency': efficiency(result, spend),
        })
    return rows

# ==============================================================================
# SECTION 3: BUDGET / RESULT MERGE
# ==============================================================================

def natural_key(row):
    return tuple(row.get(f) for f in KEY_FIELDS)


def _blank_entry(row):
    entry = {f: row.get(f) for f in KEY_FIELDS}
    entry.update({
        'campaign_name': row.get('campaign_name', ''),
        'client_name': row.get('client_name', ''),
        'budget_type': row.get('budget_type', ''),
        'budget_id': None,
        'amount': 0.0,
        'target_kpi': '',
        'target_value': None,
        'result_id': None,
        'actual_spend': 0.0,
        'actual_result': 0.0,
    })
    return entry


def merge_budget_results(budgets, results):
    """
        One row per natural key. Budgets without results show zero spend;
        results without a budget are kept with a zero budget.
    """
    merged = OrderedDict()
    for budget in budgets:
        entry = merged.setdefault(natural_key(budget), _blank_entry(budget))
        entry.update({
            'budget_id': budget.get('id'),
            'amount': _num(budget.get('amount')),
            'target_kpi': budget.get('target_kpi') or '',
            'target_value': budget.get('target_value'),
        })
    for result in results:
        entry = merged.setdefault(natural_key(result), _blank_entry(result))
        entry.update({
            'result_id': result.get('id'),
            'actual_spend': _num(result.get('actual_spend')),
            'actual_result': _num(result.get('actual_result')),
        })

    rows = list(merged.values())
    for row in rows:
        row['budget_utilization'] = consumption_rate(row['actual_spend'], row['amount'])
        row['roi'] = roi_percent(row['actual_result'], row['actual_spend'])
        row['variance'] = row['amount'] - row['actual_spend']
    rows.sort(key=lambda r: (-int(r['year']), -int(r['month']), r['campaign_id'], r['platform']))
    return rows


def summarize_budget_results(rows):
    total_budget = sum(r['amount'] for r in rows)
    total_spend = sum(r['actual_spend'] for r in rows)
    total_result = sum(r['actual_result'] for r in rows)
    return {
        'count': len(rows),
        'total_budget': total_budget,
        'total_spend': total_spend,
        'total_result': total_result,
        'variance': total_budget - total_spend,
        'consumption_rate': consumption_rate(total_spend, total_budget),
        'efficiency': efficiency(total_result, total_spend),
        'roi': roi_percent(total_result, total_spend),
    }

# ==============================================================================
# SECTION 4: CLIENT ROLLUP
# ==============================================================================

def client_rollup(clients, campaigns, budgets, results):
    budgets_by_campaign = _by(budgets, 'campaign_id')
    results_by_campaign = _by(results, 'campaign_id')
    campaigns_by_client = _by(campaigns, 'client_id')

    client_entries = []
    for client in clients:
        campaign_entries = []
        for campaign in campaigns_by_client.get(client['id'], []):
            c_budgets = budgets_by_campaign.get(campaign['id'], [])
            c_results = results_by_campaign.get(campaign['id'], [])
            total_budget = sum(_num(b.get('amount')) for b in c_budgets)
            total_spend = sum(_num(r.get('actual_spend')) for r in c_results)
            total_result = sum(_num(r.get('actual_result')) for r in c_results)
            campaign_entries.append({
                'id': campaign['id'],
                'name': campaign['name'],
                'purpose': campaign.get('purpose', ''),
                'total_budget': total_budget,
                'total_spend': total_spend,
                'total_result': total_result,
                'efficiency': efficiency(total_result, total_spend),
                'consumption_rate': consumption_rate(total_spend, total_budget),
                'platform_breakdown': _budget_spend_breakdown(c_budgets, c_results, 'platform', 'platform'),
                'monthly_trends': sorted(
                    _budget_spend_breakdown(c_budgets, c_results, _year_month, 'month'),
                    key=lambda r: r['month'],
                ),
            })

        total_budget = sum(c['total_budget'] for c in campaign_entries)
        total_spend = sum(c['total_spend'] for c in campaign_entries)
        total_result = sum(c['total_result'] for c in campaign_entries)
        client_entries.append({
            'id': client['id'],
            'name': client['name'],
            'business_division': client.get('business_division') or UNASSIGNED_DIVISION,
            'priority': client.get('priority'),
            'campaign_count': len(campaign_entries),
            'total_budget': total_budget,
            'total_spend': total_spend,
            'total_result': total_result,
            'efficiency': efficiency(total_result, total_spend),
            'consumption_rate': consumption_rate(total_spend, total_budget),
            'campaigns': campaign_entries,
        })

    total_budget = sum(c['total_budget'] for c in client_entries)
    total_spend = sum(c['total_spend'] for c in client_entries)
    summary = {
        'total_clients': len(client_entries),
        'total_campaigns': sum(c['campaign_count'] for c in client_entries),
        'total_budget': total_budget,
        'total_spend': total_spend,
        'total_result': sum(c['total_result'] for c in client_entries),
        'consumption_rate': consumption_rate(total_spend, total_budget),
        'avg_efficiency': _mean(c['efficiency'] for c in client_entries if c['total_spend']),
    }
    return {'clients': client_entries, 'summary': summary}

# ==============================================================================
# SECTION 5: DEPARTMENT ROLLUPS
# ==============================================================================

def last_months(count=12, today=None):
    """ [(year, month), ...] oldest first, ending at ``today``'s month. """
    today = today or date.today()
    year, month = today.year, today.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


def _division(client):
    return client.get('business_division') or UNASSIGNED_DIVISION


def _division_index(clients, campaigns):
    """ division -> (clients, campaign ids) """
    index = OrderedDict()
    client_division = {}
    for client in sorted(clients, key=lambda c: (_division(c) == UNASSIGNED_DIVISION, _division(c))):
        division = _division(client)
        client_division[client['id']] = division
        index.setdefault(division, ([], set()))[0].append(client)
    for campaign in campaigns:
        division = client_division.get(campaign['client_id'])
        if division is not None:
            index[division][1].add(campaign['id'])
    return index


def department_rollup(clients, campaigns, budgets, results, today=None):
    months = last_months(12, today)
    campaign_client = {c['id']: c['client_id'] for c in campaigns}
    departments = []

    for division, (d_clients, campaign_ids) in _division_index(clients, campaigns).items():
        d_budgets = [b for b in budgets if b['campaign_id'] in campaign_ids]
        d_results = [r for r in results if r['campaign_id'] in campaign_ids]
        total_budget = sum(_num(b.get('amount')) for b in d_budgets)
        total_spend = sum(_num(r.get('actual_spend')) for r in d_results)

        budget_by_month = group_totals(d_budgets, lambda r: (int(r['year']), int(r['month'])), ('amount',))
        spend_by_month = group_totals(d_results, lambda r: (int(r['year']), int(r['month'])),
                                      ('actual_spend', 'actual_result'))
        monthly = []
        for year, month in months:
            budget = budget_by_month.get((year, month), {}).get('amount', 0.0)
            spend = spend_by_month.get((year, month), {}).get('actual_spend', 0.0)
            monthly.append({
                'year': year,
                'month': month,
                'budget': budget,
                'spend': spend,
                'consumption_rate': consumption_rate(spend, budget),
            })

        budget_by_client = group_totals(d_budgets, lambda r: campaign_client[r['campaign_id']], ('amount',))
        spend_by_client = group_totals(d_results, lambda r: campaign_client[r['campaign_id']], ('actual_spend',))
        client_details = []
        for client in d_clients:
            budget = budget_by_client.get(client['id'], {}).get('amount', 0.0)
            spend = spend_by_client.get(client['id'], {}).get('actual_spend', 0.0)
            client_details.append({
                'id': client['id'],
                'name': client['name'],
                'campaign_count': sum(1 for c in campaigns if c['client_id'] == client['id']),
                'total_budget': budget,
                'total_spend': spend,
                'consumption_rate': consumption_rate(spend, budget),
            })

        departments.append({
            'department': division,
            'client_count': len(d_clients),
            'campaign_count': len(campaign_ids),
            'total_budget': total_budget,
            'total_spend': total_spend,
            'consumption_rate': consumption_rate(total_spend, total_budget),
            'monthly': monthly,
            'clients': client_details,
        })

    departments.sort(key=lambda d: (-d['total_budget'], -d['client_count']))

    total_budget = sum(d['total_budget'] for d in departments)
    total_spend = sum(d['total_spend'] for d in departments)
    summary = {
        'total_departments': len(departments),
        'total_clients': sum(d['client_count'] for d in departments),
        'total_campaigns': sum(d['campaign_count'] for d in departments),
        'total_budget': total_budget,
        'total_spend': total_spend,
        'consumption_rate': consumption_rate(total_spend, total_budget),
        'avg_spend_ratio': consumption_rate(total_spend, total_budget),
    }
    return {'departments': departments, 'summary': summary}


def _amount_breakdown(rows, key, label):
    return [
        {label: group, 'amount': totals['amount'], 'count': totals['count']}
        for group, totals in group_totals(rows, key, ('amount',)).items()
    ]


def department_budget_rollup(clients, campaigns, budgets):
    campaign_client = {c['id']: c['client_id'] for c in campaigns}
    client_names = {c['id']: c['name'] for c in clients}
    departments = []

    for division, (d_clients, campaign_ids) in _division_index(clients, campaigns).items():
        d_budgets = [b for b in budgets if b['campaign_id'] in campaign_ids]
        amounts = [_num(b.get('amount')) for b in d_budgets]
        total = sum(amounts)
        weights = [PRIORITY_WEIGHTS[c['priority']] for c in d_clients if c.get('priority') in PRIORITY_WEIGHTS]

        departments.append({
            'department': division,
            'client_count': len(d_clients),
            'budget_count': len(d_budgets),
            'total_amount': total,
            'avg_amount': round(total / len(amounts), 2) if amounts else 0.0,
            'min_amount': min(amounts) if amounts else 0.0,
            'max_amount': max(amounts) if amounts else 0.0,
            'active_months': len({(b['year'], b['month']) for b in d_budgets}),
            'avg_priority': _mean(weights),
            'by_month': sorted(_amount_breakdown(d_budgets, _year_month, 'month'), key=lambda r: r['month']),
            'by_platform': _amount_breakdown(d_budgets, 'platform', 'platform'),
            'by_operation_type': _amount_breakdown(d_budgets, 'operation_type', 'operation_type'),
            'by_budget_type': _amount_breakdown(d_budgets, 'budget_type', 'budget_type'),
            'by_client': _amount_breakdown(
                d_budgets, lambda r: client_names.get(campaign_client[r['campaign_id']]), 'client'),
        })

    total_amount = sum(d['total_amount'] for d in departments)
    budget_count = sum(d['budget_count'] for d in departments)
    largest = max(departments, key=lambda d: d['total_amount'], default=None)
    summary = {
        'total_departments': len(departments),
        'total_budget_count': budget_count,
        'total_amount': total_amount,
        'avg_amount': round(total_amount / budget_count, 2) if budget_count else 0.0,
        'largest_department': largest['department'] if largest and largest['total_amount'] else None,
    }
    return {'departments': departments, 'summary': summary}

# ==============================================================================
# SECTION 6: TEAM ALLOCATIONS
# ==============================================================================

def validate_allocations(allocations):
    """
        ``allocations`` is a list of {'team_id', 'percentage'}.
        Returns a list of error messages (empty when valid or when there are
        no allocations at all).
    """
    if not allocations:
        return []
    errors = []
    seen = set()
    total = 0.0
    for allocation in allocations:
        team_id = allocation.get('team_id')
        if team_id in seen:
            errors.append(f"チームID {team_id} が重複しています")
        seen.add(team_id)
        try:
            percentage = float(allocation.get('percentage'))
        except (TypeError, ValueError):
            errors.append(f"チームID {team_id} の配分率が数値ではありません")
            continue
        if not 0 < percentage <= 100:
            errors.append(f"チームID {team_id} の配分率は0より大きく100以下である必要があります")
        total += percentage
    if abs(total - 100) > 0.01:
        errors.append(f"配分率の合計は100%である必要があります（現在 {total:g}%）")
    return errors
