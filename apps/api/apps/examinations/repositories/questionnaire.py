"""
Patient-reported outcomes: comfort and dryness through the wearing day,
symptoms, lens handling and overall satisfaction.

Every graded answer maps to a 5 (best) .. 1 (worst) score; unanswered or
unknown answers score 0 and are left out of averages.
"""
from collections import Counter

from apps.core.dynamodb import TableNames
from apps.core.exceptions import ValidationError
from apps.examinations.models import TrendChoices
from apps.examinations.repositories.base import BaseExaminationRepository, check_choice, halves, mean, rounded

TIMING = ('initial', 'after_1_hour', 'mid_day', 'afternoon', 'end_of_day', 'after_removal')
COMFORT_LEVELS = ('very_comfortable', 'comfortable', 'acceptable', 'uncomfortable', 'very_uncomfortable')
DRYNESS_LEVELS = ('not_dry', 'slightly_dry', 'moderately_dry', 'very_dry', 'extremely_dry')
SYMPTOM_LEVELS = ('none', 'mild', 'moderate', 'severe', 'very_severe')
EASE_LEVELS = ('very_easy', 'easy', 'acceptable', 'difficult', 'very_difficult')
PERFORMANCE_LEVELS = ('excellent', 'good', 'acceptable', 'poor', 'very_poor')
SATISFACTION_LEVELS = ('very_satisfied', 'satisfied', 'neutral', 'dissatisfied', 'very_dissatisfied')

TIMES_OF_DAY = (('initial', 'Initial'), ('daytime', 'Daytime'), ('afternoon', 'Afternoon'), ('endOfDay', 'EndOfDay'))

COMFORT_FIELDS = ('comfort',) + tuple(f'comfort_{suffix}' for _, suffix in TIMES_OF_DAY)
DRYNESS_FIELDS = ('dryness',) + tuple(f'dryness_{suffix}' for _, suffix in TIMES_OF_DAY)
SYMPTOM_FIELDS = ('irritation', 'burning', 'eyeStrain')
EASE_FIELDS = ('easeOfInsertion', 'easeOfRemoval')

DETAIL_FIELDS = (
    tuple(f.replace('comfort', 'comfortDetail') for f in COMFORT_FIELDS)
    + tuple(f.replace('dryness', 'drynessDetail') for f in DRYNESS_FIELDS)
    + ('irritationDetail', 'burningDetail', 'easeOfInsertionDetail', 'easeOfRemovalDetail',
       'visualPerformanceDetail', 'eyeStrainDetail', 'totalSatisfactionDetail', 'otherSymptomsDetail')
)

TREND_THRESHOLD = 0.5


def level_score(value, levels):
    """5 for the best answer in levels down to 1 for the worst; 0 when unknown."""
    if value not in levels:
        return 0
    return len(levels) - levels.index(value)


def comfort_score(value):
    return level_score(value, COMFORT_LEVELS)


def dryness_score(value):
    return level_score(value, DRYNESS_LEVELS)


def symptom_score(value):
    return level_score(value, SYMPTOM_LEVELS)


def satisfaction_score(value):
    return level_score(value, SATISFACTION_LEVELS)


def composite_symptom_score(record):
    return sum(symptom_score(record.get(f)) for f in SYMPTOM_FIELDS) / len(SYMPTOM_FIELDS)


def calculate_scores(record):
    """Per-domain scores for one questionnaire."""
    return {
        'comfort': comfort_score(record.get('comfort')),
        'dryness': dryness_score(record.get('dryness')),
        'symptoms': rounded(composite_symptom_score(record), 2),
        'handling': rounded(mean(
            [level_score(record.get(f), EASE_LEVELS) or None for f in EASE_FIELDS]
        ) or 0, 2),
        'visualPerformance': level_score(record.get('visualPerformance'), PERFORMANCE_LEVELS),
        'satisfaction': satisfaction_score(record.get('totalSatisfaction')),
    }


def score_trend(scores):
    if len(scores) < 2:
        return TrendChoices.INSUFFICIENT_DATA.value
    first, second = halves(scores)
    change = mean(second) - mean(first)
    if change >= TREND_THRESHOLD:
        return TrendChoices.IMPROVING.value
    if change <= -TREND_THRESHOLD:
        return TrendChoices.DECLINING.value
    return TrendChoices.STABLE.value


def overall_trends(records):
    return {
        'comfort': score_trend([comfort_score(r.get('comfort')) for r in records]),
        'dryness': score_trend([dryness_score(r.get('dryness')) for r in records]),
        'symptoms': score_trend([composite_symptom_score(r) for r in records]),
        'satisfaction': score_trend([satisfaction_score(r.get('totalSatisfaction')) for r in records]),
    }


def time_of_day_profile(record, prefix, scorer):
    return {key: scorer(record.get(f'{prefix}_{suffix}')) for key, suffix in TIMES_OF_DAY}


def time_based_patterns(records):
    """Average comfort and dryness score at each time of day, 2 decimals."""
    def averages(prefix, scorer):
        return {
            key: round(sum(scorer(r.get(f'{prefix}_{suffix}')) for r in records) / len(records), 2)
            for key, suffix in TIMES_OF_DAY
        }

    if not records:
        empty = {key: 0 for key, _ in TIMES_OF_DAY}
        return {'comfort': dict(empty), 'dryness': dict(empty)}
    return {'comfort': averages('comfort', comfort_score), 'dryness': averages('dryness', dryness_score)}


def key_issues(record):
    issues = []
    if 0 < comfort_score(record.get('comfort')) <= 2:
        issues.append('Poor comfort')
    if 0 < dryness_score(record.get('dryness')) <= 2:
        issues.append('Significant dryness')
    for field in SYMPTOM_FIELDS:
        if 0 < symptom_score(record.get(field)) <= 2:
            issues.append(f'Severe {field}')
    return issues


def symptom_profile(records):
    """Symptoms reported at mild or worse, how bad they get and which persist."""
    counts = Counter()
    for record in records:
        for field in SYMPTOM_FIELDS:
            if record.get(field) not in (None, '', 'none'):
                counts[field] += 1
        if dryness_score(record.get('dryness')) and record.get('dryness') != 'not_dry':
            counts['dryness'] += 1

    composite = mean([composite_symptom_score(r) for r in records]) or 0
    if composite and composite < 3:
        severity = 'severe'
    elif composite and composite < 4:
        severity = 'moderate'
    else:
        severity = 'mild'

    return {
        'mostCommonSymptoms': [name for name, _ in counts.most_common(3)],
        'symptomSeverity': severity,
        'persistentIssues': sorted(name for name, count in counts.items() if records and count == len(records)),
    }


def impact_level(score):
    if not score or score >= 4:
        return 'minimal'
    if score >= 3:
        return 'moderate'
    return 'significant'


def quality_of_life_impact(records):
    latest = records[-1] if records else {}
    satisfaction = satisfaction_score(latest.get('totalSatisfaction'))
    if satisfaction >= 4:
        satisfaction_level = 'high'
    elif satisfaction in (0, 3):
        satisfaction_level = 'moderate'
    else:
        satisfaction_level = 'low'
    daily = mean([comfort_score(latest.get(f)) or None for f in COMFORT_FIELDS[1:]])
    return {
        'visualPerformanceImpact': impact_level(level_score(latest.get('visualPerformance'), PERFORMANCE_LEVELS)),
        'dailyActivityImpact': impact_level(daily),
        'overallSatisfactionLevel': satisfaction_level,
    }


def pro_summary(records):
    if not records:
        return {
            'visitCount': 0,
            'overallTrends': {k: TrendChoices.INSUFFICIENT_DATA.value
                              for k in ('comfort', 'dryness', 'symptoms', 'satisfaction')},
            'timeBasedPatterns': time_based_patterns(records),
            'symptomProfile': {'mostCommonSymptoms': [], 'symptomSeverity': 'mild', 'persistentIssues': []},
            'qualityOfLifeImpact': {
                'visualPerformanceImpact': 'minimal',
                'dailyActivityImpact': 'minimal',
                'overallSatisfactionLevel': 'moderate',
            },
            'recommendations': ['No questionnaire data available for analysis'],
        }

    trends = overall_trends(records)
    profile = symptom_profile(records)
    advice = []
    if trends['comfort'] == TrendChoices.DECLINING:
        advice.append('Address declining comfort with lens fit evaluation')
    if trends['dryness'] == TrendChoices.DECLINING:
        advice.append('Implement dry eye management protocol')
    if trends['satisfaction'] == TrendChoices.DECLINING:
        advice.append('Review patient expectations and lens choice')
    if profile['persistentIssues']:
        advice.append(f"Investigate persistent symptoms: {', '.join(profile['persistentIssues'])}")

    return {
        'visitCount': len(records),
        'overallTrends': trends,
        'timeBasedPatterns': time_based_patterns(records),
        'symptomProfile': profile,
        'qualityOfLifeImpact': quality_of_life_impact(records),
        'recommendations': advice,
    }


def compare_levels(before, after, levels):
    first, second = level_score(before, levels), level_score(after, levels)
    if not first or not second or first == second:
        return 'same'
    return 'improved' if second > first else 'worsened'


def compare_questionnaires(before, after):
    if not before or not after:
        return {'changes': None, 'clinicalRelevance': [], 'patientImpact': []}

    def by_time(prefix, levels):
        return {
            'overall': compare_levels(before.get(prefix), after.get(prefix), levels),
            'timeSpecific': {
                key: compare_levels(before.get(f'{prefix}_{suffix}'), after.get(f'{prefix}_{suffix}'), levels)
                for key, suffix in TIMES_OF_DAY
            },
        }

    changes = {
        'comfort': by_time('comfort', COMFORT_LEVELS),
        'dryness': by_time('dryness', DRYNESS_LEVELS),
        'symptoms': {f: compare_levels(before.get(f), after.get(f), SYMPTOM_LEVELS) for f in SYMPTOM_FIELDS},
        'handling': {
            'insertion': compare_levels(before.get('easeOfInsertion'), after.get('easeOfInsertion'), EASE_LEVELS),
            'removal': compare_levels(before.get('easeOfRemoval'), after.get('easeOfRemoval'), EASE_LEVELS),
        },
        'satisfaction': compare_levels(
            before.get('totalSatisfaction'), after.get('totalSatisfaction'), SATISFACTION_LEVELS
        ),
    }

    relevance, impact = [], []
    if changes['satisfaction'] == 'worsened':
        relevance.append('Clinically significant decline in patient satisfaction')
    if changes['dryness']['overall'] == 'worsened':
        relevance.append('Increase in reported dryness')
    if changes['comfort']['overall'] == 'worsened':
        impact.append('Patient experiencing reduced comfort during lens wear')
    if 'worsened' in changes['handling'].values():
        impact.append('Lens handling has become more difficult')

    return {'changes': changes, 'clinicalRelevance': relevance, 'patientImpact': impact}


def daily_pattern(comfort_profile):
    """Shape of comfort from insertion to end of day."""
    values = [comfort_profile[key] for key, _ in TIMES_OF_DAY if comfort_profile[key]]
    if len(values) < 2:
        return 'stable'
    steps = [b - a for a, b in zip(values, values[1:])]
    if all(step <= 0 for step in steps) and values[-1] < values[0]:
        return 'worsening_throughout_day'
    if all(step >= 0 for step in steps) and values[-1] > values[0]:
        return 'improving_throughout_day'
    if max(values) - min(values) >= 2:
        return 'variable'
    return 'stable'


def symptom_timeline(records):
    if not records:
        return {
            'timeline': [],
            'patterns': {'dailyPattern': 'stable', 'weeklyTrend': TrendChoices.INSUFFICIENT_DATA.value},
            'criticalTimepoints': [],
            'recommendations': ['No questionnaire data available for timeline analysis'],
        }

    timeline = [
        {
            'visitId': r.get('visitId'),
            'date': r.get('createdAt'),
            'timing': r.get('timing'),
            'comfortProfile': time_of_day_profile(r, 'comfort', comfort_score),
            'drynessProfile': time_of_day_profile(r, 'dryness', dryness_score),
            'symptomSeverity': round(composite_symptom_score(r), 2),
            'satisfactionLevel': satisfaction_score(r.get('totalSatisfaction')),
            'keyIssues': key_issues(r),
        }
        for r in records
    ]

    critical = []
    for prev, curr in zip(timeline, timeline[1:]):
        if prev['satisfactionLevel'] and curr['satisfactionLevel'] <= prev['satisfactionLevel'] - 2:
            critical.append({
                'visitId': curr['visitId'],
                'date': curr['date'],
                'issueType': 'satisfaction_drop',
                'severity': 'severe' if curr['satisfactionLevel'] <= 2 else 'moderate',
                'description': 'Satisfaction dropped by two or more grades since the previous visit',
            })
        if prev['symptomSeverity'] and curr['symptomSeverity'] <= prev['symptomSeverity'] - 1:
            critical.append({
                'visitId': curr['visitId'],
                'date': curr['date'],
                'issueType': 'symptom_increase',
                'severity': 'severe' if curr['symptomSeverity'] < 3 else 'moderate',
                'description': 'Composite symptom score worsened since the previous visit',
            })

    pattern = daily_pattern(timeline[-1]['comfortProfile'])
    advice = []
    if pattern == 'worsening_throughout_day':
        advice.append('Consider mid-day lens care routine')
    if critical:
        advice.append('Follow up on visits flagged as critical timepoints')

    return {
        'timeline': timeline,
        'patterns': {
            'dailyPattern': pattern,
            'weeklyTrend': score_trend([t['satisfactionLevel'] for t in timeline]),
        },
        'criticalTimepoints': critical,
        'recommendations': advice,
    }


class QuestionnaireRepository(BaseExaminationRepository):
    table_base_name = TableNames.QUESTIONNAIRE
    sort_key = 'questionnaireId'
    slug = 'questionnaire'
    prefix = 'questionnaire'

    def validate(self, data):
        check_choice(data, 'timing', TIMING)
        for field in COMFORT_FIELDS:
            check_choice(data, field, COMFORT_LEVELS)
        for field in DRYNESS_FIELDS:
            check_choice(data, field, DRYNESS_LEVELS)
        for field in SYMPTOM_FIELDS:
            check_choice(data, field, SYMPTOM_LEVELS)
        for field in EASE_FIELDS:
            check_choice(data, field, EASE_LEVELS)
        check_choice(data, 'visualPerformance', PERFORMANCE_LEVELS)
        check_choice(data, 'totalSatisfaction', SATISFACTION_LEVELS)
        for field in DETAIL_FIELDS:
            if data.get(field) is not None and not isinstance(data[field], str):
                raise ValidationError(f'{field} must be a string', field=field)

    def calculate_scores(self, visit_id, eyeside):
        record = self.find_by_visit_and_eye(visit_id, eyeside)
        return calculate_scores(record) if record else None

    def get_trend(self, survey_id, eyeside):
        return overall_trends(self.compare_visits(survey_id, eyeside))

    def get_pro_summary(self, survey_id, eyeside):
        return pro_summary(self.compare_visits(survey_id, eyeside))

    def compare_between_visits(self, visit_id_1, visit_id_2, eyeside):
        before = self.find_by_visit_and_eye(visit_id_1, eyeside)
        after = self.find_by_visit_and_eye(visit_id_2, eyeside)
        return dict({'visit1': before, 'visit2': after}, **compare_questionnaires(before, after))

    def get_symptom_timeline(self, survey_id, eyeside):
        return symptom_timeline(self.compare_visits(survey_id, eyeside))

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'summary': pro_summary(records),
            'timeline': symptom_timeline(records),
        }
