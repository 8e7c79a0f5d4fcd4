"""Comparative scores: the patient's judgement against their previous lens, with reasons."""
from collections import Counter

from apps.core.dynamodb import TableNames
from apps.core.exceptions import ValidationError
from apps.examinations.repositories.base import BaseExaminationRepository, check_choice

ASSESSMENTS = ('much_better', 'better', 'same', 'worse', 'much_worse', 'not_applicable')
# Ordinal scale for comparisons; not_applicable is outside it.
ASSESSMENT_ORDER = ('much_worse', 'worse', 'same', 'better', 'much_better')

# (assessment field, reason field, summary key)
ASSESSMENT_FIELDS = (
    ('comfort', 'comfortReason', 'comfort'),
    ('dryness', 'drynessReason', 'dryness'),
    ('vp_DigitalDevice', 'vpReason_DigitalDevice', 'digitalDevice'),
    ('vp_DayTime', 'vpReason_DayTime', 'dayTime'),
    ('vp_EndOfDay', 'vpReason_EndOfDay', 'endOfDay'),
    ('vp_Glare', 'vpReason_Glare', 'glare'),
    ('vp_Halo', 'vpReason_Halo', 'halo'),
    ('vp_StarBurst', 'vpReason_StarBurst', 'starBurst'),
    ('eyeStrain', 'eyeStrainReason', 'eyeStrain'),
    ('totalSatisfaction', 'totalSatisfactionReason', 'totalSatisfaction'),
)
VISUAL_PERFORMANCE_FIELDS = tuple(f for f, _, _ in ASSESSMENT_FIELDS if f.startswith('vp_'))


def is_improvement(value):
    return value in ('much_better', 'better')


def is_deterioration(value):
    return value in ('much_worse', 'worse')


def compare_assessments(before, after):
    """improved / deteriorated / same, or not_comparable when either side is off the scale."""
    if before not in ASSESSMENT_ORDER or after not in ASSESSMENT_ORDER:
        return 'not_comparable'
    change = ASSESSMENT_ORDER.index(after) - ASSESSMENT_ORDER.index(before)
    if change > 0:
        return 'improved'
    if change < 0:
        return 'deteriorated'
    return 'same'


def compare_visual_performance(before, after):
    results = [
        compare_assessments(before.get(f), after.get(f)) for f in VISUAL_PERFORMANCE_FIELDS
    ]
    results = [r for r in results if r != 'not_comparable']
    if not results:
        return 'not_comparable'
    improved = results.count('improved')
    deteriorated = results.count('deteriorated')
    if improved > deteriorated:
        return 'improved'
    if deteriorated > improved:
        return 'deteriorated'
    return 'same'


def summarize(records):
    """Improvement and deterioration counts per field plus the five most common reasons."""
    improvements = {key: 0 for _, _, key in ASSESSMENT_FIELDS}
    deteriorations = {key: 0 for _, _, key in ASSESSMENT_FIELDS}
    improvement_reasons = Counter()
    deterioration_reasons = Counter()

    for record in records:
        for field, reason_field, key in ASSESSMENT_FIELDS:
            value = record.get(field)
            reason = (record.get(reason_field) or '').strip()
            if is_improvement(value):
                improvements[key] += 1
                if reason:
                    improvement_reasons[reason] += 1
            elif is_deterioration(value):
                deteriorations[key] += 1
                if reason:
                    deterioration_reasons[reason] += 1

    return {
        'visitCount': len(records),
        'improvements': improvements,
        'deteriorations': deteriorations,
        'mostCommonReasons': {
            'improvement': [reason for reason, _ in improvement_reasons.most_common(5)],
            'deterioration': [reason for reason, _ in deterioration_reasons.most_common(5)],
        },
    }


def trend_analysis(records):
    if len(records) < 2:
        return {
            'overallTrend': 'insufficient_data',
            'keyFindings': ['Insufficient data for trend analysis'],
            'recommendations': ['Complete additional visits for comprehensive trend analysis'],
            'concernAreas': [],
        }
    first, last = records[0], records[-1]
    changes = {
        aspect: compare_assessments(first.get(aspect), last.get(aspect))
        for aspect in ('comfort', 'dryness', 'eyeStrain', 'totalSatisfaction')
    }
    findings, concerns, recommendations = [], [], []
    for aspect, change in changes.items():
        if change == 'improved':
            findings.append(f'{aspect} has improved over the study period')
        elif change == 'deteriorated':
            findings.append(f'{aspect} has deteriorated over the study period')
            concerns.append(f'Monitor {aspect} closely in future visits')

    improved = list(changes.values()).count('improved')
    deteriorated = list(changes.values()).count('deteriorated')
    if improved > deteriorated:
        overall = 'improving'
        recommendations.append('Continue current treatment approach')
    elif deteriorated > improved:
        overall = 'declining'
        recommendations.extend(['Consider adjusting treatment protocol', 'Schedule follow-up assessment'])
    else:
        overall = 'stable'
        recommendations.append('Maintain current monitoring schedule')

    return {
        'overallTrend': overall,
        'keyFindings': findings,
        'recommendations': recommendations,
        'concernAreas': concerns,
    }


class ComparativeScoresRepository(BaseExaminationRepository):
    table_base_name = TableNames.COMPARATIVE_SCORES
    sort_key = 'comparativeScoresId'
    slug = 'comparative'
    prefix = 'comparative'

    def validate(self, data):
        for field, reason_field, _ in ASSESSMENT_FIELDS:
            check_choice(data, field, ASSESSMENTS)
            if reason_field in data and data[reason_field] is not None and not isinstance(data[reason_field], str):
                raise ValidationError(f'{reason_field} must be a string', field=reason_field)

    def get_summary(self, survey_id, eyeside):
        return summarize(self.find_by_survey_and_eye(survey_id, eyeside))

    def compare_between_visits(self, eyeside, first_visit_id, second_visit_id):
        first = self.find_by_visit_and_eye(first_visit_id, eyeside)
        second = self.find_by_visit_and_eye(second_visit_id, eyeside)
        changes = None
        if first and second:
            changes = {
                'comfort': compare_assessments(first.get('comfort'), second.get('comfort')),
                'dryness': compare_assessments(first.get('dryness'), second.get('dryness')),
                'visualPerformance': compare_visual_performance(first, second),
                'eyeStrain': compare_assessments(first.get('eyeStrain'), second.get('eyeStrain')),
                'totalSatisfaction': compare_assessments(
                    first.get('totalSatisfaction'), second.get('totalSatisfaction')
                ),
            }
        return {'visit1': first, 'visit2': second, 'changes': changes}

    def get_trend_analysis(self, survey_id, eyeside):
        return trend_analysis(self.compare_visits(survey_id, eyeside))

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'summary': summarize(records),
            'trend': trend_analysis(records),
        }
