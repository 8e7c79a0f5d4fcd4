"""Lens inspection: deposit and surface damage grading, replacement prediction."""
from apps.core.dynamodb import TableNames
from apps.examinations.models import TrendChoices
from apps.examinations.repositories.base import BaseExaminationRepository, check_choice, halves, mean

DEPOSIT_LEVELS = ('none', 'minimal', 'mild', 'moderate', 'heavy', 'severe')
DAMAGE_LEVELS = (
    'none', 'minimal_surface', 'minor_scratches', 'moderate_damage',
    'significant_damage', 'severe_damage', 'replacement_required',
)

# Grades are ordinal: the index in the vocabulary is the score.
DEPOSIT_SCORES = {level: score for score, level in enumerate(DEPOSIT_LEVELS)}
DAMAGE_SCORES = {level: score for score, level in enumerate(DAMAGE_LEVELS)}


def deposit_score(level):
    return DEPOSIT_SCORES.get(level, 0)


def damage_score(level):
    return DAMAGE_SCORES.get(level, 0)


def condition_score(record):
    return deposit_score(record.get('lensDeposit')) + damage_score(record.get('lensScratchDamage'))


def condition_trend(scores):
    """Higher scores are worse; a one-grade shift between halves is a trend."""
    if len(scores) < 2:
        return TrendChoices.INSUFFICIENT_DATA.value
    first, second = halves(scores)
    change = mean(second) - mean(first)
    if change <= -1:
        return TrendChoices.IMPROVING.value
    if change >= 1:
        return TrendChoices.WORSENING.value
    return TrendChoices.STABLE.value


def replacement_needed(record):
    return (
        deposit_score(record.get('lensDeposit')) >= 4
        or damage_score(record.get('lensScratchDamage')) >= 4
    )


def warning_level(record):
    score = condition_score(record)
    if score >= 8:
        return 'critical'
    if score >= 6:
        return 'high'
    if score >= 4:
        return 'medium'
    if score >= 2:
        return 'low'
    return 'none'


def current_condition(record):
    score = condition_score(record)
    if score == 0:
        return 'excellent'
    if score <= 2:
        return 'good'
    if score <= 4:
        return 'fair'
    if score <= 6:
        return 'poor'
    return 'replace_immediately'


REPLACEMENT_TIMEFRAMES = {
    'replace_immediately': 'immediate',
    'poor': 'within_1_week',
    'fair': 'within_2_weeks',
    'good': 'within_1_month',
    'excellent': 'more_than_1_month',
}


def assess_lens_condition(record):
    """Scores, warning level and replacement decision for one inspection."""
    return {
        'depositScore': deposit_score(record.get('lensDeposit')),
        'damageScore': damage_score(record.get('lensScratchDamage')),
        'overallScore': condition_score(record),
        'condition': current_condition(record),
        'warningLevel': warning_level(record),
        'replacementNeeded': replacement_needed(record),
    }


def condition_trends(records):
    return {
        'deposits': condition_trend([deposit_score(r.get('lensDeposit')) for r in records]),
        'damage': condition_trend([damage_score(r.get('lensScratchDamage')) for r in records]),
        'overall': condition_trend([condition_score(r) for r in records]),
    }


def progression_notes(record):
    notes = []
    if deposit_score(record.get('lensDeposit')) >= 3:
        notes.append(f"Significant deposit accumulation: {record.get('lensDeposit')}")
    if damage_score(record.get('lensScratchDamage')) >= 3:
        notes.append(f"Notable lens damage: {record.get('lensScratchDamage')}")
    if replacement_needed(record):
        notes.append('Lens replacement recommended')
    return notes


def compare_levels(before, after, levels):
    if before not in levels or after not in levels:
        return 'not_comparable'
    first, second = levels.index(before), levels.index(after)
    if second < first:
        return 'improved'
    if second > first:
        return 'worsened'
    return 'same'


def condition_summary(records):
    if not records:
        return {
            'visitCount': 0,
            'conditionTrend': {
                'deposits': TrendChoices.INSUFFICIENT_DATA.value,
                'damage': TrendChoices.INSUFFICIENT_DATA.value,
                'overall': TrendChoices.INSUFFICIENT_DATA.value,
            },
            'currentStatus': {
                'depositLevel': 'unknown',
                'damageLevel': 'unknown',
                'replacementNeeded': False,
                'warningLevel': 'none',
            },
            'progressionAnalysis': [],
            'recommendations': ['No lens inspection data available for analysis'],
            'maintenanceGuidance': [],
        }

    latest = records[-1]
    trends = condition_trends(records)
    status = {
        'depositLevel': latest.get('lensDeposit'),
        'damageLevel': latest.get('lensScratchDamage'),
        'replacementNeeded': replacement_needed(latest),
        'warningLevel': warning_level(latest),
    }

    advice = []
    if status['replacementNeeded']:
        advice.append('Immediate lens replacement required')
    elif status['warningLevel'] == 'high':
        advice.append('Schedule lens replacement within 1 week')
    elif status['warningLevel'] == 'medium':
        advice.append('Consider lens replacement within 2 weeks')
    if trends['deposits'] == TrendChoices.WORSENING:
        advice += ['Review cleaning regimen and technique', 'Consider more frequent lens replacement schedule']
    if trends['damage'] == TrendChoices.WORSENING:
        advice += ['Evaluate lens handling practices', 'Review insertion and removal technique']

    guidance = []
    if status['depositLevel'] != 'none':
        guidance += ['Implement enhanced cleaning protocol', 'Use protein removal treatments as directed']
    if status['damageLevel'] != 'none':
        guidance += ['Review proper lens handling techniques', 'Ensure fingernails are trimmed and smooth']
    guidance += ['Regular lens inspection during wear', 'Follow prescribed replacement schedule strictly']

    return {
        'visitCount': len(records),
        'conditionTrend': trends,
        'currentStatus': status,
        'progressionAnalysis': [
            {
                'visitId': r.get('visitId'),
                'date': r.get('createdAt'),
                'depositScore': deposit_score(r.get('lensDeposit')),
                'damageScore': damage_score(r.get('lensScratchDamage')),
                'overallScore': condition_score(r),
                'notes': progression_notes(r),
            }
            for r in records
        ],
        'recommendations': advice,
        'maintenanceGuidance': guidance,
    }


def compare_condition(before, after):
    if not before or not after:
        return {'changes': None, 'clinicalSignificance': [], 'actionRequired': []}

    was_needed, now_needed = replacement_needed(before), replacement_needed(after)
    if now_needed and not was_needed:
        status_change = 'new_replacement_needed'
    elif was_needed and not now_needed:
        status_change = 'no_longer_needed'
    elif was_needed:
        status_change = 'still_needed'
    else:
        status_change = 'still_good'

    score_before, score_after = condition_score(before), condition_score(after)
    if score_after < score_before:
        overall = 'improved'
    elif score_after > score_before:
        overall = 'worsened'
    else:
        overall = 'same'

    changes = {
        'depositChange': compare_levels(before.get('lensDeposit'), after.get('lensDeposit'), DEPOSIT_LEVELS),
        'damageChange': compare_levels(
            before.get('lensScratchDamage'), after.get('lensScratchDamage'), DAMAGE_LEVELS
        ),
        'overallCondition': overall,
        'replacementStatus': {'before': was_needed, 'after': now_needed, 'statusChange': status_change},
    }

    significance, actions = [], []
    if status_change == 'new_replacement_needed':
        significance.append('Lens condition has deteriorated to replacement threshold')
        actions += ['Schedule immediate lens replacement', 'Review patient compliance and handling technique']
    if changes['depositChange'] == 'worsened':
        significance.append('Significant increase in lens deposits noted')
        actions.append('Evaluate cleaning protocol effectiveness')
    if changes['damageChange'] == 'worsened':
        significance.append('Progressive lens damage identified')
        actions.append('Patient education on proper lens care')

    return {'changes': changes, 'clinicalSignificance': significance, 'actionRequired': actions}


def data_consistency(records):
    """Share of visit-to-visit steps where the condition held or deteriorated."""
    if len(records) < 2:
        return 0
    scores = [condition_score(r) for r in records]
    steady = sum(1 for prev, curr in zip(scores, scores[1:]) if curr >= prev)
    return steady / (len(scores) - 1)


def replacement_prediction(records):
    if not records:
        return None
    latest = records[-1]
    condition = current_condition(latest)
    timeframe = REPLACEMENT_TIMEFRAMES[condition]
    scores = [condition_score(r) for r in records]

    risk_factors = []
    if any(curr - prev >= 2 for prev, curr in zip(scores, scores[1:])):
        risk_factors.append('History of rapid lens condition deterioration')

    concerns = []
    if deposit_score(latest.get('lensDeposit')) >= 3:
        concerns.append('Significant protein/lipid deposit accumulation')
    if damage_score(latest.get('lensScratchDamage')) >= 3:
        concerns.append('Progressive lens surface damage')

    if condition == 'poor' or timeframe == 'immediate':
        monitoring = ['Daily lens inspection required']
    else:
        monitoring = ['Regular lens condition monitoring']
    monitoring.append('Document any changes in comfort or vision quality')

    consistency = data_consistency(records)
    if len(records) >= 4 and consistency >= 0.8:
        confidence = 'high'
    elif len(records) >= 2 and consistency >= 0.6:
        confidence = 'medium'
    else:
        confidence = 'low'

    return {
        'currentCondition': condition,
        'estimatedReplacementTimeframe': timeframe,
        'riskFactors': risk_factors,
        'mainConcerns': concerns,
        'monitoringRecommendations': monitoring,
        'replacementCriteria': {
            'depositThreshold': deposit_score(latest.get('lensDeposit')) >= 4,
            'damageThreshold': damage_score(latest.get('lensScratchDamage')) >= 4,
            'visualImpairment': condition_score(latest) >= 6,
            'comfortIssues': damage_score(latest.get('lensScratchDamage')) >= 3,
        },
        'predictionConfidence': confidence,
    }


class LensInspectionRepository(BaseExaminationRepository):
    table_base_name = TableNames.LENS_INSPECTION
    sort_key = 'lensInspectionId'
    slug = 'lens-inspection'
    prefix = 'lensinspection'

    def validate(self, data):
        check_choice(data, 'lensDeposit', DEPOSIT_LEVELS)
        check_choice(data, 'lensScratchDamage', DAMAGE_LEVELS)

    def assess_lens_condition(self, visit_id, eyeside):
        record = self.find_by_visit_and_eye(visit_id, eyeside)
        return assess_lens_condition(record) if record else None

    def get_trend(self, survey_id, eyeside):
        return condition_trends(self.compare_visits(survey_id, eyeside))

    def get_lens_condition_summary(self, survey_id, eyeside):
        return condition_summary(self.compare_visits(survey_id, eyeside))

    def compare_between_visits(self, visit_id_1, visit_id_2, eyeside):
        before = self.find_by_visit_and_eye(visit_id_1, eyeside)
        after = self.find_by_visit_and_eye(visit_id_2, eyeside)
        return dict({'visit1': before, 'visit2': after}, **compare_condition(before, after))

    def get_replacement_prediction(self, survey_id, eyeside):
        return replacement_prediction(self.compare_visits(survey_id, eyeside))

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'summary': condition_summary(records),
            'replacementPrediction': replacement_prediction(records),
        }
