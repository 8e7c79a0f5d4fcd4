"""Corrected visual acuity: uncorrected, with lens, spherical (S) and spherocylindrical (SC) corrections."""
from apps.core.dynamodb import TableNames
from apps.core.exceptions import ValidationError
from apps.examinations.repositories.base import BaseExaminationRepository, check_choice

RED_GREEN_TEST = ('neutral', 'red_clearer', 'green_clearer', 'cannot_determine')
CLARITY = ('excellent', 'good', 'fair', 'poor', 'very_poor')
STABILITY = ('very_stable', 'stable', 'moderately_stable', 'unstable', 'very_unstable')

CLARITY_SCORES = {'excellent': 5, 'good': 4, 'fair': 3, 'poor': 2, 'very_poor': 1}
STABILITY_SCORES = {'very_stable': 5, 'stable': 4, 'moderately_stable': 3, 'unstable': 2, 'very_unstable': 1}

# Visual acuity and lens powers are recorded as entered ("1.0", "20/20", "-2.25").
STRING_FIELDS = (
    'va_WithoutLens', 'va_WithLens', 'va_S_Correction', 'va_SC_Correction',
    's_S_Correction', 's_SC_Correction', 'c_SC_Correction', 'ax_SC_Correction',
)

VA_THRESHOLD = 0.1


def parse_va(value):
    """Decimal acuity from a leading number; None when the value is not decimal."""
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def compare_visual_acuity(before, after):
    first, second = parse_va(before), parse_va(after)
    if not before or not after or first is None or second is None:
        return 'insufficient_data'
    change = round(second - first, 2)
    if change >= VA_THRESHOLD:
        return 'improved'
    if change <= -VA_THRESHOLD:
        return 'declined'
    return 'stable'


def va_improvement_lines(before, after):
    """Approximate chart lines gained: 0.1 decimal acuity per line."""
    first, second = parse_va(before), parse_va(after)
    if first is None or second is None:
        return 0
    return round((second - first) * 10)


def correction_effectiveness(uncorrected, corrected, clarity, stability):
    score = 0
    lines = va_improvement_lines(uncorrected, corrected)
    if lines >= 3:
        score += 3
    elif lines >= 2:
        score += 2
    elif lines >= 1:
        score += 1
    score += {'excellent': 2, 'good': 2, 'fair': 1}.get(clarity, 0)
    score += {'very_stable': 2, 'stable': 2, 'moderately_stable': 1}.get(stability, 0)

    if score >= 6:
        return 'very_effective'
    if score >= 4:
        return 'effective'
    if score >= 2:
        return 'moderately_effective'
    return 'limited_effect'


def _score_trend(records, scores):
    if len(records) < 2:
        return 'insufficient_data'
    values = [scores(r) for r in records]
    change = values[-1] - values[0]
    if change >= 1:
        return 'improving'
    if change <= -1:
        return 'declining'
    return 'stable'


def clarity_trend(records):
    return _score_trend(records, lambda r: (
        CLARITY_SCORES.get(r.get('clarity_S_Correction'), 0) + CLARITY_SCORES.get(r.get('clarity_SC_Correction'), 0)
    ) / 2)


def stability_trend(records):
    return _score_trend(records, lambda r: (
        STABILITY_SCORES.get(r.get('stability_S_Correction'), 0)
        + STABILITY_SCORES.get(r.get('stability_SC_Correction'), 0)
    ) / 2)


def _effectiveness_pair(record):
    return {
        's_correction': correction_effectiveness(
            record.get('va_WithoutLens'), record.get('va_S_Correction'),
            record.get('clarity_S_Correction'), record.get('stability_S_Correction'),
        ),
        'sc_correction': correction_effectiveness(
            record.get('va_WithoutLens'), record.get('va_SC_Correction'),
            record.get('clarity_SC_Correction'), record.get('stability_SC_Correction'),
        ),
    }


def progression_summary(records):
    if not records:
        return {
            'visitCount': 0,
            'withoutLensProgression': {'baseline': '', 'latest': '', 'improvement': 'insufficient_data'},
            'withLensProgression': {'baseline': '', 'latest': '', 'improvement': 'insufficient_data'},
            'correctionEffectiveness': {'s_correction': 'limited_effect', 'sc_correction': 'limited_effect'},
            'clarityTrend': 'insufficient_data',
            'stabilityTrend': 'insufficient_data',
            'recommendations': ['No corrected VA data available for analysis'],
        }
    baseline, latest = records[0], records[-1]
    effectiveness = _effectiveness_pair(latest)
    clarity, stability = clarity_trend(records), stability_trend(records)

    advice = []
    if effectiveness['sc_correction'] == 'very_effective':
        advice.append('SC correction shows excellent results - continue current approach')
    elif effectiveness['s_correction'] == 'very_effective':
        advice.append('S correction is highly effective - astigmatic correction may not be necessary')
    if clarity == 'declining':
        advice.append('Monitor clarity trends - consider lens surface treatments or replacement')
    if stability == 'declining':
        advice.append('Evaluate fit stability and consider design modifications')

    return {
        'visitCount': len(records),
        'withoutLensProgression': {
            'baseline': baseline.get('va_WithoutLens'),
            'latest': latest.get('va_WithoutLens'),
            'improvement': compare_visual_acuity(baseline.get('va_WithoutLens'), latest.get('va_WithoutLens')),
        },
        'withLensProgression': {
            'baseline': baseline.get('va_WithLens'),
            'latest': latest.get('va_WithLens'),
            'improvement': compare_visual_acuity(baseline.get('va_WithLens'), latest.get('va_WithLens')),
        },
        'correctionEffectiveness': effectiveness,
        'clarityTrend': clarity,
        'stabilityTrend': stability,
        'recommendations': advice,
    }


def optimal_correction(record):
    """Which correction to prescribe for one visit's measurements."""
    effectiveness = _effectiveness_pair(record)
    s, sc = effectiveness['s_correction'], effectiveness['sc_correction']
    if sc == 'very_effective':
        recommended = 'sc_correction'
    elif s == 'very_effective':
        recommended = 's_correction'
    elif s == 'limited_effect' and sc == 'limited_effect':
        recommended = 'no_correction'
    else:
        recommended = 'sc_correction'

    limitations = []
    uncorrected, with_lens = parse_va(record.get('va_WithoutLens')), parse_va(record.get('va_WithLens'))
    if uncorrected is not None and with_lens is not None and uncorrected < with_lens:
        limitations.append('Significant visual acuity limitation without correction')

    factors = [f"Red-green test result: {record.get('redGreenTest')}"]
    if recommended == 'sc_correction':
        factors.append('Cylindrical correction provides superior visual outcome')
    elif recommended == 's_correction':
        factors.append('Spherical correction sufficient for optimal vision')

    notes = [f'Best corrected visual acuity achieved with {recommended}']
    if record.get('clarityDetail_SC_Correction'):
        notes.append(f"SC correction clarity details: {record['clarityDetail_SC_Correction']}")
    if record.get('stabilityDetail_SC_Correction'):
        notes.append(f"SC correction stability details: {record['stabilityDetail_SC_Correction']}")

    follow_up = []
    if recommended == 'sc_correction' and sc != 'very_effective':
        follow_up.append('Monitor SC correction effectiveness at next visit')
    follow_up.append('Continue regular visual acuity monitoring')

    return {
        'recommendedCorrection': recommended,
        'analysisDetails': {
            'withoutLens': {'va': record.get('va_WithoutLens'), 'limitations': limitations},
            'sCorrection': {
                'va': record.get('va_S_Correction'),
                'clarity': record.get('clarity_S_Correction'),
                'stability': record.get('stability_S_Correction'),
                'effectiveness': s,
            },
            'scCorrection': {
                'va': record.get('va_SC_Correction'),
                'clarity': record.get('clarity_SC_Correction'),
                'stability': record.get('stability_SC_Correction'),
                'effectiveness': sc,
            },
        },
        'decisionFactors': factors,
        'clinicalNotes': notes,
        'followUpRecommendations': follow_up,
    }


class CorrectedVARepository(BaseExaminationRepository):
    table_base_name = TableNames.CORRECTED_VA
    sort_key = 'correctedVAId'
    slug = 'corrected-va'
    prefix = 'correctedva'

    def validate(self, data):
        for field in STRING_FIELDS:
            if data.get(field) is not None and not isinstance(data[field], str):
                raise ValidationError(f'{field} must be a string', field=field)
        check_choice(data, 'redGreenTest', RED_GREEN_TEST)
        check_choice(data, 'clarity_S_Correction', CLARITY)
        check_choice(data, 'clarity_SC_Correction', CLARITY)
        check_choice(data, 'stability_S_Correction', STABILITY)
        check_choice(data, 'stability_SC_Correction', STABILITY)

    def compare_visual_acuity(self, survey_id, eyeside):
        records = self.compare_visits(survey_id, eyeside)
        if not records:
            return 'insufficient_data'
        return compare_visual_acuity(records[0].get('va_WithLens'), records[-1].get('va_WithLens'))

    def get_correction_effectiveness(self, visit_id, eyeside):
        record = self.find_by_visit_and_eye(visit_id, eyeside)
        return _effectiveness_pair(record) if record else None

    def get_optimal_correction(self, visit_id, eyeside):
        record = self.find_by_visit_and_eye(visit_id, eyeside)
        return optimal_correction(record) if record else None

    def get_clarity_trend(self, survey_id, eyeside):
        return clarity_trend(self.compare_visits(survey_id, eyeside))

    def get_stability_trend(self, survey_id, eyeside):
        return stability_trend(self.compare_visits(survey_id, eyeside))

    def get_progression_summary(self, survey_id, eyeside):
        return progression_summary(self.compare_visits(survey_id, eyeside))

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'progression': progression_summary(records),
            'latestOptimalCorrection': optimal_correction(records[-1]) if records else None,
        }
