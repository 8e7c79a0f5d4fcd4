"""DR1 tear film assessment: break-up time, Schirmer test, meniscus height."""
from apps.core.dynamodb import TableNames
from apps.examinations.repositories.base import (
    BaseExaminationRepository,
    check_choice,
    check_range,
    halves,
    mean,
)

TEAR_QUALITY = ('excellent', 'good', 'fair', 'poor', 'very_poor')
TEAR_QUALITY_ORDER = ('very_poor', 'poor', 'fair', 'good', 'excellent')
BLINKING_PATTERNS = ('normal', 'frequent', 'infrequent', 'incomplete', 'irregular', 'forced')
ABNORMAL_BLINKING = ('incomplete', 'infrequent', 'irregular', 'forced')

TREND_THRESHOLD = 2


def calculate_severity(tbut, schirmer, meniscus):
    """Weighted threshold buckets over the three measurements."""
    score = 0
    if tbut < 5:
        score += 3
    elif tbut < 10:
        score += 2
    elif tbut < 15:
        score += 1

    if schirmer < 5:
        score += 3
    elif schirmer < 10:
        score += 2
    elif schirmer < 15:
        score += 1

    if meniscus < 0.1:
        score += 2
    elif meniscus < 0.2:
        score += 1

    if score >= 6:
        return 'severe'
    if score >= 4:
        return 'moderate'
    if score >= 2:
        return 'mild'
    return 'none'


def record_severity(record):
    return calculate_severity(
        record.get('tearBreakUpTime') or 0,
        record.get('schirmerTest') or 0,
        record.get('tearMeniscusHeight') or 0,
    )


def tear_film_trend(records):
    """Average of the TBUT and Schirmer half-to-half changes."""
    if len(records) < 2:
        return 'insufficient_data'
    first, second = halves(records)
    tbut = mean(r.get('tearBreakUpTime') or 0 for r in second) - mean(r.get('tearBreakUpTime') or 0 for r in first)
    schirmer = mean(r.get('schirmerTest') or 0 for r in second) - mean(r.get('schirmerTest') or 0 for r in first)
    change = (tbut + schirmer) / 2
    if change >= TREND_THRESHOLD:
        return 'improving'
    if change <= -TREND_THRESHOLD:
        return 'declining'
    return 'stable'


def risk_factors(records, average_tbut, average_schirmer):
    factors = []
    if average_tbut < 5:
        factors.append('Consistently short tear break-up time')
    if average_schirmer < 5:
        factors.append('Chronically low tear production')
    if sum(1 for r in records if r.get('tearQuality') in ('poor', 'very_poor')) > len(records) * 0.5:
        factors.append('Persistent poor tear quality')
    if sum(1 for r in records if r.get('blinkingPattern') in ('incomplete', 'infrequent', 'irregular')) > len(records) * 0.5:
        factors.append('Consistent abnormal blinking patterns')
    return factors


def recommendations(severity, factors, average_tbut, average_schirmer):
    advice = []
    if severity == 'severe':
        advice.extend([
            'Immediate ophthalmologist referral for comprehensive dry eye management',
            'Consider prescription dry eye medications',
        ])
    elif severity == 'moderate':
        advice.extend([
            'Implement comprehensive artificial tear regimen',
            'Consider punctal plugs or other tear retention methods',
        ])
    elif severity == 'mild':
        advice.extend([
            'Regular use of preservative-free artificial tears',
            'Monitor for progression at next visit',
        ])
    if average_tbut < 5:
        advice.append('Focus on meibomian gland function and lid hygiene')
    if average_schirmer < 5:
        advice.append('Evaluate for systemic causes of aqueous deficiency')
    if 'Consistent abnormal blinking patterns' in factors:
        advice.append('Patient education on proper blinking and eye lubrication habits')
    return advice


def tear_film_summary(records):
    if not records:
        return {
            'visitCount': 0,
            'averageTBUT': 0,
            'averageSchirmer': 0,
            'averageMeniscusHeight': 0,
            'dryEyeSeverity': 'none',
            'trend': 'insufficient_data',
            'riskFactors': [],
            'recommendations': ['No tear film data available for analysis'],
        }
    tbut = mean(r.get('tearBreakUpTime') or 0 for r in records)
    schirmer = mean(r.get('schirmerTest') or 0 for r in records)
    meniscus = mean(r.get('tearMeniscusHeight') or 0 for r in records)
    severity = calculate_severity(tbut, schirmer, meniscus)
    factors = risk_factors(records, tbut, schirmer)
    return {
        'visitCount': len(records),
        'averageTBUT': round(tbut, 2),
        'averageSchirmer': round(schirmer, 2),
        'averageMeniscusHeight': round(meniscus, 3),
        'dryEyeSeverity': severity,
        'trend': tear_film_trend(records),
        'riskFactors': factors,
        'recommendations': recommendations(severity, factors, tbut, schirmer),
    }


def compare_tear_quality(before, after):
    if before not in TEAR_QUALITY_ORDER or after not in TEAR_QUALITY_ORDER:
        return 'not_comparable'
    change = TEAR_QUALITY_ORDER.index(after) - TEAR_QUALITY_ORDER.index(before)
    if change > 0:
        return 'improved'
    if change < 0:
        return 'worsened'
    return 'same'


def compare_blinking_pattern(before, after):
    if after == 'normal' and before != 'normal':
        return 'improved'
    if after in ABNORMAL_BLINKING and before not in ABNORMAL_BLINKING:
        return 'worsened'
    if before == after:
        return 'same'
    return 'not_comparable'


def clinical_significance(before, after):
    """Changes large enough to matter clinically between two visits."""
    notes = []
    tbut = (after.get('tearBreakUpTime') or 0) - (before.get('tearBreakUpTime') or 0)
    schirmer = (after.get('schirmerTest') or 0) - (before.get('schirmerTest') or 0)
    meniscus = (after.get('tearMeniscusHeight') or 0) - (before.get('tearMeniscusHeight') or 0)
    if abs(tbut) >= 3:
        notes.append(f'Clinically significant TBUT change: {tbut:+.1f}s')
    if abs(schirmer) >= 5:
        notes.append(f'Clinically significant Schirmer change: {schirmer:+}mm')
    if abs(meniscus) >= 0.1:
        notes.append(f'Notable tear meniscus change: {meniscus:+.2f}mm')
    severity_before, severity_after = record_severity(before), record_severity(after)
    if severity_before != severity_after:
        notes.append(f'Dry eye severity changed from {severity_before} to {severity_after}')
    return notes


def treatment_guidance(classification, severity):
    guidance = {
        'aqueous_deficient': [
            'Consider cyclosporine or lifitegrast for tear production enhancement',
            "Evaluate for autoimmune conditions (Sjögren's syndrome)",
        ],
        'evaporative': [
            'Focus on meibomian gland dysfunction treatment',
            'Warm compresses and lid massage therapy',
        ],
        'mixed': [
            'Combination therapy addressing both aqueous and evaporative components',
            'Consider both tear production enhancement and lipid layer stabilization',
        ],
        'severe': [
            'Multidisciplinary approach with ophthalmology consultation',
            'Consider advanced treatments: scleral lenses, autologous serum tears',
        ],
    }.get(classification, [])
    if severity == 'severe':
        guidance = guidance + ['Close monitoring and frequent follow-up recommended']
    return guidance


def classify_dry_eye(record):
    tbut = record.get('tearBreakUpTime') or 0
    schirmer = record.get('schirmerTest') or 0
    meniscus = record.get('tearMeniscusHeight') or 0
    evidence = []

    if tbut >= 10 and schirmer >= 10 and meniscus >= 0.2:
        classification, mechanism = 'normal', 'Normal tear film parameters'
    elif schirmer < 5 and meniscus < 0.1:
        classification, mechanism = 'aqueous_deficient', 'Reduced tear production'
        evidence.extend([f'Low Schirmer test ({schirmer}mm)', f'Reduced tear meniscus ({meniscus}mm)'])
    elif tbut < 5 and schirmer >= 10:
        classification, mechanism = 'evaporative', 'Increased tear evaporation'
        evidence.append(f'Short tear break-up time ({tbut}s)')
    elif tbut < 5 and schirmer < 10:
        classification, mechanism = 'mixed', 'Combined aqueous deficiency and evaporative dysfunction'
        evidence.append(f'Short TBUT ({tbut}s) and low Schirmer ({schirmer}mm)')
    else:
        classification, mechanism = 'severe', 'Severe dry eye with multiple factors'

    if record.get('tearQuality') in ('poor', 'very_poor'):
        evidence.append('Poor tear quality observed')
    if record.get('blinkingPattern') in ('incomplete', 'infrequent'):
        evidence.append(f"Abnormal blinking pattern: {record.get('blinkingPattern')}")

    severity = calculate_severity(tbut, schirmer, meniscus)
    return {
        'classification': classification,
        'severity': severity,
        'primaryMechanism': mechanism,
        'supportingEvidence': evidence,
        'treatmentGuidance': treatment_guidance(classification, severity),
    }


class DR1Repository(BaseExaminationRepository):
    table_base_name = TableNames.DR1
    sort_key = 'dr1Id'
    slug = 'dr1'
    prefix = 'dr1'

    def validate(self, data):
        check_range(data, 'tearBreakUpTime', 1, 30, 'Tear break-up time')
        check_range(data, 'schirmerTest', 0, 35, 'Schirmer test')
        check_range(data, 'tearMeniscusHeight', 0, 1, 'Tear meniscus height')
        check_choice(data, 'tearQuality', TEAR_QUALITY)
        check_choice(data, 'blinkingPattern', BLINKING_PATTERNS)

    def get_tear_film_summary(self, survey_id, eyeside):
        return tear_film_summary(self.compare_visits(survey_id, eyeside))

    def get_trend(self, survey_id, eyeside):
        return tear_film_trend(self.compare_visits(survey_id, eyeside))

    def classify_dry_eye(self, visit_id, eyeside):
        record = self.find_by_visit_and_eye(visit_id, eyeside)
        return classify_dry_eye(record) if record else None

    def compare_between_visits(self, eyeside, first_visit_id, second_visit_id):
        first = self.find_by_visit_and_eye(first_visit_id, eyeside)
        second = self.find_by_visit_and_eye(second_visit_id, eyeside)
        changes, significance = None, []
        if first and second:
            changes = {
                'tbutChange': (second.get('tearBreakUpTime') or 0) - (first.get('tearBreakUpTime') or 0),
                'schirmerChange': (second.get('schirmerTest') or 0) - (first.get('schirmerTest') or 0),
                'meniscusHeightChange': (second.get('tearMeniscusHeight') or 0) - (first.get('tearMeniscusHeight') or 0),
                'qualityChange': compare_tear_quality(first.get('tearQuality'), second.get('tearQuality')),
                'blinkingChange': compare_blinking_pattern(first.get('blinkingPattern'), second.get('blinkingPattern')),
            }
            significance = clinical_significance(first, second)
        return {'visit1': first, 'visit2': second, 'changes': changes, 'clinicalSignificance': significance}

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'summary': tear_film_summary(records),
            'latestClassification': classify_dry_eye(records[-1]) if records else None,
        }
