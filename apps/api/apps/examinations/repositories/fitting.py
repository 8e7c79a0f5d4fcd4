"""Lens fluid surface assessment (fitting): movement, position, wettability and FACE2 centering."""
import math

from apps.core.dynamodb import TableNames
from apps.examinations.repositories.base import (
    BaseExaminationRepository,
    check_choice,
    check_range,
    halves,
    mean,
)

TIMINGS = ('initial', 'after_5min', 'after_15min', 'after_30min', 'end_of_day')
POSITIONS = ('optimal', 'slightly_high', 'slightly_low', 'high', 'low', 'decentered')
PATTERNS = ('ideal', 'acceptable', 'tight', 'loose', 'irregular', 'unstable')
WETTABILITY = ('excellent', 'good', 'fair', 'poor', 'very_poor')
DEPOSITS = ('none', 'minimal', 'mild', 'moderate', 'heavy')
DRYNESS = ('none', 'minimal', 'mild', 'moderate', 'severe')

POSITION_SCORES = {
    'optimal': 5, 'acceptable': 4, 'slightly_high': 3, 'slightly_low': 3, 'high': 2, 'low': 2, 'decentered': 1,
}
PATTERN_SCORES = {'ideal': 5, 'acceptable': 4, 'tight': 2, 'loose': 2, 'irregular': 1, 'unstable': 0}
WETTABILITY_SCORES = {'excellent': 5, 'good': 4, 'fair': 3, 'poor': 2, 'very_poor': 1}

FITTING_SCORE_THRESHOLD = 2
FACE2_TREND_THRESHOLD = 0.5


def fitting_score(record):
    return (
        POSITION_SCORES.get(record.get('lensPosition'), 0)
        + PATTERN_SCORES.get(record.get('fittingPattern'), 0)
        + WETTABILITY_SCORES.get(record.get('lensWettability'), 0)
    )


def face2_distance(record):
    """Distance of the FACE2 point from the optimal center (0, 0)."""
    return math.hypot(record.get('face2_X') or 0, record.get('face2_Y') or 0)


def fitting_trend(records):
    if len(records) < 2:
        return 'insufficient_data'
    change = fitting_score(records[-1]) - fitting_score(records[0])
    if change >= FITTING_SCORE_THRESHOLD:
        return 'improving'
    if change <= -FITTING_SCORE_THRESHOLD:
        return 'declining'
    return 'stable'


def common_issues(records):
    if not records:
        return []
    count = len(records)
    issues = []
    if sum(1 for r in records if r.get('lensPosition') not in ('optimal', 'acceptable')) > count * 0.5:
        issues.append('Consistent lens positioning problems detected')
    if sum(1 for r in records if r.get('lensWettability') in ('poor', 'very_poor')) > count * 0.3:
        issues.append('Lens wettability concerns identified')
    if sum(1 for r in records if r.get('surfaceDeposit') in ('moderate', 'heavy')) > count * 0.3:
        issues.append('Surface deposit accumulation patterns noted')
    return issues


def recommendations(records):
    if not records:
        return ['No fitting data available for analysis']
    advice = []
    average_movement = mean(r.get('lensMovement') or 0 for r in records)
    if average_movement > 2.0:
        advice.append('Consider a tighter fitting lens to reduce excessive movement')
    elif average_movement < 0.5:
        advice.append('Consider a looser fitting lens to improve comfort and tear exchange')

    latest = records[-1]
    if latest.get('lensWettability') in ('poor', 'very_poor'):
        advice.append('Address lens wettability issues - consider surface treatments or different lens material')
    if latest.get('surfaceDeposit') in ('moderate', 'heavy'):
        advice.append('Implement enhanced cleaning regimen or consider more frequent lens replacement')
    if mean(face2_distance(r) for r in records) > 2.0:
        advice.append('FACE2 analysis indicates centering issues - evaluate lens design and fit')
    return advice


def face2_analysis(records):
    if not records:
        return {
            'centeringStability': 'poor',
            'averageDistance': 0,
            'maxDeviation': 0,
            'trendDirection': 'insufficient_data',
            'quadrantDistribution': {'q1': 0, 'q2': 0, 'q3': 0, 'q4': 0},
            'recommendations': ['No FACE2 data available for analysis'],
        }
    distances = [face2_distance(r) for r in records]
    average = mean(distances)
    max_deviation = max(distances)

    if average <= 0.5:
        stability = 'excellent'
    elif average <= 1.0:
        stability = 'good'
    elif average <= 2.0:
        stability = 'fair'
    else:
        stability = 'poor'

    quadrants = {'q1': 0, 'q2': 0, 'q3': 0, 'q4': 0}
    for record in records:
        x, y = record.get('face2_X') or 0, record.get('face2_Y') or 0
        if x >= 0 and y >= 0:
            quadrants['q1'] += 1
        elif x < 0 and y >= 0:
            quadrants['q2'] += 1
        elif x < 0 and y < 0:
            quadrants['q3'] += 1
        else:
            quadrants['q4'] += 1

    if len(records) < 2:
        trend = 'insufficient_data'
    else:
        first, second = halves(distances)
        # Moving toward the center is an improvement
        improvement = mean(first) - mean(second)
        if improvement >= FACE2_TREND_THRESHOLD:
            trend = 'improving'
        elif improvement <= -FACE2_TREND_THRESHOLD:
            trend = 'declining'
        else:
            trend = 'stable'

    advice = []
    if stability == 'poor':
        advice.append('Lens centering requires immediate attention - consider alternative lens design')
    elif stability == 'fair':
        advice.append('Monitor lens centering closely and consider fit adjustments if pattern continues')
    if max_deviation > 3.0:
        advice.append(
            'Significant lens decentration episodes detected - evaluate patient handling and insertion technique'
        )
    if max(quadrants.values()) > len(records) * 0.6:
        advice.append('Consistent directional bias detected - evaluate lid tension and lens design asymmetries')
    if len(records) < 3:
        advice.append('Collect additional FACE2 data points for more comprehensive centering analysis')

    return {
        'centeringStability': stability,
        'averageDistance': round(average, 2),
        'maxDeviation': round(max_deviation, 2),
        'trendDirection': trend,
        'quadrantDistribution': quadrants,
        'recommendations': advice,
    }


def fitting_summary(records):
    return {
        'visitCount': len(records),
        'averageLensMovement': round(mean(r.get('lensMovement') or 0 for r in records), 2) if records else 0,
        'fittingTrend': fitting_trend(records),
        'commonIssues': common_issues(records),
        'face2Progression': [
            {
                'visitId': r.get('visitId'),
                'date': r.get('createdAt'),
                'x': r.get('face2_X'),
                'y': r.get('face2_Y'),
                'distance': face2_distance(r),
            }
            for r in records
        ],
        'recommendations': recommendations(records),
    }


class LensFluidSurfaceAssessmentRepository(BaseExaminationRepository):
    table_base_name = TableNames.LENS_FLUID_SURFACE_ASSESSMENT
    sort_key = 'fittingId'
    slug = 'fitting'
    prefix = 'fitting'

    def validate(self, data):
        check_choice(data, 'timing', TIMINGS)
        check_range(data, 'lensMovement', 0, 5, 'lensMovement')
        check_choice(data, 'lensPosition', POSITIONS)
        check_choice(data, 'fittingPattern', PATTERNS)
        check_choice(data, 'lensWettability', WETTABILITY)
        check_choice(data, 'surfaceDeposit', DEPOSITS)
        check_choice(data, 'lensDryness', DRYNESS)
        check_range(data, 'face2_X', -5, 5)
        check_range(data, 'face2_Y', -5, 5)

    def get_fitting_summary(self, survey_id, eyeside):
        return fitting_summary(self.compare_visits(survey_id, eyeside))

    def get_fitting_trend(self, survey_id, eyeside):
        return fitting_trend(self.compare_visits(survey_id, eyeside))

    def get_face2_analysis(self, survey_id, eyeside):
        return face2_analysis(self.compare_visits(survey_id, eyeside))

    def get_recommendations(self, survey_id, eyeside):
        return recommendations(self.compare_visits(survey_id, eyeside))

    def get_common_issues(self, survey_id, eyeside):
        return common_issues(self.compare_visits(survey_id, eyeside))

    def compare_lens_movement(self, eyeside, first_visit_id, second_visit_id):
        first = self.find_by_visit_and_eye(first_visit_id, eyeside)
        second = self.find_by_visit_and_eye(second_visit_id, eyeside)
        result = {
            'visit1': first,
            'visit2': second,
            'movementChange': None,
            'fittingImprovement': 'not_comparable',
            'face2Change': None,
        }
        if first and second:
            change = fitting_score(second) - fitting_score(first)
            result['movementChange'] = (second.get('lensMovement') or 0) - (first.get('lensMovement') or 0)
            if change >= FITTING_SCORE_THRESHOLD:
                result['fittingImprovement'] = 'improved'
            elif change <= -FITTING_SCORE_THRESHOLD:
                result['fittingImprovement'] = 'worsened'
            else:
                result['fittingImprovement'] = 'stable'
            result['face2Change'] = {
                'xChange': (second.get('face2_X') or 0) - (first.get('face2_X') or 0),
                'yChange': (second.get('face2_Y') or 0) - (first.get('face2_Y') or 0),
                'distanceChange': face2_distance(second) - face2_distance(first),
            }
        return result

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'summary': fitting_summary(records),
            'face2': face2_analysis(records),
        }
