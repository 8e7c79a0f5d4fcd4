"""Visual analog scale: four 0-100 comfort and vision scores."""
from apps.core.dynamodb import TableNames
from apps.examinations.repositories.base import BaseExaminationRepository, check_range, series

VAS_FIELDS = ('comfortLevel', 'drynessLevel', 'visualPerformance_Daytime', 'visualPerformance_EndOfDay')

SIGNIFICANT_CHANGE = 10
TREND_THRESHOLD = 5


def _direction(change):
    if change >= TREND_THRESHOLD:
        return 'improving'
    if change <= -TREND_THRESHOLD:
        return 'worsening'
    return 'stable'


def _overall(changes):
    average = sum(changes) / len(changes)
    if average >= TREND_THRESHOLD:
        return 'improved'
    if average <= -TREND_THRESHOLD:
        return 'worsened'
    return 'stable'


def improvement_analysis(records):
    """
    First visit against last visit.

    Dryness is inverted: a lower score is an improvement.
    """
    if len(records) < 2:
        return {
            'overallImprovement': 'insufficient_data',
            'comfortTrend': 'stable',
            'drynessTrend': 'stable',
            'visualPerformanceTrend': 'stable',
            'significantChanges': [],
        }
    first, last = records[0], records[-1]
    comfort = last['comfortLevel'] - first['comfortLevel']
    dryness = last['drynessLevel'] - first['drynessLevel']
    daytime = last['visualPerformance_Daytime'] - first['visualPerformance_Daytime']
    end_of_day = last['visualPerformance_EndOfDay'] - first['visualPerformance_EndOfDay']

    significant = []
    if abs(comfort) >= SIGNIFICANT_CHANGE:
        significant.append(f"Comfort {'improved' if comfort > 0 else 'worsened'} by {abs(comfort)} points")
    if abs(dryness) >= SIGNIFICANT_CHANGE:
        significant.append(f"Dryness {'improved' if dryness < 0 else 'worsened'} by {abs(dryness)} points")
    if abs(daytime) >= SIGNIFICANT_CHANGE:
        significant.append(f"Daytime vision {'improved' if daytime > 0 else 'worsened'} by {abs(daytime)} points")
    if abs(end_of_day) >= SIGNIFICANT_CHANGE:
        significant.append(
            f"End-of-day vision {'improved' if end_of_day > 0 else 'worsened'} by {abs(end_of_day)} points"
        )

    return {
        'overallImprovement': _overall([comfort, -dryness, daytime, end_of_day]),
        'comfortTrend': _direction(comfort),
        'drynessTrend': _direction(-dryness),
        'visualPerformanceTrend': _direction((daytime + end_of_day) / 2),
        'significantChanges': significant,
    }


def average_scores(records):
    if not records:
        return None
    count = len(records)
    return {
        'averageComfort': round(sum(r['comfortLevel'] for r in records) / count),
        'averageDryness': round(sum(r['drynessLevel'] for r in records) / count),
        'averageVisualPerformanceDaytime': round(sum(r['visualPerformance_Daytime'] for r in records) / count),
        'averageVisualPerformanceEndOfDay': round(sum(r['visualPerformance_EndOfDay'] for r in records) / count),
        'visitCount': count,
    }


class VASRepository(BaseExaminationRepository):
    table_base_name = TableNames.VAS
    sort_key = 'vasId'
    slug = 'vas'
    prefix = 'vas'

    def validate(self, data):
        for field in VAS_FIELDS:
            check_range(data, field, 0, 100, integer=True)

    def get_vas_trend(self, survey_id, eyeside):
        return series(self.compare_visits(survey_id, eyeside), *VAS_FIELDS)

    def get_average_scores(self, survey_id, eyeside):
        return average_scores(self.find_by_survey_and_eye(survey_id, eyeside))

    def compare_between_visits(self, eyeside, first_visit_id, second_visit_id):
        first = self.find_by_visit_and_eye(first_visit_id, eyeside)
        second = self.find_by_visit_and_eye(second_visit_id, eyeside)
        changes = None
        if first and second:
            changes = {
                'comfortChange': second['comfortLevel'] - first['comfortLevel'],
                'drynessChange': second['drynessLevel'] - first['drynessLevel'],
                'visualDaytimeChange': second['visualPerformance_Daytime'] - first['visualPerformance_Daytime'],
                'visualEndOfDayChange': second['visualPerformance_EndOfDay'] - first['visualPerformance_EndOfDay'],
            }
        return {'visit1': first, 'visit2': second, 'changes': changes}

    def get_improvement_analysis(self, survey_id, eyeside):
        return improvement_analysis(self.compare_visits(survey_id, eyeside))

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'trend': series(records, *VAS_FIELDS),
            'averages': average_scores(records),
            'improvement': improvement_analysis(records),
        }
