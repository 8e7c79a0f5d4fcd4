"""Basic information: corneal curvature, refraction, intraocular pressure, endothelial cells."""
from apps.core.dynamodb import TableNames
from apps.examinations.repositories.base import BaseExaminationRepository, check_range, mean, rounded, series

IOP_FIELDS = ('intraocularPressure1', 'intraocularPressure2', 'intraocularPressure3')


def average_iop(record):
    """Mean of the positive pressure readings, one decimal; None without any."""
    pressures = [record.get(f) for f in IOP_FIELDS if (record.get(f) or 0) > 0]
    return rounded(mean(pressures))


class BasicInfoRepository(BaseExaminationRepository):
    table_base_name = TableNames.BASIC_INFO
    sort_key = 'basicInfoId'
    slug = 'basic-info'
    prefix = 'basicinfo'

    def validate(self, data):
        check_range(data, 'cr_R1', 6.0, 9.0, 'Corneal curvature R1')
        check_range(data, 'cr_R2', 6.0, 9.0, 'Corneal curvature R2')
        check_range(data, 'cr_Ave', 6.0, 9.0, 'Corneal curvature average')
        check_range(data, 'va', 0.1, 2.0, 'Visual acuity')
        for field in IOP_FIELDS:
            check_range(data, field, 8, 25)
        check_range(data, 'cornealEndothelialCells', 2000, 4000, 'Corneal endothelial cells')

    def get_average_iop(self, visit_id, eyeside):
        record = self.find_by_visit_and_eye(visit_id, eyeside)
        return average_iop(record) if record else None

    def compare_corneal_curvature(self, survey_id, eyeside):
        return series(self.compare_visits(survey_id, eyeside), 'cr_R1', 'cr_R2', 'cr_Ave')

    def compare_visual_acuity(self, survey_id, eyeside):
        return series(self.compare_visits(survey_id, eyeside), 'va', 's', 'c', 'ax')

    def analyze(self, records):
        return {
            'visitCount': len(records),
            'cornealCurvature': series(records, 'cr_R1', 'cr_R2', 'cr_Ave'),
            'visualAcuity': series(records, 'va', 's', 'c', 'ax'),
            'intraocularPressure': [
                {'visitId': r.get('visitId'), 'date': r.get('createdAt'), 'averageIOP': average_iop(r)}
                for r in records
            ],
        }
