"""
Key schemas and secondary indexes for every table.

Used by the create_tables management command (local development) and by
the test suite to build tables inside a mocked store.
"""
import logging

from botocore.exceptions import ClientError

from apps.core.dynamodb import IndexNames, TableNames, table_name

logger = logging.getLogger(__name__)


def _key(partition, sort=None):
    schema = [{'AttributeName': partition, 'KeyType': 'HASH'}]
    if sort:
        schema.append({'AttributeName': sort, 'KeyType': 'RANGE'})
    return schema


def _index(name, partition, sort=None):
    return {
        'IndexName': name,
        'KeySchema': _key(partition, sort),
        'Projection': {'ProjectionType': 'ALL'},
    }


def _examination_table(sort_key):
    return {
        'key': _key('visitId', sort_key),
        'indexes': [_index(IndexNames.SURVEY, 'surveyId', 'eyeside')],
    }


TABLE_SCHEMAS = {
    TableNames.CLINICAL_STUDY: {
        'key': _key('clinicalStudyId'),
        'indexes': [_index(IndexNames.ENTITY_TYPE, 'entityType', 'status')],
    },
    TableNames.ORGANIZATIONS: {
        'key': _key('organizationId'),
        'indexes': [_index(IndexNames.ENTITY_TYPE, 'entityType', 'status')],
    },
    TableNames.PATIENTS: {
        'key': _key('patientId'),
        'indexes': [_index(IndexNames.ORGANIZATION, 'registeredOrganizationId', 'patientCode')],
    },
    TableNames.SURVEYS: {
        'key': _key('surveyId'),
        'indexes': [
            _index(IndexNames.STUDY, 'clinicalStudyId'),
            _index(IndexNames.ORGANIZATION, 'organizationId'),
            _index(IndexNames.PATIENT, 'patientId'),
        ],
    },
    TableNames.VISITS: {
        'key': _key('surveyId', 'visitId'),
        'indexes': [
            _index(IndexNames.STUDY, 'clinicalStudyId'),
            _index(IndexNames.ORGANIZATION, 'organizationId'),
        ],
    },
    TableNames.BASIC_INFO: _examination_table('basicInfoId'),
    TableNames.VAS: _examination_table('vasId'),
    TableNames.COMPARATIVE_SCORES: _examination_table('comparativeScoresId'),
    TableNames.LENS_FLUID_SURFACE_ASSESSMENT: _examination_table('fittingId'),
    TableNames.DR1: _examination_table('dr1Id'),
    TableNames.CORRECTED_VA: _examination_table('correctedVAId'),
    TableNames.LENS_INSPECTION: _examination_table('lensInspectionId'),
    TableNames.QUESTIONNAIRE: _examination_table('questionnaireId'),
    TableNames.DRAFT_DATA: {
        'key': _key('visitId', 'draftId'),
        'indexes': [],
        'ttl_attribute': 'ttl',
    },
}


def _attribute_definitions(schema):
    names = []
    for element in schema['key']:
        names.append(element['AttributeName'])
    for index in schema['indexes']:
        for element in index['KeySchema']:
            if element['AttributeName'] not in names:
                names.append(element['AttributeName'])
    # Every key attribute in this model is a string.
    return [{'AttributeName': name, 'AttributeType': 'S'} for name in names]


def create_table(resource, base_name, environment=None):
    """Create one table (PAY_PER_REQUEST) and enable TTL where declared."""
    schema = TABLE_SCHEMAS[base_name]
    name = table_name(base_name, environment)
    params = {
        'TableName': name,
        'KeySchema': schema['key'],
        'AttributeDefinitions': _attribute_definitions(schema),
        'BillingMode': 'PAY_PER_REQUEST',
    }
    if schema['indexes']:
        params['GlobalSecondaryIndexes'] = schema['indexes']

    table = resource.create_table(**params)
    table.wait_until_exists()

    ttl_attribute = schema.get('ttl_attribute')
    if ttl_attribute:
        resource.meta.client.update_time_to_live(
            TableName=name,
            TimeToLiveSpecification={'Enabled': True, 'AttributeName': ttl_attribute},
        )
    return table


def create_tables(resource, environment=None):
    """Create every missing table. Returns the names that were created."""
    created = []
    for base_name in TABLE_SCHEMAS:
        try:
            create_table(resource, base_name, environment)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'ResourceInUseException':
                raise
            logger.info('Table already exists', extra={'table': table_name(base_name, environment)})
            continue
        created.append(table_name(base_name, environment))
    return created
