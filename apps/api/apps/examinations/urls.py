"""
Examination URLs - visit drafts, examination records and analytics.

Routes are bound explicitly: the draft lives at a single path that
answers GET, POST and DELETE, which a router's list route cannot express.
"""
from django.urls import path

from .views import DraftViewSet, ExaminationAnalyticsViewSet, ExaminationViewSet

draft = DraftViewSet.as_view({'get': 'retrieve_draft', 'post': 'save_draft', 'delete': 'clear_draft'})
draft_initialize = DraftViewSet.as_view({'post': 'initialize'})
draft_autosave = DraftViewSet.as_view({'post': 'autosave'})
draft_stats = DraftViewSet.as_view({'get': 'stats'})
draft_validate = DraftViewSet.as_view({'get': 'validate_draft'})
draft_summary = DraftViewSet.as_view({'get': 'summary'})
draft_examination = DraftViewSet.as_view({'put': 'update_both_eyes'})
draft_examination_eye = DraftViewSet.as_view({'put': 'update_eye'})
draft_step_complete = DraftViewSet.as_view({'post': 'complete_step'})
draft_progress = DraftViewSet.as_view({'put': 'progress'})
draft_backup = DraftViewSet.as_view({'post': 'backup'})
draft_restore_info = DraftViewSet.as_view({'get': 'restore_info'})

examination_list = ExaminationViewSet.as_view({'get': 'list'})
examination_submit = ExaminationViewSet.as_view({'post': 'submit'})
examination_create = ExaminationViewSet.as_view({'post': 'create'})
examination_eye = ExaminationViewSet.as_view({'patch': 'partial_update'})

examination_comparison = ExaminationAnalyticsViewSet.as_view({'get': 'comparison'})
examination_analysis = ExaminationAnalyticsViewSet.as_view({'get': 'analysis'})

DRAFT = 'visits/<str:visit_pk>/draft/'
VISIT_EXAMINATIONS = 'surveys/<str:survey_pk>/visits/<str:visit_pk>/examinations/'
SURVEY_EXAMINATIONS = 'surveys/<str:survey_pk>/examinations/<str:examination_type>/'

urlpatterns = [
    path(DRAFT, draft, name='draft'),
    path(DRAFT + 'initialize/', draft_initialize, name='draft-initialize'),
    path(DRAFT + 'autosave/', draft_autosave, name='draft-autosave'),
    path(DRAFT + 'stats/', draft_stats, name='draft-stats'),
    path(DRAFT + 'validate/', draft_validate, name='draft-validate'),
    path(DRAFT + 'summary/', draft_summary, name='draft-summary'),
    path(DRAFT + 'examinations/<str:examination_type>/', draft_examination, name='draft-examination'),
    path(
        DRAFT + 'examinations/<str:examination_type>/<str:eyeside>/',
        draft_examination_eye,
        name='draft-examination-eye',
    ),
    path(DRAFT + 'steps/<str:step_id>/complete/', draft_step_complete, name='draft-step-complete'),
    path(DRAFT + 'progress/', draft_progress, name='draft-progress'),
    path(DRAFT + 'backup/', draft_backup, name='draft-backup'),
    path(DRAFT + 'restore-info/', draft_restore_info, name='draft-restore-info'),

    path(VISIT_EXAMINATIONS, examination_list, name='examination-list'),
    path(VISIT_EXAMINATIONS + 'submit/', examination_submit, name='examination-submit'),
    path(VISIT_EXAMINATIONS + '<str:examination_type>/', examination_create, name='examination-create'),
    path(
        VISIT_EXAMINATIONS + '<str:examination_type>/<str:eyeside>/',
        examination_eye,
        name='examination-eye',
    ),

    path(SURVEY_EXAMINATIONS + 'comparison/', examination_comparison, name='examination-comparison'),
    path(SURVEY_EXAMINATIONS + 'analysis/', examination_analysis, name='examination-analysis'),
]
