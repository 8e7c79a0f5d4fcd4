"""
Draft repository: the in-progress examination form of one visit.

One record per visit (draftId "current") holds every examination panel
for both eyes until the visit is submitted. Every write bumps version;
callers that send the version they last read get a deterministic
conflict instead of silently overwriting a newer save.
"""
import time
from typing import Any, Dict, List, Optional

from apps.core.dynamodb import TableNames, parse_timestamp, utc_now, utc_now_iso
from apps.core.exceptions import ConflictError, NotFoundError
from apps.core.observability.events import log_draft_conflict
from apps.core.observability.logging import get_sanitized_logger
from apps.core.observability.metrics import metrics
from apps.core.repository import BaseRepository
from apps.examinations.models import CompletionStatus, Eyeside

logger = get_sanitized_logger(__name__)

CURRENT_DRAFT = 'current'
BACKUP_PREFIX = 'backup-'
UNSAVED_AFTER_SECONDS = 30

# Copied from the visit when the draft is created; access checks read them.
CONTEXT_FIELDS = ('surveyId', 'patientId', 'clinicalStudyId', 'organizationId')

# Attributes the repository owns; callers cannot overwrite them.
MANAGED_FIELDS = frozenset(
    ('visitId', 'draftId', 'ttl', 'lastSaved', 'autoSaved', 'version', 'updatedAt') + CONTEXT_FIELDS
)

VA_DIFFERENCE_LIMIT = 0.3
VAS_COMFORT_DIFFERENCE_LIMIT = 30


def eye_key(eyeside) -> str:
    return Eyeside.parse(eyeside).value.lower()


def completion_percentage(draft) -> int:
    total = draft.get('totalSteps') or 0
    return round(len(draft.get('completedSteps') or []) / total * 100) if total else 0


def _as_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def eyes_disagree(examination_id, right, left) -> bool:
    """Flag right/left readings too far apart to be plausible."""
    if examination_id == 'basic-info':
        right_va, left_va = _as_float(right.get('va')), _as_float(left.get('va'))
        if right_va is not None and left_va is not None:
            return abs(right_va - left_va) > VA_DIFFERENCE_LIMIT
    if examination_id == 'vas':
        right_comfort, left_comfort = _as_float(right.get('comfortLevel')), _as_float(left.get('comfortLevel'))
        if right_comfort is not None and left_comfort is not None:
            return abs(right_comfort - left_comfort) > VAS_COMFORT_DIFFERENCE_LIMIT
    return False


class DraftDataRepository(BaseRepository):
    table_base_name = TableNames.DRAFT_DATA
    partition_key = 'visitId'
    sort_key = 'draftId'

    def __init__(self, resource, environment=None, ttl_days=30, backup_ttl_days=7, conflict_window_seconds=5):
        super().__init__(resource, environment)
        self.ttl_days = ttl_days
        self.backup_ttl_days = backup_ttl_days
        self.conflict_window_seconds = conflict_window_seconds

    @staticmethod
    def _expiry(days) -> int:
        return int(time.time()) + days * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Basic operations
    # ------------------------------------------------------------------

    def save_draft(
        self,
        visit_id,
        form_data: Dict[str, Any],
        current_step: int,
        total_steps: int,
        completed_steps: List[str],
        examination_order: List[str],
        auto_saved: bool = True,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create the visit's draft. ConflictError if one already exists."""
        now = utc_now_iso()
        record = {name: context[name] for name in CONTEXT_FIELDS if context and context.get(name)}
        record.update({
            'visitId': visit_id,
            'draftId': CURRENT_DRAFT,
            'formData': form_data,
            'currentStep': current_step,
            'totalSteps': total_steps,
            'completedSteps': completed_steps,
            'examinationOrder': examination_order,
            'lastSaved': now,
            'autoSaved': auto_saved,
            'ttl': self._expiry(self.ttl_days),
            'version': 1,
            'createdAt': now,
            'updatedAt': now,
        })
        return self.create(record)

    def get_draft(self, visit_id) -> Optional[Dict[str, Any]]:
        return self.find_by_id(visit_id, CURRENT_DRAFT)

    def require_draft(self, visit_id) -> Dict[str, Any]:
        draft = self.get_draft(visit_id)
        if draft is None:
            raise NotFoundError(f'No draft found for visit {visit_id}')
        return draft

    def update_draft(self, visit_id, updates: Dict[str, Any], expected_version: Optional[int] = None):
        """
        Apply updates and bump version.

        The write is conditional on the stored version: the caller's
        expected_version when given, otherwise the version just read.
        ConflictError means another write got in first.
        """
        if expected_version is None:
            expected_version = self.require_draft(visit_id).get('version', 1)
        fields = {k: v for k, v in updates.items() if k not in MANAGED_FIELDS}
        fields['lastSaved'] = utc_now_iso()
        fields['ttl'] = self._expiry(self.ttl_days)
        fields['version'] = int(expected_version) + 1
        if 'autoSaved' in updates:
            fields['autoSaved'] = bool(updates['autoSaved'])
        return self.update(visit_id, fields, CURRENT_DRAFT, expected={'version': int(expected_version)})

    def clear_draft(self, visit_id) -> None:
        self.delete(visit_id, CURRENT_DRAFT)

    # ------------------------------------------------------------------
    # Form data
    # ------------------------------------------------------------------

    def initialize_draft(self, visit_id, examination_order: List[str], context=None) -> Dict[str, Any]:
        return self.save_draft(
            visit_id,
            {examination_id: {} for examination_id in examination_order},
            0,
            len(examination_order),
            [],
            list(examination_order),
            auto_saved=False,
            context=context,
        )

    def update_examination_data(self, visit_id, examination_id, eyeside, data) -> Dict[str, Any]:
        """Replace one eye's panel for one examination."""
        draft = self.require_draft(visit_id)
        form_data = dict(draft.get('formData') or {})
        panel = dict(form_data.get(examination_id) or {})
        panel[eye_key(eyeside)] = data
        form_data[examination_id] = panel
        return self.update_draft(
            visit_id, {'formData': form_data, 'autoSaved': True}, expected_version=draft.get('version', 1)
        )

    def batch_update_eye_data(self, visit_id, examination_id, data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the right and/or left panel; an eye missing from data is left as is."""
        draft = self.require_draft(visit_id)
        form_data = dict(draft.get('formData') or {})
        panel = dict(form_data.get(examination_id) or {})
        for eye in ('right', 'left'):
            if data.get(eye) is not None:
                panel[eye] = data[eye]
        form_data[examination_id] = panel
        return self.update_draft(
            visit_id, {'formData': form_data, 'autoSaved': True}, expected_version=draft.get('version', 1)
        )

    def update_progress(self, visit_id, current_step: int, completed_steps: List[str]) -> Dict[str, Any]:
        return self.update_draft(
            visit_id, {'currentStep': current_step, 'completedSteps': completed_steps, 'autoSaved': True}
        )

    def complete_step(self, visit_id, step_id) -> Dict[str, Any]:
        """Mark step_id done; advance currentStep if it was the current one."""
        draft = self.require_draft(visit_id)
        completed = list(draft.get('completedSteps') or [])
        if step_id not in completed:
            completed.append(step_id)

        current = draft.get('currentStep', 0)
        order = draft.get('examinationOrder') or []
        if step_id in order and order.index(step_id) == current:
            current = min(current + 1, max(draft.get('totalSteps', 0) - 1, 0))

        return self.update_draft(
            visit_id,
            {'currentStep': current, 'completedSteps': completed, 'autoSaved': True},
            expected_version=draft.get('version', 1),
        )

    # ------------------------------------------------------------------
    # Autosave
    # ------------------------------------------------------------------

    def auto_save(self, visit_id, updates: Dict[str, Any], expected_version: Optional[int] = None):
        """
        Save a client's periodic snapshot without clobbering a newer one.

        With expected_version the stored version decides: a stale version
        returns conflict with the latest draft. Without it, an autosave
        landing within conflict_window_seconds of a previous autosave is
        treated as a conflict.
        """
        draft = self.get_draft(visit_id)
        if draft is None:
            metrics.draft_autosave_total.labels(result='missing').inc()
            return {'success': False, 'error': 'Draft not found'}

        if expected_version is None:
            last_saved = parse_timestamp(draft.get('lastSaved'))
            elapsed = (utc_now() - last_saved).total_seconds() if last_saved else None
            if draft.get('autoSaved') and elapsed is not None and elapsed < self.conflict_window_seconds:
                return self._conflict(visit_id, draft, 'recent_autosave')
            expected_version = draft.get('version', 1)

        try:
            saved = self.update_draft(visit_id, dict(updates, autoSaved=True), expected_version=expected_version)
        except ConflictError:
            latest = self.get_draft(visit_id)
            if latest is None:
                metrics.draft_autosave_total.labels(result='missing').inc()
                return {'success': False, 'error': 'Draft not found'}
            return self._conflict(visit_id, latest, 'stale_version', expected_version)

        metrics.draft_autosave_total.labels(result='saved').inc()
        return {'success': True, 'latestDraft': saved}

    def _conflict(self, visit_id, latest, reason, expected_version=None):
        metrics.draft_autosave_total.labels(result='conflict').inc()
        log_draft_conflict(visit_id, reason, current_version=latest.get('version'), expected_version=expected_version)
        return {'success': False, 'conflict': True, 'latestDraft': latest}

    def has_unsaved_changes(self, visit_id) -> bool:
        draft = self.get_draft(visit_id)
        if draft is None:
            return False
        last_saved = parse_timestamp(draft.get('lastSaved'))
        if last_saved is None:
            return False
        elapsed = (utc_now() - last_saved).total_seconds()
        return elapsed > UNSAVED_AFTER_SECONDS and not draft.get('autoSaved')

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def get_draft_stats(self, visit_id) -> Dict[str, Any]:
        draft = self.get_draft(visit_id)
        if draft is None:
            return {'exists': False, 'completionPercentage': 0, 'completedSteps': 0, 'totalSteps': 0}
        return {
            'exists': True,
            'completionPercentage': completion_percentage(draft),
            'completedSteps': len(draft.get('completedSteps') or []),
            'totalSteps': draft.get('totalSteps', 0),
            'lastSaved': draft.get('lastSaved'),
            'autoSaved': draft.get('autoSaved'),
            'version': draft.get('version'),
        }

    def validate_form_data(self, visit_id) -> Dict[str, Any]:
        """
        Check the draft is ready to submit.

        An examination with no data for either eye is missing; one eye
        missing, or eyes that disagree, is only a warning.
        """
        draft = self.get_draft(visit_id)
        if draft is None:
            return {'isValid': False, 'errors': ['No draft data found'], 'warnings': [], 'missingRequired': []}

        form_data = draft.get('formData') or {}
        warnings, missing = [], []
        for examination_id in draft.get('examinationOrder') or []:
            panel = form_data.get(examination_id) or {}
            if not panel.get('right') and not panel.get('left'):
                missing.append(f'{examination_id} - no data for either eye')
                continue
            if not panel.get('right'):
                warnings.append(f'{examination_id} - missing right eye data')
            if not panel.get('left'):
                warnings.append(f'{examination_id} - missing left eye data')

        for examination_id, panel in form_data.items():
            if panel.get('right') and panel.get('left') and eyes_disagree(
                examination_id, panel['right'], panel['left']
            ):
                warnings.append(f'{examination_id} - significant difference between right and left eye data')

        return {'isValid': not missing, 'errors': [], 'warnings': warnings, 'missingRequired': missing}

    def get_completion_summary(self, visit_id) -> Optional[Dict[str, Any]]:
        draft = self.get_draft(visit_id)
        if draft is None:
            return None

        form_data = draft.get('formData') or {}
        order = draft.get('examinationOrder') or []
        statuses = {}
        for examination_id in order:
            panel = form_data.get(examination_id) or {}
            right, left = bool(panel.get('right')), bool(panel.get('left'))
            if right and left:
                status = CompletionStatus.COMPLETED
            elif right or left:
                status = CompletionStatus.PARTIAL
            else:
                status = CompletionStatus.NOT_STARTED
            statuses[examination_id] = {
                'status': status.value,
                'rightEye': right,
                'leftEye': left,
                'lastUpdated': draft.get('lastSaved'),
            }

        def count(status):
            return sum(1 for s in statuses.values() if s['status'] == status)

        completed = count(CompletionStatus.COMPLETED)
        return {
            'totalExaminations': len(order),
            'completedExaminations': completed,
            'partiallyCompleted': count(CompletionStatus.PARTIAL),
            'notStarted': count(CompletionStatus.NOT_STARTED),
            'examinationStatus': statuses,
            'readyForSubmission': completed == len(order),
        }

    def get_restoration_info(self, visit_id) -> Dict[str, Any]:
        draft = self.get_draft(visit_id)
        if draft is None:
            return {'canRestore': False}
        form_data = draft.get('formData') or {}
        return {
            'canRestore': True,
            'lastSaved': draft.get('lastSaved'),
            'completionPercentage': completion_percentage(draft),
            'availableExaminations': [
                examination_id for examination_id, panel in form_data.items()
                if panel and (panel.get('right') or panel.get('left'))
            ],
            'nextStep': draft.get('currentStep'),
            'examinationOrder': draft.get('examinationOrder'),
            'version': draft.get('version'),
        }

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def create_backup(self, visit_id) -> Optional[str]:
        """Copy the current draft under backup-<epoch ms>, expiring sooner."""
        draft = self.get_draft(visit_id)
        if draft is None:
            return None
        backup_id = f'{BACKUP_PREFIX}{int(time.time() * 1000)}'
        backup = dict(draft)
        backup.update({
            'draftId': backup_id,
            'lastSaved': utc_now_iso(),
            'ttl': self._expiry(self.backup_ttl_days),
        })
        self.create(backup)
        logger.info(
            'Draft backup created',
            extra={'event': 'draft_backup_created', 'visit_id': visit_id, 'backup_id': backup_id}
        )
        return backup_id

    def cleanup_expired_drafts(self) -> int:
        """Expired drafts are removed by the table's TTL sweep; nothing to do here."""
        return 0
