"""
Unit tests for the submission pipeline: validate, persist, upload.
"""

import pytest
from supplier_portal.exceptions import BoxCountRequired, BusinessLogicError, PersistenceFailed
from supplier_portal.services.dispatch_draft_service import OrderDraft
from supplier_portal.services.line_item_registry import LineItem
from supplier_portal.services.submission_service import (
    CancellationToken, ImageStatus, OutcomeStatus, SubmissionEvent, SubmissionOrchestrator,
    SubmissionState, drive,
)


def make_draft(make_file, images=('1.jpg', '2.jpg', '3.jpg'), box_count=1):
    draft = OrderDraft(order_date='2024-05-10', logistics_company_id=7, box_count=box_count)
    draft.insert_item(LineItem(name='Basic Tee', code='TEE-001', type_id=1, unit_cost='100', quantity=5))
    draft.registry.add_pending_images(0, [make_file(name, size=100 + i) for i, name in enumerate(images)])
    return draft


class TestSubmit:
    """Tests for a full submission."""

    def test_all_images_uploaded(self, make_file, make_store, make_transport):
        store, transport = make_store(), make_transport()
        outcome = SubmissionOrchestrator(make_draft(make_file), store, transport).run()

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.order_id == 42
        assert outcome.uploaded_count == 3
        assert [call[2] for call in transport.calls] == ['1.jpg', '2.jpg', '3.jpg']
        assert store.created[0][1]['items'][0]['images'] == []

    def test_one_failed_image_is_a_warning(self, make_file, make_store, make_transport):
        store, transport = make_store(), make_transport(failing={'2.jpg'})

        outcome = SubmissionOrchestrator(make_draft(make_file), store, transport).run()

        assert outcome.status == OutcomeStatus.SUCCESS_WITH_WARNINGS
        assert outcome.uploaded_count == 2
        assert outcome.failed_count == 1
        assert outcome.persisted
        assert len(store.created) == 1
        failed = outcome.failed_tasks[0]
        assert (failed.item_index, failed.image_index) == (0, 1)
        assert failed.error.reason == 'Connection reset'
        assert 'Product 1, Image 2' in failed.error.message

    def test_validation_failure_skips_persistence(self, make_file, make_store, make_transport):
        store, transport = make_store(), make_transport()
        orchestrator = SubmissionOrchestrator(make_draft(make_file, box_count=0), store, transport)

        outcome = orchestrator.run()

        assert outcome.status == OutcomeStatus.FAILED
        assert [type(e) for e in outcome.errors] == [BoxCountRequired]
        assert orchestrator.state == SubmissionState.FAILED
        assert store.created == []
        assert transport.calls == []

    def test_persistence_failure(self, make_file, make_store, make_transport):
        store = make_store(fail_with=RuntimeError('database is down'))
        transport = make_transport()

        outcome = SubmissionOrchestrator(make_draft(make_file), store, transport).run()

        assert outcome.status == OutcomeStatus.FAILED
        assert isinstance(outcome.errors[0], PersistenceFailed)
        assert outcome.errors[0].reason == 'database is down'
        assert not outcome.persisted
        assert transport.calls == []

    def test_edit_updates_existing_order(self, make_file, make_store, make_transport):
        draft = make_draft(make_file, images=())
        draft.order_id = 12
        store = make_store()

        outcome = SubmissionOrchestrator(draft, store, make_transport()).run()

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.order_id == 12
        assert store.updated[0][0] == 12
        assert store.created == []

    def test_cannot_submit_twice(self, make_file, make_store, make_transport):
        orchestrator = SubmissionOrchestrator(make_draft(make_file), make_store(), make_transport())
        orchestrator.run()
        with pytest.raises(BusinessLogicError):
            orchestrator.run()


class TestProgress:
    """Tests for the event stream."""

    def test_progress_is_monotonic_and_completes(self, make_file, make_store, make_transport):
        events = []
        SubmissionOrchestrator(make_draft(make_file), make_store(), make_transport()).run(events.append)

        values = [event.progress for event in events]
        assert values == sorted(values)
        assert values[-1] == 100
        assert events[-1].kind == SubmissionEvent.OUTCOME

    def test_states_in_order(self, make_file, make_store, make_transport):
        events = []
        SubmissionOrchestrator(make_draft(make_file), make_store(), make_transport()).run(events.append)

        states = [e.state for e in events if e.kind == SubmissionEvent.STATE]
        assert states == [SubmissionState.VALIDATING, SubmissionState.PERSISTING, SubmissionState.UPLOADING]
        assert events[-1].state == SubmissionState.DONE

    def test_upload_phase_starts_after_persisting(self, make_file, make_store, make_transport):
        events = []
        SubmissionOrchestrator(make_draft(make_file), make_store(), make_transport()).run(events.append)

        first_image = next(e for e in events if e.kind == SubmissionEvent.IMAGE)
        assert first_image.progress == pytest.approx(20)

    def test_image_events_are_snapshots(self, make_file, make_store, make_transport):
        events = []
        SubmissionOrchestrator(make_draft(make_file, images=('1.jpg',)), make_store(), make_transport()).run(events.append)

        statuses = [e.image['status'] for e in events if e.kind == SubmissionEvent.IMAGE]
        assert statuses == [ImageStatus.UPLOADING.value, ImageStatus.SUCCESS.value]

    def test_no_images_jumps_to_complete(self, make_file, make_store, make_transport):
        events = []
        outcome = SubmissionOrchestrator(make_draft(make_file, images=()), make_store(), make_transport()).run(events.append)
        assert outcome.status == OutcomeStatus.SUCCESS
        assert events[-1].progress == 100


class TestCancellationAndRetry:
    """Tests for cancelling uploads and retrying failed ones."""

    def test_cancel_between_uploads(self, make_file, make_store, make_transport):
        token = CancellationToken()
        transport = make_transport(on_upload=lambda file: token.cancel())

        outcome = SubmissionOrchestrator(make_draft(make_file), make_store(), transport, token).run()

        assert outcome.status == OutcomeStatus.CANCELLED
        assert outcome.persisted
        assert outcome.uploaded_count == 1
        assert outcome.pending_count == 2
        assert len(transport.calls) == 1

    def test_retry_uploads_only_failed_images(self, make_file, make_store, make_transport):
        draft = make_draft(make_file)
        first = SubmissionOrchestrator(draft, make_store(), make_transport(failing={'2.jpg', '3.jpg'})).run()
        assert first.failed_count == 2

        transport = make_transport()
        events = []
        retried = drive(SubmissionOrchestrator(draft, make_store(), transport).retry_uploads(first), events.append)

        assert retried.status == OutcomeStatus.SUCCESS
        assert retried.order_id == first.order_id
        assert [call[2] for call in transport.calls] == ['2.jpg', '3.jpg']
        assert [t.image_index for t in retried.tasks] == [1, 2]
        assert events[-1].progress == 100

    def test_retry_requires_saved_order(self, make_file, make_store, make_transport):
        failed = SubmissionOrchestrator(make_draft(make_file, box_count=0), make_store(), make_transport()).run()
        orchestrator = SubmissionOrchestrator(None, make_store(), make_transport())
        with pytest.raises(BusinessLogicError):
            drive(orchestrator.retry_uploads(failed))

    def test_outcome_to_dict(self, make_file, make_store, make_transport):
        outcome = SubmissionOrchestrator(
            make_draft(make_file), make_store(), make_transport(failing={'3.jpg'})
        ).run()
        data = outcome.to_dict()
        assert data['status'] == 'success_with_warnings'
        assert data['uploaded_count'] == 2
        assert data['images'][2]['error'] == 'Connection reset'
        assert data['errors'][0]['code'] == 'ImageUploadFailed'
