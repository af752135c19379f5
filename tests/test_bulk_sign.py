from signflow.exceptions import ForbiddenException, NoOpTransitionError, NotFoundException, StaleTransitionError
from signflow.schemas.convention import ConventionStatus as S, Role

from conftest import ADDRESSES


def test_bulk_sign_all_succeed(submit, services, ctx):
    ids = [submit().id for _ in range(3)]
    result = services.bulk.sign_all(ctx, ids, Role.TEACHER, actor_address=ADDRESSES[Role.TEACHER])
    assert result.completed
    assert result.processed_ids == ids
    assert result.unprocessed == []
    assert all(r.new_status == S.VALIDATED_TEACHER for r in result.processed)


def test_bulk_sign_stops_at_first_failure(submit, sign_as, services, workflow, ctx):
    ids = [submit().id for _ in range(5)]
    # the third one is further along and no longer needs the teacher
    sign_as(ids[2], Role.TEACHER, Role.COMPANY)

    result = services.bulk.sign_all(ctx, ids, Role.TEACHER)
    assert not result.completed
    assert result.processed_ids == ids[:2]
    assert result.failed_id == ids[2]
    assert result.unprocessed == ids[2:]
    assert isinstance(result.error, NoOpTransitionError)

    # nothing after the failure was touched
    for convention_id in ids[3:]:
        assert workflow.get(ctx, convention_id).status == S.SUBMITTED


def test_bulk_sign_stale_entry(submit, workflow, services, ctx):
    first = submit()
    second = submit()
    workflow.add_feedback(ctx, second.id, ADDRESSES[Role.TEACHER], "Missing tutor phone")

    result = services.bulk.sign_all(ctx, [first.id, second.id], Role.TEACHER)
    assert result.processed_ids == [first.id]
    assert isinstance(result.error, StaleTransitionError)
    assert result.failed_id == second.id


def test_bulk_sign_unknown_id_and_wrong_actor(submit, services, ctx):
    conv = submit()
    result = services.bulk.sign_all(ctx, ["missing", conv.id], Role.TEACHER)
    assert isinstance(result.error, NotFoundException)
    assert result.unprocessed == ["missing", conv.id]

    result = services.bulk.sign_all(ctx, [conv.id], Role.TEACHER, actor_address="other@example.com")
    assert isinstance(result.error, ForbiddenException)
    assert result.processed == []
