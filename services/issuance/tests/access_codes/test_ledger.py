import asyncio
import uuid
from datetime import timedelta

import pytest

from issuance.access_codes.service import (
    consume_once,
    create_access_code,
    disable,
    expire,
    get_managed_access_code,
    resolve,
    validate,
)
from issuance.exceptions import (
    AccessCodeNotFoundError,
    InvalidStatusTransitionError,
    NotTemplateOwnerError,
    TemplateNotFoundError,
)
from issuance.models.access_code import AccessCode
from issuance.models.enums import AccessCodeRejection, AccessCodeStatus
from shared.database.types import utcnow


@pytest.mark.asyncio
async def test_consume_until_exhausted(seed, db_session) -> None:
    _, code = await seed(usage_limit=2)

    first = await consume_once(db_session, code.code_id)
    await db_session.commit()
    second = await consume_once(db_session, code.code_id)
    await db_session.commit()
    third = await consume_once(db_session, code.code_id)
    await db_session.commit()

    assert (first.success, first.new_used_count) == (True, 1)
    assert (second.success, second.new_used_count) == (True, 2)
    assert third.success is False
    assert third.reason == AccessCodeRejection.EXHAUSTED
    assert third.new_used_count == 2

    validation = await validate(db_session, code.code_id)
    assert validation.valid is False
    assert validation.reason == AccessCodeRejection.EXHAUSTED


@pytest.mark.asyncio
async def test_concurrent_consume_of_last_use(seed, session_factory) -> None:
    _, code = await seed(usage_limit=1)

    async def attempt():
        async with session_factory() as db:
            result = await consume_once(db, code.code_id)
            await db.commit()
            return result

    results = await asyncio.gather(*(attempt() for _ in range(4)))

    assert sum(r.success for r in results) == 1
    assert all(r.reason == AccessCodeRejection.EXHAUSTED for r in results if not r.success)
    async with session_factory() as db:
        stored = await db.get(AccessCode, code.code_id)
        assert stored.used_count == 1


@pytest.mark.asyncio
async def test_consume_unknown_code(db_session) -> None:
    result = await consume_once(db_session, uuid.uuid4())
    assert result.success is False
    assert result.reason == AccessCodeRejection.NOT_FOUND
    assert result.new_used_count is None


@pytest.mark.asyncio
async def test_consume_rejected_code_leaves_count(seed, db_session) -> None:
    _, code = await seed(status=AccessCodeStatus.DISABLED)
    result = await consume_once(db_session, code.code_id)
    await db_session.commit()

    assert result.reason == AccessCodeRejection.DISABLED
    assert (await db_session.get(AccessCode, code.code_id)).used_count == 0


@pytest.mark.asyncio
async def test_rejection_order(seed, db_session) -> None:
    past = utcnow() - timedelta(days=1)
    # Expired by date beats disabled and exhausted
    _, expired_by_date = await seed(
        status=AccessCodeStatus.DISABLED, usage_limit=1, used_count=1, expires_at=past
    )
    # Disabled beats exhausted
    _, disabled = await seed(status=AccessCodeStatus.DISABLED, usage_limit=1, used_count=1)
    _, expired = await seed(status=AccessCodeStatus.EXPIRED)

    reasons = [
        (await validate(db_session, code_id)).reason
        for code_id in (
            expired_by_date.code_id,
            disabled.code_id,
            expired.code_id,
            uuid.uuid4(),
        )
    ]
    assert reasons == [
        AccessCodeRejection.EXPIRED,
        AccessCodeRejection.DISABLED,
        AccessCodeRejection.EXPIRED,
        AccessCodeRejection.NOT_FOUND,
    ]


@pytest.mark.asyncio
async def test_expiry_boundary(seed, db_session) -> None:
    expires_at = utcnow().replace(microsecond=0) + timedelta(hours=1)
    _, code = await seed(expires_at=expires_at)

    at_boundary = await validate(db_session, code.code_id, now=expires_at)
    after = await validate(db_session, code.code_id, now=expires_at + timedelta(milliseconds=1))
    assert at_boundary.valid is True
    assert after.valid is False
    assert after.reason == AccessCodeRejection.EXPIRED

    consumed = await consume_once(db_session, code.code_id, now=expires_at)
    await db_session.commit()
    assert consumed.success is True


@pytest.mark.asyncio
async def test_disable_and_expire_transitions(seed, db_session) -> None:
    _, code = await seed()
    expired = await expire(db_session, code.code_id)
    assert expired.status == AccessCodeStatus.EXPIRED
    # Expiring again is a no-op; disabling still works from expired
    assert (await expire(db_session, code.code_id)).status == AccessCodeStatus.EXPIRED
    assert (await disable(db_session, code.code_id)).status == AccessCodeStatus.DISABLED
    assert (await disable(db_session, code.code_id)).status == AccessCodeStatus.DISABLED

    with pytest.raises(InvalidStatusTransitionError):
        await expire(db_session, code.code_id)
    with pytest.raises(AccessCodeNotFoundError):
        await disable(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_resolve(seed, db_session) -> None:
    template, code = await seed()

    found = await resolve(db_session, code.unique_link, f"  {code.code.lower()} ")
    assert found.valid is True
    assert found.access_code.code_id == code.code_id
    assert found.access_code.template_id == template.template_id

    wrong = await resolve(db_session, code.unique_link, "WRONG123")
    assert wrong.valid is False
    assert wrong.reason == AccessCodeRejection.NOT_FOUND
    assert wrong.access_code is None

    missing = await resolve(db_session, "no-such-link", code.code)
    assert missing.reason == AccessCodeRejection.NOT_FOUND


@pytest.mark.asyncio
async def test_create_access_code(seed, db_session, settings) -> None:
    template, _ = await seed()
    code = await create_access_code(
        db_session, template.template_id, template.instructor_id, settings, usage_limit=5
    )
    await db_session.commit()

    assert len(code.code) == settings.access_code_length
    assert len(code.unique_link) == settings.access_link_length
    assert code.status == AccessCodeStatus.ACTIVE
    assert (code.used_count, code.usage_limit, code.remaining_uses) == (0, 5, 5)

    with pytest.raises(NotTemplateOwnerError):
        await create_access_code(db_session, template.template_id, uuid.uuid4(), settings)
    with pytest.raises(TemplateNotFoundError):
        await create_access_code(db_session, uuid.uuid4(), template.instructor_id, settings)


@pytest.mark.asyncio
async def test_managed_access_code_ownership(seed, db_session) -> None:
    template, code = await seed()
    owned = await get_managed_access_code(db_session, code.code_id, template.instructor_id)
    assert owned.code_id == code.code_id

    with pytest.raises(NotTemplateOwnerError):
        await get_managed_access_code(db_session, code.code_id, uuid.uuid4())
    as_admin = await get_managed_access_code(
        db_session, code.code_id, uuid.uuid4(), is_admin=True
    )
    assert as_admin.code_id == code.code_id
