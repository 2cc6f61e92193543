"""
Tests de verificación de la cadena y de consulta paginada/filtrada.
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
import pytest_asyncio
from pydantic import ValidationError
from sqlalchemy import update

from app.core.exceptions import ChainIntegrityError
from app.core.hashing import GENESIS_DIGEST
from app.models.audit_log import AuditAction, AuditEntry
from app.schemas.audit_log import AuditFilter, BreakReason
from app.services import audit_query_service, audit_service
from app.services.audit_service import AuditTrail

pytestmark = pytest.mark.asyncio

audit_table = AuditEntry.__table__


async def _tamper(session_factory, target: int, **values) -> None:
    """Modifica una fila directamente en la BD, sin pasar por el ORM."""
    async with session_factory() as session:
        await session.execute(
            update(audit_table).where(audit_table.c.sequence_id == target).values(**values)
        )
        await session.commit()


@pytest_asyncio.fixture
async def five_entries(audit_trail: AuditTrail) -> list[AuditEntry]:
    return [
        await audit_trail.append(7, "CREATE_RECORD", 1),
        await audit_trail.append(7, "READ_RECORDS"),
        await audit_trail.append(8, "UPDATE_RECORD", 1),
        await audit_trail.append(9, "EMERGENCY_ACCESS", 1),
        await audit_trail.append(8, "DELETE_RECORD", 1),
    ]


# ── Verificación ─────────────────────────────────────

async def test_empty_chain_is_valid(audit_trail: AuditTrail):
    result = await audit_trail.verify_chain()
    assert result.valid
    assert result.entries_checked == 0
    assert result.broken_at is None
    result.raise_for_break()


async def test_intact_chain_is_valid(audit_trail: AuditTrail, five_entries):
    result = await audit_trail.verify_chain()
    assert result.valid
    assert result.entries_checked == 5
    assert "5 entradas" in result.message


async def test_verification_works_in_small_batches(session_factory, signer, five_entries, db_session):
    result = await audit_query_service.verify_chain(db_session, signer.verifier, batch_size=2)
    assert result.valid
    assert result.entries_checked == 5


@pytest.mark.parametrize(
    "field, value, reasons",
    [
        ("actor_id", 99, {BreakReason.DIGEST_MISMATCH}),
        ("action", "READ_RECORDS", {BreakReason.DIGEST_MISMATCH}),
        ("subject_id", 2, {BreakReason.DIGEST_MISMATCH}),
        ("subject_id", None, {BreakReason.DIGEST_MISMATCH}),
        (
            "timestamp",
            datetime(2020, 1, 1, tzinfo=timezone.utc),
            {BreakReason.DIGEST_MISMATCH},
        ),
        ("previous_digest", "0" * 64, {BreakReason.DIGEST_MISMATCH}),
        ("digest", "0" * 64, {BreakReason.DIGEST_MISMATCH}),
        ("signature", "ab" * 64, {BreakReason.SIGNATURE_INVALID}),
        ("signature", "not-a-signature", {BreakReason.SIGNATURE_MALFORMED}),
    ],
)
async def test_tampering_any_field_is_detected_at_that_entry(
    audit_trail: AuditTrail, session_factory, five_entries, field, value, reasons
):
    await _tamper(session_factory, 3, **{field: value})

    result = await audit_trail.verify_chain()

    assert not result.valid
    assert result.broken_at == 3
    assert result.reason in reasons
    with pytest.raises(ChainIntegrityError) as exc_info:
        result.raise_for_break()
    assert exc_info.value.sequence_id == 3


async def test_renumbered_entry_is_detected(audit_trail: AuditTrail, session_factory, five_entries):
    await _tamper(session_factory, 3, sequence_id=10)

    result = await audit_trail.verify_chain()
    assert not result.valid
    assert result.broken_at == 4

    everything = await audit_trail.verify_chain(collect_all=True)
    by_entry = {}
    for brk in everything.breaks:
        by_entry.setdefault(brk.sequence_id, set()).add(brk.reason)
    assert by_entry[4] == {BreakReason.CHAIN_LINK_MISMATCH, BreakReason.SEQUENCE_GAP}
    assert BreakReason.SEQUENCE_GAP in by_entry[10]
    assert 5 not in by_entry


async def test_repeated_digest_is_reported(audit_trail: AuditTrail):
    entry = await audit_trail.append(7, "READ_RECORDS")

    breaks = audit_query_service._check_entry(
        entry, 1, GENESIS_DIGEST, {entry.digest}, audit_trail.verifier
    )

    assert [b.reason for b in breaks] == [BreakReason.DUPLICATE_DIGEST]
    assert breaks[0].sequence_id == 1


async def test_deleted_entry_is_detected(audit_trail: AuditTrail, session_factory, five_entries):
    async with session_factory() as session:
        await session.execute(audit_table.delete().where(audit_table.c.sequence_id == 2))
        await session.commit()

    result = await audit_trail.verify_chain(collect_all=True)

    assert not result.valid
    assert result.broken_at == 3
    assert {b.reason for b in result.breaks} >= {
        BreakReason.CHAIN_LINK_MISMATCH,
        BreakReason.SEQUENCE_GAP,
    }


async def test_forged_digest_breaks_the_next_link(
    audit_trail: AuditTrail, session_factory, five_entries
):
    await _tamper(session_factory, 2, digest="f" * 64)

    result = await audit_trail.verify_chain(collect_all=True)

    assert not result.valid
    by_entry = {}
    for brk in result.breaks:
        by_entry.setdefault(brk.sequence_id, set()).add(brk.reason)
    assert BreakReason.DIGEST_MISMATCH in by_entry[2]
    assert BreakReason.SIGNATURE_INVALID in by_entry[2]
    assert BreakReason.CHAIN_LINK_MISMATCH in by_entry[3]
    assert result.entries_checked == 5


async def test_stops_at_first_break_by_default(audit_trail: AuditTrail, session_factory, five_entries):
    await _tamper(session_factory, 2, actor_id=1234)
    await _tamper(session_factory, 4, actor_id=1234)

    first_only = await audit_trail.verify_chain()
    assert len(first_only.breaks) == 1
    assert first_only.broken_at == 2
    assert first_only.entries_checked == 2

    everything = await audit_trail.verify_chain(collect_all=True)
    assert {b.sequence_id for b in everything.breaks} == {2, 4}


async def test_entries_signed_with_another_key_are_rejected(
    session_factory, five_entries, db_session
):
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
    from app.core.security import AuditVerifier

    stranger = AuditVerifier(Ed25519PrivateKey.generate().public_key())
    result = await audit_query_service.verify_chain(db_session, stranger)

    assert not result.valid
    assert result.broken_at == 1
    assert result.reason == BreakReason.SIGNATURE_INVALID


# ── Paginación ───────────────────────────────────────

async def test_pagination_over_45_entries(audit_trail: AuditTrail):
    for i in range(45):
        await audit_trail.append(i % 5, "READ_RECORDS")

    first = await audit_trail.list_entries(page=1, page_size=20)
    assert [e.sequence_id for e in first.entries] == list(range(1, 21))
    assert first.total == 45
    assert first.pages == 3

    last = await audit_trail.list_entries(page=3, page_size=20)
    assert [e.sequence_id for e in last.entries] == list(range(41, 46))
    assert last.page == 3
    assert last.pages == 3

    beyond = await audit_trail.list_entries(page=4, page_size=20)
    assert beyond.entries == []
    assert beyond.total == 45


async def test_newest_first_ordering(audit_trail: AuditTrail, five_entries):
    page = await audit_trail.list_entries(newest_first=True)
    assert [e.sequence_id for e in page.entries] == [5, 4, 3, 2, 1]


@pytest.mark.parametrize(
    "page, page_size, expected",
    [
        (0, 20, (1, 20)),
        (-3, 20, (1, 20)),
        (1, 0, (1, 20)),
        (1, -1, (1, 20)),
        (2, 500, (2, 100)),
        (None, None, (1, 20)),
    ],
)
async def test_out_of_range_pagination_is_clamped(page, page_size, expected):
    assert audit_query_service.clamp_pagination(page, page_size) == expected


async def test_clamped_values_are_reported(audit_trail: AuditTrail, five_entries):
    result = await audit_trail.list_entries(page=0, page_size=1000)
    assert result.page == 1
    assert result.page_size == 100
    assert result.pages == 1
    assert len(result.entries) == 5


async def test_empty_log_lists_nothing(audit_trail: AuditTrail):
    result = await audit_trail.list_entries()
    assert result.entries == []
    assert result.total == 0
    assert result.pages == 0


# ── Filtros ──────────────────────────────────────────

async def test_filters_compose_with_and(audit_trail: AuditTrail):
    await audit_trail.append(7, "READ_RECORDS")
    await audit_trail.append(7, "CREATE_RECORD", 3)
    await audit_trail.append(8, "READ_RECORDS")
    await audit_trail.append(7, "READ_RECORDS")

    result = await audit_trail.list_entries(AuditFilter(actor_id=7, action="READ_RECORDS"))

    assert [e.sequence_id for e in result.entries] == [1, 4]
    assert all(e.actor_id == 7 and e.action == "READ_RECORDS" for e in result.entries)
    assert result.total == 2


async def test_filter_by_enum_action_and_subject(audit_trail: AuditTrail, five_entries):
    result = await audit_trail.list_entries(
        AuditFilter(action=AuditAction.EMERGENCY_ACCESS, subject_id=1)
    )
    assert [e.sequence_id for e in result.entries] == [4]


async def test_no_match_is_an_empty_result(audit_trail: AuditTrail, five_entries):
    result = await audit_trail.list_entries(AuditFilter(actor_id=7, action="DELETE_RECORD"))
    assert result.entries == []
    assert result.total == 0
    assert result.pages == 0


async def test_date_range_covers_whole_days(audit_trail: AuditTrail, monkeypatch):
    instants = iter([
        datetime(2026, 3, 1, 23, 59, 59, 999999, tzinfo=timezone.utc),
        datetime(2026, 3, 2, 0, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 2, 12, 30, tzinfo=timezone.utc),
        datetime(2026, 3, 2, 23, 59, 59, 999999, tzinfo=timezone.utc),
        datetime(2026, 3, 3, 0, 0, 0, tzinfo=timezone.utc),
    ])
    monkeypatch.setattr(audit_service, "_utcnow", lambda: next(instants))
    for actor in range(5):
        await audit_trail.append(actor, "READ_RECORDS")

    same_day = await audit_trail.list_entries(
        AuditFilter(date_from=date(2026, 3, 2), date_to=date(2026, 3, 2))
    )
    assert [e.sequence_id for e in same_day.entries] == [2, 3, 4]

    open_ended = await audit_trail.list_entries(AuditFilter(date_from=date(2026, 3, 2)))
    assert [e.sequence_id for e in open_ended.entries] == [2, 3, 4, 5]

    until = await audit_trail.list_entries(AuditFilter(date_to=date(2026, 3, 1)))
    assert [e.sequence_id for e in until.entries] == [1]


async def test_instant_bounds_are_used_as_given(audit_trail: AuditTrail, monkeypatch):
    base = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
    instants = iter([base + timedelta(hours=h) for h in range(4)])
    monkeypatch.setattr(audit_service, "_utcnow", lambda: next(instants))
    for actor in range(4):
        await audit_trail.append(actor, "READ_RECORDS")

    lima = timezone(timedelta(hours=-5))
    result = await audit_trail.list_entries(
        AuditFilter(
            date_from=datetime(2026, 3, 2, 11, 0, tzinfo=lima),  # 16:00 UTC
            date_to=datetime(2026, 3, 2, 17, 0),  # naive = UTC
        )
    )
    assert [e.sequence_id for e in result.entries] == [2, 3]


async def test_date_strings_cover_whole_days(audit_trail: AuditTrail, monkeypatch):
    monkeypatch.setattr(
        audit_service, "_utcnow", lambda: datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    )
    await audit_trail.append(7, "READ_RECORDS")

    filters = AuditFilter(date_from="2026-03-02", date_to="2026-03-02")
    assert filters.date_from == datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert filters.date_to == datetime.combine(date(2026, 3, 2), time.max, tzinfo=timezone.utc)

    result = await audit_trail.list_entries(filters)
    assert result.total == 1


async def test_datetime_strings_stay_instants():
    filters = AuditFilter(date_to="2026-03-02T17:30:00-05:00")
    assert filters.date_to == datetime(2026, 3, 2, 22, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("field", ["actor_id", "subject_id"])
async def test_filter_ids_outside_bigint_are_rejected(field):
    with pytest.raises(ValidationError):
        AuditFilter(**{field: 2**63})


async def test_listing_exposes_only_audit_metadata(audit_trail: AuditTrail, five_entries):
    result = await audit_trail.list_entries(page_size=1)
    entry = result.entries[0]
    assert set(entry.model_dump()) == {
        "sequence_id", "actor_id", "action", "subject_id", "timestamp",
        "previous_digest", "digest", "signature",
    }
    assert entry.timestamp.tzinfo is not None
