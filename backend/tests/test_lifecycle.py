from datetime import date

import pytest

import findit.lifecycle as lifecycle
from findit.errors import Conflict, Forbidden, InvalidState, NotFound, StoreError, ValidationError
from findit.models import AuditLog, Category, Claim, Item, User
from findit.security import hash_answer
from findit.storage import ImageUpload


@pytest.fixture
def claimant(make_user):
    return make_user("claimant")


@pytest.fixture
def admin(make_user, as_ctx):
    return as_ctx(make_user("admin", role="admin"))


def _track(fetch, user):
    return fetch(User, user.id).track_record


# ---- item creation ----


def test_create_item_starts_open_with_hashed_answers(found_item):
    finder, item = found_item
    assert item.status == "Open"
    assert item.is_deleted is False
    assert item.owner_id == finder.id
    assert item.owner_name == "Finder"
    assert item.date_last_seen is None
    assert [q["question"] for q in item.security_questions] == ["What sticker is on it?", "What colour is the lid?"]
    assert item.security_questions[0]["answerHash"] == hash_answer("A red fox")
    assert "A red fox" not in str(item.security_questions)


def test_create_item_rejects_unknown_category(engine, make_user, item_data):
    finder = make_user("finder")
    with pytest.raises(ValidationError) as exc:
        engine.create_item(finder.id, item_data(category_id=999))
    assert "categoryId" in exc.value.messages


def test_create_item_denormalizes_catalog_names(engine, store, make_user, item_data):
    finder = make_user("finder")
    with store.transaction() as s:
        cat = Category(name="Bottles")
        s.add(cat)
        s.flush()
        cat_id = cat.id
    item = engine.create_item(finder.id, item_data(category_id=cat_id))
    assert item.category_id == cat_id
    assert item.category_name == "Bottles"


def test_create_item_by_deactivated_user_is_forbidden(engine, make_user, admin, item_data):
    finder = make_user("finder")
    engine.deactivate_user(admin, finder.id)
    with pytest.raises(Forbidden):
        engine.create_item(finder.id, item_data())


def test_create_item_stores_images_and_thumbnails(engine, blobs, make_user, item_data, png):
    finder = make_user("finder")
    upload = ImageUpload("bottle.png", png(), max_bytes=5 * 1024 * 1024)
    item = engine.create_item(finder.id, item_data(), [upload])
    assert len(item.images) == 1
    assert len(item.thumbnails) == 1
    assert item.images[0].startswith("memory://items/")
    assert len(blobs.blobs) == 2


def test_create_item_limits_image_count(engine, make_user, item_data, png):
    finder = make_user("finder")
    uploads = [ImageUpload(f"p{i}.png", png(), max_bytes=5 * 1024 * 1024) for i in range(4)]
    with pytest.raises(ValidationError):
        engine.create_item(finder.id, item_data(), uploads)


def test_rejected_reporter_writes_no_images(engine, blobs, make_user, admin, item_data, png):
    finder = make_user("finder")
    engine.deactivate_user(admin, finder.id)
    upload = ImageUpload("a.png", png(), max_bytes=5 * 1024 * 1024)
    with pytest.raises(Forbidden):
        engine.create_item(finder.id, item_data(), [upload])
    assert blobs.blobs == {}


def test_invalid_category_writes_no_images(engine, blobs, make_user, item_data, png):
    finder = make_user("finder")
    upload = ImageUpload("a.png", png(), max_bytes=5 * 1024 * 1024)
    with pytest.raises(ValidationError):
        engine.create_item(finder.id, item_data(category_id=999), [upload])
    assert blobs.blobs == {}


def test_failed_item_save_removes_written_images(engine, blobs, make_user, item_data, png, monkeypatch):
    finder = make_user("finder")

    def broken(op, fn):
        raise StoreError()

    monkeypatch.setattr(engine, "_atomic", broken)
    uploads = [ImageUpload(f"p{i}.png", png(), max_bytes=5 * 1024 * 1024) for i in range(2)]
    with pytest.raises(StoreError):
        engine.create_item(finder.id, item_data(), uploads)
    assert blobs.blobs == {}


# ---- claim lifecycle ----


def test_approval_returns_item_and_credits_both_parties(engine, fetch, found_item, claimant, admin):
    finder, item = found_item

    claim = engine.submit_claim(claimant.id, item.id, ["A red fox", "Black"], "It is mine")
    assert claim.status == "Pending"
    assert claim.finder_id == finder.id
    assert claim.claimant_name == "Claimant"
    assert claim.finder_name == "Finder"
    assert fetch(Item, item.id).status == "Claimed"

    decided = engine.adjudicate_claim(admin, claim.id, "Approved")
    assert decided.status == "Approved"
    assert decided.admin_comment == ""
    assert fetch(Item, item.id).status == "Returned"
    assert _track(fetch, claimant) == {"itemsFound": 1, "itemsLost": 0, "itemsReturned": 1}
    assert _track(fetch, finder) == {"itemsFound": 0, "itemsLost": 1, "itemsReturned": 1}


def test_denial_reopens_item_without_credit(engine, fetch, found_item, claimant, admin):
    finder, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, ["wrong"], "")

    decided = engine.adjudicate_claim(admin, claim.id, "Denied", "not a match")
    assert decided.status == "Denied"
    assert decided.admin_comment == "not a match"
    assert fetch(Item, item.id).status == "Open"
    zero = {"itemsFound": 0, "itemsLost": 0, "itemsReturned": 0}
    assert _track(fetch, claimant) == zero
    assert _track(fetch, finder) == zero


def test_second_claim_while_pending_is_refused(engine, found_item, claimant):
    _, item = found_item
    engine.submit_claim(claimant.id, item.id, [], "")
    with pytest.raises(InvalidState):
        engine.submit_claim(claimant.id, item.id, [], "")


def test_owner_cannot_claim_own_item(engine, found_item):
    finder, item = found_item
    with pytest.raises(Forbidden):
        engine.submit_claim(finder.id, item.id, [], "")


def test_concurrent_claims_leave_one_pending(engine, fetch, found_item, make_user, monkeypatch):
    _, item = found_item
    u2 = make_user("second")
    u3 = make_user("third")
    real_check = lifecycle._pending_claim_exists
    rival = {}

    def racing(s, item_id, claimant_id=None):
        # U3 commits a claim while U2's transaction has already read the item as Open
        if not rival:
            rival["claim"] = "running"
            rival["claim"] = engine.submit_claim(u3.id, item_id, [], "")
        return real_check(s, item_id, claimant_id)

    monkeypatch.setattr(lifecycle, "_pending_claim_exists", racing)

    with pytest.raises((InvalidState, Conflict)):
        engine.submit_claim(u2.id, item.id, [], "")

    winner = rival["claim"]
    assert winner.claimant_id == u3.id
    assert winner.status == "Pending"
    assert fetch(Item, item.id).status == "Claimed"
    with engine.store.session() as s:
        claims = s.query(Claim).filter(Claim.found_item_id == item.id).all()
        assert [c.claimant_id for c in claims] == [u3.id]


# ---- invariants ----


def test_item_reopens_after_denial_and_returned_is_terminal(engine, fetch, found_item, claimant, make_user, admin):
    _, item = found_item
    other = make_user("other")

    first = engine.submit_claim(claimant.id, item.id, [], "")
    engine.adjudicate_claim(admin, first.id, "Denied")
    assert fetch(Item, item.id).status == "Open"

    second = engine.submit_claim(other.id, item.id, [], "")
    assert fetch(Item, item.id).status == "Claimed"
    engine.adjudicate_claim(admin, second.id, "Approved")
    assert fetch(Item, item.id).status == "Returned"

    with pytest.raises(InvalidState):
        engine.submit_claim(claimant.id, item.id, [], "")


def test_adjudicating_twice_fails(engine, fetch, found_item, claimant, admin):
    finder, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, [], "")
    engine.adjudicate_claim(admin, claim.id, "Approved")

    for decision in ("Approved", "Denied"):
        with pytest.raises(InvalidState):
            engine.adjudicate_claim(admin, claim.id, decision)

    assert fetch(Item, item.id).status == "Returned"
    assert _track(fetch, claimant)["itemsReturned"] == 1
    assert _track(fetch, finder)["itemsReturned"] == 1


def test_concurrent_adjudication_applies_once(engine, fetch, found_item, claimant, admin, monkeypatch):
    finder, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, [], "")
    real_credit = lifecycle._credit
    rival = {}

    def racing(s, user_id, **increments):
        # Another admin denies the claim while this approval is mid-transaction
        if not rival:
            rival["claim"] = engine.adjudicate_claim(admin, claim.id, "Denied", "too late")
        return real_credit(s, user_id, **increments)

    monkeypatch.setattr(lifecycle, "_credit", racing)

    with pytest.raises(InvalidState):
        engine.adjudicate_claim(admin, claim.id, "Approved")

    assert rival["claim"].status == "Denied"
    stored = fetch(Claim, claim.id)
    assert stored.status == "Denied"
    assert stored.admin_comment == "too late"
    assert fetch(Item, item.id).status == "Open"
    zero = {"itemsFound": 0, "itemsLost": 0, "itemsReturned": 0}
    assert _track(fetch, claimant) == zero
    assert _track(fetch, finder) == zero


def test_self_claim_forbidden_in_any_state(engine, found_item, claimant, admin):
    finder, item = found_item
    with pytest.raises(Forbidden):
        engine.submit_claim(finder.id, item.id, [], "")

    claim = engine.submit_claim(claimant.id, item.id, [], "")
    with pytest.raises(Forbidden):
        engine.submit_claim(finder.id, item.id, [], "")

    engine.adjudicate_claim(admin, claim.id, "Approved")
    with pytest.raises(Forbidden):
        engine.submit_claim(finder.id, item.id, [], "")


def test_track_records_across_pairs(engine, fetch, make_user, admin, item_data):
    a, b, c = make_user("alice"), make_user("bob"), make_user("carol")
    # (finder, claimant) pairs
    pairs = [(a, b), (b, c), (a, c), (c, a)]
    for finder, owner in pairs:
        item = engine.create_item(finder.id, item_data(title=f"Item from {finder.identifier}"))
        claim = engine.submit_claim(owner.id, item.id, [], "")
        engine.adjudicate_claim(admin, claim.id, "Approved")

    # a denied claim never counts
    item = engine.create_item(b.id, item_data())
    claim = engine.submit_claim(a.id, item.id, [], "")
    engine.adjudicate_claim(admin, claim.id, "Denied")

    assert _track(fetch, a) == {"itemsFound": 1, "itemsLost": 2, "itemsReturned": 3}
    assert _track(fetch, b) == {"itemsFound": 1, "itemsLost": 1, "itemsReturned": 2}
    assert _track(fetch, c) == {"itemsFound": 2, "itemsLost": 1, "itemsReturned": 3}


def test_deactivation_twice_is_not_found(engine, fetch, make_user, admin):
    user = make_user("leaver")
    engine.deactivate_user(admin, user.id)
    assert fetch(User, user.id).is_deleted is True

    with pytest.raises(NotFound):
        engine.deactivate_user(admin, user.id)
    with pytest.raises(NotFound):
        engine.deactivate_user(admin, 424242)


def test_deactivation_keeps_items_visible(engine, fetch, found_item, admin):
    finder, item = found_item
    engine.deactivate_user(admin, finder.id)
    assert fetch(Item, item.id).is_deleted is False


# ---- claim rules ----


def test_answers_are_not_matched_automatically(engine, fetch, found_item, claimant, admin):
    _, item = found_item
    wrong = engine.submit_claim(claimant.id, item.id, ["A blue cat", "White"], "")
    assert wrong.status == "Pending"
    assert wrong.answer_hashes == [hash_answer("A blue cat"), hash_answer("White")]

    # An admin may still approve regardless of what was answered
    approved = engine.adjudicate_claim(admin, wrong.id, "Approved")
    assert approved.status == "Approved"


def test_correct_answers_do_not_auto_approve(engine, fetch, found_item, claimant):
    _, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, ["A red fox", "Black"], "")
    assert fetch(Claim, claim.id).status == "Pending"
    assert fetch(Item, item.id).status == "Claimed"


def test_missing_answers_are_kept_as_gaps(engine, found_item, claimant):
    _, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, ["A red fox", None], "")
    assert claim.answer_hashes == [hash_answer("A red fox"), None]


def test_claim_on_missing_or_deleted_item(engine, found_item, claimant, as_ctx):
    finder, item = found_item
    with pytest.raises(NotFound):
        engine.submit_claim(claimant.id, 9999, [], "")
    engine.delete_item(as_ctx(finder), item.id)
    with pytest.raises(NotFound):
        engine.submit_claim(claimant.id, item.id, [], "")


def test_lost_items_cannot_be_claimed(engine, make_user, claimant, item_data):
    owner = make_user("owner")
    lost = engine.create_item(
        owner.id,
        item_data(type="lost", date_found=None, date_last_seen=date(2024, 3, 10)),
    )
    with pytest.raises(InvalidState):
        engine.submit_claim(claimant.id, lost.id, [], "")


def test_existing_pending_claim_conflicts(engine, store, found_item, claimant):
    _, item = found_item
    # A pending claim left behind while the item still reads Open
    with store.transaction() as s:
        s.add(Claim(found_item_id=item.id, claimant_id=claimant.id, finder_id=item.owner_id, status="Pending"))
    with pytest.raises(Conflict):
        engine.submit_claim(claimant.id, item.id, [], "")


def test_adjudication_requires_admin(engine, found_item, claimant, as_ctx):
    finder, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, [], "")
    with pytest.raises(Forbidden):
        engine.adjudicate_claim(as_ctx(finder), claim.id, "Approved")


def test_adjudicating_unknown_claim(engine, admin):
    with pytest.raises(NotFound):
        engine.adjudicate_claim(admin, 12345, "Approved")


def test_adjudication_is_audited(engine, store, found_item, claimant, admin):
    _, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, [], "")
    engine.adjudicate_claim(admin, claim.id, "Denied", "not a match")
    with store.session() as s:
        log = s.query(AuditLog).filter_by(entity_type="claim", entity_id=claim.id).one()
        assert log.action == "claim_adjudicated"
        assert log.actor_user_id == admin.user_id
        assert log.details["toStatus"] == "Denied"
        assert log.details["adminComment"] == "not a match"


def test_failed_adjudication_rolls_back(engine, fetch, found_item, claimant, admin, monkeypatch):
    finder, item = found_item
    claim = engine.submit_claim(claimant.id, item.id, [], "")

    def broken(s, user_id, **increments):
        raise NotFound("User not found")

    monkeypatch.setattr(lifecycle, "_credit", broken)
    with pytest.raises(NotFound):
        engine.adjudicate_claim(admin, claim.id, "Approved")

    assert fetch(Claim, claim.id).status == "Pending"
    assert fetch(Item, item.id).status == "Claimed"


# ---- item maintenance ----


def test_update_item_by_owner_and_admin(engine, found_item, make_user, admin, as_ctx):
    finder, item = found_item
    updated = engine.update_item(as_ctx(finder), item.id, {"title": "Steel bottle"})
    assert updated.title == "Steel bottle"
    assert updated.status == "Open"

    updated = engine.update_item(admin, item.id, {"description": "Found near the stairs"})
    assert updated.description == "Found near the stairs"

    stranger = make_user("stranger")
    with pytest.raises(Forbidden):
        engine.update_item(as_ctx(stranger), item.id, {"title": "Mine now"})


def test_update_item_keeps_dates_consistent(engine, found_item, as_ctx):
    finder, item = found_item
    with pytest.raises(ValidationError):
        engine.update_item(as_ctx(finder), item.id, {"date_last_seen": date(2024, 3, 1)})
    with pytest.raises(ValidationError):
        engine.update_item(as_ctx(finder), item.id, {"date_found": None})


def test_delete_item_with_pending_claim_is_refused(engine, fetch, found_item, claimant, admin, as_ctx):
    finder, item = found_item
    engine.submit_claim(claimant.id, item.id, [], "")
    with pytest.raises(InvalidState):
        engine.delete_item(as_ctx(finder), item.id)
    with pytest.raises(InvalidState):
        engine.delete_item(admin, item.id)
    assert fetch(Item, item.id).is_deleted is False


def test_delete_item_permissions(engine, found_item, make_user, as_ctx):
    finder, item = found_item
    stranger = make_user("stranger")
    with pytest.raises(Forbidden):
        engine.delete_item(as_ctx(stranger), item.id)
    deleted = engine.delete_item(as_ctx(finder), item.id)
    assert deleted.is_deleted is True
    with pytest.raises(NotFound):
        engine.delete_item(as_ctx(finder), item.id)


def test_retry_limit_surfaces_conflict(engine, found_item, claimant, monkeypatch):
    _, item = found_item
    from sqlalchemy.orm.exc import StaleDataError

    calls = []

    def always_stale(s, item_id, claimant_id=None):
        calls.append(item_id)
        raise StaleDataError("simulated")

    monkeypatch.setattr(lifecycle, "_pending_claim_exists", always_stale)
    with pytest.raises(Conflict):
        engine.submit_claim(claimant.id, item.id, [], "")
    assert len(calls) == engine.retry_limit


def test_standalone_store_owns_its_engine(store):
    assert store.owns_engine is True
