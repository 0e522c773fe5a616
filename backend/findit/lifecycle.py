"""Item and claim lifecycle.

Item status moves Open -> Claimed when a claim is filed, then Claimed ->
Returned on approval or Claimed -> Open on denial. Returned is terminal. A claim
moves once from Pending to Approved or Denied.

Each operation runs in a single store transaction. Items and claims are
versioned, so a concurrent writer makes the flush fail with ``StaleDataError``;
the operation is then retried from a fresh read and the loser sees the state
the winner left behind.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from .models import AuditLog, Category, Claim, Item, Location, User
from .security import AuthContext, hash_answer, require_role
from .storage import BlobStorage, ImageUpload, discard_blobs, store_images
from .store import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_LIMIT = 3


class LifecycleEngine:
    def __init__(
        self,
        store: Store,
        blobs: BlobStorage,
        *,
        retry_limit: int = DEFAULT_RETRY_LIMIT,
        max_images: int = 3,
    ):
        self.store = store
        self.blobs = blobs
        self.retry_limit = max(1, int(retry_limit))
        self.max_images = max_images

    def close(self) -> None:
        self.store.close()

    def _atomic(self, op: str, fn: Callable[[Session], T]) -> T:
        for attempt in range(1, self.retry_limit + 1):
            try:
                with self.store.transaction() as s:
                    return fn(s)
            except StaleDataError:
                logger.warning("%s: concurrent modification (attempt %d/%d)", op, attempt, self.retry_limit)
        raise Conflict("The record was modified concurrently, please retry")

    # ---- items ----

    def create_item(self, reporter_id: int, data: dict[str, Any], uploads: Iterable[ImageUpload] = ()) -> Item:
        """Store a lost/found report with status Open.

        ``data`` is the output of ``ItemCreateSchema``. Security answers are
        hashed before they reach the store.
        """
        uploads = list(uploads)
        if len(uploads) > self.max_images:
            raise ValidationError({"images": [f"At most {self.max_images} images are allowed"]})
        questions = [
            {"question": q["question"], "answerHash": hash_answer(q["answer"])}
            for q in data.get("security_questions") or []
        ]

        # Reporter and catalog references are checked before any blob is written
        with self.store.session() as s:
            _active_reporter(s, reporter_id)
            _apply_catalog(s, Item(), data)

        def _create(s: Session, images: list[str], thumbs: list[str]) -> Item:
            reporter = _active_reporter(s, reporter_id)
            item = Item(
                owner_id=reporter.id,
                owner_name=reporter.display_name,
                type=data["type"],
                status="Open",
                title=data["title"],
                description=data["description"],
                date_found=data.get("date_found") if data["type"] == "found" else None,
                date_last_seen=data.get("date_last_seen") if data["type"] == "lost" else None,
                additional_contact_info=data.get("additional_contact_info") or "",
                security_questions=questions,
                images=list(images),
                thumbnails=list(thumbs),
                is_deleted=False,
            )
            _apply_catalog(s, item, data)
            s.add(item)
            s.flush()
            s.refresh(item)
            return item

        written: list[str] = []
        try:
            images, thumbs = store_images(self.blobs, uploads, written) if uploads else ([], [])
            item = self._atomic("create_item", lambda s: _create(s, images, thumbs))
        except Exception:
            # No item row refers to these blobs
            discard_blobs(self.blobs, written)
            raise
        logger.info("Item %s created (%s) by user %s", item.id, item.type, reporter_id)
        return item

    def update_item(self, actor: AuthContext, item_id: int, changes: dict[str, Any]) -> Item:
        """Change descriptive fields of an item. Status is never touched here."""

        def _update(s: Session) -> Item:
            item = _live_item(s, item_id)
            _require_owner_or_admin(actor, item)
            if item.type == "found" and changes.get("date_last_seen") is not None:
                raise ValidationError({"dateLastSeen": ["Only lost items carry a last-seen date"]})
            if item.type == "lost" and changes.get("date_found") is not None:
                raise ValidationError({"dateFound": ["Only found items carry a found date"]})
            if "date_found" in changes and item.type == "found" and changes["date_found"] is None:
                raise ValidationError({"dateFound": ["Date found is required for found items"]})
            if "date_last_seen" in changes and item.type == "lost" and changes["date_last_seen"] is None:
                raise ValidationError({"dateLastSeen": ["Date last seen is required for lost items"]})
            for field in ("title", "description", "date_found", "date_last_seen", "additional_contact_info"):
                if field in changes:
                    setattr(item, field, changes[field])
            if "category_id" in changes or "location_id" in changes:
                _apply_catalog(s, item, changes)
            s.flush()
            s.refresh(item)
            return item

        item = self._atomic("update_item", _update)
        logger.info("Item %s updated by user %s", item.id, actor.user_id)
        return item

    def delete_item(self, actor: AuthContext, item_id: int) -> Item:
        """Soft delete. Refused while a claim on the item awaits adjudication."""

        def _delete(s: Session) -> Item:
            item = _live_item(s, item_id)
            _require_owner_or_admin(actor, item)
            if item.status == "Claimed" or _pending_claim_exists(s, item.id):
                raise InvalidState("Item has a pending claim and cannot be deleted")
            item.is_deleted = True
            s.add(
                AuditLog(
                    actor_user_id=actor.user_id,
                    action="item_deleted",
                    entity_type="item",
                    entity_id=int(item.id),
                    details={"byAdmin": actor.user_id != item.owner_id},
                )
            )
            s.flush()
            s.refresh(item)
            return item

        item = self._atomic("delete_item", _delete)
        logger.info("Item %s soft-deleted by user %s", item.id, actor.user_id)
        return item

    # ---- claims ----

    def submit_claim(self, claimant_id: int, found_item_id: int, answers: Iterable[str | None] = (), message: str = "") -> Claim:
        """File a claim against an Open found item and move the item to Claimed.

        Answers are hashed and stored for the adjudicating admin; they are not
        compared against the item's security answers.
        """
        answer_hashes = [hash_answer(a) if a is not None else None for a in answers]

        def _submit(s: Session) -> Claim:
            item = s.get(Item, found_item_id)
            if item is None or item.is_deleted:
                raise NotFound("Item not found")
            # Self-claims are refused whatever state the item is in
            if item.owner_id == claimant_id:
                raise Forbidden("You cannot claim your own item")
            if item.type != "found" or item.status != "Open":
                raise InvalidState("This item cannot be claimed")
            if _pending_claim_exists(s, item.id, claimant_id):
                raise Conflict("You already have a pending claim for this item")
            claimant = s.get(User, claimant_id)
            if claimant is None or claimant.is_deleted:
                raise Forbidden("Account has been deactivated")

            claim = Claim(
                found_item_id=item.id,
                claimant_id=claimant.id,
                claimant_name=claimant.display_name,
                finder_id=item.owner_id,
                finder_name=item.owner_name,
                answer_hashes=answer_hashes,
                message=message or "",
                status="Pending",
                admin_comment="",
                is_deleted=False,
            )
            # Version-checked: a concurrent claim on the same item fails this flush
            item.status = "Claimed"
            s.add(claim)
            s.flush()
            s.refresh(claim)
            return claim

        claim = self._atomic("submit_claim", _submit)
        logger.info("Claim %s filed on item %s by user %s", claim.id, found_item_id, claimant_id)
        return claim

    def adjudicate_claim(self, admin: AuthContext, claim_id: int, decision: str, admin_comment: str | None = None) -> Claim:
        """Approve or deny a pending claim.

        Approval returns the item and credits both parties' track records;
        denial reopens the item. Claim, item, both users and the audit entry
        are written in one transaction.
        """
        require_role(admin, "admin")
        if decision not in ("Approved", "Denied"):
            raise ValidationError({"status": ["Status must be Approved or Denied"]})

        def _adjudicate(s: Session) -> Claim:
            claim = s.get(Claim, claim_id)
            if claim is None or claim.is_deleted:
                raise NotFound("Claim not found")
            if claim.status != "Pending":
                raise InvalidState("This claim has already been processed")
            item = s.get(Item, claim.found_item_id)
            if item is None:
                raise NotFound("Item not found")
            if item.status != "Claimed":
                raise InvalidState("Item is not awaiting adjudication")

            prev_status = claim.status
            claim.status = decision
            claim.admin_comment = admin_comment or ""
            claim.adjudicated_by = admin.user_id
            claim.adjudicated_at = datetime.now(timezone.utc)

            if decision == "Approved":
                item.status = "Returned"
                _credit(s, claim.claimant_id, items_found=1, items_returned=1)
                _credit(s, claim.finder_id, items_lost=1, items_returned=1)
            else:
                item.status = "Open"

            s.add(
                AuditLog(
                    actor_user_id=admin.user_id,
                    action="claim_adjudicated",
                    entity_type="claim",
                    entity_id=int(claim.id),
                    details={
                        "fromStatus": prev_status,
                        "toStatus": decision,
                        "itemId": int(item.id),
                        "adminComment": claim.admin_comment,
                    },
                )
            )
            s.flush()
            s.refresh(claim)
            return claim

        claim = self._atomic("adjudicate_claim", _adjudicate)
        logger.info("Claim %s %s by admin %s", claim.id, decision.lower(), admin.user_id)
        return claim

    # ---- users ----

    def deactivate_user(self, admin: AuthContext, user_id: int) -> User:
        """Soft delete a user. An unknown or already deactivated user is NotFound."""
        require_role(admin, "admin")

        def _deactivate(s: Session) -> User:
            user = s.get(User, user_id)
            if user is None or user.is_deleted:
                raise NotFound("User not found")
            user.is_deleted = True
            s.add(
                AuditLog(
                    actor_user_id=admin.user_id,
                    action="user_deactivated",
                    entity_type="user",
                    entity_id=int(user.id),
                    details={"identifier": user.identifier},
                )
            )
            s.flush()
            s.refresh(user)
            return user

        user = self._atomic("deactivate_user", _deactivate)
        logger.info("User %s deactivated by admin %s", user.id, admin.user_id)
        return user


def _live_item(s: Session, item_id: int) -> Item:
    item = s.get(Item, item_id)
    if item is None or item.is_deleted:
        raise NotFound("Item not found")
    return item


def _active_reporter(s: Session, user_id: int) -> User:
    reporter = s.get(User, user_id)
    if reporter is None or reporter.is_deleted:
        raise Forbidden("Account has been deactivated")
    return reporter


def _require_owner_or_admin(actor: AuthContext, item: Item) -> None:
    if item.owner_id != actor.user_id and not actor.is_admin:
        raise Forbidden("Access denied")


def _pending_claim_exists(s: Session, item_id: int, claimant_id: int | None = None) -> bool:
    q = select(Claim.id).where(
        Claim.found_item_id == item_id,
        Claim.status == "Pending",
        Claim.is_deleted.is_(False),
    )
    if claimant_id is not None:
        q = q.where(Claim.claimant_id == claimant_id)
    return s.execute(q.limit(1)).first() is not None


def _apply_catalog(s: Session, item: Item, data: dict[str, Any]) -> None:
    errors: dict[str, list[str]] = {}
    if "category_id" in data:
        cid = data.get("category_id")
        category = s.get(Category, cid) if cid is not None else None
        if cid is not None and category is None:
            errors["categoryId"] = ["Invalid category"]
        else:
            item.category_id = cid
            item.category_name = category.name if category else None
    if "location_id" in data:
        lid = data.get("location_id")
        location = s.get(Location, lid) if lid is not None else None
        if lid is not None and location is None:
            errors["locationId"] = ["Invalid location"]
        else:
            item.location_id = lid
            item.location_name = location.name if location else None
    if errors:
        raise ValidationError(errors)


def _credit(s: Session, user_id: int, **increments: int) -> None:
    # SQL-side increments never lose a concurrent update
    values = {name: getattr(User, name) + amount for name, amount in increments.items()}
    result = s.execute(update(User).where(User.id == user_id).values(**values))
    if result.rowcount != 1:
        raise NotFound("User not found")
