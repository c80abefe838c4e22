"""Complaint store and the submission/triage workflow built on top of it."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field
from pymongo import ReturnDocument

from auth import SessionUser
from config import MAX_COMPLAINT_IMAGES
from database import Database
from errors import Forbidden, InvalidTransition, NotFound, Unauthorized, ValidationError
from logger import get_logger
from schemas import Category, Complaint, Contact, Location, MediaHandle, NonBlank, Priority, Status, StatusChange
from users import UserStore, to_object_id

log = get_logger("complaints")

# Moves an employee or admin may make; reopening a resolved complaint is admin only.
TRANSITIONS = {
    "pending": {"in_progress", "resolved"},
    "in_progress": {"pending", "resolved"},
    "resolved": {"in_progress"},
}
ADMIN_ONLY = {("resolved", "in_progress")}


class ComplaintDraft(BaseModel):
    """What a client may submit. Authorship and status are never taken from here."""
    title: NonBlank
    category: Category = Field(..., validation_alias=AliasChoices("category", "type"))
    description: NonBlank
    location: Location
    priority: Priority = "medium"
    contact: Contact
    images: List[MediaHandle] = Field(default_factory=list)


class StatusUpdate(BaseModel):
    status: Status
    note: Optional[str] = None


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


class ComplaintStore:
    def __init__(self, database: Database):
        self.database = database
        self.complaints = database["complaint"]

    def create(self, fields: Dict[str, Any], author_id: str) -> Dict[str, Any]:
        complaint = Complaint(**fields, author_id=author_id)
        doc = complaint.model_dump()
        doc["location"]["coordinates"] = list(doc["location"]["coordinates"])
        complaint_id = self.database.create_document("complaint", doc)
        return self.find_by_id(complaint_id)

    def find_by_id(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        doc = self.complaints.find_one({"_id": to_object_id(complaint_id)})
        return serialize(doc) if doc else None

    def list(self, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = self.database.get_documents(
            "complaint", filter_dict or {}, limit, sort=[("created_at", -1), ("_id", -1)]
        )
        return [serialize(d) for d in docs]

    def update_status(self, complaint_id: str, new_status: str, by: Optional[str] = None,
                      note: Optional[str] = None) -> Dict[str, Any]:
        """Set a status unconditionally; transition rules belong to the workflow."""
        now = datetime.now(timezone.utc)
        update = {"$set": {"status": new_status, "updated_at": now}}
        if new_status == "resolved":
            update["$set"]["resolved_at"] = now
        if by:
            change = StatusChange(status=new_status, by=by, at=now, note=note)
            update["$push"] = {"history": change.model_dump()}

        doc = self.complaints.find_one_and_update(
            {"_id": to_object_id(complaint_id)}, update, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Complaint not found")
        return serialize(doc)


class ComplaintWorkflow:
    def __init__(self, complaints: ComplaintStore, users: UserStore, max_images: int = MAX_COMPLAINT_IMAGES):
        self.complaints = complaints
        self.users = users
        self.max_images = max_images

    def submit(self, session: Optional[SessionUser], draft: ComplaintDraft) -> Dict[str, Any]:
        if session is None:
            raise Unauthorized("Please login to submit a complaint")
        if len(draft.images) > self.max_images:
            raise ValidationError(f"A complaint can have at most {self.max_images} images")
        if self._author(session) is None:
            log.warning("Rejected complaint from %s: session user no longer exists", session.email)
            raise Unauthorized("Session user no longer exists")

        fields = draft.model_dump()
        if not fields["contact"].get("email"):
            fields["contact"]["email"] = session.email

        complaint = self.complaints.create(fields, author_id=session.id)
        self.users.add_complaint(session.id, complaint["id"])
        log.info("Complaint %s submitted by %s (%s, %s)", complaint["id"], session.email,
                 complaint["category"], complaint["priority"])
        return complaint

    def _author(self, session: SessionUser) -> Optional[Dict[str, Any]]:
        try:
            return self.users.find_by_id(session.id)
        except ValidationError:
            return None

    def get(self, complaint_id: str) -> Dict[str, Any]:
        complaint = self.complaints.find_by_id(complaint_id)
        if complaint is None:
            raise NotFound("Complaint not found")
        return complaint

    def list(self, status: Optional[str] = None, category: Optional[str] = None, priority: Optional[str] = None,
             author_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = {k: v for k, v in
                   (("status", status), ("category", category), ("priority", priority), ("author_id", author_id))
                   if v}
        return self.complaints.list(filters, limit)

    def change_status(self, session: SessionUser, complaint_id: str, new_status: str,
                      note: Optional[str] = None) -> Dict[str, Any]:
        if session.role not in ("employee", "admin"):
            raise Forbidden("Only employees and admins can update complaint status")

        current = self.get(complaint_id)["status"]
        if new_status not in TRANSITIONS.get(current, set()):
            raise InvalidTransition(f"Cannot move complaint from {current} to {new_status}")
        if (current, new_status) in ADMIN_ONLY and session.role != "admin":
            raise Forbidden("Only admins can reopen a resolved complaint")

        complaint = self.complaints.update_status(complaint_id, new_status, by=session.id, note=note)
        log.info("Complaint %s: %s -> %s by %s", complaint_id, current, new_status, session.email)
        return complaint
