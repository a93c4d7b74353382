"""
App Submission Portal
Client Service — provisioning, administration and deletion.

Provisioning and deletion span the hosted auth service and the database,
so both run as sagas (see ``portal.services.saga``). Any failed step rolls
the session back.

    create_client:  provision identity ⟲ delete identity
                    insert profile + client + empty form (flush)
                    commit

    delete_client:  delete rows (flush)
                    delete identity
                    commit
                    remove stored images (best effort, logged)

Identity deletion cannot be undone, so it runs after every reversible step.
"""

from __future__ import annotations

import logging
import secrets
import string

from email_validator import EmailNotValidError, validate_email

from portal.core.exceptions import ConflictError, GatewayError, ValidationError
from portal.models import db
from portal.models.app_form import AppForm
from portal.models.audit import AdminActivityLog, log_admin_action
from portal.models.client import CLIENT_STATUSES, Client
from portal.models.notification import Notification
from portal.models.profile import Profile
from portal.services.saga import Saga
from portal.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)

ACCESS_CODE_ALPHABET = string.ascii_uppercase + string.digits
MIN_ADMIN_PASSWORD_LENGTH = 8


# ── Helpers ──────────────────────────────────────────────────────────────────

def generate_access_code() -> str:
    """Random ``XXX-XXX-XXX`` code over A-Z0-9."""
    groups = ("".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(3)) for _ in range(3))
    return "-".join(groups)


def temporary_password(access_code: str) -> str:
    return f"temp_{access_code.replace('-', '')}"


def _unique_access_code(attempts: int = 5) -> str:
    for _ in range(attempts):
        code = generate_access_code()
        if not Client.query.filter_by(access_code=code).first():
            return code
    raise ConflictError("Client", "access_code", "<generated>")


def _clean_name_and_email(name, email) -> tuple[str, str]:
    errors = {}
    name = (name or "").strip()
    email = (email or "").strip()
    if not name:
        errors["name"] = "required"
    if not email:
        errors["email"] = "required"
    else:
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            errors["email"] = str(exc)
    if errors:
        raise ValidationError("Name and a valid email are required", details=errors)
    return name, email


# ── Provisioning ─────────────────────────────────────────────────────────────

def create_client(name, email, *, admin, identity) -> dict:
    """
    Provision a client login, profile, client record and empty form.

    Returns:
        {"client": dict, "access_code": str, "temporary_password": str}

    Raises:
        ValidationError, ConflictError, SagaError
    """
    name, email = _clean_name_and_email(name, email)
    if Client.query.filter(db.func.lower(Client.email) == email.lower()).first():
        raise ConflictError("Client", "email", email)

    access_code = _unique_access_code()
    password = temporary_password(access_code)

    def _insert(user):
        profile = Profile(id=user["id"], email=email, name=name, role="client")
        client = Client(
            user_id=profile.id,
            name=name,
            email=email,
            access_code=access_code,
            status="active",
            created_by=admin.id if admin is not None else None,
        )
        form = AppForm(
            client=client,
            status="not_started",
            progress_percentage=0,
            image_source="custom",
            images_uploaded=False,
            review_status="pending",
            project_status="pending",
        )
        db.session.add_all([profile, client, form])
        db.session.flush()
        log_admin_action(
            admin=admin,
            action_type="client_created",
            description=f"Created client {name}",
            target_type="client",
            target_id=client.id,
            target_name=name,
            metadata={"email": email},
        )
        return client

    saga = Saga("create_client", on_abort=db.session.rollback)
    user = saga.run(
        "provision_identity",
        lambda: identity.create_user(email, password, {"name": name, "role": "client"}),
        compensate=lambda u: identity.delete_user(u["id"]),
    )
    client = saga.run("insert_records", lambda: _insert(user))
    saga.run("commit", db.session.commit)

    logger.info("Client %s created (%s)", client.id, email, extra={"client_id": client.id})
    return {
        "client": client.to_dict(include_form=True),
        "access_code": access_code,
        "temporary_password": password,
    }


def create_admin(name, email, password, *, admin, identity) -> dict:
    name, email = _clean_name_and_email(name, email)
    if not password or len(password) < MIN_ADMIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Password too short",
            details={"password": f"at least {MIN_ADMIN_PASSWORD_LENGTH} characters"},
        )
    if Profile.query.filter(db.func.lower(Profile.email) == email.lower()).first():
        raise ConflictError("Profile", "email", email)

    def _insert(user):
        profile = Profile(id=user["id"], email=email, name=name, role="admin")
        db.session.add(profile)
        db.session.flush()
        log_admin_action(
            admin=admin,
            action_type="admin_created",
            description=f"Created administrator {name}",
            target_type="admin",
            target_id=profile.id,
            target_name=name,
        )
        return profile

    saga = Saga("create_admin", on_abort=db.session.rollback)
    user = saga.run(
        "provision_identity",
        lambda: identity.create_user(email, password, {"name": name, "role": "admin"}),
        compensate=lambda u: identity.delete_user(u["id"]),
    )
    profile = saga.run("insert_profile", lambda: _insert(user))
    saga.run("commit", db.session.commit)
    logger.info("Administrator %s created (%s)", profile.id, email)
    return profile.to_dict()


# ── Deletion ─────────────────────────────────────────────────────────────────

def delete_client(client_id: str, *, admin, identity, storage) -> dict:
    """
    Remove a client with its form, images, notifications, profile and login.

    Returns:
        {"deleted": True, "id": str, "images_removed": int, "storage_errors": int}
    """
    client = get_or_raise(Client, client_id)
    user_id = client.user_id
    client_name = client.name
    paths = [img.storage_path for img in client.form.images] if client.form else []

    def _delete_rows():
        Notification.query.filter(
            (Notification.client_id == client.id)
            | ((Notification.recipient_type == "client") & (Notification.recipient_id == client.id))
        ).delete(synchronize_session=False)
        if client.form is not None:
            db.session.delete(client.form)
        db.session.delete(client)
        profile = db.session.get(Profile, user_id)
        if profile is not None:
            db.session.delete(profile)
        log_admin_action(
            admin=admin,
            action_type="client_deleted",
            description=f"Deleted client {client_name}",
            target_type="client",
            target_id=client_id,
            target_name=client_name,
            metadata={"images": len(paths)},
        )
        db.session.flush()

    saga = Saga("delete_client", on_abort=db.session.rollback)
    saga.run("delete_records", _delete_rows)
    saga.run("delete_identity", lambda: identity.delete_user(user_id))
    saga.run("commit", db.session.commit)

    storage_errors = 0
    if paths:
        try:
            storage.remove(paths)
        except GatewayError:
            storage_errors = len(paths)
            logger.exception("Client %s deleted but %d stored images could not be removed",
                             client_id, len(paths))

    logger.info("Client %s (%s) deleted", client_id, client_name, extra={"client_id": client_id})
    return {
        "deleted": True,
        "id": client_id,
        "images_removed": len(paths) - storage_errors,
        "storage_errors": storage_errors,
    }


# ── Administration ───────────────────────────────────────────────────────────

def list_clients(*, search: str | None = None, status: str | None = None) -> list[dict]:
    q = Client.query
    if status:
        q = q.filter_by(status=status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Client.name.ilike(like), Client.email.ilike(like),
                            Client.access_code.ilike(like)))
    return [c.to_dict(include_form=True) for c in q.order_by(Client.created_at.desc()).all()]


def set_client_status(client_id: str, status: str, *, admin) -> dict:
    if status not in CLIENT_STATUSES:
        raise ValidationError("Invalid status", details={"status": f"must be one of: {sorted(CLIENT_STATUSES)}"})
    client = get_or_raise(Client, client_id)
    previous = client.status
    client.status = status
    log_admin_action(
        admin=admin,
        action_type="client_status_changed",
        description=f"Client {client.name}: {previous} → {status}",
        target_type="client",
        target_id=client.id,
        target_name=client.name,
        metadata={"previous": previous, "new": status},
    )
    db.session.commit()
    return client.to_dict(include_form=True)


def update_client_notes(client_id: str, notes: str, *, admin) -> dict:
    client = get_or_raise(Client, client_id)
    client.admin_notes = (notes or "").strip()
    log_admin_action(
        admin=admin,
        action_type="client_notes_updated",
        description=f"Updated notes for {client.name}",
        target_type="client",
        target_id=client.id,
        target_name=client.name,
    )
    db.session.commit()
    return client.to_dict()


def list_admins() -> list[dict]:
    return [p.to_dict() for p in Profile.query.filter_by(role="admin").order_by(Profile.created_at).all()]


def list_activity(*, action_type: str | None = None, target_id: str | None = None,
                  limit: int = 50, offset: int = 0) -> tuple[list[dict], int]:
    q = AdminActivityLog.query
    if action_type:
        q = q.filter_by(action_type=action_type)
    if target_id:
        q = q.filter_by(target_id=target_id)
    total = q.count()
    items = (q.order_by(AdminActivityLog.created_at.desc(), AdminActivityLog.id.desc())
             .offset(offset).limit(limit).all())
    return [entry.to_dict() for entry in items], total
