"""
Flask backend for the KPL Food Coop Market (Supabase-backed)

Usage:
  - Put your Supabase URL and SERVICE_ROLE key in .env (SUPABASE_URL, SUPABASE_SERVICE_KEY)
  - Members sign in with phone + 4-digit PIN via /auth/login and send the returned
    access_token as "Authorization: Bearer <token>"
  - Field agents record sales under /records, suppliers list produce under /produce,
    customers order under /orders, finance/audit/directors use /stats and /ai
  - /public/supplier-stats and /weather need no login

Note: table access uses the Supabase PostgREST endpoints (REST) via HTTP requests;
auth administration uses the supabase-py client.
"""

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional
from urllib.parse import quote

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, Response, g, jsonify, request
from werkzeug.utils import secure_filename

import config
import ledger
import market
import reports
import sales_ai
import sheets_sync
import weather
from catalog import (
    ADMIN_ROLES,
    ALL_ROLES,
    CLUSTER_ROLES,
    CLUSTERS,
    COMMODITY_CATEGORIES,
    CROP_CONFIG,
    FINANCE_ROLES,
    INTEGRITY_ROLES,
    LISTING_ROLES,
    PROFILE_STATUSES,
    PROFIT_MARGIN,
    CLUSTER_SHARE,
    SALES_ROLES,
    STAFF_ROLES,
    RecordStatus,
    SystemRole,
    cluster_for_role,
    normalize_phone,
    phone_search_term,
    pin_to_password,
    validate_pin,
)
from supabase_rest import (
    get_auth_user_from_token,
    get_client,
    supabase_delete,
    supabase_get,
    supabase_get_one,
    supabase_insert,
    supabase_sign_in,
    supabase_storage_upload,
    supabase_update,
    supabase_upsert,
)

logging.basicConfig(level=config.LOG_LEVEL)

app = Flask(__name__)


@app.route("/")
def home():
    return jsonify({"service": "KPL Food Coop Market API", "status": "ok"})


@app.route("/ping")
def ping():
    return {"status": "ok", "message": "Flask is working"}


@app.route("/catalog", methods=["GET"])
def catalog():
    """ Commodity categories, allowed units per crop and the field clusters. """
    return jsonify({
        "success": True,
        "categories": COMMODITY_CATEGORIES,
        "crop_units": CROP_CONFIG,
        "clusters": sorted(CLUSTERS),
        "roles": list(ALL_ROLES),
        "profit_margin": PROFIT_MARGIN,
        "cluster_share": CLUSTER_SHARE,
    })


@app.errorhandler(404)
def not_found(e):
    return jsonify({"success": False, "message": "Not found"}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"success": False, "message": "Method not allowed"}), 405


# ------------------------
# Audit trail & profile lookup
# ------------------------
def audit_log(table_name: str, entity_id: Optional[str], action: str, previous: Optional[dict], new: Optional[dict], user_id: Optional[str]):
    """
    Insert into audit_logs table for traceability.
    """
    payload = {
        "table_name": table_name,
        "entity_id": entity_id,
        "action": action,
        "previous_data": previous,
        "new_data": new,
        "user_id": user_id,
    }
    try:
        supabase_insert("audit_logs", [payload])
    except Exception as e:
        app.logger.error("Failed to write audit log: %s", e)


def fetch_profile(auth_user_id: str) -> Optional[dict]:
    """Look up the 'profiles' row keyed by the auth user id."""
    try:
        return supabase_get_one("profiles", {"id": f"eq.{auth_user_id}"})
    except Exception as e:
        app.logger.info("profiles lookup failed: %s", e)
    return None


def fetch_profile_by_phone(phone: str) -> Optional[dict]:
    try:
        return supabase_get_one("profiles", {"phone": f"eq.{phone}"})
    except Exception as e:
        app.logger.info("profiles phone lookup failed: %s", e)
    return None


def is_system_developer_phone(phone: Optional[str]) -> bool:
    return bool(phone) and phone in [normalize_phone(p) for p in config.SYSTEM_DEVELOPER_PHONES]


def verified_phone(auth_user: dict) -> str:
    """Phone on the auth account itself. user_metadata is member-writable and is not trusted."""
    return normalize_phone(auth_user.get("phone") or "")


def granted_metadata(auth_user: dict) -> dict:
    """Role, cluster and phone granted by an administrator (app_metadata is service-role only)."""
    return auth_user.get("app_metadata") or {}


def build_identity(auth_user: dict, profile: Optional[dict]) -> Dict[str, Any]:
    if profile:
        user = {
            "id": auth_user.get("id"),
            "name": profile.get("name"),
            "phone": profile.get("phone"),
            "role": profile.get("role"),
            "cluster": profile.get("cluster"),
            "status": profile.get("status") or "ACTIVE",
        }
    else:
        # Unknown user - still allow but role None until the profile is completed
        user = {
            "id": auth_user.get("id"),
            "name": (auth_user.get("user_metadata") or {}).get("full_name"),
            "phone": verified_phone(auth_user) or None,
            "role": None,
            "cluster": granted_metadata(auth_user).get("cluster"),
            "status": "ACTIVE",
        }
    if is_system_developer_phone(user["phone"]):
        user["role"] = SystemRole.SYSTEM_DEVELOPER
    return user


def profile_row(user_id: str, name: str, phone: str, role: str, cluster) -> Dict[str, Any]:
    return {
        "id": user_id,
        "name": name,
        "phone": phone,
        "role": role,
        "cluster": cluster_for_role(role, cluster),
        "status": "ACTIVE",
    }


# ------------------------
# Decorator: verify_auth
# ------------------------
def verify_auth(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        token = None
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

        if not token:
            return jsonify({"success": False, "message": "Authorization token required"}), 401

        auth_user = get_auth_user_from_token(token)
        if not auth_user:
            return jsonify({"success": False, "message": "Invalid or expired token"}), 401

        g.auth_user = auth_user
        profile = fetch_profile(auth_user.get("id"))
        if not profile:
            # Healed accounts may have a profile keyed by their confirmed phone
            phone = verified_phone(auth_user)
            if phone:
                profile = fetch_profile_by_phone(phone)

        g.user = build_identity(auth_user, profile)
        if g.user["status"] != "ACTIVE":
            app.logger.warning("Suspended account %s attempted access", g.user["id"])
            return jsonify({"success": False, "message": "Account suspended. Contact an administrator."}), 403

        return fn(*args, **kwargs)
    return wrapper


def has_role(*roles) -> bool:
    return bool(g.user) and g.user.get("role") in roles


def is_admin() -> bool:
    """ Directors and system developers administer members and content. """
    return has_role(*ADMIN_ROLES)


def forbidden(message="You do not have permission for this action"):
    return jsonify({"success": False, "message": message}), 403


def bad_request(message):
    return jsonify({"success": False, "message": message}), 400


def server_error(e):
    app.logger.exception(e)
    return jsonify({"success": False, "message": str(e)}), 500


# =====================================================================
# Registration, login & PIN management
# =====================================================================
@app.route("/auth/register", methods=["POST"])
def auth_register():
    """
    Self-registration for cluster members (agents, suppliers, customers).
    Creates a phone-confirmed auth user and the matching profile row.
    """
    body = request.get_json(silent=True) or {}
    phone = normalize_phone(body.get("phone") or "")
    name = (body.get("name") or body.get("full_name") or "").strip()
    pin = body.get("pin")
    role = body.get("role")
    cluster = body.get("cluster")

    if not phone or not name:
        return bad_request("Phone and name are required")
    if not validate_pin(pin):
        return bad_request("PIN must be exactly 4 digits.")
    if is_system_developer_phone(phone):
        role = SystemRole.SYSTEM_DEVELOPER
    elif role not in CLUSTER_ROLES:
        return bad_request(f"Role must be one of: {', '.join(CLUSTER_ROLES)}. Staff accounts are created by invitation.")
    if role in CLUSTER_ROLES and cluster not in CLUSTERS:
        return bad_request("Please select a cluster.")

    try:
        created = get_client().auth.admin.create_user({
            "phone": phone,
            "password": pin_to_password(pin),
            "user_metadata": {"full_name": name},
            "app_metadata": {"role": role, "cluster": cluster_for_role(role, cluster)},
            "phone_confirm": True,
        })
    except Exception as e:
        app.logger.warning("Supabase user creation failed for %s: %s", phone, e)
        return jsonify({"success": False, "message": "Could not create account. The phone number may already be registered."}), 409

    user_id = created.user.id
    profile = profile_row(user_id, name, phone, role, cluster)
    profile["provider"] = "phone"
    try:
        profile = supabase_upsert("profiles", [profile])[0]
    except Exception as e:
        # Login heals a missing profile from the auth metadata
        app.logger.error("Profile creation deferred for %s: %s", user_id, e)

    audit_log("profiles", user_id, "register", None, profile, user_id)
    sheets_sync.sync_user(profile)
    return jsonify({"success": True, "message": "Account created successfully", "profile": profile}), 201


@app.route("/auth/login", methods=["POST"])
def auth_login():
    """ Phone + PIN login. Recreates a missing profile from the auth user metadata. """
    body = request.get_json(silent=True) or {}
    phone = normalize_phone(body.get("phone") or "")
    pin = body.get("pin")
    if not phone or not validate_pin(pin):
        return bad_request("Phone and a 4-digit PIN are required")

    try:
        session = supabase_sign_in(phone, pin_to_password(pin))
        if not session:
            return jsonify({"success": False, "message": "Login Failed: invalid phone or PIN"}), 401

        auth_user = session.get("user") or {}
        tokens = {"access_token": session.get("access_token"), "refresh_token": session.get("refresh_token")}
        profile = fetch_profile(auth_user.get("id"))

        if not profile:
            granted = granted_metadata(auth_user)
            name = (auth_user.get("user_metadata") or {}).get("full_name")
            if granted.get("role") in ALL_ROLES and name:
                app.logger.info("Profile missing for %s, rebuilding from auth metadata", auth_user.get("id"))
                recovered = profile_row(auth_user["id"], name, phone, granted["role"], granted.get("cluster"))
                profile = supabase_upsert("profiles", [recovered])[0]
                audit_log("profiles", auth_user["id"], "auto_heal", None, profile, auth_user["id"])
            else:
                return jsonify({"success": True, "needs_profile": True, "session": tokens,
                                "message": "Profile not found. Please complete your details."})

        if (profile.get("status") or "ACTIVE") != "ACTIVE":
            return jsonify({"success": False, "message": "Account suspended. Contact an administrator."}), 403

        return jsonify({"success": True, "session": tokens, "profile": build_identity(auth_user, profile)})
    except Exception as e:
        return server_error(e)


@app.route("/auth/verify", methods=["POST"])
@verify_auth
def auth_verify():
    """Verifies a token and reports whether the member still has to complete a profile."""
    response_data = {"auth_user": g.auth_user, "user": g.user}
    if g.user.get("role") is None:
        # This flag tells the frontend to show the "Complete Profile" form
        response_data["is_new_user"] = True
    return jsonify({"success": True, "data": response_data})


@app.route("/auth/complete-profile", methods=["POST"])
@verify_auth
def auth_complete_profile():
    """
    Invited members (or members whose profile vanished) set their PIN and details.
    The phone is the account's confirmed phone or the one granted with the invitation.
    """
    if g.user.get("role") is not None and not is_admin():
        return forbidden("Profile already completed. Ask an administrator to change your details.")
    try:
        body = request.get_json(silent=True) or {}
        granted = granted_metadata(g.auth_user)
        confirmed = verified_phone(g.auth_user)
        phone = confirmed or normalize_phone(granted.get("phone") or "")
        name = (body.get("name") or (g.auth_user.get("user_metadata") or {}).get("full_name") or "").strip()
        # A role granted with the invitation wins over the form
        role = granted.get("role") or body.get("role")
        cluster = body.get("cluster") or granted.get("cluster")
        pin = body.get("pin")

        if not phone:
            return bad_request("No confirmed phone number on this account. Ask an administrator to resend your invitation.")
        if not name:
            return bad_request("Name is required")
        if not validate_pin(pin):
            return bad_request("PIN must be exactly 4 digits.")
        if is_system_developer_phone(phone):
            role = SystemRole.SYSTEM_DEVELOPER
        elif role not in ALL_ROLES or (not granted.get("role") and role not in CLUSTER_ROLES):
            return bad_request("Please select a role.")
        if role in CLUSTER_ROLES and cluster not in CLUSTERS:
            return bad_request("Please select a cluster.")

        holder = fetch_profile_by_phone(phone)
        if holder and holder.get("id") != g.user["id"]:
            return jsonify({"success": False, "message": "This phone number belongs to another member."}), 409

        attrs = {"password": pin_to_password(pin)}
        if phone != confirmed:
            attrs.update({"phone": phone, "phone_confirm": True})
        get_client().auth.admin.update_user_by_id(g.user["id"], attrs)
        prev = fetch_profile(g.user["id"])
        profile = supabase_upsert("profiles", [profile_row(g.user["id"], name, phone, role, cluster)])[0]
        audit_log("profiles", g.user["id"], "complete_profile", prev, profile, g.user["id"])
        sheets_sync.sync_user(profile)
        return jsonify({"success": True, "profile": profile})
    except Exception as e:
        return server_error(e)


def find_auth_user_by_phone(phone: str):
    """Search auth users for a phone that has no profile row ("ghost" accounts)."""
    users = get_client().auth.admin.list_users(page=1, per_page=1000)
    for u in users or []:
        if normalize_phone(getattr(u, "phone", None) or "") == phone:
            return u
    return None


@app.route("/auth/reset-pin", methods=["POST"])
@verify_auth
def auth_reset_pin():
    """
    Resets a member's PIN. Members may reset their own; administrators may reset anyone's.
    Rebuilds the profile when only the auth account exists.
    """
    body = request.get_json(silent=True) or {}
    phone = normalize_phone(body.get("phone") or g.user.get("phone") or "")
    pin = body.get("pin")
    if not phone:
        return bad_request("Please enter your phone number.")
    if not validate_pin(pin):
        return bad_request("New PIN must be exactly 4 digits.")
    if "confirm_pin" in body and body["confirm_pin"] != pin:
        return bad_request("PINs do not match.")
    if not is_admin() and phone != normalize_phone(g.user.get("phone") or ""):
        return forbidden("You can only reset your own PIN")

    try:
        role, name, cluster = SystemRole.CUSTOMER, "Member", config.DEFAULT_CLUSTER
        profile = fetch_profile_by_phone(phone)
        if profile:
            user_id = profile["id"]
            role = profile.get("role") or role
            name = profile.get("name") or name
            cluster = profile.get("cluster") or cluster
        else:
            app.logger.info("[ResetPIN] Profile missing for %s, searching auth users", phone)
            ghost = find_auth_user_by_phone(phone)
            if not ghost:
                return jsonify({"success": False, "message": "User not found. Please register first."}), 404
            granted = getattr(ghost, "app_metadata", None) or {}
            user_id = ghost.id
            if granted.get("role") in ALL_ROLES:
                role = granted["role"]
            name = (getattr(ghost, "user_metadata", None) or {}).get("full_name") or name
            cluster = granted.get("cluster") or cluster

        if is_system_developer_phone(phone):
            role = SystemRole.SYSTEM_DEVELOPER

        get_client().auth.admin.update_user_by_id(user_id, {
            "password": pin_to_password(pin),
            "user_metadata": {"full_name": name},
            "app_metadata": {"role": role, "cluster": cluster_for_role(role, cluster)},
        })
        row = profile_row(user_id, name, phone, role, cluster)
        if profile and profile.get("status"):
            row["status"] = profile["status"]
        healed = supabase_upsert("profiles", [row])[0]
        audit_log("profiles", user_id, "reset_pin", profile, healed, g.user["id"])
        return jsonify({"success": True, "message": "PIN updated successfully"})
    except Exception as e:
        return server_error(e)


# =====================================================================
# Admin endpoints (directors & system developers)
# =====================================================================
@app.route("/admin/invite", methods=["POST"])
@verify_auth
def admin_invite():
    """ Email invitation. Role, cluster and phone are granted through app_metadata. """
    if not is_admin():
        return forbidden("Administrator role required")
    body = request.get_json(silent=True) or {}
    email = body.get("email")
    role = body.get("role")
    if not email or not role:
        return bad_request("Email and role are required")
    if role not in ALL_ROLES:
        return bad_request(f"Unknown role: {role}")
    try:
        granted = {
            "role": role,
            "cluster": cluster_for_role(role, body.get("cluster")),
            "phone": normalize_phone(body.get("phone") or "") or None,
        }
        admin_api = get_client().auth.admin
        res = admin_api.invite_user_by_email(email, {"data": {"full_name": body.get("full_name")},
                                                     "redirect_to": config.SITE_URL})
        invited_id = res.user.id if res and res.user else None
        if invited_id:
            admin_api.update_user_by_id(invited_id, {"app_metadata": granted})
        audit_log("invitations", invited_id, "invite", None, dict(granted, email=email), g.user["id"])
        return jsonify({"success": True, "message": "Invitation sent", "user_id": invited_id})
    except Exception as e:
        return server_error(e)


@app.route("/admin/invite-link", methods=["GET"])
@verify_auth
def admin_invite_link():
    if not is_admin():
        return forbidden("Administrator role required")
    link = f"{config.SITE_URL}/?mode=register"
    text = f"Join the KPL Food Coop Market. Create your account securely here: {link}"
    return jsonify({"success": True, "link": link, "whatsapp_url": f"https://wa.me/?text={quote(text)}"})


@app.route("/admin/users", methods=["GET"])
@verify_auth
def admin_list_users():
    if not is_admin():
        return forbidden("Administrator role required")
    try:
        params = {"order": "name.asc"}
        for field in ("role", "cluster", "status"):
            if request.args.get(field):
                params[field] = f"eq.{request.args[field]}"
        users = supabase_get("profiles", params=params)
        return jsonify({"success": True, "users": users})
    except Exception as e:
        return server_error(e)


@app.route("/admin/users/<string:user_id>", methods=["PATCH", "DELETE"])
@verify_auth
def admin_modify_user(user_id):
    if not is_admin():
        return forbidden("Administrator role required")

    try:
        prev = fetch_profile(user_id)
        if not prev:
            return jsonify({"success": False, "message": "User not found"}), 404

        if request.method == "DELETE":
            deleted = supabase_delete("profiles", {"id": user_id})
            audit_log("profiles", user_id, "admin_delete", prev, None, g.user["id"])
            if prev.get("phone"):
                sheets_sync.delete_user(prev["phone"])
            # NOTE: the auth.users entry stays; remove it from the Supabase dashboard if needed
            return jsonify({"success": True, "deleted_user": deleted[0] if deleted else prev})

        body = request.get_json(silent=True) or {}
        updates = {k: v for k, v in {
            "name": body.get("name"),
            "role": body.get("role"),
            "cluster": body.get("cluster"),
            "status": body.get("status"),
        }.items() if v is not None}
        if not updates:
            return bad_request("No fields to update.")
        if "role" in updates and updates["role"] not in ALL_ROLES:
            return bad_request(f"Unknown role: {updates['role']}")
        if "status" in updates and updates["status"] not in PROFILE_STATUSES:
            return bad_request(f"status must be one of {', '.join(PROFILE_STATUSES)}")
        if "cluster" in updates and updates["cluster"] not in CLUSTERS and updates["cluster"] != "-":
            return bad_request(f"Unknown cluster: {updates['cluster']}")

        updated = supabase_update("profiles", {"id": user_id}, updates)[0]
        audit_log("profiles", user_id, "admin_update", prev, updated, g.user["id"])
        return jsonify({"success": True, "updated_user": updated})
    except Exception as e:
        return server_error(e)


# =====================================================================
# Sale records
# =====================================================================
def load_record(record_id: str) -> Optional[dict]:
    """Fetch a record the caller may see (agents only see their own)."""
    row = supabase_get_one("records", {"id": f"eq.{record_id}"})
    if row and has_role(SystemRole.SALES_AGENT) and row.get("agent_id") != g.user["id"]:
        return None
    return row


@app.route("/records", methods=["POST"])
@verify_auth
def records_create():
    if not has_role(*SALES_ROLES):
        return forbidden("Sales access required")
    try:
        body = request.get_json(silent=True) or {}
        record = ledger.build_sale_record(body, g.user)
    except ValueError as e:
        return bad_request(f"Validation Error: {e}")
    try:
        res = supabase_insert("records", [record])[0]
        audit_log("records", record["id"], "create", None, res, g.user["id"])
        return jsonify({"success": True, "record": res}), 201
    except Exception as e:
        return server_error(e)


@app.route("/records", methods=["GET"])
@verify_auth
def records_list():
    if not has_role(*STAFF_ROLES):
        return forbidden("Staff access required")
    try:
        params = {"order": "created_at.desc"}
        if has_role(SystemRole.SALES_AGENT):
            params["agent_id"] = f"eq.{g.user['id']}"
        status = request.args.get("status")
        if status:
            params["status"] = f"eq.{status.upper()}"
        if request.args.get("cluster"):
            params["cluster"] = f"eq.{request.args['cluster']}"
        rows = supabase_get("records", params=params)
        return jsonify({"success": True, "records": rows, "count": len(rows)})
    except Exception as e:
        return server_error(e)


@app.route("/records/export.csv", methods=["GET"])
@verify_auth
def records_export():
    """ Validated ledger as CSV for the accounts office. """
    if not has_role(*FINANCE_ROLES):
        return forbidden("Finance access required")
    try:
        rows = supabase_get("records", params={"status": f"eq.{RecordStatus.VALIDATED}", "order": "date.asc"})
        if not rows:
            return jsonify({"success": False, "message": "No validated records."}), 404
        return Response(
            reports.ledger_csv(rows),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=Ledger.csv"},
        )
    except Exception as e:
        return server_error(e)


@app.route("/records/<string:record_id>", methods=["GET"])
@verify_auth
def records_get(record_id):
    if not has_role(*STAFF_ROLES):
        return forbidden("Staff access required")
    try:
        row = load_record(record_id)
        if not row:
            return jsonify({"success": False, "message": "Record not found"}), 404
        return jsonify({"success": True, "record": row})
    except Exception as e:
        return server_error(e)


@app.route("/records/<string:record_id>", methods=["DELETE"])
@verify_auth
def records_delete(record_id):
    """ Administrators may delete anything; agents only their own drafts. """
    if not has_role(*STAFF_ROLES):
        return forbidden("Staff access required")
    try:
        row = load_record(record_id)
        if not row:
            return jsonify({"success": False, "message": "Record not found"}), 404
        if not is_admin():
            if not has_role(SystemRole.SALES_AGENT) or row.get("status") != RecordStatus.DRAFT:
                return forbidden("Only draft records can be deleted by their agent")

        supabase_delete("records", {"id": record_id})
        audit_log("records", record_id, "delete", row, None, g.user["id"])
        if row.get("synced"):
            sheets_sync.delete_record(record_id)
        return jsonify({"success": True, "deleted": row})
    except Exception as e:
        return server_error(e)


def apply_transition(record_id: str, action: str, transition):
    """Load, transition, persist and audit a record; transition(row) -> new row."""
    row = load_record(record_id)
    if not row:
        return jsonify({"success": False, "message": "Record not found"}), 404
    try:
        updated = transition(row)
    except ledger.InvalidTransition as e:
        return jsonify({"success": False, "message": str(e)}), 409

    changes = {k: updated.get(k) for k in ("status", "confirmed_by", "signature", "flag_reason") if k in updated}
    saved = supabase_update("records", {"id": record_id}, changes)
    saved = saved[0] if saved else dict(row, **changes)
    audit_log("records", record_id, action, row, saved, g.user["id"])
    return saved


@app.route("/records/<string:record_id>/confirm-payment", methods=["POST"])
@verify_auth
def records_confirm_payment(record_id):
    if not has_role(*FINANCE_ROLES):
        return forbidden("Finance access required")
    try:
        saved = apply_transition(record_id, "confirm_payment",
                                 lambda row: ledger.confirm_payment(row, g.user.get("name")))
        if not isinstance(saved, dict):
            return saved
        return jsonify({"success": True, "record": saved, "receipt": ledger.receipt(saved)})
    except Exception as e:
        return server_error(e)


@app.route("/records/<string:record_id>/validate", methods=["POST"])
@verify_auth
def records_validate(record_id):
    if not has_role(*INTEGRITY_ROLES):
        return forbidden("Audit access required")
    try:
        saved = apply_transition(record_id, "validate", ledger.validate)
        if not isinstance(saved, dict):
            return saved
        # Mirror validated sales to the legacy sheet when it is configured
        if sheets_sync.is_configured() and sheets_sync.push_unsynced([saved]):
            supabase_update("records", {"id": record_id}, {"synced": True})
            saved["synced"] = True
        return jsonify({"success": True, "record": saved})
    except Exception as e:
        return server_error(e)


@app.route("/records/<string:record_id>/flag", methods=["POST"])
@verify_auth
def records_flag(record_id):
    if not has_role(*INTEGRITY_ROLES):
        return forbidden("Audit access required")
    body = request.get_json(silent=True) or {}
    reason = (body.get("reason") or "").strip()
    if not reason:
        return bad_request("A reason is required when flagging a record")
    try:
        saved = apply_transition(record_id, "flag", lambda row: ledger.flag(row, reason))
        if not isinstance(saved, dict):
            return saved
        return jsonify({"success": True, "record": saved})
    except Exception as e:
        return server_error(e)


@app.route("/records/<string:record_id>/audit", methods=["GET"])
@verify_auth
def records_audit(record_id):
    """ Recomputes the record signature to detect edits made outside the app. """
    if not has_role(*STAFF_ROLES):
        return forbidden("Staff access required")
    try:
        row = load_record(record_id)
        if not row:
            return jsonify({"success": False, "message": "Record not found"}), 404
        expected = ledger.compute_signature(ledger.normalize_record(row))
        return jsonify({
            "success": True,
            "record_id": record_id,
            "is_intact": ledger.verify_signature(row),
            "stored_signature": row.get("signature"),
            "computed_signature": expected,
        })
    except Exception as e:
        return server_error(e)


# =====================================================================
# Finance & board reporting
# =====================================================================
def fetch_report_records():
    params = {"order": "date.desc"}
    if request.args.get("cluster"):
        params["cluster"] = f"eq.{request.args['cluster']}"
    return supabase_get("records", params=params)


@app.route("/stats/summary", methods=["GET"])
@verify_auth
def stats_summary():
    if not has_role(*FINANCE_ROLES):
        return forbidden("Finance access required")
    try:
        rows = fetch_report_records()
        return jsonify({"success": True, "stats": reports.coop_stats(rows)})
    except Exception as e:
        return server_error(e)


@app.route("/stats/commodities", methods=["GET"])
@verify_auth
def stats_commodities():
    if not has_role(*FINANCE_ROLES):
        return forbidden("Finance access required")
    try:
        rows = fetch_report_records()
        return jsonify({"success": True, "commodities": reports.commodity_totals(rows)})
    except Exception as e:
        return server_error(e)


@app.route("/ai/analyze-sales", methods=["POST"])
@verify_auth
def ai_analyze_sales():
    """ Gemini audit report over the recorded sales. """
    if not has_role(*INTEGRITY_ROLES):
        return forbidden("Audit access required")
    try:
        rows = fetch_report_records()
        if not rows:
            return bad_request("No sales data available for audit.")
        report = sales_ai.analyze_sales(rows)
        return jsonify({"success": True, "report": report, "record_count": len(rows)})
    except Exception as e:
        return server_error(e)


@app.route("/public/supplier-stats", methods=["GET"])
def public_supplier_stats():
    """
    Public supplier portal: a supplier enters their phone number and sees the
    cluster share their sales generated this week, this month and overall.
    """
    raw = request.args.get("phone") or ""
    term = phone_search_term(raw)
    if len(term) < 9:
        return bad_request("Please enter a valid phone number.")
    try:
        phone = normalize_phone(raw)
        rows = supabase_get("records", params={
            "or": f'(farmer_phone.ilike.*{term}*,farmer_phone.eq."{phone}")',
            "order": "date.desc",
        })
        if not rows:
            return jsonify({"success": False, "message": "No records found for this number."}), 404
        return jsonify({"success": True, "stats": reports.supplier_stats(rows)})
    except Exception as e:
        return server_error(e)


# =====================================================================
# Produce listings
# =====================================================================
def can_manage(row: dict) -> bool:
    return is_admin() or row.get("agent_id") == g.user["id"]


@app.route("/produce", methods=["POST"])
@verify_auth
def produce_create():
    if not has_role(*LISTING_ROLES):
        return forbidden("Only suppliers and agents can list produce")
    try:
        listing = market.build_listing(request.get_json(silent=True) or {}, g.user)
    except ValueError as e:
        return bad_request(str(e))
    try:
        res = supabase_insert("produce", [listing])[0]
        audit_log("produce", listing["id"], "create", None, res, g.user["id"])
        sheets_sync.sync_produce(res)
        return jsonify({"success": True, "produce": res}), 201
    except Exception as e:
        return server_error(e)


@app.route("/produce", methods=["GET"])
@verify_auth
def produce_list():
    try:
        params = {"order": "date.desc"}
        for field in ("crop_type", "cluster", "status"):
            if request.args.get(field):
                params[field] = f"eq.{request.args[field]}"
        if request.args.get("mine") and g.user.get("id"):
            params["agent_id"] = f"eq.{g.user['id']}"
        rows = supabase_get("produce", params=params)
        return jsonify({"success": True, "produce": rows})
    except Exception as e:
        return server_error(e)


@app.route("/produce/<string:produce_id>", methods=["PATCH"])
@verify_auth
def produce_update(produce_id):
    try:
        prev = supabase_get_one("produce", {"id": f"eq.{produce_id}"})
        if not prev:
            return jsonify({"success": False, "message": "Listing not found"}), 404
        if not can_manage(prev):
            return forbidden("You can only edit your own listings")
        try:
            updates = market.listing_updates(request.get_json(silent=True) or {})
        except ValueError as e:
            return bad_request(str(e))
        if not updates:
            return bad_request("No fields to update")
        updated = supabase_update("produce", {"id": produce_id}, updates)[0]
        audit_log("produce", produce_id, "update", prev, updated, g.user["id"])
        return jsonify({"success": True, "produce": updated})
    except Exception as e:
        return server_error(e)


@app.route("/produce/<string:produce_id>", methods=["DELETE"])
@verify_auth
def produce_delete(produce_id):
    try:
        prev = supabase_get_one("produce", {"id": f"eq.{produce_id}"})
        if not prev:
            return jsonify({"success": False, "message": "Listing not found"}), 404
        if not can_manage(prev):
            return forbidden("You can only delete your own listings")
        supabase_delete("produce", {"id": produce_id})
        audit_log("produce", produce_id, "delete", prev, None, g.user["id"])
        sheets_sync.delete_produce(produce_id)
        return jsonify({"success": True, "deleted": prev})
    except Exception as e:
        return server_error(e)


# =====================================================================
# Orders
# =====================================================================
ORDER_VIEW_ALL_ROLES = FINANCE_ROLES


@app.route("/orders", methods=["POST"])
@verify_auth
def orders_create():
    if g.user.get("role") is None:
        return forbidden("Complete your profile before ordering")
    body = request.get_json(silent=True) or {}
    listing_id = body.get("listing_id")
    if not listing_id:
        return bad_request("listing_id is required")
    try:
        listing = supabase_get_one("produce", {"id": f"eq.{listing_id}"})
        if not listing or listing.get("status", "AVAILABLE") != "AVAILABLE":
            return jsonify({"success": False, "message": "Listing not available"}), 404
        try:
            order = market.build_order(body, listing, g.user)
        except ValueError as e:
            return bad_request(str(e))
        available = float(listing.get("units_available") or 0)
        if order["unit_type"] == listing.get("unit_type") and order["quantity"] > available:
            return jsonify({"success": False, "message": f"Only {available:g} {listing.get('unit_type')} available"}), 409

        res = supabase_insert("orders", [order])[0]
        audit_log("orders", order["id"], "create", None, res, g.user["id"])
        sheets_sync.sync_order(res)
        return jsonify({"success": True, "order": res}), 201
    except Exception as e:
        return server_error(e)


@app.route("/orders", methods=["GET"])
@verify_auth
def orders_list():
    try:
        params = {"order": "created_at.desc"}
        if not has_role(*ORDER_VIEW_ALL_ROLES):
            params["agent_id"] = f"eq.{g.user['id']}"
        if request.args.get("status"):
            params["status"] = f"eq.{request.args['status'].upper()}"
        rows = supabase_get("orders", params=params)
        return jsonify({"success": True, "orders": rows})
    except Exception as e:
        return server_error(e)


@app.route("/orders/<string:order_id>/status", methods=["PATCH"])
@verify_auth
def orders_update_status(order_id):
    """ Staff move orders through the pipeline; the person who placed an order may cancel it. """
    body = request.get_json(silent=True) or {}
    try:
        status = market.check_order_status(body.get("status"))
    except ValueError as e:
        return bad_request(str(e))
    try:
        prev = supabase_get_one("orders", {"id": f"eq.{order_id}"})
        if not prev:
            return jsonify({"success": False, "message": "Order not found"}), 404
        is_owner = prev.get("agent_id") == g.user["id"]
        if not has_role(*ORDER_VIEW_ALL_ROLES) and not (is_owner and status == "CANCELLED"):
            return forbidden("You can only cancel your own orders")
        if prev.get("status") in ("FULFILLED", "CANCELLED"):
            return jsonify({"success": False, "message": f"Order is already {prev['status']}"}), 409
        updated = supabase_update("orders", {"id": order_id}, {"status": status})[0]
        audit_log("orders", order_id, "status", prev, updated, g.user["id"])
        return jsonify({"success": True, "order": updated})
    except Exception as e:
        return server_error(e)


# =====================================================================
# Forum, news & contact
# =====================================================================
@app.route("/forum/posts", methods=["GET"])
@verify_auth
def forum_list():
    try:
        posts = supabase_get("forum_posts", params={"order": "created_at.desc"})
        return jsonify({"success": True, "posts": posts})
    except Exception as e:
        return server_error(e)


@app.route("/forum/posts", methods=["POST"])
@verify_auth
def forum_create():
    try:
        post = market.build_forum_post(request.get_json(silent=True) or {}, g.user)
    except ValueError as e:
        return bad_request(str(e))
    try:
        res = supabase_insert("forum_posts", [post])[0]
        audit_log("forum_posts", post["id"], "create", None, res, g.user["id"])
        return jsonify({"success": True, "post": res}), 201
    except Exception as e:
        return server_error(e)


@app.route("/forum/posts/<string:post_id>", methods=["DELETE"])
@verify_auth
def forum_delete(post_id):
    """ Authors delete their own posts; administrators moderate everything. """
    try:
        post = supabase_get_one("forum_posts", {"id": f"eq.{post_id}"})
        if not post:
            return jsonify({"success": False, "message": "Post not found"}), 404
        is_author = post.get("author_id") == g.user["id"] or (
            post.get("author_phone") and post.get("author_phone") == g.user.get("phone"))
        if not (is_admin() or is_author):
            return forbidden("Could not delete post. You may not have permission.")
        supabase_delete("forum_posts", {"id": post_id})
        audit_log("forum_posts", post_id, "delete", post, None, g.user["id"])
        return jsonify({"success": True})
    except Exception as e:
        return server_error(e)


@app.route("/news", methods=["GET"])
def news_list():
    try:
        articles = supabase_get("news", params={"order": "date.desc"})
        return jsonify({"success": True, "articles": articles})
    except Exception as e:
        return server_error(e)


@app.route("/news", methods=["POST"])
@verify_auth
def news_create():
    """ Publishes an article; accepts JSON (image URL) or multipart with an image file. """
    if not is_admin():
        return forbidden("Administrator role required")
    try:
        if request.files.get("image_file"):
            body = request.form.to_dict()
            image_file = request.files["image_file"]
            filename = secure_filename(image_file.filename)
            if not filename:
                return bad_request("Invalid image file name")
            path = f"articles/{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{filename}"
            image_url = supabase_storage_upload(config.NEWS_IMAGE_BUCKET, path, image_file)
        else:
            body = request.get_json(silent=True) or {}
            image_url = None
        try:
            article = market.build_article(body, image_url, g.user)
        except ValueError as e:
            return bad_request(str(e))
        res = supabase_insert("news", [article])[0]
        audit_log("news", article["id"], "create", None, res, g.user["id"])
        return jsonify({"success": True, "article": res}), 201
    except Exception as e:
        return server_error(e)


@app.route("/contact", methods=["POST"])
def contact_create():
    try:
        message = market.build_contact_message(request.get_json(silent=True) or {})
    except ValueError as e:
        return bad_request(str(e))
    try:
        supabase_insert("contact_messages", [message])
        audit_log("contact_messages", message["id"], "create", None, message, None)
        return jsonify({"success": True, "message": "Message received. We will get back to you shortly."}), 201
    except Exception as e:
        return server_error(e)


@app.route("/contact", methods=["GET"])
@verify_auth
def contact_list():
    if not is_admin():
        return forbidden("Administrator role required")
    try:
        params = {"order": "date.desc"}
        if request.args.get("status"):
            params["status"] = f"eq.{request.args['status']}"
        rows = supabase_get("contact_messages", params=params)
        return jsonify({"success": True, "messages": rows})
    except Exception as e:
        return server_error(e)


# =====================================================================
# Weather advisory
# =====================================================================
@app.route("/weather/<string:cluster>", methods=["GET"])
def weather_advisory(cluster):
    return jsonify({"success": True, "weather": weather.advisory(cluster)})


# =====================================================================
# Legacy Google Sheets sync
# =====================================================================
def run_background_sync() -> int:
    """ Pushes validated, not yet mirrored records to the sheet. Returns how many were accepted. """
    if not sheets_sync.is_configured():
        return 0
    try:
        pending = supabase_get("records", params={
            "status": f"eq.{RecordStatus.VALIDATED}",
            "synced": "is.false",
        })
        accepted = sheets_sync.push_unsynced(pending)
        for record_id in accepted:
            supabase_update("records", {"id": record_id}, {"synced": True})
        if accepted:
            app.logger.info("Mirrored %d records to Google Sheets", len(accepted))
        return len(accepted)
    except Exception as e:
        app.logger.exception(e)
        return 0


def sheets_unavailable():
    return jsonify({"success": False, "message": "Google Sheets webhook is not configured"}), 503


@app.route("/sync/push", methods=["POST"])
@verify_auth
def sync_push():
    if not is_admin():
        return forbidden("Administrator role required")
    if not sheets_sync.is_configured():
        return sheets_unavailable()
    return jsonify({"success": True, "pushed": run_background_sync()})


@app.route("/sync/pull", methods=["POST"])
@verify_auth
def sync_pull():
    """ Imports sale records from the legacy sheet into the records table. """
    if not is_admin():
        return forbidden("Administrator role required")
    if not sheets_sync.is_configured():
        return sheets_unavailable()
    try:
        rows = sheets_sync.rows_from_response(sheets_sync.fetch_records())
        imported = []
        for row in rows:
            record = ledger.normalize_record(row)
            if not record.get("id"):
                continue
            imported.append(ledger.table_row(dict(record, synced=True)))
        if imported:
            supabase_upsert("records", imported, on_conflict="id")
            audit_log("records", None, "sheet_import", None, {"count": len(imported)}, g.user["id"])
        return jsonify({"success": True, "imported": len(imported), "skipped": len(rows) - len(imported)})
    except Exception as e:
        return server_error(e)


@app.route("/sync/<string:kind>", methods=["DELETE"])
@verify_auth
def sync_purge(kind):
    """ Clears one tab of the legacy sheet. System developers only. """
    if not has_role(SystemRole.SYSTEM_DEVELOPER):
        return forbidden("System developer role required")
    if kind not in sheets_sync.PURGE_ACTIONS:
        return jsonify({"success": False, "message": f"Unknown sheet: {kind}"}), 404
    if not sheets_sync.is_configured():
        return sheets_unavailable()
    result = sheets_sync.PURGE_ACTIONS[kind]()
    if result is None:
        return jsonify({"success": False, "message": "Sheet did not respond"}), 502
    audit_log("sheets", kind, "purge", None, None, g.user["id"])
    return jsonify({"success": True, "result": result})


scheduler = BackgroundScheduler()


def start_scheduler():
    if not (config.SYNC_ENABLED and sheets_sync.is_configured()):
        app.logger.info("Background sheet sync disabled")
        return False
    scheduler.add_job(run_background_sync, "interval", seconds=config.SYNC_POLLING_INTERVAL,
                      id="sheets_sync", replace_existing=True)
    scheduler.start()
    return True


# ------------------------
# Run server
# ------------------------
if __name__ == "__main__":
    start_scheduler()
    app.logger.info("Starting Flask server on http://0.0.0.0:%s", config.PORT)
    app.run(host="0.0.0.0", port=config.PORT)
