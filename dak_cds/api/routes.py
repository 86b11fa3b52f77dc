"""DAK admin and decision-support API routes."""

import io
from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from ..exceptions import ValidationError
from ..models import ImportJobStatus
from ..normalizer import normalize

dak_bp = Blueprint("dak", __name__)


def check_api_key(f):
    """Decorator to check API key for protected endpoints."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = current_app.config.get("API_KEY")

        # If no API key configured, allow all requests (dev mode)
        if not api_key:
            return f(*args, **kwargs)

        # Check key from query param or header
        provided_key = request.args.get("key") or request.headers.get("X-API-Key")

        if provided_key != api_key:
            return jsonify({"error": "Invalid or missing API key"}), 401

        return f(*args, **kwargs)

    return decorated


def _arg_bool(name: str, default: bool) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ("false", "0", "no")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# Rule import

@dak_bp.route("/api/admin/dak/upload-csv", methods=["POST"])
@check_api_key
def upload_csv():
    """Import a DAK rule sheet.

    Accepts a multipart upload in the ``file`` field or a raw CSV body.
    Touched modules are re-warmed after the import.
    """
    repository = current_app.rule_repository

    upload = request.files.get("file")
    if upload is not None:
        stream = io.TextIOWrapper(upload.stream, encoding="utf-8-sig", newline="")
        name = upload.filename or "upload"
    else:
        text = request.get_data(as_text=True)
        if not text.strip():
            raise ValidationError("No CSV file provided", field="file")
        stream = io.StringIO(text.lstrip("\ufeff"), newline="")
        name = "upload"

    result = repository.import_csv(stream, name=name)
    if result.modules_touched:
        current_app.decision_cache.warm(sorted(result.modules_touched))

    return jsonify({
        "success": result.success,
        "message": result.message,
        "statistics": result.to_dict(),
        "jobId": result.job_id,
    })


@dak_bp.route("/api/admin/dak/jobs", methods=["GET"])
@check_api_key
def list_import_jobs():
    """Recent import jobs, newest first."""
    store = current_app.rule_repository.store
    if store is None:
        return jsonify({"count": 0, "jobs": []})

    limit = request.args.get("limit", 20, type=int)
    status = request.args.get("status")
    try:
        status_filter = ImportJobStatus(status) if status else None
    except ValueError:
        raise ValidationError(f"Invalid job status '{status}'", field="status") from None

    jobs = store.list_import_jobs(limit=limit, status=status_filter)
    return jsonify({"count": len(jobs), "jobs": [j.to_dict() for j in jobs]})


# Integrity and compliance

@dak_bp.route("/api/admin/dak/integrity-check", methods=["GET"])
@check_api_key
def integrity_check():
    report = current_app.rule_repository.integrity_check()
    return jsonify({
        "success": True,
        "totalRules": report.total_rules,
        "validRules": report.valid_rules,
        "issuesFound": report.issues_found,
        "issues": [i.to_dict() for i in report.issues],
    })


@dak_bp.route("/api/admin/dak/compliance-report", methods=["GET"])
@check_api_key
def compliance_report():
    report = current_app.rule_repository.compliance_report()
    return jsonify({
        "totalRules": report["total_rules"],
        "validRules": report["valid_rules"],
        "compliance": report["compliance"],
        "checkedAt": report["checked_at"],
    })


# Decision support

@dak_bp.route("/api/dak/decision-support/<module>", methods=["GET"])
def decision_support_messages(module):
    """Decision-support messages for a module (``activeOnly`` defaults to true)."""
    active_only = _arg_bool("activeOnly", True)
    messages = current_app.decision_cache.get_decision_support_messages(module, active_only)
    return jsonify({
        "count": len(messages),
        "activeOnly": active_only,
        "messages": [m.to_dict() for m in messages],
    })


@dak_bp.route("/api/dak/decision-support/<module>", methods=["POST"])
def evaluate_observations(module):
    """Evaluate an observation payload against the module's active rules.

    Optional ``top`` query parameter limits the alerts returned.
    """
    observations = normalize(_json_body(), module)
    rules = current_app.decision_cache.get_active_rules_cached(observations.module_code)
    result = current_app.rule_engine.evaluate_detailed(observations, rules)

    top = request.args.get("top", type=int)
    if top is not None and top < 1:
        raise ValidationError("top must be a positive integer", field="top")
    alerts = result.top(top) if top else result.alerts

    return jsonify({
        "count": len(alerts),
        "activeOnly": True,
        "referralRequired": result.referral_required,
        "messages": [a.to_dict() for a in alerts],
        "evaluated": result.evaluated,
        "skipped": [s.to_dict() for s in result.skipped],
        "droppedKeys": list(observations.dropped_keys),
    })


# Cache administration

@dak_bp.route("/api/admin/dak/cache/stats", methods=["GET"])
@check_api_key
def cache_stats():
    return jsonify({
        "message": "Cache statistics",
        "cacheStatistics": current_app.decision_cache.stats(),
    })


@dak_bp.route("/api/admin/dak/cache/warm", methods=["POST"])
@check_api_key
def cache_warm():
    """Warm the cache for ``modules`` (default: the configured warm set)."""
    modules = _json_body().get("modules")
    if modules is not None and not isinstance(modules, list):
        raise ValidationError("modules must be a list", field="modules")

    cache = current_app.decision_cache
    warmed = cache.warm(modules)
    return jsonify({
        "message": f"Cache warmed for modules: {', '.join(warmed)}",
        "cacheStatistics": cache.stats(),
    })


@dak_bp.route("/api/admin/dak/cache/invalidate", methods=["POST"])
@check_api_key
def cache_invalidate():
    """Invalidate one module's cache, or every module when ``moduleCode`` is omitted or "all"."""
    module = _json_body().get("moduleCode") or "all"

    cache = current_app.decision_cache
    cache.invalidate(str(module))
    target = "all modules" if str(module).lower() == "all" else f"module {str(module).upper()}"
    return jsonify({
        "message": f"Cache invalidated for {target}",
        "cacheStatistics": cache.stats(),
    })


# Rule listing and patch

@dak_bp.route("/api/admin/dak/rules", methods=["GET"])
@check_api_key
def list_rules():
    limit = request.args.get("limit", 100, type=int)
    rules = current_app.rule_repository.list_rules(
        limit=limit,
        active_only=_arg_bool("activeOnly", False),
        module_code=request.args.get("module"),
    )
    return jsonify({"count": len(rules), "rules": [r.to_dict() for r in rules]})


@dak_bp.route("/api/admin/dak/rules/<int:rule_id>", methods=["GET"])
@check_api_key
def get_rule(rule_id):
    rule = current_app.rule_repository.get_rule(rule_id)
    return jsonify({"success": True, "rule": rule.to_dict()})


@dak_bp.route("/api/admin/dak/rules/<int:rule_id>", methods=["PATCH"])
@check_api_key
def patch_rule(rule_id):
    """Update only the supplied rule fields. Provenance fields are immutable."""
    rule = current_app.rule_repository.patch_rule(rule_id, _json_body())
    return jsonify({"success": True, "rule": rule.to_dict()})
