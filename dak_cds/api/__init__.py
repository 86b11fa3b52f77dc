"""Flask application factory for the DAK decision support API."""

from flask import Flask, jsonify

from ..config import Config
from ..exceptions import DAKError, ImportAbortedError, NotFoundError, ValidationError


def create_app(config=None, repository=None):
    """Create and configure the Flask application.

    Args:
        config: Optional configuration object or dict
        repository: Optional RuleRepository; by default one backed by a
            RuleStore at DB_PATH is created

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(Config)
    if isinstance(config, dict):
        app.config.update(config)
    elif config is not None:
        app.config.from_object(config)

    # Rule repository, decision cache and evaluation engine
    from ..cache import DecisionCache
    from ..repository import RuleRepository
    from ..rules import RuleEvaluationEngine
    from ..store import RuleStore

    if repository is None:
        repository = RuleRepository(
            store=RuleStore(db_path=app.config.get("DB_PATH")),
            batch_size=app.config.get("IMPORT_BATCH_SIZE"),
        )
    app.rule_repository = repository
    app.decision_cache = DecisionCache(
        repository,
        ttl_seconds=app.config.get("CACHE_TTL_SECONDS"),
        max_entries=app.config.get("CACHE_MAX_ENTRIES"),
    )
    app.rule_engine = RuleEvaluationEngine()

    # Register blueprints
    from .routes import dak_bp
    app.register_blueprint(dak_bp)

    _register_error_handlers(app)

    return app


def _register_error_handlers(app: Flask) -> None:
    def _error_response(error: DAKError, status: int):
        body = error.to_dict()
        body["success"] = False
        return jsonify(body), status

    @app.errorhandler(NotFoundError)
    def handle_not_found(error):
        return _error_response(error, 404)

    @app.errorhandler(ValidationError)
    def handle_validation(error):
        return _error_response(error, 400)

    @app.errorhandler(ImportAbortedError)
    def handle_import_aborted(error):
        return _error_response(error, 422)


__all__ = ["create_app"]
